"""Tests for the AI priority score."""

from datetime import timedelta

import pytest
from fakes import START, make_task

from corp_todo.task_management.ai_priority import (
    calculate_ai_priority_score,
    sort_tasks_by_ai_priority,
)
from corp_todo.task_management.models import Priority


@pytest.mark.unit
class TestPriorityScore:
    """Test score components."""

    @pytest.mark.parametrize(
        "priority,expected",
        [(Priority.HIGH, 40), (Priority.MEDIUM, 25), (Priority.LOW, 10)],
    )
    def test_priority_weight(self, priority: Priority, expected: int) -> None:
        """Test the base score comes from the priority."""
        assert calculate_ai_priority_score(make_task(priority=priority), START) == expected

    @pytest.mark.parametrize(
        "due_in,bonus",
        [
            (timedelta(hours=-2), 50),
            (timedelta(minutes=-30), 30),
            (timedelta(hours=10), 30),
            (timedelta(hours=48), 15),
            (timedelta(hours=100), 5),
            (timedelta(hours=200), 0),
        ],
    )
    def test_deadline_bonus(self, due_in: timedelta, bonus: int) -> None:
        """Test closer deadlines score higher and overdue scores highest."""
        task = make_task(due_date=START + due_in)

        assert calculate_ai_priority_score(task, START) == 25 + bonus

    def test_keyword_bonus_applies_once(self) -> None:
        """Test critical words in the title add a single bonus."""
        task = make_task(title="Bug urgente en producción")

        assert calculate_ai_priority_score(task, START) == 45

    def test_keyword_match_ignores_case(self) -> None:
        """Test keywords match regardless of case."""
        assert calculate_ai_priority_score(make_task(title="Llamar al CLIENTE"), START) == 45

    def test_assigned_bonus(self) -> None:
        """Test assigned tasks score higher."""
        assert calculate_ai_priority_score(make_task(assigned_to="luis"), START) == 35

    def test_score_is_capped(self) -> None:
        """Test the score never exceeds 100."""
        task = make_task(
            title="ASAP: fix payments error",
            priority=Priority.HIGH,
            due_date=START - timedelta(days=1),
            assigned_to="luis",
        )

        assert calculate_ai_priority_score(task, START) == 100


@pytest.mark.unit
class TestPrioritySorting:
    """Test ordering by score."""

    def test_sort_highest_first(self) -> None:
        """Test tasks are ordered by descending score."""
        low = make_task("low", priority=Priority.LOW)
        high = make_task("high", priority=Priority.HIGH)
        urgent = make_task("urgent", priority=Priority.MEDIUM, due_date=START)

        ordered = sort_tasks_by_ai_priority([low, high, urgent], START)

        assert [task.id for task in ordered] == ["urgent", "high", "low"]

    def test_stored_score_wins(self) -> None:
        """Test a stored score is used instead of recomputing."""
        stored = make_task("stored", priority=Priority.LOW, ai_priority_score=99)
        high = make_task("high", priority=Priority.HIGH)

        ordered = sort_tasks_by_ai_priority([high, stored], START)

        assert [task.id for task in ordered] == ["stored", "high"]
