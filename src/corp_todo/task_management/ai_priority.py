"""Heuristic AI priority score for tasks."""

from datetime import datetime, timezone

from .codec import ensure_aware
from .models import Priority, Task

PRIORITY_WEIGHTS = {
    Priority.HIGH: 40,
    Priority.MEDIUM: 25,
    Priority.LOW: 10,
}

# (hours until due, bonus); overdue tasks get OVERDUE_BONUS
DEADLINE_BONUSES = [(24, 30), (72, 15), (168, 5)]
OVERDUE_BONUS = 50

CRITICAL_KEYWORDS = [
    "urgente",
    "asap",
    "crítico",
    "producción",
    "bug",
    "error",
    "cliente",
    "pagos",
    "seguridad",
]
KEYWORD_BONUS = 20
ASSIGNED_BONUS = 10
MAX_SCORE = 100


def calculate_ai_priority_score(task: Task, now: datetime | None = None) -> int:
    """
    Score a task from 0 to 100.

    Combines the priority weight, deadline pressure, critical keywords in the
    title and whether the task is assigned to someone.

    Args:
        task: Task to score
        now: Reference time (defaults to UTC now)

    Returns:
        Score capped at 100
    """
    now = ensure_aware(now) or datetime.now(timezone.utc)
    score = PRIORITY_WEIGHTS.get(task.priority, 0)

    if task.due_date is not None:
        # Whole hours, truncated toward zero
        hours_until_due = int((ensure_aware(task.due_date) - now).total_seconds() / 3600)
        if hours_until_due < 0:
            score += OVERDUE_BONUS
        else:
            for limit, bonus in DEADLINE_BONUSES:
                if hours_until_due < limit:
                    score += bonus
                    break

    title = task.title.lower()
    if any(keyword in title for keyword in CRITICAL_KEYWORDS):
        score += KEYWORD_BONUS

    if task.assigned_to:
        score += ASSIGNED_BONUS

    return min(score, MAX_SCORE)


def sort_tasks_by_ai_priority(tasks: list[Task], now: datetime | None = None) -> list[Task]:
    """Sort tasks by descending score, preferring a stored ai_priority_score."""

    def score(task: Task) -> float:
        if task.ai_priority_score is not None:
            return task.ai_priority_score
        return calculate_ai_priority_score(task, now)

    return sorted(tasks, key=score, reverse=True)
