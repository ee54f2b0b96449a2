"""Completion analytics over a task collection."""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from .codec import ensure_aware
from .models import Category, Task


@dataclass
class WeeklyAnalytics:
    """Completion figures for the current Monday-based week."""

    week_start: date
    completions_per_day: dict[date, int] = field(default_factory=dict)
    category_distribution: dict[Category, int] = field(default_factory=dict)
    avg_hours_to_start: float = 0.0
    avg_hours_to_complete: float = 0.0
    total_completed: int = 0


def _hours_between(start: datetime, end: datetime) -> int:
    return int((ensure_aware(end) - ensure_aware(start)).total_seconds() / 3600)


def weekly_analytics(tasks: list[Task], now: datetime | None = None) -> WeeklyAnalytics:
    """
    Summarize completions in the week containing now.

    Average durations use every task that has been started and completed,
    whenever that happened.
    """
    now = ensure_aware(now) or datetime.now(timezone.utc)
    week_start = now.date() - timedelta(days=now.weekday())
    week_days = [week_start + timedelta(days=offset) for offset in range(7)]

    this_week = [
        task
        for task in tasks
        if task.completed_at is not None
        and week_start <= ensure_aware(task.completed_at).date() <= week_days[-1]
    ]

    per_day = Counter(ensure_aware(task.completed_at).date() for task in this_week)
    categories = Counter(task.category for task in this_week)

    measured = [
        task
        for task in tasks
        if task.completed_at is not None and task.started_at is not None
    ]
    count = len(measured) or 1
    to_start = sum(_hours_between(task.created_at, task.started_at) for task in measured)
    to_complete = sum(_hours_between(task.started_at, task.completed_at) for task in measured)

    return WeeklyAnalytics(
        week_start=week_start,
        completions_per_day={day: per_day.get(day, 0) for day in week_days},
        category_distribution=dict(categories),
        avg_hours_to_start=to_start / count,
        avg_hours_to_complete=to_complete / count,
        total_completed=len(this_week),
    )


def completion_streak(tasks: list[Task], today: date | None = None) -> int:
    """
    Count consecutive days with at least one completed task.

    The streak ends today, or yesterday when nothing was completed today yet.
    """
    today = today or datetime.now(timezone.utc).date()
    days = {
        ensure_aware(task.completed_at).date()
        for task in tasks
        if task.completed and task.completed_at is not None
    }

    day = today if today in days else today - timedelta(days=1)
    streak = 0
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak
