"""Calendar export links for tasks."""

from datetime import datetime, timedelta, timezone
from urllib.parse import quote

from .codec import ensure_aware
from .config import DEFAULT_EVENT_MINUTES
from .models import Task


def _event_window(task: Task, now: datetime | None) -> tuple[datetime, datetime]:
    start = ensure_aware(task.due_date) or ensure_aware(now) or datetime.now(timezone.utc)
    start = start.astimezone(timezone.utc)
    minutes = task.estimated_time or DEFAULT_EVENT_MINUTES
    return start, start + timedelta(minutes=minutes)


def _details(task: Task) -> str:
    return quote(f"Prioridad: {task.priority.value}\nCategoría: {task.category.value}", safe="")


def google_calendar_url(task: Task, now: datetime | None = None) -> str:
    """Build a Google Calendar event template URL for a task."""
    start, end = _event_window(task, now)
    fmt = "%Y%m%dT%H%M%SZ"
    return (
        "https://calendar.google.com/calendar/render?action=TEMPLATE"
        f"&text={quote(task.title, safe='')}"
        f"&details={_details(task)}"
        f"&dates={start.strftime(fmt)}/{end.strftime(fmt)}"
    )


def outlook_calendar_url(task: Task, now: datetime | None = None) -> str:
    """Build an Outlook calendar compose deeplink for a task."""
    start, end = _event_window(task, now)

    def iso(value: datetime) -> str:
        return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"

    return (
        "https://outlook.live.com/calendar/0/deeplink/compose"
        f"?subject={quote(task.title, safe='')}"
        f"&body={_details(task)}"
        f"&startdt={iso(start)}&enddt={iso(end)}"
    )
