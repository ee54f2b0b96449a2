"""Conversion between local entities and remote documents."""

import logging
from datetime import datetime, timezone
from typing import Any

from .interfaces import Document, Timestamp
from .models import Category, KanbanStatus, Priority, Project, SubTask, Task

logger = logging.getLogger(__name__)

# Local attribute name -> document key
TASK_FIELDS = {
    "id": "id",
    "title": "title",
    "category": "category",
    "priority": "priority",
    "status": "status",
    "completed": "completed",
    "created_at": "createdAt",
    "created_by": "createdBy",
    "started_at": "startedAt",
    "completed_at": "completedAt",
    "due_date": "dueDate",
    "project_id": "projectId",
    "sub_tasks": "subTasks",
    "assigned_to": "assignedTo",
    "ai_priority_score": "aiPriorityScore",
    "time_spent": "timeSpent",
    "estimated_time": "estimatedTime",
}

PROJECT_FIELDS = {
    "id": "id",
    "name": "name",
    "color": "color",
    "description": "description",
    "created_by": "createdBy",
}

DATETIME_FIELDS = {"created_at", "started_at", "completed_at", "due_date"}


def ensure_aware(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_timestamp(value: datetime | None) -> Timestamp | None:
    """Convert a local datetime to the remote timestamp type."""
    return Timestamp.from_datetime(value) if value is not None else None


def from_timestamp(value: Any) -> datetime | None:
    """
    Convert a remote timestamp field to a datetime.

    Accepts the native Timestamp, a datetime or an ISO 8601 string; anything
    else (including a missing field) becomes None.
    """
    if isinstance(value, Timestamp):
        return value.to_datetime()
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, str):
        try:
            return ensure_aware(datetime.fromisoformat(value))
        except ValueError:
            logger.warning(f"Invalid timestamp string '{value}'")
    return None


def _encode_value(name: str, value: Any) -> Any:
    if name in DATETIME_FIELDS:
        return to_timestamp(value)
    if name == "sub_tasks":
        return [
            {"id": sub.id, "title": sub.title, "completed": sub.completed}
            for sub in value
        ]
    if isinstance(value, (KanbanStatus, Category, Priority)):
        return value.value
    return value


def task_fields_to_document(changes: dict[str, Any]) -> Document:
    """Convert a dict of changed task attributes to document fields."""
    return {TASK_FIELDS[name]: _encode_value(name, value) for name, value in changes.items()}


def task_to_document(task: Task) -> Document:
    """Convert a task to a full remote document."""
    return task_fields_to_document({name: getattr(task, name) for name in TASK_FIELDS})


def _parse_enum(enum_type: Any, value: Any, default: Any) -> Any:
    if value is None:
        return default
    try:
        return enum_type(value)
    except ValueError:
        logger.warning(f"Invalid {enum_type.__name__} '{value}', defaulting to {default.value}")
        return default


def task_from_document(document: Document) -> Task:
    """
    Convert a remote document to a task.

    The completed flag is always derived from status so that documents
    written by older clients cannot break the status invariant.
    """
    raw_status = document.get("status")
    if raw_status is None:
        status = KanbanStatus.FINALIZED if document.get("completed") else KanbanStatus.PENDING
    else:
        try:
            status = KanbanStatus.parse(raw_status)
        except ValueError:
            logger.warning(f"Invalid status '{raw_status}', defaulting to Pendiente")
            status = KanbanStatus.PENDING

    created_at = from_timestamp(document.get("createdAt")) or datetime.now(timezone.utc)

    return Task(
        id=str(document["id"]),
        title=document.get("title", ""),
        category=_parse_enum(Category, document.get("category"), Category.PERSONAL),
        priority=_parse_enum(Priority, document.get("priority"), Priority.MEDIUM),
        status=status,
        completed=status.is_completed,
        created_at=created_at,
        created_by=document.get("createdBy"),
        started_at=from_timestamp(document.get("startedAt")),
        completed_at=from_timestamp(document.get("completedAt")),
        due_date=from_timestamp(document.get("dueDate")),
        project_id=document.get("projectId"),
        sub_tasks=tuple(
            SubTask(
                id=str(sub["id"]),
                title=sub.get("title", ""),
                completed=bool(sub.get("completed", False)),
            )
            for sub in document.get("subTasks") or []
        ),
        assigned_to=document.get("assignedTo"),
        ai_priority_score=document.get("aiPriorityScore"),
        time_spent=document.get("timeSpent"),
        estimated_time=document.get("estimatedTime"),
    )


def project_fields_to_document(changes: dict[str, Any]) -> Document:
    """Convert a dict of changed project attributes to document fields."""
    return {PROJECT_FIELDS[name]: value for name, value in changes.items()}


def project_to_document(project: Project) -> Document:
    """Convert a project to a full remote document."""
    return project_fields_to_document(
        {name: getattr(project, name) for name in PROJECT_FIELDS}
    )


def project_from_document(document: Document) -> Project:
    """Convert a remote document to a project."""
    return Project(
        id=str(document["id"]),
        name=document.get("name", ""),
        color=document.get("color", ""),
        created_by=document.get("createdBy"),
        description=document.get("description"),
    )
