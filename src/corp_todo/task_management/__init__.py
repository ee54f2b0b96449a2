"""Task management module: reconciling task store and its AI helpers."""

from .database import DocumentDatabase
from .models import (
    Category,
    KanbanStatus,
    Priority,
    Project,
    Session,
    SubTask,
    Task,
    UserRole,
)
from .task_store import ReconcilingTaskStore

__all__ = [
    "Task",
    "SubTask",
    "Project",
    "Session",
    "KanbanStatus",
    "Category",
    "Priority",
    "UserRole",
    "DocumentDatabase",
    "ReconcilingTaskStore",
]
