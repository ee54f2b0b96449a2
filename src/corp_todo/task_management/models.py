"""Data models for task management functionality."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar


class KanbanStatus(str, Enum):
    """Kanban board status, in board order."""

    PENDING = "Pendiente"
    IN_PROGRESS = "En Progreso"
    DONE = "Hecho"
    FINALIZED = "Finalizado"
    CANCELLED = "Cancelado"

    @property
    def is_completed(self) -> bool:
        """Whether a task in this status counts as completed."""
        return self in (KanbanStatus.FINALIZED, KanbanStatus.CANCELLED)

    @classmethod
    def parse(cls, value: "KanbanStatus | str") -> "KanbanStatus":
        """
        Parse a status from its stored value or its English state name.

        Both "En Progreso" and "InProgress" resolve to IN_PROGRESS.

        Raises:
            ValueError: If the value names no known status
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            pass
        alias = _STATUS_ALIASES.get(str(value).replace("_", "").replace(" ", "").lower())
        if alias is None:
            raise ValueError(f"Invalid status: {value}")
        return alias


_STATUS_ALIASES = {
    "pending": KanbanStatus.PENDING,
    "inprogress": KanbanStatus.IN_PROGRESS,
    "done": KanbanStatus.DONE,
    "finalized": KanbanStatus.FINALIZED,
    "cancelled": KanbanStatus.CANCELLED,
    "canceled": KanbanStatus.CANCELLED,
}


class Category(str, Enum):
    """Task category enumeration."""

    STUDY = "estudio"
    WORK = "trabajo"
    PERSONAL = "personal"
    PROJECTS = "proyectos"
    DEVELOPMENT = "development"


class Priority(str, Enum):
    """Task priority enumeration."""

    LOW = "baja"
    MEDIUM = "media"
    HIGH = "alta"


class UserRole(str, Enum):
    """Session role, gating queries and privileged operations."""

    ADMIN = "admin"
    OPERATOR = "operator"


class SubscriptionState(str, Enum):
    """Lifecycle of the store's remote subscriptions."""

    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"


@dataclass(frozen=True)
class SubTask:
    """Checklist item embedded in a task."""

    id: str
    title: str
    completed: bool = False


@dataclass(frozen=True)
class Task:
    """Represents a task item."""

    id: str
    title: str
    category: Category
    priority: Priority
    status: KanbanStatus
    completed: bool
    created_at: datetime
    created_by: str | None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    due_date: datetime | None = None
    project_id: str | None = None
    sub_tasks: tuple[SubTask, ...] = ()
    assigned_to: str | None = None
    ai_priority_score: float | None = None
    time_spent: int | None = None
    estimated_time: int | None = None


@dataclass(frozen=True)
class Project:
    """Represents a project grouping tasks."""

    id: str
    name: str
    color: str
    created_by: str | None
    description: str | None = None


@dataclass(frozen=True)
class Session:
    """
    Identity of the current session.

    ready distinguishes "not determined yet" from "determined to be absent"
    for user_id.
    """

    user_id: str | None = None
    role: UserRole | None = None
    ready: bool = False


EntityT = TypeVar("EntityT", Task, Project)


@dataclass
class LocalEntry(Generic[EntityT]):
    """
    Local copy of an entity.

    confirmed is False while a local write is in flight. revision is bumped by
    every local write so that only the completion of the latest write confirms
    the entry.
    """

    value: EntityT
    confirmed: bool = True
    revision: int = 0


@dataclass
class GeneratedTask:
    """Task proposed by the assistant from a voice command."""

    title: str
    category: Category = Category.PERSONAL
    priority: Priority = Priority.MEDIUM
    project_id: str | None = None


@dataclass
class SuggestedTask:
    """Task picked for the daily plan."""

    id: str
    title: str
    reason: str


@dataclass
class DailyPlan:
    """Focused plan for the day."""

    motivational_message: str
    suggested_tasks: list[SuggestedTask] = field(default_factory=list)


@dataclass
class OrganizedTaskUpdate:
    """Rewording or reprioritisation of an existing task."""

    id: str
    title: str | None = None
    priority: Priority | None = None


@dataclass
class OrganizedTaskNew:
    """Task created by merging related tasks."""

    title: str
    priority: Priority
    category: Category
    project_id: str | None = None


@dataclass
class OrganizedTasks:
    """Result of an AI reorganisation of the task list."""

    updated_tasks: list[OrganizedTaskUpdate] = field(default_factory=list)
    new_tasks: list[OrganizedTaskNew] = field(default_factory=list)
    deleted_task_ids: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
