"""Reconciling task/project store with optimistic local writes."""

import asyncio
import itertools
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from .codec import (
    PROJECT_FIELDS,
    TASK_FIELDS,
    ensure_aware,
    project_fields_to_document,
    project_from_document,
    project_to_document,
    task_fields_to_document,
    task_from_document,
    task_to_document,
)
from .config import (
    COMPLETED_TASK_RETENTION_DAYS,
    PROJECTS_COLLECTION,
    TASKS_COLLECTION,
)
from .exceptions import InvalidTaskError, TaskNotFoundError
from .interfaces import Document, Query, RemoteDocumentStore, Subscription, WriteOp
from .models import (
    Category,
    KanbanStatus,
    LocalEntry,
    OrganizedTasks,
    Priority,
    Project,
    Session,
    SubscriptionState,
    SubTask,
    Task,
    UserRole,
)

logger = logging.getLogger(__name__)

IMMUTABLE_TASK_FIELDS = {"id", "created_at", "created_by"}
# Only changed through a status transition
DERIVED_TASK_FIELDS = {"completed", "completed_at", "started_at"}
IMMUTABLE_PROJECT_FIELDS = {"id", "created_by"}

# (collection, entity id, revision) of a local write awaiting its remote result
_Mark = tuple[str, str, int]


def _coerce_enum(enum_type: Any, value: Any, field_name: str) -> Any:
    try:
        return enum_type(value)
    except ValueError as e:
        raise InvalidTaskError(f"Invalid {field_name}: {value}") from e


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidTaskError(f"Missing required field: {field_name}")
    return value.strip()


class ReconcilingTaskStore:
    """
    Session-scoped store of tasks and projects.

    Local mutations are applied synchronously and forwarded to the remote
    document store as detached asyncio tasks. Snapshots pushed by the remote
    store replace the local collections, except for local entries whose write
    is still in flight and which the snapshot does not contain yet.

    One instance per authenticated session: activate it with set_session()
    and tear it down with shutdown().
    """

    def __init__(
        self,
        remote: RemoteDocumentStore,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            remote: Remote document store receiving writes and pushing snapshots
            clock: Returns the current aware datetime (defaults to UTC now)
            id_factory: Generates entity ids (defaults to uuid4 strings)
        """
        self._remote = remote
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))

        self._tasks: dict[str, LocalEntry[Task]] = {}
        self._projects: dict[str, LocalEntry[Project]] = {}
        self._revisions = itertools.count(1)

        self._session = Session()
        self._subscription_state = SubscriptionState.UNSUBSCRIBED
        self._subscriptions: list[Subscription] = []
        self._generation = 0
        self._loading = True

        self._inflight: set[asyncio.Task[None]] = set()
        self._listeners: list[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Read model

    @property
    def tasks(self) -> list[Task]:
        """Tasks in display order."""
        return [entry.value for entry in self._tasks.values()]

    @property
    def projects(self) -> list[Project]:
        """Projects in display order."""
        return [entry.value for entry in self._projects.values()]

    @property
    def pending_writes(self) -> frozenset[str]:
        """Ids of tasks and projects whose local write is not yet acknowledged."""
        return frozenset(
            entity_id
            for entries in (self._tasks, self._projects)
            for entity_id, entry in entries.items()
            if not entry.confirmed
        )

    @property
    def loading(self) -> bool:
        """True until the first task snapshot arrives or subscribing fails."""
        return self._loading

    @property
    def session(self) -> Session:
        return self._session

    @property
    def subscription_state(self) -> SubscriptionState:
        return self._subscription_state

    def get_task(self, task_id: str) -> Task:
        """
        Get a task by ID.

        Raises:
            TaskNotFoundError: If the task is not in the local collection
        """
        return self._require_task(task_id).value

    def get_project_by_id(self, project_id: str) -> Project | None:
        entry = self._projects.get(project_id)
        return entry.value if entry else None

    def tasks_for_project(self, project_id: str) -> list[Task]:
        return [task for task in self.tasks if task.project_id == project_id]

    def get_statistics(self) -> dict[str, int]:
        """
        Get task statistics from the local collection.

        Returns:
            Dictionary with the total, one count per Kanban status and the
            number of completed tasks
        """
        stats = {
            "total": len(self._tasks),
            "pending": 0,
            "in_progress": 0,
            "done": 0,
            "finalized": 0,
            "cancelled": 0,
            "completed": 0,
        }
        keys = {
            KanbanStatus.PENDING: "pending",
            KanbanStatus.IN_PROGRESS: "in_progress",
            KanbanStatus.DONE: "done",
            KanbanStatus.FINALIZED: "finalized",
            KanbanStatus.CANCELLED: "cancelled",
        }
        for task in self.tasks:
            stats[keys[task.status]] += 1
            if task.completed:
                stats["completed"] += 1
        return stats

    def add_listener(self, listener: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback invoked after every local change or merge.

        Returns:
            Function removing the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error(f"Store listener failed: {e}")

    # ------------------------------------------------------------------
    # Session and subscriptions

    async def set_session(self, session: Session) -> None:
        """
        Apply a new session and re-establish the remote subscriptions.

        Existing subscriptions are torn down before new ones are requested.
        Operators only receive tasks assigned to them; admins receive all.
        """
        unchanged = (
            session == self._session
            and self._subscription_state != SubscriptionState.UNSUBSCRIBED
        )
        if unchanged:
            return

        self._teardown_subscriptions()
        if session.user_id != self._session.user_id:
            self._tasks = {}
            self._projects = {}
        self._session = session

        if not session.ready or (session.user_id is not None and session.role is None):
            self._loading = True
            self._notify()
            return

        if session.user_id is None:
            self._loading = False
            self._notify()
            return

        await self._subscribe(session)

    async def _subscribe(self, session: Session) -> None:
        generation = self._generation
        self._subscription_state = SubscriptionState.SUBSCRIBING
        self._loading = True

        if session.role == UserRole.OPERATOR:
            task_query = Query(
                TASKS_COLLECTION,
                where_field="assignedTo",
                where_value=session.user_id,
                order_by="createdAt",
                descending=True,
            )
        else:
            task_query = Query(TASKS_COLLECTION, order_by="createdAt", descending=True)

        try:
            subscription = await self._remote.subscribe(
                task_query,
                lambda documents: self._on_task_snapshot(generation, documents),
                lambda error: self._on_subscription_error(generation, error),
            )
            if generation != self._generation:
                subscription.unsubscribe()
                return
            self._subscriptions.append(subscription)

            subscription = await self._remote.subscribe(
                Query(PROJECTS_COLLECTION),
                lambda documents: self._on_project_snapshot(generation, documents),
                lambda error: self._on_subscription_error(generation, error),
            )
            if generation != self._generation:
                subscription.unsubscribe()
                return
            self._subscriptions.append(subscription)
        except Exception as e:
            if generation != self._generation:
                return
            logger.error(f"Failed to subscribe for user {session.user_id}: {e}")
            self._teardown_subscriptions()
            self._loading = False
            self._notify()
            return

        self._subscription_state = SubscriptionState.SUBSCRIBED
        logger.info(
            f"Subscribed for user {session.user_id} "
            f"(role={session.role.value if session.role else None})"
        )

    def _teardown_subscriptions(self) -> None:
        self._generation += 1
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        self._subscription_state = SubscriptionState.UNSUBSCRIBED

    def _on_subscription_error(self, generation: int, error: Exception) -> None:
        if generation != self._generation:
            return
        logger.error(f"Snapshot subscription error: {error}")
        self._loading = False
        self._notify()

    def _on_task_snapshot(self, generation: int, documents: list[Document]) -> None:
        if generation != self._generation:
            return
        tasks = self._decode(documents, task_from_document)
        self._tasks = self._merge(self._tasks, tasks)
        self._loading = False
        logger.debug(f"Merged task snapshot: {len(tasks)} from server, {len(self._tasks)} local")
        self._notify()

    def _on_project_snapshot(self, generation: int, documents: list[Document]) -> None:
        if generation != self._generation:
            return
        projects = self._decode(documents, project_from_document)
        self._projects = self._merge(self._projects, projects)
        self._notify()

    @staticmethod
    def _decode(documents: list[Document], decoder: Callable[[Document], Any]) -> list[Any]:
        entities = []
        for document in documents:
            try:
                entities.append(decoder(document))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed document {document.get('id')}: {e}")
        return entities

    @staticmethod
    def _merge(
        current: dict[str, LocalEntry[Any]], incoming: list[Any]
    ) -> dict[str, LocalEntry[Any]]:
        """
        Merge a server snapshot into a local collection.

        Snapshot entities come first, followed by unconfirmed local entries the
        snapshot does not contain. A snapshot copy always replaces a pending
        local copy of the same id.
        """
        merged: dict[str, LocalEntry[Any]] = {
            entity.id: LocalEntry(entity) for entity in incoming
        }
        for entity_id, entry in current.items():
            if not entry.confirmed and entity_id not in merged:
                merged[entity_id] = entry
        return merged

    # ------------------------------------------------------------------
    # Remote dispatch

    def _stage(
        self, entries: dict[str, LocalEntry[Any]], value: Any, collection: str
    ) -> _Mark:
        revision = next(self._revisions)
        entries[value.id] = LocalEntry(value, confirmed=False, revision=revision)
        return (collection, value.id, revision)

    def _dispatch(
        self, description: str, operation: Awaitable[None], marks: list[_Mark]
    ) -> None:
        task = asyncio.create_task(self._run_remote(description, operation, marks))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run_remote(
        self, description: str, operation: Awaitable[None], marks: list[_Mark]
    ) -> None:
        try:
            await operation
            logger.debug(f"Remote {description} acknowledged")
        except Exception as e:
            logger.error(f"Remote {description} failed: {e}")
        finally:
            self._confirm(marks)

    def _confirm(self, marks: list[_Mark]) -> None:
        changed = False
        for collection, entity_id, revision in marks:
            entries = self._tasks if collection == TASKS_COLLECTION else self._projects
            entry = entries.get(entity_id)
            if entry is not None and not entry.confirmed and entry.revision == revision:
                entry.confirmed = True
                changed = True
        if changed:
            self._notify()

    async def wait_for_pending_writes(self) -> None:
        """Wait until every dispatched remote write has completed."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # ------------------------------------------------------------------
    # Tasks

    def _require_task(self, task_id: str) -> LocalEntry[Task]:
        entry = self._tasks.get(task_id)
        if entry is None:
            raise TaskNotFoundError(f"Task with ID {task_id} not found")
        return entry

    def _build_task(
        self,
        title: Any,
        category: Any,
        priority: Any,
        due_date: datetime | None = None,
        project_id: str | None = None,
        assigned_to: str | None = None,
        sub_tasks: Iterable[str] = (),
        estimated_time: int | None = None,
    ) -> Task:
        if category is None:
            raise InvalidTaskError("Missing required field: category")
        if priority is None:
            raise InvalidTaskError("Missing required field: priority")
        user_id = self._session.user_id
        return Task(
            id=self._new_id(),
            title=_require_text(title, "title"),
            category=_coerce_enum(Category, category, "category"),
            priority=_coerce_enum(Priority, priority, "priority"),
            status=KanbanStatus.PENDING,
            completed=False,
            created_at=self._clock(),
            created_by=user_id,
            completed_at=None,
            due_date=ensure_aware(due_date),
            project_id=project_id,
            sub_tasks=tuple(
                SubTask(id=self._new_id(), title=_require_text(sub, "sub-task title"))
                for sub in sub_tasks
            ),
            assigned_to=assigned_to or user_id,
            estimated_time=estimated_time,
        )

    def _insert_tasks_at_head(self, tasks: list[Task]) -> list[_Mark]:
        head: dict[str, LocalEntry[Task]] = {}
        marks = [self._stage(head, task, TASKS_COLLECTION) for task in tasks]
        self._tasks = {**head, **self._tasks}
        return marks

    def add_task(
        self,
        title: str,
        category: Category | str,
        priority: Priority | str,
        due_date: datetime | None = None,
        project_id: str | None = None,
        assigned_to: str | None = None,
        sub_tasks: Iterable[str] = (),
        estimated_time: int | None = None,
    ) -> Task:
        """
        Create a task optimistically.

        The task is inserted at the head of the local collection before the
        remote create is issued.

        Args:
            title: Non-empty task title
            category: Task category
            priority: Task priority
            due_date: Optional due date
            project_id: Optional owning project
            assigned_to: Assignee, defaults to the current user
            sub_tasks: Titles of initial sub-tasks
            estimated_time: Optional estimate in minutes

        Returns:
            The created task

        Raises:
            InvalidTaskError: If a required field is missing or invalid
        """
        task = self._build_task(
            title, category, priority, due_date, project_id, assigned_to, sub_tasks, estimated_time
        )
        marks = self._insert_tasks_at_head([task])
        self._dispatch(
            f"create task {task.id}",
            self._remote.create(TASKS_COLLECTION, task.id, task_to_document(task)),
            marks,
        )
        logger.info(f"Added task {task.id}: {task.title}")
        self._notify()
        return task

    def add_ai_tasks(
        self,
        titles: list[str],
        category: Category | str,
        priority: Priority | str,
        project_id: str | None = None,
    ) -> list[Task]:
        """
        Create several tasks at once, e.g. from generated titles.

        The tasks land at the head of the collection in the given order and
        are created remotely in one batch.
        """
        tasks = [
            self._build_task(title, category, priority, project_id=project_id)
            for title in titles
        ]
        if not tasks:
            return []
        marks = self._insert_tasks_at_head(tasks)
        self._dispatch(
            f"create {len(tasks)} tasks",
            self._remote.batch_write(
                [
                    WriteOp.create(TASKS_COLLECTION, task.id, task_to_document(task))
                    for task in tasks
                ]
            ),
            marks,
        )
        logger.info(f"Added {len(tasks)} generated tasks")
        self._notify()
        return tasks

    def _normalize_task_changes(self, changes: dict[str, Any]) -> dict[str, Any]:
        normalized: dict[str, Any] = {}
        for name, value in changes.items():
            if name in IMMUTABLE_TASK_FIELDS:
                raise InvalidTaskError(f"Field '{name}' is immutable")
            if name in DERIVED_TASK_FIELDS:
                raise InvalidTaskError(f"Field '{name}' is derived from status")
            if name not in TASK_FIELDS:
                raise InvalidTaskError(f"Unknown task field '{name}'")

            if name == "title":
                value = _require_text(value, "title")
            elif name == "category":
                value = _coerce_enum(Category, value, "category")
            elif name == "priority":
                value = _coerce_enum(Priority, value, "priority")
            elif name == "status":
                try:
                    value = KanbanStatus.parse(value)
                except ValueError as e:
                    raise InvalidTaskError(str(e)) from e
            elif name == "due_date":
                value = ensure_aware(value)
            elif name == "sub_tasks":
                try:
                    value = tuple(
                        sub if isinstance(sub, SubTask) else SubTask(**sub) for sub in value
                    )
                except TypeError as e:
                    raise InvalidTaskError(f"Invalid sub-tasks: {e}") from e
            normalized[name] = value
        return normalized

    def _status_transition(self, task: Task, status: KanbanStatus) -> dict[str, Any]:
        """Fields implied by moving a task to status."""
        now = self._clock()
        completed = status.is_completed
        fields: dict[str, Any] = {"status": status, "completed": completed}
        if completed:
            keep = task.completed and task.completed_at is not None
            fields["completed_at"] = task.completed_at if keep else now
        else:
            fields["completed_at"] = None
        if status == KanbanStatus.IN_PROGRESS and task.started_at is None:
            fields["started_at"] = now
        return fields

    def update_task(self, task_id: str, changes: dict[str, Any]) -> Task:
        """
        Merge field changes into a task optimistically.

        A status change also updates completed, completed_at and started_at.
        Only the changed fields are sent to the remote store.

        Args:
            task_id: Task ID
            changes: Attribute names and new values

        Returns:
            The updated task

        Raises:
            TaskNotFoundError: If the task is unknown
            InvalidTaskError: If a field is unknown, immutable, derived or invalid
        """
        entry = self._require_task(task_id)
        normalized = self._normalize_task_changes(changes)
        if not normalized:
            return entry.value
        if "status" in normalized:
            normalized.update(self._status_transition(entry.value, normalized["status"]))

        updated = replace(entry.value, **normalized)
        mark = self._stage(self._tasks, updated, TASKS_COLLECTION)
        self._dispatch(
            f"update task {task_id}",
            self._remote.update(TASKS_COLLECTION, task_id, task_fields_to_document(normalized)),
            [mark],
        )
        logger.info(f"Updated task {task_id} fields: {list(normalized.keys())}")
        self._notify()
        return updated

    def update_task_status(self, task_id: str, status: KanbanStatus | str) -> Task:
        """
        Move a task to a Kanban status.

        Finalizado and Cancelado complete the task; completed_at is set on
        entering a completed status and cleared on leaving it. started_at is
        set the first time the task enters En Progreso and never changes after.

        Raises:
            TaskNotFoundError: If the task is unknown
            InvalidTaskError: If the status is invalid
        """
        try:
            parsed = KanbanStatus.parse(status)
        except ValueError as e:
            raise InvalidTaskError(str(e)) from e
        return self.update_task(task_id, {"status": parsed})

    def toggle_task_completion(self, task_id: str, sub_task_id: str | None = None) -> Task:
        """
        Toggle a task, or one of its sub-tasks.

        Toggling a sub-task finalizes the task when every sub-task is done and
        moves it to En Progreso otherwise.
        """
        task = self._require_task(task_id).value

        if sub_task_id is None:
            completed = not task.completed
            return self.update_task_status(
                task_id, KanbanStatus.FINALIZED if completed else KanbanStatus.PENDING
            )

        if all(sub.id != sub_task_id for sub in task.sub_tasks):
            raise TaskNotFoundError(f"Sub-task {sub_task_id} not found in task {task_id}")
        sub_tasks = tuple(
            replace(sub, completed=not sub.completed) if sub.id == sub_task_id else sub
            for sub in task.sub_tasks
        )
        status = (
            KanbanStatus.FINALIZED
            if all(sub.completed for sub in sub_tasks)
            else KanbanStatus.IN_PROGRESS
        )
        return self.update_task(task_id, {"sub_tasks": sub_tasks, "status": status})

    def restore_task(self, task_id: str) -> Task:
        """Move a task back to Pendiente, keeping started_at."""
        return self.update_task_status(task_id, KanbanStatus.PENDING)

    def delete_task(self, task_id: str) -> None:
        """
        Delete a task optimistically.

        A failed remote delete is not rolled back here; the next snapshot
        restores the task.
        """
        self._require_task(task_id)
        del self._tasks[task_id]
        self._dispatch(
            f"delete task {task_id}",
            self._remote.delete(TASKS_COLLECTION, task_id),
            [],
        )
        logger.info(f"Deleted task {task_id}")
        self._notify()

    def add_sub_task(self, task_id: str, title: str) -> SubTask:
        task = self._require_task(task_id).value
        sub_task = SubTask(id=self._new_id(), title=_require_text(title, "sub-task title"))
        self.update_task(task_id, {"sub_tasks": task.sub_tasks + (sub_task,)})
        return sub_task

    def update_sub_task(
        self,
        task_id: str,
        sub_task_id: str,
        title: str | None = None,
        completed: bool | None = None,
    ) -> Task:
        task = self._require_task(task_id).value
        if all(sub.id != sub_task_id for sub in task.sub_tasks):
            raise TaskNotFoundError(f"Sub-task {sub_task_id} not found in task {task_id}")

        changes: dict[str, Any] = {}
        if title is not None:
            changes["title"] = _require_text(title, "sub-task title")
        if completed is not None:
            changes["completed"] = completed
        sub_tasks = tuple(
            replace(sub, **changes) if sub.id == sub_task_id else sub
            for sub in task.sub_tasks
        )
        return self.update_task(task_id, {"sub_tasks": sub_tasks})

    def delete_sub_task(self, task_id: str, sub_task_id: str) -> Task:
        task = self._require_task(task_id).value
        if all(sub.id != sub_task_id for sub in task.sub_tasks):
            raise TaskNotFoundError(f"Sub-task {sub_task_id} not found in task {task_id}")
        sub_tasks = tuple(sub for sub in task.sub_tasks if sub.id != sub_task_id)
        return self.update_task(task_id, {"sub_tasks": sub_tasks})

    def delete_completed_tasks(self) -> int:
        """
        Delete tasks completed more than the retention period ago.

        Returns:
            Number of tasks deleted
        """
        cutoff = self._clock() - timedelta(days=COMPLETED_TASK_RETENTION_DAYS)
        stale = [
            task.id
            for task in self.tasks
            if task.completed and task.completed_at is not None and task.completed_at < cutoff
        ]
        if not stale:
            return 0

        for task_id in stale:
            del self._tasks[task_id]
        self._dispatch(
            f"delete {len(stale)} completed tasks",
            self._remote.batch_write(
                [WriteOp.delete(TASKS_COLLECTION, task_id) for task_id in stale]
            ),
            [],
        )
        logger.info(f"Deleted {len(stale)} tasks completed before {cutoff.isoformat()}")
        self._notify()
        return len(stale)

    def apply_organized_tasks(self, organized: OrganizedTasks) -> list[Task]:
        """
        Apply an AI reorganisation of the task list in one remote batch.

        Updates and deletions naming unknown tasks are skipped.

        Returns:
            The newly created tasks
        """
        # Everything is validated before the first local change
        created = [
            self._build_task(new.title, new.category, new.priority, project_id=new.project_id)
            for new in organized.new_tasks
        ]
        deleted = {task_id for task_id in organized.deleted_task_ids if task_id in self._tasks}
        updates: dict[str, tuple[Task, dict[str, Any]]] = {}

        for update in organized.updated_tasks:
            if update.id not in self._tasks or update.id in deleted:
                logger.warning(f"Skipping reorganisation update for task {update.id}")
                continue
            changes: dict[str, Any] = {}
            if update.title:
                changes["title"] = update.title
            if update.priority is not None:
                changes["priority"] = update.priority
            if not changes:
                continue
            normalized = self._normalize_task_changes(changes)
            base, fields = updates.get(update.id, (self._tasks[update.id].value, {}))
            updates[update.id] = (replace(base, **normalized), {**fields, **normalized})

        ops: list[WriteOp] = []
        marks: list[_Mark] = []
        for task_id, (updated, fields) in updates.items():
            marks.append(self._stage(self._tasks, updated, TASKS_COLLECTION))
            ops.append(
                WriteOp.update(TASKS_COLLECTION, task_id, task_fields_to_document(fields))
            )

        for task_id in deleted:
            del self._tasks[task_id]
            ops.append(WriteOp.delete(TASKS_COLLECTION, task_id))

        marks.extend(self._insert_tasks_at_head(created))
        ops.extend(
            WriteOp.create(TASKS_COLLECTION, task.id, task_to_document(task)) for task in created
        )

        if ops:
            self._dispatch("apply task reorganisation", self._remote.batch_write(ops), marks)
            logger.info(
                f"Reorganised tasks: {len(organized.updated_tasks)} updated, "
                f"{len(created)} created, {len(deleted)} deleted"
            )
            self._notify()
        return created

    # ------------------------------------------------------------------
    # Projects

    def _require_project(self, project_id: str) -> LocalEntry[Project]:
        entry = self._projects.get(project_id)
        if entry is None:
            raise TaskNotFoundError(f"Project with ID {project_id} not found")
        return entry

    def add_project(self, name: str, color: str, description: str | None = None) -> Project:
        """
        Create a project optimistically.

        Raises:
            InvalidTaskError: If name is missing
        """
        project = Project(
            id=self._new_id(),
            name=_require_text(name, "name"),
            color=color,
            created_by=self._session.user_id,
            description=description,
        )
        mark = self._stage(self._projects, project, PROJECTS_COLLECTION)
        self._dispatch(
            f"create project {project.id}",
            self._remote.create(PROJECTS_COLLECTION, project.id, project_to_document(project)),
            [mark],
        )
        logger.info(f"Added project {project.id}: {project.name}")
        self._notify()
        return project

    def update_project(self, project_id: str, changes: dict[str, Any]) -> Project:
        entry = self._require_project(project_id)
        for name in changes:
            if name in IMMUTABLE_PROJECT_FIELDS:
                raise InvalidTaskError(f"Field '{name}' is immutable")
            if name not in PROJECT_FIELDS:
                raise InvalidTaskError(f"Unknown project field '{name}'")
        if "name" in changes:
            changes = {**changes, "name": _require_text(changes["name"], "name")}
        if not changes:
            return entry.value

        updated = replace(entry.value, **changes)
        mark = self._stage(self._projects, updated, PROJECTS_COLLECTION)
        self._dispatch(
            f"update project {project_id}",
            self._remote.update(
                PROJECTS_COLLECTION, project_id, project_fields_to_document(changes)
            ),
            [mark],
        )
        logger.info(f"Updated project {project_id} fields: {list(changes.keys())}")
        self._notify()
        return updated

    def delete_project(self, project_id: str) -> int:
        """
        Delete a project and every task referencing it.

        The project and its tasks are deleted remotely in one atomic batch.

        Returns:
            Number of tasks deleted with the project
        """
        self._require_project(project_id)
        task_ids = [task.id for task in self.tasks if task.project_id == project_id]

        for task_id in task_ids:
            del self._tasks[task_id]
        del self._projects[project_id]

        ops = [WriteOp.delete(TASKS_COLLECTION, task_id) for task_id in task_ids]
        ops.append(WriteOp.delete(PROJECTS_COLLECTION, project_id))
        self._dispatch(f"delete project {project_id}", self._remote.batch_write(ops), [])
        logger.info(f"Deleted project {project_id} and {len(task_ids)} tasks")
        self._notify()
        return len(task_ids)

    # ------------------------------------------------------------------
    # Bulk

    def clear_all_data(self) -> bool:
        """
        Delete every loaded task and project. Admin only.

        Only documents loaded in this store are deleted remotely.

        Returns:
            False if the session is not allowed to clear data
        """
        if self._session.role != UserRole.ADMIN:
            logger.warning(f"User {self._session.user_id} is not allowed to clear all data")
            return False

        ops = [WriteOp.delete(TASKS_COLLECTION, task_id) for task_id in self._tasks]
        ops.extend(WriteOp.delete(PROJECTS_COLLECTION, project_id) for project_id in self._projects)
        self._tasks = {}
        self._projects = {}
        if ops:
            self._dispatch("clear all data", self._remote.batch_write(ops), [])
        logger.info(f"Cleared all data ({len(ops)} documents)")
        self._notify()
        return True

    def sync_data(self) -> None:
        """Kept for interface compatibility; snapshots keep the store current."""
        logger.debug("sync_data called; snapshot subscriptions are already live")

    async def shutdown(self) -> None:
        """
        Tear down subscriptions and wait for in-flight writes.

        The remote store stays open; it outlives the session.
        """
        logger.info("Shutting down task store")
        self._teardown_subscriptions()
        await self.wait_for_pending_writes()
        self._tasks = {}
        self._projects = {}
        self._session = Session()
        self._loading = True
        self._listeners.clear()
