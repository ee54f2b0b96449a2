"""Tests for document conversion and status parsing."""

from datetime import datetime, timezone

import pytest
from fakes import START, make_task, task_document

from corp_todo.task_management.codec import (
    from_timestamp,
    project_from_document,
    project_to_document,
    task_fields_to_document,
    task_from_document,
    task_to_document,
)
from corp_todo.task_management.interfaces import Timestamp
from corp_todo.task_management.models import (
    Category,
    KanbanStatus,
    Priority,
    Project,
    SubTask,
)


@pytest.mark.unit
class TestKanbanStatus:
    """Test status parsing and completion."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("Pendiente", KanbanStatus.PENDING),
            ("En Progreso", KanbanStatus.IN_PROGRESS),
            ("InProgress", KanbanStatus.IN_PROGRESS),
            ("in_progress", KanbanStatus.IN_PROGRESS),
            ("Done", KanbanStatus.DONE),
            ("Finalized", KanbanStatus.FINALIZED),
            ("Canceled", KanbanStatus.CANCELLED),
            (KanbanStatus.CANCELLED, KanbanStatus.CANCELLED),
        ],
    )
    def test_parse(self, value: str, expected: KanbanStatus) -> None:
        """Test stored values and English names both parse."""
        assert KanbanStatus.parse(value) == expected

    def test_parse_unknown(self) -> None:
        """Test an unknown status raises ValueError."""
        with pytest.raises(ValueError):
            KanbanStatus.parse("Blocked")

    def test_completed_statuses(self) -> None:
        """Test only Finalizado and Cancelado count as completed."""
        assert {status for status in KanbanStatus if status.is_completed} == {
            KanbanStatus.FINALIZED,
            KanbanStatus.CANCELLED,
        }


@pytest.mark.unit
class TestTimestamps:
    """Test conversion between datetimes and remote timestamps."""

    def test_from_datetime_is_exact(self) -> None:
        """Test microseconds survive the conversion."""
        value = datetime(2024, 3, 4, 9, 0, 0, 123456, tzinfo=timezone.utc)

        timestamp = Timestamp.from_datetime(value)

        assert timestamp == Timestamp(seconds=1_709_542_800, nanos=123_456_000)
        assert timestamp.to_datetime() == value

    def test_naive_datetime_is_utc(self) -> None:
        """Test naive datetimes are read as UTC."""
        assert Timestamp.from_datetime(datetime(1970, 1, 1, 0, 1)) == Timestamp(60)

    @pytest.mark.parametrize(
        "value,expected",
        [
            (Timestamp(1_709_542_800), START),
            (datetime(2024, 3, 4, 9, 0), START),
            ("2024-03-04T09:00:00+00:00", START),
            ("not a date", None),
            (1_709_542_800, None),
            (None, None),
        ],
    )
    def test_from_timestamp(self, value: object, expected: datetime | None) -> None:
        """Test accepted timestamp representations."""
        assert from_timestamp(value) == expected


@pytest.mark.unit
class TestTaskDocuments:
    """Test task document conversion."""

    def test_task_to_document(self) -> None:
        """Test document keys and value encoding."""
        task = make_task(
            status=KanbanStatus.IN_PROGRESS,
            started_at=START,
            project_id="p1",
            sub_tasks=(SubTask(id="s1", title="Draft"),),
        )

        document = task_to_document(task)

        assert document["status"] == "En Progreso"
        assert document["category"] == "trabajo"
        assert document["createdAt"] == Timestamp.from_datetime(START)
        assert document["startedAt"] == Timestamp.from_datetime(START)
        assert document["completedAt"] is None
        assert document["projectId"] == "p1"
        assert document["subTasks"] == [{"id": "s1", "title": "Draft", "completed": False}]

    def test_document_converts_back(self) -> None:
        """Test a task written and read back is unchanged."""
        task = make_task(
            status=KanbanStatus.FINALIZED,
            completed=True,
            completed_at=START,
            due_date=START,
            sub_tasks=(SubTask(id="s1", title="Draft", completed=True),),
            estimated_time=90,
        )

        assert task_from_document(task_to_document(task)) == task

    def test_changed_fields_only(self) -> None:
        """Test partial conversion keeps only the given fields."""
        document = task_fields_to_document({"priority": Priority.HIGH, "due_date": None})

        assert document == {"priority": "alta", "dueDate": None}

    def test_completed_is_derived_from_status(self) -> None:
        """Test a stale completed flag is corrected from the status."""
        task = task_from_document(task_document("a", status="Finalizado", completed=False))

        assert task.completed is True

    @pytest.mark.parametrize(
        "completed,expected",
        [(True, KanbanStatus.FINALIZED), (False, KanbanStatus.PENDING)],
    )
    def test_missing_status_uses_completed(
        self, completed: bool, expected: KanbanStatus
    ) -> None:
        """Test documents without status fall back to the completed flag."""
        document = task_document("a", completed=completed)
        del document["status"]

        assert task_from_document(document).status == expected

    def test_invalid_values_fall_back_to_defaults(self) -> None:
        """Test unknown enum values are replaced with defaults."""
        task = task_from_document(
            task_document("a", status="Blocked", category="hobby", priority="urgent")
        )

        assert task.status == KanbanStatus.PENDING
        assert task.category == Category.PERSONAL
        assert task.priority == Priority.MEDIUM

    def test_server_fields_are_kept_as_sent(self) -> None:
        """Test completedAt is read from the document, never invented."""
        finalized = task_from_document(task_document("a", status="Finalizado"))
        pending = task_from_document(
            task_document("b", completedAt="2024-03-01T10:00:00+00:00")
        )

        assert finalized.completed_at is None
        assert pending.completed_at == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)

    def test_missing_id_raises(self) -> None:
        """Test a document without id cannot be converted."""
        with pytest.raises(KeyError):
            task_from_document({"title": "No id"})


@pytest.mark.unit
class TestProjectDocuments:
    """Test project document conversion."""

    def test_project_conversion(self) -> None:
        """Test project documents use camelCase keys."""
        project = Project(id="p1", name="Launch", color="#f00", created_by="ana")

        document = project_to_document(project)

        assert document == {
            "id": "p1",
            "name": "Launch",
            "color": "#f00",
            "description": None,
            "createdBy": "ana",
        }
        assert project_from_document(document) == project
