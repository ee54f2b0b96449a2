"""Tests for the LLM task assistant."""

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from fakes import make_task

from corp_todo.task_management.exceptions import AssistantError
from corp_todo.task_management.models import (
    Category,
    KanbanStatus,
    OrganizedTasks,
    Priority,
    Project,
)

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3


def reply(data: Any) -> dict[str, Any]:
    """Build an Ollama chat response carrying data as JSON."""
    return {"message": {"content": json.dumps(data)}}


def prompt_of(mock_chat: AsyncMock) -> str:
    return mock_chat.call_args.kwargs["messages"][0]["content"]


@pytest.mark.unit
class TestAssistantConfiguration:
    """Test assistant configuration and the Ollama request."""

    def test_default_configuration(self) -> None:
        """Test assistant defaults."""
        from corp_todo.task_management.llm_assistant import TaskAssistant

        assistant = TaskAssistant()
        assert assistant.model == "llama3.2:3b"
        assert assistant.base_url == "http://localhost:11434"
        assert assistant.timeout == DEFAULT_TIMEOUT
        assert assistant.max_retries == DEFAULT_MAX_RETRIES

    @pytest.mark.asyncio
    async def test_requests_json_output(self) -> None:
        """Test the model is asked for JSON at the configured temperature."""
        from corp_todo.task_management.llm_assistant import TaskAssistant

        assistant = TaskAssistant(model="custom-model", temperature=0.5)

        with patch("ollama.AsyncClient.chat", return_value=reply({"tasks": ["A"]})) as mock_chat:
            await assistant.generate_tasks("Plan the offsite", 1)

        kwargs = mock_chat.call_args.kwargs
        assert kwargs["model"] == "custom-model"
        assert kwargs["format"] == "json"
        assert kwargs["options"] == {"temperature": 0.5}


@pytest.mark.unit
class TestAssistantErrors:
    """Test retries and error mapping."""

    @pytest.mark.asyncio
    async def test_retry_on_timeout_with_backoff(self) -> None:
        """Test timeouts are retried with exponential backoff."""
        from corp_todo.task_management.llm_assistant import TaskAssistant

        assistant = TaskAssistant()
        call_count = 0

        async def mock_chat(*args: Any, **kwargs: Any) -> dict[str, Any]:
            nonlocal call_count
            call_count += 1
            if call_count < DEFAULT_MAX_RETRIES:
                raise TimeoutError("Timeout")
            return reply({"tasks": ["Book venue"]})

        with patch("ollama.AsyncClient.chat", side_effect=mock_chat):
            with patch(
                "corp_todo.task_management.llm_assistant.asyncio.sleep", new=AsyncMock()
            ) as mock_sleep:
                titles = await assistant.generate_tasks("Plan the offsite", 1)

        assert titles == ["Book venue"]
        assert call_count == DEFAULT_MAX_RETRIES
        assert [call.args[0] for call in mock_sleep.await_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_slow_response_times_out(self) -> None:
        """Test a response slower than the timeout fails after the retries."""
        from corp_todo.task_management.llm_assistant import TaskAssistant

        assistant = TaskAssistant(timeout=0.1, max_retries=1)

        async def slow_response(*args: Any, **kwargs: Any) -> dict[str, Any]:
            await asyncio.sleep(1.0)
            return reply({"tasks": []})

        with patch("ollama.AsyncClient.chat", side_effect=slow_response):
            with patch("logging.Logger.error") as mock_log:
                with pytest.raises(AssistantError, match="Max retries"):
                    await assistant.generate_tasks("Plan the offsite", 1)
                assert mock_log.called

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        """Test an unreachable Ollama service raises AssistantError."""
        from corp_todo.task_management.llm_assistant import TaskAssistant

        assistant = TaskAssistant()

        with patch("ollama.AsyncClient.chat", side_effect=ConnectionError("refused")):
            with pytest.raises(AssistantError, match="Connection failed"):
                await assistant.generate_tasks("Plan the offsite", 1)

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        """Test a non-JSON answer raises AssistantError without retrying."""
        from corp_todo.task_management.llm_assistant import TaskAssistant

        assistant = TaskAssistant()
        response = {"message": {"content": "Sure! Here are your tasks"}}

        with patch("ollama.AsyncClient.chat", return_value=response) as mock_chat:
            with pytest.raises(AssistantError, match="Invalid JSON"):
                await assistant.generate_tasks("Plan the offsite", 1)
        assert mock_chat.call_count == 1

    @pytest.mark.asyncio
    async def test_json_that_is_not_an_object(self) -> None:
        """Test a JSON list answer is rejected."""
        from corp_todo.task_management.llm_assistant import TaskAssistant

        assistant = TaskAssistant()

        with patch("ollama.AsyncClient.chat", return_value=reply(["A", "B"])):
            with pytest.raises(AssistantError):
                await assistant.generate_tasks("Plan the offsite", 2)


@pytest.mark.unit
class TestGenerateTasks:
    """Test task generation for an activity."""

    @pytest.mark.asyncio
    async def test_generates_requested_number(self) -> None:
        """Test titles are trimmed and limited to the requested count."""
        from corp_todo.task_management.llm_assistant import TaskAssistant

        assistant = TaskAssistant()
        data = {"tasks": [" Book venue ", "", "Send invites", "Order food", "Extra"]}

        with patch("ollama.AsyncClient.chat", return_value=reply(data)):
            titles = await assistant.generate_tasks("Plan the offsite", 3)

        assert titles == ["Book venue", "Send invites", "Order food"]

    @pytest.mark.asyncio
    async def test_project_context_in_prompt(self) -> None:
        """Test the project and its existing tasks are given to the model."""
        from corp_todo.task_management.llm_assistant import TaskAssistant

        assistant = TaskAssistant()
        project = Project(
            id="p1", name="Offsite", color="#f00", created_by="ana", description="Team trip"
        )

        with patch("ollama.AsyncClient.chat", return_value=reply({"tasks": ["A"]})) as mock_chat:
            await assistant.generate_tasks("Plan it", 1, project, ["Book venue"])

        prompt = prompt_of(mock_chat)
        assert 'Project: "Offsite" - Team trip' in prompt
        assert "Book venue" in prompt
        assert "exactly 1" in prompt

    @pytest.mark.asyncio
    @pytest.mark.parametrize("description,count", [("", 3), ("   ", 3), ("Plan", 0), ("Plan", 11)])
    async def test_invalid_input(self, description: str, count: int) -> None:
        """Test invalid requests fail before calling the model."""
        from corp_todo.task_management.llm_assistant import TaskAssistant

        assistant = TaskAssistant()

        with patch("ollama.AsyncClient.chat") as mock_chat:
            with pytest.raises(AssistantError):
                await assistant.generate_tasks(description, count)
        mock_chat.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_tasks_field(self) -> None:
        """Test an answer without a task list raises AssistantError."""
        from corp_todo.task_management.llm_assistant import TaskAssistant

        assistant = TaskAssistant()

        with patch("ollama.AsyncClient.chat", return_value=reply({"items": ["A"]})):
            with pytest.raises(AssistantError, match="tasks"):
                await assistant.generate_tasks("Plan the offsite", 1)


@pytest.mark.unit
class TestVoiceCommand:
    """Test voice command parsing."""

    @pytest.mark.asyncio
    async def test_voice_command_tasks(self) -> None:
        """Test parsed tasks keep only known projects and valid values."""
        from corp_todo.task_management.llm_assistant import TaskAssistant

        assistant = TaskAssistant()
        projects = [Project(id="p1", name="Offsite", color="#f00", created_by="ana")]
        data = {
            "tasks": [
                {
                    "title": "Book venue",
                    "category": "proyectos",
                    "priority": "alta",
                    "projectId": "p1",
                },
                {
                    "title": "Buy milk",
                    "category": "groceries",
                    "priority": "ALTA",
                    "projectId": "p9",
                },
                {"title": "  "},
                "not an object",
            ]
        }

        with patch("ollama.AsyncClient.chat", return_value=reply(data)) as mock_chat:
            tasks = await assistant.process_voice_command("book the venue urgently", projects)

        assert 'ID: "p1"' in prompt_of(mock_chat)
        assert [task.title for task in tasks] == ["Book venue", "Buy milk"]
        assert tasks[0].project_id == "p1"
        assert tasks[0].category == Category.PROJECTS
        assert tasks[1].project_id is None
        assert tasks[1].category == Category.PERSONAL
        assert tasks[1].priority == Priority.HIGH

    @pytest.mark.asyncio
    async def test_empty_command(self) -> None:
        """Test an empty command raises AssistantError."""
        from corp_todo.task_management.llm_assistant import TaskAssistant

        with pytest.raises(AssistantError):
            await TaskAssistant().process_voice_command(" ", [])


@pytest.mark.unit
class TestDailyPlan:
    """Test daily plan generation."""

    @pytest.mark.asyncio
    async def test_daily_plan(self) -> None:
        """Test suggestions are limited to known pending tasks."""
        from corp_todo.task_management.llm_assistant import TaskAssistant

        assistant = TaskAssistant()
        pending = [make_task(f"t{i}", title=f"Task {i}") for i in range(7)]
        done = make_task("done", status=KanbanStatus.FINALIZED, completed=True)
        data = {
            "motivationalMessage": "¡Vamos!",
            "suggestedTasks": [{"id": "done", "reason": "x"}, {"id": "ghost", "reason": "x"}]
            + [{"id": f"t{i}", "title": "renamed", "reason": "Due soon"} for i in range(7)],
        }

        with patch("ollama.AsyncClient.chat", return_value=reply(data)) as mock_chat:
            plan = await assistant.generate_daily_plan(pending + [done], user_name="Ana")

        prompt = prompt_of(mock_chat)
        assert "User: Ana" in prompt
        assert "ID: done" not in prompt
        assert plan.motivational_message == "¡Vamos!"
        assert [task.id for task in plan.suggested_tasks] == ["t0", "t1", "t2", "t3", "t4"]
        assert plan.suggested_tasks[0].title == "Task 0"
        assert plan.suggested_tasks[0].reason == "Due soon"


@pytest.mark.unit
class TestOrganizeTasks:
    """Test AI reorganisation of the task list."""

    @pytest.mark.asyncio
    async def test_organize_tasks(self) -> None:
        """Test the result only references known pending tasks."""
        from corp_todo.task_management.llm_assistant import TaskAssistant

        assistant = TaskAssistant()
        tasks = [
            make_task("a", title="fix login"),
            make_task("b", title="email bob"),
            make_task("c", title="call bob", project_id="p1"),
        ]
        data = {
            "updatedTasks": [
                {"id": "a", "title": "Fix the login bug", "priority": "alta"},
                {"id": "zzz", "title": "Unknown"},
                {"id": "a", "priority": "urgent"},
            ],
            "newTasks": [
                {"title": "Contact Bob", "priority": "media", "category": "trabajo"},
                {"title": ""},
            ],
            "deletedTaskIds": ["b", "c", "zzz", 7],
        }

        with patch("ollama.AsyncClient.chat", return_value=reply(data)) as mock_chat:
            result = await assistant.organize_tasks(tasks)

        assert "ProjectID: p1" in prompt_of(mock_chat)
        assert [update.id for update in result.updated_tasks] == ["a", "a"]
        assert result.updated_tasks[0].title == "Fix the login bug"
        assert result.updated_tasks[0].priority == Priority.HIGH
        assert result.updated_tasks[1].title is None
        assert result.updated_tasks[1].priority is None
        assert [new.title for new in result.new_tasks] == ["Contact Bob"]
        assert result.new_tasks[0].category == Category.WORK
        assert result.deleted_task_ids == ["b", "c"]
        assert "inference_time" in result.metadata

    @pytest.mark.asyncio
    async def test_nothing_pending(self) -> None:
        """Test no request is made when every task is completed."""
        from corp_todo.task_management.llm_assistant import TaskAssistant

        done = make_task("done", status=KanbanStatus.CANCELLED, completed=True)

        with patch("ollama.AsyncClient.chat") as mock_chat:
            result = await TaskAssistant().organize_tasks([done])

        assert result == OrganizedTasks()
        mock_chat.assert_not_called()
