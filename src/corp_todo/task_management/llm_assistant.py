"""LLM assistant flows for tasks using Ollama."""

import asyncio
import json
import logging
import time
from typing import Any

import ollama

from .config import (
    DAILY_PLAN_PROMPT,
    DEFAULT_OLLAMA_BASE_URL,
    DEFAULT_OLLAMA_MAX_RETRIES,
    DEFAULT_OLLAMA_MODEL,
    DEFAULT_OLLAMA_TEMPERATURE,
    DEFAULT_OLLAMA_TIMEOUT,
    GENERATE_TASKS_PROMPT,
    ORGANIZE_TASKS_PROMPT,
    VOICE_COMMAND_PROMPT,
)
from .exceptions import AssistantError
from .models import (
    Category,
    DailyPlan,
    GeneratedTask,
    OrganizedTaskNew,
    OrganizedTasks,
    OrganizedTaskUpdate,
    Priority,
    Project,
    SuggestedTask,
    Task,
)

logger = logging.getLogger(__name__)

MAX_GENERATED_TASKS = 10
MAX_PLAN_TASKS = 5


def _sanitize(text: str, limit: int = 500) -> str:
    """Flatten user text before embedding it in a prompt."""
    return text.replace("\n", " ").replace('"', "'")[:limit]


def _parse_choice(enum_type: Any, value: Any, default: Any) -> Any:
    if not value:
        return default
    try:
        return enum_type(str(value).lower())
    except ValueError:
        fallback = getattr(default, "value", default)
        logger.warning(f"Invalid {enum_type.__name__.lower()} '{value}', defaulting to {fallback}")
        return default


def _items(data: dict[str, Any], key: str) -> list[dict[str, Any]]:
    """Return the JSON objects listed under key, ignoring anything else."""
    value = data.get(key)
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


class TaskAssistant:
    """Generates, parses and reorganises tasks with a local LLM via Ollama."""

    def __init__(
        self,
        model: str = DEFAULT_OLLAMA_MODEL,
        base_url: str = DEFAULT_OLLAMA_BASE_URL,
        timeout: float = DEFAULT_OLLAMA_TIMEOUT,
        max_retries: int = DEFAULT_OLLAMA_MAX_RETRIES,
        temperature: float = DEFAULT_OLLAMA_TEMPERATURE,
    ) -> None:
        """
        Initialize the assistant.

        Args:
            model: Ollama model name
            base_url: Ollama service URL
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts on timeout
            temperature: LLM temperature for generation
        """
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.temperature = temperature
        self._client = ollama.AsyncClient(host=base_url)

    def _parse_response(self, response_text: str) -> dict[str, Any]:
        """
        Parse a JSON object returned by the LLM.

        Raises:
            AssistantError: If the response is not a JSON object
        """
        try:
            data = json.loads(response_text)
        except json.JSONDecodeError as e:
            raise AssistantError(f"Invalid JSON response: {e}") from e
        if not isinstance(data, dict):
            raise AssistantError("Expected a JSON object in the response")
        return data

    async def _complete(self, prompt: str) -> dict[str, Any]:
        """
        Send a prompt and parse the JSON answer.

        Timeouts are retried with exponential backoff; other failures are not.

        Raises:
            AssistantError: If the request or the parsing fails
        """
        start_time = time.time()

        for attempt in range(self.max_retries):
            try:
                response = await asyncio.wait_for(
                    self._client.chat(
                        model=self.model,
                        messages=[{"role": "user", "content": prompt}],
                        format="json",
                        options={"temperature": self.temperature},
                    ),
                    timeout=self.timeout,
                )
                data = self._parse_response(response["message"]["content"])
                logger.info(f"LLM response parsed in {time.time() - start_time:.3f}s")
                return data

            except TimeoutError as e:
                logger.error(f"Timeout on attempt {attempt + 1}/{self.max_retries}: {e}")
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(2**attempt)
                else:
                    raise AssistantError(
                        f"Max retries exceeded after {self.max_retries} attempts"
                    ) from e

            except AssistantError:
                raise

            except ConnectionError as e:
                logger.error(f"Connection error: {e}")
                raise AssistantError(f"Connection failed: {e}") from e

            except Exception as e:
                logger.error(f"Assistant error: {e}")
                raise AssistantError(f"Request failed: {e}") from e

        raise AssistantError(f"Max retries exceeded after {self.max_retries} attempts")

    async def generate_tasks(
        self,
        activity_description: str,
        number_of_tasks: int = 3,
        project: Project | None = None,
        existing_tasks: list[str] | None = None,
    ) -> list[str]:
        """
        Generate task titles for an activity.

        Args:
            activity_description: What the user wants to get done
            number_of_tasks: How many tasks to generate (1-10)
            project: Optional project giving extra context
            existing_tasks: Titles already in the project, to avoid repeats

        Returns:
            Generated task titles

        Raises:
            AssistantError: If the input is invalid or generation fails
        """
        if not activity_description or not activity_description.strip():
            raise AssistantError("Empty activity description")
        if not 1 <= number_of_tasks <= MAX_GENERATED_TASKS:
            raise AssistantError(
                f"number_of_tasks must be between 1 and {MAX_GENERATED_TASKS}"
            )

        context = ""
        if project is not None:
            context = f'Project: "{_sanitize(project.name)}"'
            if project.description:
                context += f' - {_sanitize(project.description)}'
            if existing_tasks:
                listed = "; ".join(_sanitize(title, 100) for title in existing_tasks)
                context += f"\nExisting tasks (do not repeat): {listed}"

        data = await self._complete(
            GENERATE_TASKS_PROMPT.format(
                activity=_sanitize(activity_description),
                project_context=context,
                count=number_of_tasks,
            )
        )
        tasks = data.get("tasks")
        if not isinstance(tasks, list):
            raise AssistantError("Missing required field: tasks")

        titles = [str(title).strip() for title in tasks if str(title).strip()]
        return titles[:number_of_tasks]

    async def process_voice_command(
        self, command: str, projects: list[Project]
    ) -> list[GeneratedTask]:
        """
        Turn a transcribed voice command into tasks.

        Project ids not among the given projects are dropped.

        Raises:
            AssistantError: If the command is empty or parsing fails
        """
        if not command or not command.strip():
            raise AssistantError("Empty voice command")

        listed = "\n".join(
            f'- Project Name: "{_sanitize(project.name, 100)}", ID: "{project.id}"'
            for project in projects
        ) or "- No projects available."
        data = await self._complete(
            VOICE_COMMAND_PROMPT.format(command=_sanitize(command), projects=listed)
        )

        known_projects = {project.id for project in projects}
        results = []
        for item in _items(data, "tasks"):
            title = str(item.get("title") or "").strip()
            if not title:
                continue
            project_id = item.get("projectId")
            results.append(
                GeneratedTask(
                    title=title,
                    category=_parse_choice(Category, item.get("category"), Category.PERSONAL),
                    priority=_parse_choice(Priority, item.get("priority"), Priority.MEDIUM),
                    project_id=project_id if project_id in known_projects else None,
                )
            )

        logger.info(f"Voice command produced {len(results)} tasks")
        return results

    async def generate_daily_plan(
        self, tasks: list[Task], user_name: str | None = None
    ) -> DailyPlan:
        """
        Pick a focused set of pending tasks for today.

        Suggestions naming tasks that are not pending are dropped.
        """
        pending = [task for task in tasks if not task.completed]
        listed = "\n".join(
            f'- ID: {task.id}, Title: "{_sanitize(task.title, 200)}", '
            f"Priority: {task.priority.value}, Status: {task.status.value}, "
            f"Created: {task.created_at.date().isoformat()}"
            for task in pending
        )
        data = await self._complete(
            DAILY_PLAN_PROMPT.format(user_name=user_name or "Campeón(a)", tasks=listed)
        )

        by_id = {task.id: task for task in pending}
        suggestions = []
        for item in _items(data, "suggestedTasks"):
            task = by_id.get(str(item.get("id")))
            if task is None:
                continue
            suggestions.append(
                SuggestedTask(
                    id=task.id,
                    title=task.title,
                    reason=str(item.get("reason") or ""),
                )
            )

        return DailyPlan(
            motivational_message=str(data.get("motivationalMessage") or ""),
            suggested_tasks=suggestions[:MAX_PLAN_TASKS],
        )

    async def organize_tasks(self, tasks: list[Task]) -> OrganizedTasks:
        """
        Ask the LLM to reword, reprioritise and merge pending tasks.

        The result only references ids of the given tasks.
        """
        pending = [task for task in tasks if not task.completed]
        if not pending:
            return OrganizedTasks()

        listed = "\n".join(
            f'- ID: {task.id}, Title: "{_sanitize(task.title, 200)}", '
            f"Priority: {task.priority.value}, Category: {task.category.value}"
            + (f", ProjectID: {task.project_id}" if task.project_id else "")
            for task in pending
        )
        start_time = time.time()
        data = await self._complete(ORGANIZE_TASKS_PROMPT.format(tasks=listed))

        known = {task.id for task in pending}
        updated = [
            OrganizedTaskUpdate(
                id=str(item["id"]),
                title=(str(item["title"]).strip() or None) if item.get("title") else None,
                priority=_parse_choice(Priority, item.get("priority"), None),
            )
            for item in _items(data, "updatedTasks")
            if str(item.get("id")) in known
        ]
        new = [
            OrganizedTaskNew(
                title=str(item["title"]).strip(),
                priority=_parse_choice(Priority, item.get("priority"), Priority.MEDIUM),
                category=_parse_choice(Category, item.get("category"), Category.PERSONAL),
                project_id=item.get("projectId") or None,
            )
            for item in _items(data, "newTasks")
            if str(item.get("title") or "").strip()
        ]
        raw_deleted = data.get("deletedTaskIds")
        deleted = [
            task_id
            for task_id in (raw_deleted if isinstance(raw_deleted, list) else [])
            if isinstance(task_id, str) and task_id in known
        ]

        return OrganizedTasks(
            updated_tasks=updated,
            new_tasks=new,
            deleted_task_ids=deleted,
            metadata={"inference_time": time.time() - start_time},
        )
