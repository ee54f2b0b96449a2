"""MCP Server for the task store using FastMCP."""

import asyncio
import logging
import sys
from datetime import datetime
from typing import Any

from fastmcp import FastMCP

from .ai_priority import calculate_ai_priority_score, sort_tasks_by_ai_priority
from .config import (
    DEFAULT_DATABASE_PATH,
    DEFAULT_MCP_HOST,
    DEFAULT_MCP_PORT,
    DEFAULT_MCP_SERVER_NAME,
    DEFAULT_ROLE,
    DEFAULT_USER_ID,
)
from .database import DocumentDatabase
from .exceptions import AssistantError, InvalidTaskError, TaskNotFoundError
from .llm_assistant import TaskAssistant
from .models import KanbanStatus, Project, Session, Task, UserRole
from .task_store import ReconcilingTaskStore

logger = logging.getLogger(__name__)

mcp = FastMCP(DEFAULT_MCP_SERVER_NAME)

# Initialized in main()
_task_store: ReconcilingTaskStore | None = None
_assistant: TaskAssistant | None = None


def get_task_store() -> ReconcilingTaskStore:
    """Get the task store served by this process."""
    if _task_store is None:
        raise RuntimeError("Task store not initialized")
    return _task_store


def set_task_store(task_store: ReconcilingTaskStore | None) -> None:
    """Set the task store served by this process (for testing)."""
    global _task_store
    _task_store = task_store


def get_assistant() -> TaskAssistant:
    """Get the LLM assistant, creating a default one on first use."""
    global _assistant
    if _assistant is None:
        _assistant = TaskAssistant()
    return _assistant


def set_assistant(assistant: TaskAssistant | None) -> None:
    """Set the LLM assistant (for testing)."""
    global _assistant
    _assistant = assistant


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def task_to_dict(task: Task) -> dict[str, Any]:
    """Format a task for a tool response."""
    score = task.ai_priority_score
    if score is None:
        score = calculate_ai_priority_score(task)
    return {
        "id": task.id,
        "title": task.title,
        "category": task.category.value,
        "priority": task.priority.value,
        "status": task.status.value,
        "completed": task.completed,
        "created_at": _iso(task.created_at),
        "started_at": _iso(task.started_at),
        "completed_at": _iso(task.completed_at),
        "due_date": _iso(task.due_date),
        "project_id": task.project_id,
        "assigned_to": task.assigned_to,
        "sub_tasks": [
            {"id": sub.id, "title": sub.title, "completed": sub.completed}
            for sub in task.sub_tasks
        ],
        "ai_priority_score": score,
    }


def project_to_dict(project: Project) -> dict[str, Any]:
    """Format a project for a tool response."""
    return {
        "id": project.id,
        "name": project.name,
        "color": project.color,
        "description": project.description,
    }


async def _list_tasks_impl(
    status: str | None = None,
    project_id: str | None = None,
    sort_by_priority: bool = False,
) -> dict[str, Any]:
    """Implementation of list_tasks tool."""
    try:
        task_store = get_task_store()

        status_filter = None
        if status:
            try:
                status_filter = KanbanStatus.parse(status)
            except ValueError:
                return {"success": False, "error": f"Invalid status: {status}"}

        tasks = task_store.tasks
        if status_filter is not None:
            tasks = [task for task in tasks if task.status == status_filter]
        if project_id:
            tasks = [task for task in tasks if task.project_id == project_id]
        if sort_by_priority:
            tasks = sort_tasks_by_ai_priority(tasks)

        return {"tasks": [task_to_dict(task) for task in tasks]}

    except Exception as e:
        logger.error(f"Error listing tasks: {e}")
        return {"success": False, "error": str(e)}


async def _add_task_impl(
    title: str,
    category: str = "personal",
    priority: str = "media",
    due_date: str | None = None,
    project_id: str | None = None,
) -> dict[str, Any]:
    """
    Add a new task.

    Args:
        title: Task title (required)
        category: estudio, trabajo, personal, proyectos or development
        priority: baja, media or alta
        due_date: Due date in ISO format (optional)
        project_id: Owning project (optional)

    Returns:
        Dictionary with task_id and success status
    """
    try:
        task_store = get_task_store()

        parsed_due_date = None
        if due_date:
            try:
                parsed_due_date = datetime.fromisoformat(due_date)
            except ValueError:
                return {"success": False, "error": f"Invalid date format: {due_date}"}

        task = task_store.add_task(
            title=title,
            category=category,
            priority=priority,
            due_date=parsed_due_date,
            project_id=project_id,
        )
        return {"success": True, "task_id": task.id}

    except InvalidTaskError as e:
        logger.warning(f"Rejected task: {e}")
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.error(f"Error adding task: {e}")
        return {"success": False, "error": str(e)}


async def _update_task_status_impl(task_id: str, status: str) -> dict[str, Any]:
    """Implementation of update_task_status tool."""
    try:
        task = get_task_store().update_task_status(task_id, status)
        return {"success": True, "task": task_to_dict(task)}

    except (TaskNotFoundError, InvalidTaskError) as e:
        logger.warning(f"Cannot update task status: {e}")
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.error(f"Error updating task status: {e}")
        return {"success": False, "error": str(e)}


async def _toggle_task_completion_impl(
    task_id: str, sub_task_id: str | None = None
) -> dict[str, Any]:
    """Implementation of toggle_task_completion tool."""
    try:
        task = get_task_store().toggle_task_completion(task_id, sub_task_id)
        return {"success": True, "task": task_to_dict(task)}

    except TaskNotFoundError as e:
        logger.warning(f"Task not found: {e}")
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.error(f"Error toggling task: {e}")
        return {"success": False, "error": str(e)}


async def _delete_task_impl(task_id: str) -> dict[str, Any]:
    """Implementation of delete_task tool."""
    try:
        get_task_store().delete_task(task_id)
        return {"success": True}

    except TaskNotFoundError as e:
        logger.warning(f"Task not found: {e}")
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.error(f"Error deleting task: {e}")
        return {"success": False, "error": str(e)}


async def _list_projects_impl() -> dict[str, Any]:
    """Implementation of list_projects tool."""
    try:
        return {"projects": [project_to_dict(p) for p in get_task_store().projects]}
    except Exception as e:
        logger.error(f"Error listing projects: {e}")
        return {"success": False, "error": str(e)}


async def _add_project_impl(
    name: str, color: str = "#2563eb", description: str | None = None
) -> dict[str, Any]:
    """Implementation of add_project tool."""
    try:
        project = get_task_store().add_project(name, color, description)
        return {"success": True, "project_id": project.id}

    except InvalidTaskError as e:
        logger.warning(f"Rejected project: {e}")
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.error(f"Error adding project: {e}")
        return {"success": False, "error": str(e)}


async def _delete_project_impl(project_id: str) -> dict[str, Any]:
    """Implementation of delete_project tool."""
    try:
        deleted_tasks = get_task_store().delete_project(project_id)
        return {"success": True, "deleted_tasks": deleted_tasks}

    except TaskNotFoundError as e:
        logger.warning(f"Project not found: {e}")
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.error(f"Error deleting project: {e}")
        return {"success": False, "error": str(e)}


async def _delete_completed_tasks_impl() -> dict[str, Any]:
    """Implementation of delete_completed_tasks tool."""
    try:
        return {"success": True, "deleted": get_task_store().delete_completed_tasks()}
    except Exception as e:
        logger.error(f"Error deleting completed tasks: {e}")
        return {"success": False, "error": str(e)}


async def _get_task_statistics_impl() -> dict[str, Any]:
    """Implementation of get_task_statistics tool."""
    try:
        return dict(get_task_store().get_statistics())
    except Exception as e:
        logger.error(f"Error getting task statistics: {e}")
        return {"success": False, "error": str(e)}


async def _generate_tasks_impl(
    activity_description: str,
    number_of_tasks: int = 3,
    category: str = "personal",
    priority: str = "media",
    project_id: str | None = None,
) -> dict[str, Any]:
    """Generate tasks for an activity and add them to the store."""
    try:
        task_store = get_task_store()
        project = task_store.get_project_by_id(project_id) if project_id else None
        existing = (
            [task.title for task in task_store.tasks_for_project(project_id)]
            if project_id
            else None
        )

        titles = await get_assistant().generate_tasks(
            activity_description, number_of_tasks, project, existing
        )
        tasks = task_store.add_ai_tasks(titles, category, priority, project_id=project_id)
        return {"success": True, "task_ids": [task.id for task in tasks]}

    except (AssistantError, InvalidTaskError) as e:
        logger.warning(f"Task generation failed: {e}")
        return {"success": False, "error": str(e)}
    except Exception as e:
        logger.error(f"Error generating tasks: {e}")
        return {"success": False, "error": str(e)}


# FastMCP decorated wrappers
@mcp.tool()
async def list_tasks(
    status: str | None = None,
    project_id: str | None = None,
    sort_by_priority: bool = False,
) -> dict[str, Any]:
    """
    List tasks with optional filters.

    Args:
        status: Filter by status (Pendiente, En Progreso, Hecho, Finalizado, Cancelado)
        project_id: Filter by project
        sort_by_priority: Sort by AI priority score, highest first

    Returns:
        Dictionary with tasks list
    """
    return await _list_tasks_impl(status, project_id, sort_by_priority)


@mcp.tool()
async def add_task(
    title: str,
    category: str = "personal",
    priority: str = "media",
    due_date: str | None = None,
    project_id: str | None = None,
) -> dict[str, Any]:
    """
    Add a new task.

    Args:
        title: Task title (required)
        category: estudio, trabajo, personal, proyectos or development
        priority: baja, media or alta
        due_date: Due date in ISO format (optional)
        project_id: Owning project (optional)

    Returns:
        Dictionary with task_id and success status
    """
    return await _add_task_impl(title, category, priority, due_date, project_id)


@mcp.tool()
async def update_task_status(task_id: str, status: str) -> dict[str, Any]:
    """
    Move a task to a Kanban status.

    Args:
        task_id: Task ID
        status: Pendiente, En Progreso, Hecho, Finalizado or Cancelado

    Returns:
        Dictionary with success status and the updated task
    """
    return await _update_task_status_impl(task_id, status)


@mcp.tool()
async def toggle_task_completion(
    task_id: str, sub_task_id: str | None = None
) -> dict[str, Any]:
    """
    Toggle a task, or one of its sub-tasks, between done and not done.

    Args:
        task_id: Task ID
        sub_task_id: Sub-task to toggle (optional)

    Returns:
        Dictionary with success status and the updated task
    """
    return await _toggle_task_completion_impl(task_id, sub_task_id)


@mcp.tool()
async def delete_task(task_id: str) -> dict[str, Any]:
    """
    Delete a task.

    Args:
        task_id: Task ID

    Returns:
        Dictionary with success status
    """
    return await _delete_task_impl(task_id)


@mcp.tool()
async def list_projects() -> dict[str, Any]:
    """
    List projects.

    Returns:
        Dictionary with projects list
    """
    return await _list_projects_impl()


@mcp.tool()
async def add_project(
    name: str, color: str = "#2563eb", description: str | None = None
) -> dict[str, Any]:
    """
    Add a new project.

    Args:
        name: Project name (required)
        color: Display color
        description: Context used by the AI features (optional)

    Returns:
        Dictionary with project_id and success status
    """
    return await _add_project_impl(name, color, description)


@mcp.tool()
async def delete_project(project_id: str) -> dict[str, Any]:
    """
    Delete a project together with its tasks.

    Args:
        project_id: Project ID

    Returns:
        Dictionary with success status and number of deleted tasks
    """
    return await _delete_project_impl(project_id)


@mcp.tool()
async def delete_completed_tasks() -> dict[str, Any]:
    """
    Delete tasks completed more than five days ago.

    Returns:
        Dictionary with the number of deleted tasks
    """
    return await _delete_completed_tasks_impl()


@mcp.tool()
async def get_task_statistics() -> dict[str, Any]:
    """
    Get task statistics (counts by status).

    Returns:
        Dictionary with task counts
    """
    return await _get_task_statistics_impl()


@mcp.tool()
async def generate_tasks(
    activity_description: str,
    number_of_tasks: int = 3,
    category: str = "personal",
    priority: str = "media",
    project_id: str | None = None,
) -> dict[str, Any]:
    """
    Generate tasks for an activity with the local LLM and add them.

    Args:
        activity_description: What needs to get done
        number_of_tasks: How many tasks to generate (1-10)
        category: Category of the generated tasks
        priority: Priority of the generated tasks
        project_id: Project giving context and owning the tasks (optional)

    Returns:
        Dictionary with the created task ids
    """
    return await _generate_tasks_impl(
        activity_description, number_of_tasks, category, priority, project_id
    )


class MCPServer:
    """
    Programmatic access to the MCP tool implementations.

    The served tools are the FastMCP-decorated functions of this module;
    this class binds a store to them and dispatches plain dict requests.
    """

    TOOLS = [
        "list_tasks",
        "add_task",
        "update_task_status",
        "toggle_task_completion",
        "delete_task",
        "list_projects",
        "add_project",
        "delete_project",
        "delete_completed_tasks",
        "get_task_statistics",
        "generate_tasks",
    ]

    def __init__(
        self,
        task_store: ReconcilingTaskStore,
        assistant: TaskAssistant | None = None,
        server_name: str = DEFAULT_MCP_SERVER_NAME,
        host: str = DEFAULT_MCP_HOST,
        port: int = DEFAULT_MCP_PORT,
    ) -> None:
        self._task_store = task_store
        self._assistant = assistant
        self._server_name = server_name
        self._host = host
        self._port = port
        self._initialized = False

    async def initialize(self) -> None:
        set_task_store(self._task_store)
        if self._assistant is not None:
            set_assistant(self._assistant)
        self._initialized = True

    async def shutdown(self) -> None:
        set_task_store(None)
        self._initialized = False

    def get_available_tools(self) -> list[str]:
        return list(self.TOOLS)

    async def handle(self, tool: str, params: dict[str, Any]) -> dict[str, Any]:
        """
        Dispatch a tool request.

        Returns:
            The tool result, or an error dict for unknown tools and missing fields
        """
        required = {
            "add_task": ["title"],
            "update_task_status": ["task_id", "status"],
            "toggle_task_completion": ["task_id"],
            "delete_task": ["task_id"],
            "add_project": ["name"],
            "delete_project": ["project_id"],
            "generate_tasks": ["activity_description"],
        }
        impls = {
            "list_tasks": _list_tasks_impl,
            "add_task": _add_task_impl,
            "update_task_status": _update_task_status_impl,
            "toggle_task_completion": _toggle_task_completion_impl,
            "delete_task": _delete_task_impl,
            "list_projects": _list_projects_impl,
            "add_project": _add_project_impl,
            "delete_project": _delete_project_impl,
            "delete_completed_tasks": _delete_completed_tasks_impl,
            "get_task_statistics": _get_task_statistics_impl,
            "generate_tasks": _generate_tasks_impl,
        }
        if tool not in impls:
            return {"success": False, "error": f"Unknown tool: {tool}"}
        for field in required.get(tool, []):
            if field not in params:
                return {"success": False, "error": f"Missing required field: {field}"}
        try:
            return await impls[tool](**params)
        except TypeError as e:
            return {"success": False, "error": f"Invalid parameters: {e}"}


def session_from_config() -> Session:
    """Build the served session from the environment configuration."""
    try:
        role = UserRole(DEFAULT_ROLE)
    except ValueError:
        logger.warning(f"Invalid role '{DEFAULT_ROLE}', using operator")
        role = UserRole.OPERATOR
    return Session(user_id=DEFAULT_USER_ID, role=role, ready=True)


async def main(transport: str = "stdio") -> None:
    """
    Main entry point for MCP server.

    Args:
        transport: Transport type - "stdio" for stdio, "sse" for HTTP/SSE
    """
    database = DocumentDatabase(DEFAULT_DATABASE_PATH)
    await database.initialize()

    task_store = ReconcilingTaskStore(database)
    await task_store.set_session(session_from_config())
    set_task_store(task_store)

    logger.info(f"MCP Server initialized with {len(MCPServer.TOOLS)} tools (transport={transport})")

    try:
        if transport == "stdio":
            await mcp.run_async(transport="stdio")
        else:
            logger.info(f"Server will listen on http://{DEFAULT_MCP_HOST}:{DEFAULT_MCP_PORT}")
            await mcp.run_async(transport="sse", host=DEFAULT_MCP_HOST, port=DEFAULT_MCP_PORT)
    finally:
        await task_store.shutdown()
        await database.close()
        set_task_store(None)


def cli_entry() -> None:
    """CLI entry point for the MCP server."""
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)

    transport_type = "stdio"
    if len(sys.argv) > 1 and sys.argv[1] in ("stdio", "sse", "http"):
        transport_type = "sse" if sys.argv[1] == "http" else sys.argv[1]

    asyncio.run(main(transport_type))


if __name__ == "__main__":
    cli_entry()
