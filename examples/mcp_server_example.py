"""Example demonstrating MCP Server usage."""

import asyncio
import logging

from corp_todo.task_management.database import DocumentDatabase
from corp_todo.task_management.mcp_server import MCPServer
from corp_todo.task_management.models import Session, UserRole
from corp_todo.task_management.task_store import ReconcilingTaskStore

logging.basicConfig(level=logging.INFO)


async def main() -> None:
    """Demonstrate MCP Server functionality."""
    database = DocumentDatabase(":memory:")
    await database.initialize()

    task_store = ReconcilingTaskStore(database)
    await task_store.set_session(Session(user_id="ana", role=UserRole.ADMIN, ready=True))

    mcp_server = MCPServer(task_store=task_store)
    await mcp_server.initialize()

    print("Available MCP tools:", mcp_server.get_available_tools())
    print()

    print("=== Adding a project and a task ===")
    project = await mcp_server.handle("add_project", {"name": "Quarterly report"})
    result = await mcp_server.handle(
        "add_task",
        {"title": "Write report", "priority": "alta", "project_id": project["project_id"]},
    )
    print(f"Add task result: {result}")
    task_id = result["task_id"]
    await task_store.wait_for_pending_writes()
    print()

    print("=== Moving the task to En Progreso ===")
    result = await mcp_server.handle(
        "update_task_status", {"task_id": task_id, "status": "InProgress"}
    )
    print(f"Update result: {result}")
    await task_store.wait_for_pending_writes()
    print()

    print("=== Getting task statistics ===")
    stats = await mcp_server.handle("get_task_statistics", {})
    print(f"Statistics: {stats}")
    print()

    print("=== Listing tasks by AI priority ===")
    result = await mcp_server.handle("list_tasks", {"sort_by_priority": True})
    print(f"Tasks: {result['tasks']}")
    print()

    print("=== Deleting the project (cascades to its tasks) ===")
    result = await mcp_server.handle("delete_project", {"project_id": project["project_id"]})
    print(f"Delete result: {result}")

    await mcp_server.shutdown()
    await task_store.shutdown()
    await database.close()


if __name__ == "__main__":
    asyncio.run(main())
