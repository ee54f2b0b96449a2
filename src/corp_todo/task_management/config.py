"""Configuration constants for the task management store."""

import os

# Session
DEFAULT_USER_ID = os.environ.get("CORP_TODO_USER_ID")
DEFAULT_ROLE = os.environ.get("CORP_TODO_ROLE", "operator")

# Remote Collections
TASKS_COLLECTION = "tasks"
PROJECTS_COLLECTION = "projects"

# Cleanup
COMPLETED_TASK_RETENTION_DAYS = 5

# Storage Configuration
DEFAULT_DATABASE_PATH = os.environ.get(
    "CORP_TODO_DATABASE_PATH", os.path.expanduser("~/.corp-todo/documents.db")
)
DEFAULT_WAL_MODE = True

# Database Schema Version
SCHEMA_VERSION = 1

# LLM Configuration
DEFAULT_OLLAMA_MODEL = "llama3.2:3b"
DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"
DEFAULT_OLLAMA_TIMEOUT = 30.0  # seconds
DEFAULT_OLLAMA_MAX_RETRIES = 3
DEFAULT_OLLAMA_TEMPERATURE = 0.2

# MCP Server Configuration
DEFAULT_MCP_HOST = "localhost"
DEFAULT_MCP_PORT = 3000
DEFAULT_MCP_SERVER_NAME = "corp-todo-tasks"

# Calendar export
DEFAULT_EVENT_MINUTES = 60

# LLM Prompt Templates
GENERATE_TASKS_PROMPT = """You generate the tasks needed to complete an activity.

Activity: "{activity}"
{project_context}
Generate exactly {count} short, actionable tasks.

Output this JSON only:
{{"tasks": ["task 1", "task 2"]}}
"""

VOICE_COMMAND_PROMPT = """Convert a transcribed voice command into one or more tasks.

Command: "{command}"

Rules:
- Categories: estudio, trabajo, personal, proyectos, development. Default personal.
- Priorities: baja, media, alta. Default media. "urgente"/"importante" means alta.
- If a project below is mentioned, category is proyectos and projectId is its ID.

Available projects:
{projects}

Output this JSON only:
{{"tasks": [{{"title": "...", "category": "...", "priority": "...", "projectId": null}}]}}
"""

DAILY_PLAN_PROMPT = """You are a positive productivity coach. Pick 3 to 5 tasks for today.

User: {user_name}

Pending tasks:
{tasks}

Prefer high priority tasks, tasks already in progress, and important tasks that
have been pending for a long time. Give a short reason for each pick.

Output this JSON only:
{{"motivationalMessage": "...", "suggestedTasks": [{{"id": "...", "title": "...", "reason": "..."}}]}}
"""

ORGANIZE_TASKS_PROMPT = """Optimize this list of pending tasks.

Tasks:
{tasks}

Rules:
- Rewrite vague titles as specific actions. Leave good titles unchanged.
- Adjust priorities (baja, media, alta) using urgency cues.
- Merge duplicates or closely related tasks into a new task and list the
  original IDs as deleted. A merged task keeps the shared category, or
  personal if the categories differ.
- Only delete tasks you are sure are redundant.

Output this JSON only:
{{"updatedTasks": [{{"id": "...", "title": "...", "priority": "..."}}],
  "newTasks": [{{"title": "...", "priority": "...", "category": "...", "projectId": null}}],
  "deletedTaskIds": ["..."]}}
"""
