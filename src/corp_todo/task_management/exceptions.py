"""Custom exceptions for task management functionality."""


class TaskManagementError(Exception):
    """Base exception for task management errors."""

    pass


class DatabaseError(TaskManagementError):
    """Exception raised for remote document store errors."""

    pass


class SchemaError(DatabaseError):
    """Exception raised for database schema errors."""

    pass


class DocumentNotFoundError(DatabaseError):
    """Exception raised when a remote document does not exist."""

    pass


class TaskNotFoundError(TaskManagementError):
    """Exception raised when a task, sub-task or project is not found locally."""

    pass


class InvalidTaskError(TaskManagementError):
    """Exception raised for invalid local input, before any state changes."""

    pass


class AssistantError(TaskManagementError):
    """Exception raised for LLM assistant errors."""

    pass
