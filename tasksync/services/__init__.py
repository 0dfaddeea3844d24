"""Service layer for tasksync."""

from tasksync.services.task_service import TaskService
from tasksync.services.user_service import LoginResult, UserService

__all__ = ["TaskService", "UserService", "LoginResult"]
