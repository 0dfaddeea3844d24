"""Data models for tasksync."""

from tasksync.models.task import Task
from tasksync.models.user import User
from tasksync.models.change_event import ChangeOperation, TaskChangeEvent

__all__ = [
    "Task",
    "User",
    "ChangeOperation",
    "TaskChangeEvent",
]
