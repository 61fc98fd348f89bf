"""ORM models exposed by the task-mirror backend."""
from .account import Account
from .task import Task

__all__ = ["Account", "Task"]
