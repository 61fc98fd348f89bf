"""
Exception classes for task-mirror.
"""
from __future__ import annotations

from typing import Any, Optional


class TaskMirrorError(Exception):
    """Base exception for all task-mirror errors."""
    pass


class ConfigurationError(TaskMirrorError):
    """Raised when the Google OAuth client is not configured."""
    pass


class CredentialError(TaskMirrorError):
    """Raised when an account's Google credential cannot be used."""
    pass


class ProviderError(TaskMirrorError):
    """A Google Tasks API call failed."""

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status = status
        self.body = body


class TaskNotFoundError(ProviderError):
    """The Google task no longer exists (deleted or owned by another account)."""
    pass


class AccountNotFoundError(TaskMirrorError):
    pass


class LocalTaskNotFoundError(TaskMirrorError):
    pass


class SyncInProgressError(TaskMirrorError):
    """Raised when an on-demand sync is already running for the account."""
    pass
