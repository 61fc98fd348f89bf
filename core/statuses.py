"""Task status values and the mapping between local and Google Tasks states."""
from __future__ import annotations

from enum import Enum
from typing import Optional, Union


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class GoogleTaskStatus(str, Enum):
    NEEDS_ACTION = "needsAction"
    COMPLETED = "completed"


DEFAULT_STATUS = TaskStatus.PENDING

# Google Tasks has no "in progress" state, so the mapping is two-valued:
# only completion survives the round trip.


def normalize_status(value: Union[str, TaskStatus, None]) -> TaskStatus:
    """Coerce a stored or user supplied status string to :class:`TaskStatus`."""
    if isinstance(value, TaskStatus):
        return value
    lowered = str(value or "").strip().lower()
    for status in TaskStatus:
        if status.value == lowered:
            return status
    if lowered in {"in_progress", "inprogress", "doing"}:
        return TaskStatus.IN_PROGRESS
    return DEFAULT_STATUS


def to_local_status(value: Union[str, GoogleTaskStatus, None]) -> TaskStatus:
    if str(getattr(value, "value", value) or "").strip().lower() == "completed":
        return TaskStatus.COMPLETED
    return TaskStatus.PENDING


def to_external_status(value: Union[str, TaskStatus, None]) -> GoogleTaskStatus:
    if normalize_status(value) is TaskStatus.COMPLETED:
        return GoogleTaskStatus.COMPLETED
    return GoogleTaskStatus.NEEDS_ACTION


def external_status_of(item: Optional[dict]) -> GoogleTaskStatus:
    """Read the status of a Google task payload; anything unknown is ``needsAction``."""
    raw = str((item or {}).get("status") or "").strip().lower()
    if raw == "completed":
        return GoogleTaskStatus.COMPLETED
    return GoogleTaskStatus.NEEDS_ACTION


__all__ = [
    "TaskStatus",
    "GoogleTaskStatus",
    "DEFAULT_STATUS",
    "normalize_status",
    "to_local_status",
    "to_external_status",
    "external_status_of",
]
