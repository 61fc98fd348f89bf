"""Per-task reconciliation between local tasks and their Google Tasks mirror.

For a task that already has a Google counterpart the newer side wins,
compared by ``status_updated_at`` locally and ``updated`` on Google:

* Google strictly newer: the mapped Google status overwrites the local one.
* local strictly newer: status (and a changed due date) are patched to Google.
* equal timestamps: nothing is pushed either way, only bookkeeping is refreshed.

A Google task that disappeared (404) clears the mirror so the task counts as
never synced; the local row itself is kept.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from core.exceptions import CredentialError, TaskNotFoundError
from core.settings import DEFAULT_TASKLIST_ID, GOOGLE_SYNC, TASKS_SCOPE, GoogleSyncSettings
from core.statuses import (
    GoogleTaskStatus,
    external_status_of,
    normalize_status,
    to_external_status,
    to_local_status,
)
from datetime_utils import EPOCH, ensure_utc, parse_rfc3339, same_day, to_rfc3339_utc, utc_now
from models.account import Account
from models.task import Task
from services.account_repository import AccountRepository
from services.credential_gate import is_sync_eligible
from services.google_tasks import GoogleTasksClient, build_task_body, format_due
from services.task_notes import build_notes
from services.task_repository import TaskRepository, normalize_email


logger = logging.getLogger("taskmirror.sync.reconcile")

NOT_FOUND_MESSAGE = "Google task not found (deleted or wrong account). Please resync."

ClientFactory = Callable[[Account], GoogleTasksClient]


def default_client_factory(settings: GoogleSyncSettings = GOOGLE_SYNC) -> ClientFactory:
    def factory(account: Account) -> GoogleTasksClient:
        return GoogleTasksClient.for_refresh_token(account.google_refresh_token, settings)

    return factory


@dataclass
class ReconcileResult:
    direction: str = "noop"  # google_to_db / db_to_google / noop
    updated: bool = False
    removed: bool = False
    created: bool = False


@dataclass
class StatusSyncResult:
    scanned: int = 0
    synced: int = 0
    failed: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {"scanned": self.scanned, "synced": self.synced, "failed": self.failed}


def local_changed_at(task: Task) -> datetime:
    return (
        ensure_utc(task.status_updated_at)
        or ensure_utc(task.updated_at)
        or ensure_utc(task.created_at)
        or utc_now()
    )


def external_changed_at(task: Task, item: Optional[dict]) -> datetime:
    return (
        parse_rfc3339((item or {}).get("updated"))
        or ensure_utc(task.mirror_external_updated_at)
        or EPOCH
    )


def _advance(stored: Optional[datetime], candidate: Optional[datetime]) -> Optional[datetime]:
    """Keep the mirror timestamp non-decreasing."""
    stored = ensure_utc(stored)
    candidate = ensure_utc(candidate)
    if stored is None:
        return candidate
    if candidate is None:
        return stored
    return max(stored, candidate)


def reset_mirror(repo: TaskRepository, task: Task, message: Optional[str] = NOT_FOUND_MESSAGE) -> None:
    logger.info("Google task %s for task %s is gone, clearing mirror", task.mirror_external_id, task.id)
    repo.update(
        task.id,
        mirror_external_id=None,
        mirror_tasklist_id=DEFAULT_TASKLIST_ID,
        mirror_external_updated_at=None,
        mirror_last_error=message,
        mirror_synced_at=utc_now(),
    )


def _mark_synced(repo: TaskRepository, task: Task, **extra) -> None:
    repo.update(task.id, mirror_synced_at=utc_now(), mirror_last_error=None, **extra)


def record_error(repo: TaskRepository, task_id: int, message: str) -> None:
    repo.update(task_id, mirror_last_error=(message or "Google sync failed")[:1000], mirror_synced_at=utc_now())


def build_status_patch(
    task: Task, changed_at: datetime, *, include_status: bool = True, include_due: bool = False
) -> dict:
    patch: dict = {}
    if include_status:
        desired = to_external_status(task.status)
        patch["status"] = desired.value
        if desired is GoogleTaskStatus.COMPLETED:
            patch["completed"] = to_rfc3339_utc(changed_at)
        else:
            patch["completed"] = None
    if include_due:
        patch["due"] = format_due(task.due_date)
    return patch


def reconcile_task(task: Task, client: GoogleTasksClient, repo: TaskRepository) -> ReconcileResult:
    external_id = task.mirror_external_id
    if not external_id:
        return ReconcileResult(direction="noop")
    tasklist_id = task.mirror_tasklist_id or DEFAULT_TASKLIST_ID

    try:
        item = client.get_task(tasklist_id, external_id)
    except TaskNotFoundError:
        reset_mirror(repo, task)
        return ReconcileResult(direction="noop", removed=True)

    local_at = local_changed_at(task)
    google_at = external_changed_at(task, item)
    local_status = normalize_status(task.status)

    if google_at > local_at:
        google_status = to_local_status(external_status_of(item).value)
        mirror_at = _advance(task.mirror_external_updated_at, google_at)
        if google_status is not local_status:
            logger.info("Task %s: Google status %s wins", task.id, google_status.value)
            _mark_synced(
                repo,
                task,
                status=google_status.value,
                status_updated_at=google_at,
                mirror_external_updated_at=mirror_at,
            )
            return ReconcileResult(direction="google_to_db", updated=True)
        _mark_synced(repo, task, mirror_external_updated_at=mirror_at)
        return ReconcileResult(direction="google_to_db")

    if local_at > google_at:
        desired = to_external_status(local_status)
        status_differs = external_status_of(item) is not desired
        google_due = parse_rfc3339(item.get("due"))
        due_differs = task.due_date is not None and not same_day(task.due_date, google_due)
        if status_differs or due_differs:
            patch = build_status_patch(task, local_at, include_due=due_differs)
            try:
                response = client.patch_task(tasklist_id, external_id, patch)
            except TaskNotFoundError:
                reset_mirror(repo, task)
                return ReconcileResult(direction="noop", removed=True)
            returned_at = parse_rfc3339((response or {}).get("updated")) or utc_now()
            logger.info("Task %s: local status %s pushed to Google", task.id, local_status.value)
            _mark_synced(
                repo,
                task,
                mirror_external_updated_at=_advance(task.mirror_external_updated_at, returned_at),
            )
            return ReconcileResult(direction="db_to_google", updated=True)
        _mark_synced(repo, task)
        return ReconcileResult(direction="db_to_google")

    _mark_synced(repo, task)
    return ReconcileResult(direction="noop")


# ----------------------------------------------------------------------
# Pushing local edits
def create_external(
    task: Task,
    client: GoogleTasksClient,
    repo: TaskRepository,
    *,
    owner_email: str,
    attendees: Iterable[str] = (),
) -> dict:
    """Create the Google counterpart of a never-synced task and record the mirror."""
    desired = to_external_status(task.status)
    completed_at = None
    if desired is GoogleTaskStatus.COMPLETED:
        completed_at = local_changed_at(task)
    body = build_task_body(
        title=task.title,
        notes=build_notes(task, attendees),
        due=task.due_date,
        status=desired.value,
        completed=completed_at,
    )
    created = client.insert_task(DEFAULT_TASKLIST_ID, body)
    repo.update(
        task.id,
        mirror_external_id=created.get("id") or None,
        mirror_tasklist_id=DEFAULT_TASKLIST_ID,
        mirror_owner_email=normalize_email(owner_email) or None,
        mirror_external_updated_at=parse_rfc3339(created.get("updated")),
        mirror_synced_at=utc_now(),
        mirror_last_error=None,
    )
    logger.info("Task %s created in Google Tasks as %s", task.id, created.get("id"))
    return created


def push_local_change(
    task: Task,
    client: GoogleTasksClient,
    repo: TaskRepository,
    *,
    owner_email: str,
    status_changed: bool = True,
    due_changed: bool = True,
    recreate_missing: bool = False,
    attendees: Iterable[str] = (),
) -> ReconcileResult:
    """Send a local status/due edit to Google.

    Never-synced tasks are created instead of patched. A 404 on the patch
    clears the mirror, and with ``recreate_missing`` creates a fresh copy.
    """
    if not task.mirror_external_id:
        create_external(task, client, repo, owner_email=owner_email, attendees=attendees)
        return ReconcileResult(direction="db_to_google", updated=True, created=True)

    patch = build_status_patch(
        task,
        local_changed_at(task),
        include_status=status_changed,
        include_due=due_changed,
    )
    if not patch:
        return ReconcileResult(direction="noop")

    try:
        response = client.patch_task(
            task.mirror_tasklist_id or DEFAULT_TASKLIST_ID, task.mirror_external_id, patch
        )
    except TaskNotFoundError:
        if not recreate_missing:
            reset_mirror(repo, task)
            return ReconcileResult(direction="noop", removed=True)
        reset_mirror(repo, task, message=None)
        fresh = repo.get(task.id) or task
        create_external(fresh, client, repo, owner_email=owner_email, attendees=attendees)
        return ReconcileResult(direction="db_to_google", updated=True, removed=True, created=True)

    _mark_synced(
        repo,
        task,
        mirror_owner_email=normalize_email(owner_email) or task.mirror_owner_email,
        mirror_external_updated_at=_advance(
            task.mirror_external_updated_at, parse_rfc3339((response or {}).get("updated"))
        ),
    )
    return ReconcileResult(direction="db_to_google", updated=True)


# ----------------------------------------------------------------------
class StatusSyncService:
    """Recurring status reconciliation over every mirrored task."""

    def __init__(
        self,
        tasks: Optional[TaskRepository] = None,
        accounts: Optional[AccountRepository] = None,
        *,
        client_factory: Optional[ClientFactory] = None,
        settings: GoogleSyncSettings = GOOGLE_SYNC,
    ) -> None:
        self.tasks = tasks or TaskRepository()
        self.accounts = accounts or AccountRepository()
        self.client_factory = client_factory or default_client_factory(settings)
        self.settings = settings

    def run_once(self) -> StatusSyncResult:
        mirrored = self.tasks.list_mirrored()
        result = StatusSyncResult(scanned=len(mirrored))
        if not mirrored:
            return result

        by_owner: Dict[str, List[Task]] = defaultdict(list)
        for task in mirrored:
            owner = normalize_email(task.mirror_owner_email)
            if owner:
                by_owner[owner].append(task)

        accounts = {
            normalize_email(a.email): a for a in self.accounts.list_by_emails(by_owner.keys())
        }

        for owner, owner_tasks in by_owner.items():
            account = accounts.get(owner)
            if not is_sync_eligible(account, TASKS_SCOPE):
                continue

            try:
                client = self.client_factory(account)
            except CredentialError as exc:
                logger.warning("Skipping %s: %s", owner, exc)
                self.tasks.update_many(
                    [t.id for t in owner_tasks], mirror_last_error=str(exc) or "Failed to refresh access token"
                )
                result.failed += len(owner_tasks)
                continue

            for task in owner_tasks:
                try:
                    reconcile_task(task, client, self.tasks)
                    result.synced += 1
                except Exception as exc:
                    logger.error("Status sync failed for task %s: %s", task.id, exc)
                    record_error(self.tasks, task.id, str(exc))
                    result.failed += 1

        logger.info("Status sync finished: %s", result.as_dict())
        return result


__all__ = [
    "NOT_FOUND_MESSAGE",
    "ReconcileResult",
    "StatusSyncResult",
    "StatusSyncService",
    "create_external",
    "default_client_factory",
    "external_changed_at",
    "local_changed_at",
    "push_local_change",
    "reconcile_task",
    "record_error",
    "reset_mirror",
]
