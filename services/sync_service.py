from __future__ import annotations
import logging
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from core.exceptions import (
    AccountNotFoundError,
    CredentialError,
    LocalTaskNotFoundError,
    SyncInProgressError,
)
from core.settings import DEFAULT_TASKLIST_ID, GOOGLE_SYNC, SYNC_LOG_PATH, TASKS_SCOPE, GoogleSyncSettings
from datetime_utils import to_rfc3339_utc, utc_now
from models.account import Account
from models.task import Task
from services.account_repository import AccountRepository
from services.credential_gate import account_scopes, filter_eligible, is_sync_eligible
from services.google_auth import build_authorization_url, exchange_code
from services.reconcile import (
    ClientFactory,
    StatusSyncResult,
    StatusSyncService,
    default_client_factory,
    push_local_change,
    record_error,
)
from services.scheduler import SyncScheduler
from services.task_import import ImportResult, ImportService
from services.task_repository import TaskRepository, normalize_email


def get_sync_logger() -> logging.Logger:
    logger = logging.getLogger("taskmirror.sync")
    if not logger.handlers:
        Path(SYNC_LOG_PATH).parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(SYNC_LOG_PATH, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return logger


def _failure(exc: Exception) -> Dict[str, Any]:
    return {"success": False, "message": str(exc) or exc.__class__.__name__}


class SyncService:
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
        self.settings = settings
        self.client_factory = client_factory or default_client_factory(settings)
        self.status_sync = StatusSyncService(
            self.tasks, self.accounts, client_factory=self.client_factory, settings=settings
        )
        self.importer = ImportService(
            self.tasks, self.accounts, client_factory=self.client_factory, settings=settings
        )
        self.scheduler = SyncScheduler(self.run_status_sync_once, self.run_import_once, settings)
        self.logger = get_sync_logger()
        self._in_flight: Set[int] = set()
        self._in_flight_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Scheduled jobs
    def run_status_sync_once(self) -> StatusSyncResult:
        return self.status_sync.run_once()

    def run_import_once(self) -> ImportResult:
        return self.importer.run_once()

    # ------------------------------------------------------------------
    # On-demand import for one account
    def sync_now(self, account_id: int) -> Dict[str, Any]:
        """Import one account now; the result never raises."""
        try:
            result = self._sync_account(account_id)
        except Exception as exc:
            self.logger.error("On-demand sync for account %s failed: %s", account_id, exc)
            return _failure(exc)
        return {"success": True, "data": result.as_dict()}

    def _sync_account(self, account_id: int) -> ImportResult:
        if not self._claim(account_id):
            raise SyncInProgressError(f"Sync already in progress for account {account_id}")
        try:
            account = self.accounts.get(account_id)
            if account is None:
                raise AccountNotFoundError(f"Account {account_id} not found")
            if not is_sync_eligible(account, TASKS_SCOPE):
                self.logger.info("Account %s is not connected to Google Tasks, nothing to import", account.email)
                return ImportResult()
            result = self.importer.import_for_account(account)
            result.accounts = 1
            self.logger.info("On-demand sync for %s: %s", account.email, result.as_dict())
            return result
        finally:
            self._release(account_id)

    def _claim(self, account_id: int) -> bool:
        with self._in_flight_guard:
            if account_id in self._in_flight:
                return False
            self._in_flight.add(account_id)
            return True

    def _release(self, account_id: int) -> None:
        with self._in_flight_guard:
            self._in_flight.discard(account_id)

    # ------------------------------------------------------------------
    # Event hooks for local edits
    def on_task_changed(
        self, task_id: int, *, status_changed: bool = True, due_changed: bool = True
    ) -> None:
        if not self.settings.enabled:
            return
        task = self.tasks.get(task_id)
        if task is None or task.is_deleted:
            return
        account = self._resolve_owner(task.mirror_owner_email, task.assigned_by, task.assigned_to)
        if not is_sync_eligible(account, TASKS_SCOPE):
            self.logger.debug("Task %s has no connected Google account", task_id)
            return
        try:
            client = self.client_factory(account)
            push_local_change(
                task,
                client,
                self.tasks,
                owner_email=account.email,
                status_changed=status_changed,
                due_changed=due_changed,
                attendees=self._attendees(task),
            )
        except Exception as exc:
            self.logger.error("Push of task %s failed: %s", task_id, exc)
            record_error(self.tasks, task_id, str(exc))

    def push_task_now(self, task_id: int, requester_email: Optional[str] = None) -> Dict[str, Any]:
        """Create or update the Google copy of one task, recreating it if Google lost it."""
        task = self.tasks.get(task_id)
        try:
            if task is None or task.is_deleted:
                raise LocalTaskNotFoundError(f"Task {task_id} not found")
            account = self._resolve_owner(
                task.mirror_owner_email, requester_email, task.assigned_by, task.assigned_to
            )
            if not is_sync_eligible(account, TASKS_SCOPE):
                raise CredentialError("Google Tasks is not connected for this task's owner")
            client = self.client_factory(account)
            result = push_local_change(
                task,
                client,
                self.tasks,
                owner_email=account.email,
                recreate_missing=True,
                attendees=self._attendees(task),
            )
        except Exception as exc:
            self.logger.error("Manual sync of task %s failed: %s", task_id, exc)
            if task is not None and not isinstance(exc, LocalTaskNotFoundError):
                record_error(self.tasks, task_id, str(exc))
            return _failure(exc)

        fresh = self.tasks.get(task_id) or task
        return {
            "success": True,
            "data": {
                "taskId": task_id,
                "externalId": fresh.mirror_external_id,
                "ownerEmail": fresh.mirror_owner_email,
                "created": result.created,
                "recreated": result.created and result.removed,
            },
        }

    def soft_delete_task(self, task_id: int, deleted_by: Optional[str] = None) -> Task:
        """Flag the task deleted locally, then delete its Google copy if possible."""
        task = self.tasks.get(task_id)
        if task is None:
            raise LocalTaskNotFoundError(f"Task {task_id} not found")
        updated = self.tasks.update(
            task_id,
            touch=True,
            is_deleted=True,
            deleted_at=utc_now(),
            deleted_by=normalize_email(deleted_by) or None,
        )
        if not task.mirror_external_id or not self.settings.enabled:
            return updated

        account = self.accounts.get_by_email(task.mirror_owner_email)
        if not is_sync_eligible(account, TASKS_SCOPE):
            return updated
        try:
            client = self.client_factory(account)
            client.delete_task(task.mirror_tasklist_id or DEFAULT_TASKLIST_ID, task.mirror_external_id)
        except Exception as exc:
            self.logger.warning("Could not delete Google task for task %s: %s", task_id, exc)
            record_error(self.tasks, task_id, str(exc))
        else:
            updated = self.tasks.update(task_id, mirror_synced_at=utc_now(), mirror_last_error=None)
        return updated

    # ------------------------------------------------------------------
    # Account connection
    def authorization_url(self, account_id: int) -> str:
        if self.accounts.get(account_id) is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return build_authorization_url(str(account_id), self.settings)

    def connect_account(self, account_id: int, code: str) -> Dict[str, Any]:
        account = self.accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        refresh_token, scopes = exchange_code(code, self.settings)
        token = refresh_token or account.google_refresh_token
        if not token:
            raise CredentialError("Google did not return a refresh token; reconnect and grant consent")
        self.accounts.save_google_credentials(
            account_id, refresh_token=token, scopes=scopes or account_scopes(account)
        )
        self.logger.info("Google Tasks connected for %s", account.email)
        return self.connection_status(account_id)

    def disconnect_account(self, account_id: int) -> Dict[str, Any]:
        if self.accounts.clear_google_credentials(account_id) is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        self.logger.info("Google Tasks disconnected for account %s", account_id)
        return self.connection_status(account_id)

    def connection_status(self, account_id: int) -> Dict[str, Any]:
        account = self.accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return {
            "email": account.email,
            "connected": bool(account.google_connected),
            "scopes": account_scopes(account),
            "eligible": is_sync_eligible(account, TASKS_SCOPE),
            "connectedAt": to_rfc3339_utc(account.google_connected_at),
            "lastPulledAt": to_rfc3339_utc(account.tasks_last_pulled_at),
        }

    # ------------------------------------------------------------------
    def status(self) -> Dict[str, Any]:
        return {
            "mirroredTasks": self.tasks.count(mirrored=True),
            "unmirroredTasks": self.tasks.count(mirrored=False),
            "tasksWithErrors": self.tasks.count(with_errors=True),
            "eligibleAccounts": len(filter_eligible(self.accounts.list_connected(), TASKS_SCOPE)),
            "lastSyncedAt": to_rfc3339_utc(self.tasks.last_synced_at()),
            "scheduler": self.scheduler.flags(),
        }

    # ------------------------------------------------------------------
    def _resolve_owner(self, *candidates: Optional[str]) -> Optional[Account]:
        """First candidate e-mail that maps to a known account."""
        for email in candidates:
            if not normalize_email(email):
                continue
            account = self.accounts.get_by_email(email)
            if account is not None:
                return account
        return None

    @staticmethod
    def _attendees(task: Task) -> List[str]:
        emails: List[str] = []
        for value in (task.assigned_by, task.assigned_to):
            email = normalize_email(value)
            if email and email not in emails:
                emails.append(email)
        return emails


__all__ = ["SyncService", "get_sync_logger"]
