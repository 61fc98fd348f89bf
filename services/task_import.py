"""Import of Google Tasks changes into the local task store."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.exceptions import CredentialError
from core.settings import DEFAULT_TASKLIST_ID, GOOGLE_SYNC, TASKS_SCOPE, GoogleSyncSettings
from core.statuses import TaskStatus, external_status_of, to_local_status
from datetime_utils import EPOCH, days_ago, ensure_utc, parse_rfc3339, utc_now
from models.account import Account
from models.task import Task
from services.account_repository import AccountRepository
from services.credential_gate import filter_eligible
from services.google_tasks import GoogleTasksClient
from services.reconcile import ClientFactory, default_client_factory
from services.task_notes import parse_notes_fields
from services.task_repository import TaskRepository, normalize_email


logger = logging.getLogger("taskmirror.sync.import")

IMPORTED_TASK_TYPE = "google"
DEFAULT_TITLE = "Untitled"


@dataclass
class ImportResult:
    accounts: int = 0
    created: int = 0
    updated: int = 0
    skipped_deleted: int = 0
    failed_accounts: int = 0

    def merge(self, other: "ImportResult") -> "ImportResult":
        self.accounts += other.accounts
        self.created += other.created
        self.updated += other.updated
        self.skipped_deleted += other.skipped_deleted
        self.failed_accounts += other.failed_accounts
        return self

    def as_dict(self) -> Dict[str, int]:
        return {
            "accounts": self.accounts,
            "created": self.created,
            "updated": self.updated,
            "skippedDeleted": self.skipped_deleted,
            "failedAccounts": self.failed_accounts,
        }


def _title_of(item: Dict[str, Any]) -> str:
    return str(item.get("title") or "").strip() or DEFAULT_TITLE


def _status_fields(item: Dict[str, Any], google_updated: Optional[datetime]) -> Dict[str, Any]:
    status = to_local_status(external_status_of(item).value)
    if status is TaskStatus.COMPLETED:
        changed_at = parse_rfc3339(item.get("completed")) or google_updated
    else:
        changed_at = google_updated
    return {"status": status.value, "status_updated_at": changed_at or utc_now()}


def _due_of(item: Dict[str, Any], google_updated: Optional[datetime]) -> datetime:
    return parse_rfc3339(item.get("due")) or google_updated or utc_now()


def build_imported_task(
    item: Dict[str, Any], owner_email: str, tasklist_id: str = DEFAULT_TASKLIST_ID
) -> Dict[str, Any]:
    """Map a Google task to the fields of a new local :class:`Task`."""
    owner = normalize_email(owner_email)
    google_updated = parse_rfc3339(item.get("updated"))
    parsed = parse_notes_fields(item.get("notes"))
    fields: Dict[str, Any] = {
        "title": _title_of(item),
        "task_type": IMPORTED_TASK_TYPE,
        "company_name": parsed.company_name or "",
        "brand": parsed.brand or "",
        "brand_id": None,
        "completed_approval": False,
        "priority": "medium",
        "due_date": _due_of(item, google_updated),
        "assigned_to": parsed.assigned_to or owner,
        "assigned_by": parsed.assigned_by or owner,
        "mirror_external_id": item.get("id") or None,
        "mirror_tasklist_id": tasklist_id,
        "mirror_owner_email": owner or None,
        "mirror_synced_at": utc_now(),
        "mirror_external_updated_at": google_updated or utc_now(),
        "mirror_last_error": None,
    }
    fields.update(_status_fields(item, google_updated))
    return fields


def effective_timestamp(task: Task) -> datetime:
    return (
        ensure_utc(task.mirror_external_updated_at)
        or ensure_utc(task.updated_at)
        or ensure_utc(task.created_at)
        or EPOCH
    )


class ImportService:
    """Pulls changed Google tasks for each connected account into the task store."""

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

    # ----- public API -----
    def run_once(self) -> ImportResult:
        eligible = filter_eligible(self.accounts.list_connected(), TASKS_SCOPE)
        result = ImportResult(accounts=len(eligible))
        for account in eligible:
            try:
                result.merge(self.import_for_account(account))
            except CredentialError as exc:
                logger.warning("Import skipped for %s: %s", account.email, exc)
                result.failed_accounts += 1
            except Exception as exc:
                logger.error("Import failed for %s: %s", account.email, exc)
                result.failed_accounts += 1
        logger.info("Google Tasks import finished: %s", result.as_dict())
        return result

    def import_for_account(
        self, account: Account, client: Optional[GoogleTasksClient] = None
    ) -> ImportResult:
        """Import one account. Errors propagate; the watermark only moves on success.

        The new watermark is the time the pull started, so edits made on
        Google while the lists are being read fall inside the next window.
        Re-reading an unchanged item is a no-op.
        """
        owner = normalize_email(account.email)
        result = ImportResult()
        if client is None:
            client = self.client_factory(account)

        updated_min = self.watermark_for(account)
        pulled_at = utc_now()
        tasklist_ids: List[str] = list(client.iter_tasklist_ids()) or [DEFAULT_TASKLIST_ID]

        for tasklist_id in tasklist_ids:
            for item in client.iter_tasks(tasklist_id, updated_min=updated_min):
                self._apply_item(item, owner, tasklist_id, result)

        self.accounts.set_watermark(account.id, pulled_at)
        return result

    def watermark_for(self, account: Account) -> datetime:
        return ensure_utc(account.tasks_last_pulled_at) or days_ago(self.settings.initial_lookback_days)

    def dedupe_external_id(self, external_id: str, owner_email: Optional[str] = None) -> int:
        """Keep the most recently synced row for ``external_id`` and delete the others."""
        key = str(external_id or "").strip()
        if not key:
            return 0
        rows = self.tasks.list_by_external_id(key)
        if len(rows) <= 1:
            return 0

        rows.sort(key=effective_timestamp, reverse=True)
        keep = rows[0]
        removed = self.tasks.delete_many(row.id for row in rows[1:] if row.id != keep.id)
        logger.info("Removed %s duplicate task(s) for Google task %s", removed, key)

        owner = normalize_email(owner_email)
        if owner:
            self.tasks.update(keep.id, mirror_owner_email=owner)
        return removed

    # ----- internal helpers -----
    def _apply_item(
        self, item: Dict[str, Any], owner: str, tasklist_id: str, result: ImportResult
    ) -> None:
        """Create or refresh the local row for one Google item.

        An existing row is overwritten, status included, whenever Google's
        ``updated`` is newer than the stored mirror timestamp. A local status
        change made after the last mirror write is not compared here and is
        lost to the import; status reconciliation only protects it when it
        runs first.
        """
        if item.get("deleted"):
            result.skipped_deleted += 1
            return
        external_id = item.get("id")
        if not external_id:
            return

        existing = self.tasks.find_by_external_id(external_id, owner_email=owner)
        if existing is None:
            existing = self.tasks.find_by_external_id(external_id)

        if existing is None:
            self.tasks.add(**build_imported_task(item, owner, tasklist_id))
            result.created += 1
            self.dedupe_external_id(external_id, owner)
            return

        google_updated = parse_rfc3339(item.get("updated")) or utc_now()
        known = ensure_utc(existing.mirror_external_updated_at)
        if known is not None and known >= google_updated:
            return

        next_owner = normalize_email(existing.mirror_owner_email) or owner
        parsed = parse_notes_fields(item.get("notes"))
        patch: Dict[str, Any] = {
            "title": _title_of(item),
            "due_date": _due_of(item, google_updated),
            "mirror_tasklist_id": tasklist_id,
            "mirror_owner_email": next_owner,
            "mirror_external_updated_at": google_updated,
            "mirror_synced_at": utc_now(),
            "mirror_last_error": None,
        }
        patch.update(_status_fields(item, google_updated))
        if parsed.company_name:
            patch["company_name"] = parsed.company_name
        if parsed.brand:
            patch["brand"] = parsed.brand
        if parsed.assigned_to:
            patch["assigned_to"] = parsed.assigned_to
        if parsed.assigned_by:
            patch["assigned_by"] = parsed.assigned_by

        self.tasks.update(existing.id, **patch)
        result.updated += 1
        self.dedupe_external_id(external_id, next_owner)


__all__ = [
    "ImportResult",
    "ImportService",
    "build_imported_task",
    "effective_timestamp",
]
