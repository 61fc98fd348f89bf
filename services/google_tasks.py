"""Google Tasks client used by the synchronisation engine."""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, Optional

import httplib2
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from core.exceptions import ProviderError, TaskNotFoundError
from core.settings import DEFAULT_TASKLIST_ID, GOOGLE_SYNC, GoogleSyncSettings
from datetime_utils import ensure_utc, to_rfc3339_utc
from services.google_auth import refresh_credentials


logger = logging.getLogger("taskmirror.sync.google")

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}
_MAX_RETRIES = 4
_INITIAL_BACKOFF = 1.0
_MAX_BACKOFF = 16.0
_PAGE_SIZE = 100


def _http_status(exc: HttpError) -> Optional[int]:
    status = getattr(getattr(exc, "resp", None), "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _error_body(exc: HttpError) -> Any:
    content = getattr(exc, "content", None)
    if not content:
        return None
    try:
        return json.loads(content.decode("utf-8") if isinstance(content, bytes) else content)
    except (ValueError, UnicodeDecodeError):
        return content


def is_not_found(status: Optional[int], body: Any) -> bool:
    """Google signals a missing task by HTTP 404 or an error payload saying NOT_FOUND."""
    if status == 404:
        return True
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("status") == "NOT_FOUND" or error.get("code") == 404
    return False


def _translate(exc: HttpError) -> ProviderError:
    status = _http_status(exc)
    body = _error_body(exc)
    message = str(exc)
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        message = body["error"].get("message") or message
    if is_not_found(status, body):
        return TaskNotFoundError(message, status=status or 404, body=body)
    return ProviderError(message, status=status, body=body)


def format_due(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    # Google Tasks keeps only the date part of ``due``.
    normalized = ensure_utc(value).replace(hour=0, minute=0, second=0, microsecond=0)
    return to_rfc3339_utc(normalized)


class GoogleTasksClient:
    """Thin wrapper over the Tasks v1 API; no local state is touched here."""

    def __init__(
        self,
        credentials=None,
        *,
        service=None,
        timeout: float = GOOGLE_SYNC.request_timeout_sec,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if service is None:
            if credentials is None:
                raise ValueError("GoogleTasksClient needs credentials or a prebuilt service")
            http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=timeout))
            service = build("tasks", "v1", http=http, cache_discovery=False)
        self.service = service
        self._sleep = sleep

    @classmethod
    def for_refresh_token(
        cls, refresh_token: Optional[str], settings: GoogleSyncSettings = GOOGLE_SYNC
    ) -> "GoogleTasksClient":
        creds = refresh_credentials(refresh_token, settings)
        return cls(creds, timeout=settings.request_timeout_sec)

    # ------------------------------------------------------------------
    # Task lists
    def list_tasklists(
        self, page_token: Optional[str] = None, max_results: int = _PAGE_SIZE
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"maxResults": max_results}
        if page_token:
            params["pageToken"] = page_token
        return self._execute(self.service.tasklists().list, **params)

    def iter_tasklist_ids(self) -> Iterator[str]:
        page_token: Optional[str] = None
        while True:
            response = self.list_tasklists(page_token=page_token)
            for item in response.get("items") or []:
                if item.get("id"):
                    yield str(item["id"])
            page_token = response.get("nextPageToken")
            if not page_token:
                break

    # ------------------------------------------------------------------
    # Tasks
    def list_tasks(
        self,
        tasklist_id: str = DEFAULT_TASKLIST_ID,
        *,
        updated_min: Optional[datetime] = None,
        page_token: Optional[str] = None,
        max_results: int = _PAGE_SIZE,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "tasklist": tasklist_id,
            "showCompleted": True,
            "showDeleted": True,
            "showHidden": True,
            "maxResults": max_results,
        }
        if updated_min:
            params["updatedMin"] = to_rfc3339_utc(updated_min)
        if page_token:
            params["pageToken"] = page_token
        return self._execute(self.service.tasks().list, **params)

    def iter_tasks(
        self, tasklist_id: str = DEFAULT_TASKLIST_ID, *, updated_min: Optional[datetime] = None
    ) -> Iterator[Dict[str, Any]]:
        page_token: Optional[str] = None
        while True:
            response = self.list_tasks(tasklist_id, updated_min=updated_min, page_token=page_token)
            for item in response.get("items") or []:
                yield item
            page_token = response.get("nextPageToken")
            if not page_token:
                break

    def get_task(self, tasklist_id: str, task_id: str) -> Dict[str, Any]:
        if not task_id:
            raise ValueError("Missing task_id")
        return self._execute(self.service.tasks().get, tasklist=tasklist_id, task=task_id)

    def insert_task(self, tasklist_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._execute(
            self.service.tasks().insert, idempotent=False, tasklist=tasklist_id, body=dict(body)
        )

    def patch_task(self, tasklist_id: str, task_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        if not task_id:
            raise ValueError("Missing task_id")
        return self._execute(
            self.service.tasks().patch, tasklist=tasklist_id, task=task_id, body=dict(patch or {})
        )

    def delete_task(self, tasklist_id: str, task_id: str) -> None:
        if not task_id:
            return
        try:
            self._execute(self.service.tasks().delete, tasklist=tasklist_id, task=task_id)
        except TaskNotFoundError:
            return

    # ------------------------------------------------------------------
    def _execute(
        self, method: Callable[..., Any], *, idempotent: bool = True, **kwargs
    ) -> Dict[str, Any]:
        """Run a request, retrying rate limits and, for idempotent calls, 5xx and transport errors.

        A non-idempotent call may already have been applied when a 5xx or a
        timeout comes back, so only 429 is retried for it.
        """
        delay = _INITIAL_BACKOFF
        for attempt in range(_MAX_RETRIES):
            try:
                return method(**kwargs).execute() or {}
            except HttpError as exc:
                status = _http_status(exc)
                retryable = status in _RETRYABLE_STATUS and (idempotent or status == 429)
                if not retryable or attempt == _MAX_RETRIES - 1:
                    raise _translate(exc) from exc
                logger.info("Google Tasks returned %s, retrying in %.0fs", status, delay)
            except (OSError, httplib2.HttpLib2Error) as exc:
                # socket timeouts land here
                if not idempotent or attempt == _MAX_RETRIES - 1:
                    raise ProviderError(f"Google Tasks request failed: {exc}") from exc
                logger.info("Google Tasks transport error %s, retrying in %.0fs", exc, delay)
            self._sleep(delay)
            delay = min(delay * 2, _MAX_BACKOFF)
        return {}


def build_task_body(
    *,
    title: str,
    notes: Optional[str],
    due: Optional[datetime],
    status: str,
    completed: Optional[datetime] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"title": (title or "").strip() or "Untitled", "status": status}
    notes_value = (notes or "").strip()
    if notes_value:
        body["notes"] = notes_value
    due_value = format_due(due)
    if due_value:
        body["due"] = due_value
    if completed is not None:
        body["completed"] = to_rfc3339_utc(completed)
    return body


__all__ = ["GoogleTasksClient", "build_task_body", "format_due", "is_not_found"]
