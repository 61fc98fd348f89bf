"""Decide which accounts may take part in Google Tasks synchronisation."""
from __future__ import annotations

from typing import Iterable, List, Optional

from core.settings import TASKS_SCOPE
from models.account import Account


def account_scopes(account: Optional[Account]) -> List[str]:
    raw = getattr(account, "google_scope", None) or ""
    return [scope for scope in raw.replace(",", " ").split() if scope]


def is_sync_eligible(account: Optional[Account], scope: str = TASKS_SCOPE) -> bool:
    """Connected, holding a refresh token, and granted the Tasks scope."""
    if account is None or not account.google_connected:
        return False
    if not (account.google_refresh_token or "").strip():
        return False
    return scope in account_scopes(account)


def filter_eligible(accounts: Iterable[Account], scope: str = TASKS_SCOPE) -> List[Account]:
    return [account for account in accounts if is_sync_eligible(account, scope)]


__all__ = ["account_scopes", "filter_eligible", "is_sync_eligible"]
