"""Persistence helpers for accounts and their Google credentials."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional

from sqlmodel import select

from datetime_utils import utc_now
from models.account import Account
from services.task_repository import normalize_email
from storage.db import get_session


class AccountRepository:
    """Credential store: refresh token, granted scopes, connection flag, watermark."""

    def __init__(self, session_factory=get_session) -> None:
        self._session_factory = session_factory

    def get(self, account_id: int) -> Optional[Account]:
        with self._session_factory() as session:
            return session.get(Account, account_id)

    def get_by_email(self, email: str) -> Optional[Account]:
        key = normalize_email(email)
        if not key:
            return None
        with self._session_factory() as session:
            return session.exec(select(Account).where(Account.email == key)).first()

    def list_by_emails(self, emails: Iterable[str]) -> List[Account]:
        keys = sorted({normalize_email(e) for e in emails if normalize_email(e)})
        if not keys:
            return []
        with self._session_factory() as session:
            return list(session.exec(select(Account).where(Account.email.in_(keys))))

    def list_connected(self) -> List[Account]:
        with self._session_factory() as session:
            stmt = select(Account).where(Account.google_connected == True).order_by(Account.id)  # noqa: E712
            return list(session.exec(stmt))

    def add(self, email: str, **fields) -> Account:
        with self._session_factory() as session:
            account = Account(email=normalize_email(email), **fields)
            session.add(account)
            session.commit()
            session.refresh(account)
            return account

    def update(self, account_id: int, **fields) -> Optional[Account]:
        with self._session_factory() as session:
            account = session.get(Account, account_id)
            if account is None:
                return None
            for key, value in fields.items():
                setattr(account, key, value)
            account.updated_at = utc_now()
            session.add(account)
            session.commit()
            session.refresh(account)
            return account

    # ----- Google connection -----
    def set_watermark(self, account_id: int, pulled_at: Optional[datetime] = None) -> None:
        self.update(account_id, tasks_last_pulled_at=pulled_at or utc_now())

    def save_google_credentials(
        self,
        account_id: int,
        *,
        refresh_token: Optional[str],
        scopes: Iterable[str],
    ) -> Optional[Account]:
        return self.update(
            account_id,
            google_connected=True,
            google_refresh_token=refresh_token,
            google_scope=" ".join(s for s in scopes if s),
            google_connected_at=utc_now(),
        )

    def clear_google_credentials(self, account_id: int) -> Optional[Account]:
        return self.update(
            account_id,
            google_connected=False,
            google_refresh_token=None,
            google_scope="",
            google_connected_at=None,
        )


__all__ = ["AccountRepository"]
