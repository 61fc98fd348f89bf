from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlmodel import select

from datetime_utils import utc_now
from models.task import Task
from storage.db import get_session


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


class TaskRepository:
    """Task store used by the sync engine; every write is a single-row commit."""

    def __init__(self, session_factory=get_session) -> None:
        self._session_factory = session_factory

    def get(self, task_id: int) -> Optional[Task]:
        with self._session_factory() as session:
            return session.get(Task, task_id)

    def find_by_external_id(
        self, external_id: str, *, owner_email: Optional[str] = None
    ) -> Optional[Task]:
        if not external_id:
            return None
        with self._session_factory() as session:
            stmt = select(Task).where(Task.mirror_external_id == external_id)
            if owner_email is not None:
                stmt = stmt.where(Task.mirror_owner_email == normalize_email(owner_email))
            return session.exec(stmt.order_by(Task.id)).first()

    def list_by_external_id(self, external_id: str) -> List[Task]:
        if not external_id:
            return []
        with self._session_factory() as session:
            stmt = select(Task).where(Task.mirror_external_id == external_id).order_by(Task.id)
            return list(session.exec(stmt))

    def list_mirrored(self) -> List[Task]:
        """Live tasks that already have a Google counterpart."""
        with self._session_factory() as session:
            stmt = (
                select(Task)
                .where(Task.mirror_external_id != None)  # noqa: E711
                .where(Task.is_deleted == False)  # noqa: E712
                .order_by(Task.id)
            )
            return list(session.exec(stmt))

    def list_by_owner(self, owner_email: str) -> List[Task]:
        with self._session_factory() as session:
            stmt = (
                select(Task)
                .where(Task.mirror_owner_email == normalize_email(owner_email))
                .order_by(Task.id)
            )
            return list(session.exec(stmt))

    def add(self, **fields) -> Task:
        with self._session_factory() as session:
            task = Task(**fields)
            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    def update(self, task_id: int, *, touch: bool = False, **fields) -> Optional[Task]:
        """Partial update. ``touch`` bumps ``updated_at`` for user-facing edits."""
        with self._session_factory() as session:
            obj = session.get(Task, task_id)
            if not obj:
                return None
            for key, value in fields.items():
                setattr(obj, key, value)
            if touch:
                obj.updated_at = utc_now()
            session.add(obj)
            session.commit()
            session.refresh(obj)
            return obj

    def update_many(self, task_ids: Iterable[int], **fields) -> int:
        ids = list(task_ids)
        if not ids:
            return 0
        with self._session_factory() as session:
            rows = session.exec(select(Task).where(Task.id.in_(ids))).all()
            for obj in rows:
                for key, value in fields.items():
                    setattr(obj, key, value)
                session.add(obj)
            session.commit()
            return len(rows)

    def delete(self, task_id: int) -> None:
        with self._session_factory() as session:
            obj = session.get(Task, task_id)
            if obj:
                session.delete(obj)
                session.commit()

    def delete_many(self, task_ids: Iterable[int]) -> int:
        ids = list(task_ids)
        if not ids:
            return 0
        with self._session_factory() as session:
            rows = session.exec(select(Task).where(Task.id.in_(ids))).all()
            for obj in rows:
                session.delete(obj)
            session.commit()
            return len(rows)

    def count(self, *, mirrored: Optional[bool] = None, with_errors: bool = False) -> int:
        with self._session_factory() as session:
            stmt = select(func.count()).select_from(Task).where(Task.is_deleted == False)  # noqa: E712
            if mirrored is True:
                stmt = stmt.where(Task.mirror_external_id != None)  # noqa: E711
            elif mirrored is False:
                stmt = stmt.where(Task.mirror_external_id == None)  # noqa: E711
            if with_errors:
                stmt = stmt.where(Task.mirror_last_error != None)  # noqa: E711
            return int(session.exec(stmt).one())

    def last_synced_at(self) -> Optional[datetime]:
        with self._session_factory() as session:
            return session.exec(select(func.max(Task.mirror_synced_at))).one()


__all__ = ["TaskRepository", "normalize_email"]
