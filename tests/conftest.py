import os
import tempfile
from datetime import datetime, timedelta

os.environ.setdefault("TASK_MIRROR_DATA_DIR", tempfile.mkdtemp(prefix="task-mirror-tests-"))

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from core.exceptions import TaskNotFoundError
from core.settings import TASKS_SCOPE, GoogleSyncSettings
from datetime_utils import UTC, to_rfc3339_utc
from services.account_repository import AccountRepository
from services.task_repository import TaskRepository

import models  # noqa: F401


OWNER = "owner@example.com"


class FakeClient:
    """In-memory stand-in for :class:`GoogleTasksClient`."""

    def __init__(self, items=None, tasklists=("@default",)):
        self.tasklists = list(tasklists)
        self.items = {}
        self.errors = {}
        self.clock = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
        self.patches = []
        self.inserted = []
        self.deleted = []
        self.list_calls = []
        self._next_id = 1
        for item in items or []:
            self.add(item)

    def add(self, item, tasklist_id="@default"):
        self.items[(tasklist_id, item["id"])] = dict(item)

    def _tick(self):
        self.clock += timedelta(minutes=1)
        return to_rfc3339_utc(self.clock)

    def iter_tasklist_ids(self):
        return iter(self.tasklists)

    def iter_tasks(self, tasklist_id="@default", *, updated_min=None):
        self.list_calls.append((tasklist_id, updated_min))
        return [dict(item) for (tl, _), item in self.items.items() if tl == tasklist_id]

    def get_task(self, tasklist_id, task_id):
        if task_id in self.errors:
            raise self.errors[task_id]
        try:
            return dict(self.items[(tasklist_id, task_id)])
        except KeyError:
            raise TaskNotFoundError("Not Found", status=404) from None

    def patch_task(self, tasklist_id, task_id, patch):
        key = (tasklist_id, task_id)
        if key not in self.items:
            raise TaskNotFoundError("Not Found", status=404)
        self.patches.append((tasklist_id, task_id, dict(patch)))
        item = self.items[key]
        item.update(patch)
        item["updated"] = self._tick()
        return dict(item)

    def insert_task(self, tasklist_id, body):
        new_id = f"g-new-{self._next_id}"
        self._next_id += 1
        item = dict(body, id=new_id, updated=self._tick())
        self.items[(tasklist_id, new_id)] = item
        self.inserted.append((tasklist_id, dict(body)))
        return dict(item)

    def delete_task(self, tasklist_id, task_id):
        self.deleted.append((tasklist_id, task_id))
        self.items.pop((tasklist_id, task_id), None)


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)

    def factory():
        return Session(engine)

    return factory


@pytest.fixture()
def tasks(session_factory):
    return TaskRepository(session_factory=session_factory)


@pytest.fixture()
def accounts(session_factory):
    return AccountRepository(session_factory=session_factory)


@pytest.fixture()
def settings():
    return GoogleSyncSettings(client_id="client", client_secret="secret")


@pytest.fixture()
def client():
    return FakeClient()


@pytest.fixture()
def connected_account(accounts):
    return accounts.add(
        OWNER,
        google_connected=True,
        google_refresh_token="refresh-token",
        google_scope=TASKS_SCOPE,
    )
