from datetime import datetime

import pytest

from conftest import OWNER
from core.exceptions import AccountNotFoundError, LocalTaskNotFoundError
from core.settings import TASKS_SCOPE, GoogleSyncSettings
from datetime_utils import UTC, to_rfc3339_utc
from services import sync_service as sync_module
from services.sync_service import SyncService


T0 = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)


@pytest.fixture()
def service(tasks, accounts, client, settings):
    return SyncService(tasks, accounts, client_factory=lambda account: client, settings=settings)


def _google_item(external_id="g1", status="needsAction"):
    return {"id": external_id, "title": "Remote", "status": status, "updated": to_rfc3339_utc(T0)}


def test_sync_now_imports_one_account(service, client, connected_account):
    client.add(_google_item())

    result = service.sync_now(connected_account.id)

    assert result["success"] is True
    assert result["data"]["created"] == 1
    assert result["data"]["accounts"] == 1


def test_sync_now_for_ineligible_account_returns_zero_counts(service, accounts, client):
    account = accounts.add("nobody@example.com", google_connected=False)
    client.add(_google_item())

    result = service.sync_now(account.id)

    assert result == {
        "success": True,
        "data": {"accounts": 0, "created": 0, "updated": 0, "skippedDeleted": 0, "failedAccounts": 0},
    }
    assert client.list_calls == []


def test_sync_now_unknown_account_is_a_failure(service):
    result = service.sync_now(999)

    assert result["success"] is False
    assert "999" in result["message"]


def test_sync_now_rejects_concurrent_run(service, client, connected_account, monkeypatch):
    overlapping = []
    list_ids = client.iter_tasklist_ids

    def sync_again_while_listing():
        overlapping.append(service.sync_now(connected_account.id))
        return list_ids()

    monkeypatch.setattr(client, "iter_tasklist_ids", sync_again_while_listing)

    result = service.sync_now(connected_account.id)

    assert result["success"] is True
    assert overlapping[0]["success"] is False
    assert "in progress" in overlapping[0]["message"]


def test_sync_now_forgets_finished_accounts(service, accounts, connected_account):
    other = accounts.add(
        "other@example.com", google_connected=True, google_refresh_token="rt", google_scope=TASKS_SCOPE
    )

    service.sync_now(connected_account.id)
    service.sync_now(other.id)
    service.sync_now(999)

    assert service._in_flight == set()
    assert service.sync_now(connected_account.id)["success"] is True


def test_on_task_changed_pushes_status(service, tasks, client, connected_account):
    client.add(_google_item())
    task = tasks.add(
        title="Remote",
        status="completed",
        status_updated_at=T0,
        mirror_external_id="g1",
        mirror_owner_email=OWNER,
    )

    service.on_task_changed(task.id, status_changed=True, due_changed=False)

    assert client.patches[0][2]["status"] == "completed"
    assert tasks.get(task.id).mirror_last_error is None


def test_on_task_changed_creates_for_assigner(service, tasks, client, connected_account):
    task = tasks.add(title="Fresh", assigned_by=OWNER, assigned_to="bob@example.com")

    service.on_task_changed(task.id)

    assert len(client.inserted) == 1
    assert "Attendees: owner@example.com, bob@example.com" in client.inserted[0][1]["notes"]
    assert tasks.get(task.id).mirror_owner_email == OWNER


def test_on_task_changed_records_push_failure(tasks, accounts, connected_account, settings):
    def factory(account):
        raise RuntimeError("network down")

    service = SyncService(tasks, accounts, client_factory=factory, settings=settings)
    task = tasks.add(title="Fresh", assigned_by=OWNER)

    service.on_task_changed(task.id)

    assert tasks.get(task.id).mirror_last_error == "network down"


def test_on_task_changed_is_silent_when_disabled(tasks, accounts, client, connected_account):
    service = SyncService(
        tasks, accounts, client_factory=lambda account: client, settings=GoogleSyncSettings(enabled=False)
    )
    task = tasks.add(title="Fresh", assigned_by=OWNER)

    service.on_task_changed(task.id)

    assert client.inserted == []


def test_push_task_now_uses_requester_and_recreates(service, tasks, client, connected_account):
    task = tasks.add(title="Lost", mirror_external_id="gone", status="pending")

    result = service.push_task_now(task.id, requester_email="Owner@Example.com")

    assert result["success"] is True
    assert result["data"]["recreated"] is True
    assert result["data"]["externalId"] == "g-new-1"
    assert result["data"]["ownerEmail"] == OWNER


def test_push_task_now_without_connected_owner_fails(service, tasks):
    task = tasks.add(title="Orphan", assigned_to="nobody@example.com")

    result = service.push_task_now(task.id)

    assert result["success"] is False
    assert "not connected" in result["message"]


def test_push_task_now_missing_task(service):
    result = service.push_task_now(404)

    assert result["success"] is False
    assert "404" in result["message"]


def test_soft_delete_removes_google_copy(service, tasks, client, connected_account):
    client.add(_google_item())
    task = tasks.add(title="Remote", mirror_external_id="g1", mirror_owner_email=OWNER)

    deleted = service.soft_delete_task(task.id, deleted_by="Admin@Example.com")

    assert deleted.is_deleted is True
    assert deleted.deleted_by == "admin@example.com"
    assert client.deleted == [("@default", "g1")]
    assert tasks.list_mirrored() == []


def test_soft_delete_unknown_task_raises(service):
    with pytest.raises(LocalTaskNotFoundError):
        service.soft_delete_task(12345)


def test_connect_keeps_existing_refresh_token(service, accounts, monkeypatch):
    account = accounts.add(OWNER, google_refresh_token="old-token")
    monkeypatch.setattr(sync_module, "exchange_code", lambda code, settings: (None, [TASKS_SCOPE]))

    status = service.connect_account(account.id, "auth-code")

    assert status["connected"] is True
    assert status["eligible"] is True
    assert accounts.get(account.id).google_refresh_token == "old-token"


def test_disconnect_clears_credentials(service, accounts, connected_account):
    status = service.disconnect_account(connected_account.id)

    assert status["connected"] is False
    assert status["eligible"] is False
    assert accounts.get(connected_account.id).google_refresh_token is None


def test_connection_status_unknown_account(service):
    with pytest.raises(AccountNotFoundError):
        service.connection_status(7)


def test_status_summary(service, tasks, connected_account):
    tasks.add(title="Mirrored", mirror_external_id="g1", mirror_owner_email=OWNER)
    tasks.add(title="Local only", mirror_last_error="boom")

    summary = service.status()

    assert summary["mirroredTasks"] == 1
    assert summary["unmirroredTasks"] == 1
    assert summary["tasksWithErrors"] == 1
    assert summary["eligibleAccounts"] == 1
    assert summary["scheduler"]["importEnabled"] is False
