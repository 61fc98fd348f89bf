import json
from datetime import datetime

import httplib2
import pytest
from googleapiclient.errors import HttpError

from core.exceptions import ProviderError, TaskNotFoundError
from datetime_utils import UTC
from services.google_tasks import GoogleTasksClient, build_task_body, format_due, is_not_found


def _http_error(status, payload=None):
    content = json.dumps(payload or {"error": {"code": status, "message": f"HTTP {status}"}}).encode("utf-8")
    return HttpError(httplib2.Response({"status": status}), content)


class FakeRequest:
    def __init__(self, outcome):
        self.outcome = outcome

    def execute(self):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class FakeResource:
    """Mimics ``service.tasks()``: each call pops the next scripted outcome."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def _next(self, name, **kwargs):
        self.calls.append((name, kwargs))
        return FakeRequest(self.outcomes.pop(0))

    def get(self, **kwargs):
        return self._next("get", **kwargs)

    def list(self, **kwargs):
        return self._next("list", **kwargs)

    def patch(self, **kwargs):
        return self._next("patch", **kwargs)

    def insert(self, **kwargs):
        return self._next("insert", **kwargs)

    def delete(self, **kwargs):
        return self._next("delete", **kwargs)


class FakeService:
    def __init__(self, tasks=(), tasklists=()):
        self._tasks = FakeResource(tasks)
        self._tasklists = FakeResource(tasklists)

    def tasks(self):
        return self._tasks

    def tasklists(self):
        return self._tasklists


def _client(service):
    sleeps = []
    return GoogleTasksClient(service=service, sleep=sleeps.append), sleeps


def test_404_becomes_task_not_found():
    client, _ = _client(FakeService(tasks=[_http_error(404)]))

    with pytest.raises(TaskNotFoundError) as exc_info:
        client.get_task("@default", "missing")

    assert exc_info.value.status == 404


def test_not_found_payload_without_404_status():
    payload = {"error": {"code": 400, "status": "NOT_FOUND", "message": "gone"}}
    client, _ = _client(FakeService(tasks=[_http_error(400, payload)]))

    with pytest.raises(TaskNotFoundError):
        client.patch_task("@default", "g1", {"status": "completed"})


def test_retryable_errors_back_off_then_succeed():
    service = FakeService(tasks=[_http_error(503), _http_error(429), {"id": "g1"}])
    client, sleeps = _client(service)

    assert client.get_task("@default", "g1") == {"id": "g1"}
    assert sleeps == [1.0, 2.0]


def test_non_retryable_error_is_raised_as_provider_error():
    client, sleeps = _client(FakeService(tasks=[_http_error(403)]))

    with pytest.raises(ProviderError) as exc_info:
        client.get_task("@default", "g1")

    assert not isinstance(exc_info.value, TaskNotFoundError)
    assert exc_info.value.status == 403
    assert exc_info.value.args[0] == "HTTP 403"
    assert sleeps == []


def test_insert_is_not_retried_after_server_error():
    service = FakeService(tasks=[_http_error(503), {"id": "g-dup"}])
    client, sleeps = _client(service)

    with pytest.raises(ProviderError) as exc_info:
        client.insert_task("@default", {"title": "New"})

    assert exc_info.value.status == 503
    assert sleeps == []
    assert [name for name, _ in service.tasks().calls] == ["insert"]


def test_insert_is_not_retried_after_timeout():
    service = FakeService(tasks=[TimeoutError("timed out"), {"id": "g-dup"}])
    client, sleeps = _client(service)

    with pytest.raises(ProviderError):
        client.insert_task("@default", {"title": "New"})

    assert sleeps == []
    assert len(service.tasks().calls) == 1


def test_insert_retries_rate_limit():
    service = FakeService(tasks=[_http_error(429), {"id": "g1"}])
    client, sleeps = _client(service)

    assert client.insert_task("@default", {"title": "New"}) == {"id": "g1"}
    assert sleeps == [1.0]


def test_iter_tasks_follows_pages_and_requests_hidden_items():
    service = FakeService(
        tasks=[
            {"items": [{"id": "a"}], "nextPageToken": "p2"},
            {"items": [{"id": "b"}]},
        ]
    )
    client, _ = _client(service)

    items = list(client.iter_tasks("list-1", updated_min=datetime(2024, 5, 1, tzinfo=UTC)))

    assert [item["id"] for item in items] == ["a", "b"]
    first_call = service.tasks().calls[0][1]
    assert first_call["updatedMin"] == "2024-05-01T00:00:00.000Z"
    assert first_call["showDeleted"] is True
    assert first_call["showHidden"] is True
    assert service.tasks().calls[1][1]["pageToken"] == "p2"


def test_iter_tasklist_ids():
    client, _ = _client(FakeService(tasklists=[{"items": [{"id": "one"}, {"title": "no id"}, {"id": "two"}]}]))

    assert list(client.iter_tasklist_ids()) == ["one", "two"]


def test_delete_ignores_missing_task():
    client, _ = _client(FakeService(tasks=[_http_error(404)]))

    client.delete_task("@default", "gone")


def test_build_task_body_defaults():
    body = build_task_body(title="  ", notes="", due=datetime(2024, 5, 3, 17, 45, tzinfo=UTC), status="needsAction")

    assert body == {"title": "Untitled", "status": "needsAction", "due": "2024-05-03T00:00:00.000Z"}


def test_format_due_and_not_found_helpers():
    assert format_due(None) is None
    assert is_not_found(404, None) is True
    assert is_not_found(500, {"error": {"status": "INTERNAL"}}) is False
