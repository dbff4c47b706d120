"""
Tests for the remote document store client.

requests is replaced by a MagicMock session, so these tests check request
shapes and error mapping without a network.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from backend.errors import RemoteStoreError
from backend.remote_store import RemoteDocumentStore


def make_response(status_code=200, payload=None, content=b"x"):
    resp = MagicMock()
    resp.status_code = status_code
    resp.content = content if payload is not None or status_code != 204 else b""
    if isinstance(payload, Exception):
        resp.json.side_effect = payload
    else:
        resp.json.return_value = payload
    return resp


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def store(session):
    return RemoteDocumentStore("https://store.example.com/v1/", api_key="key-123", timeout=5, session=session)


class TestRequestShapes:
    def test_add_posts_encoded_data_with_server_timestamps(self, store, session):
        session.request.return_value = make_response(200, {"id": "abc", "data": {"title": "T"}})
        due = datetime(2024, 2, 20, tzinfo=timezone.utc)

        result = store.add("tasks", {"title": "T", "due_date": due}, server_timestamps=("created_at", "updated_at"))

        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert method == "POST"
        assert url == "https://store.example.com/v1/collections/tasks/documents"
        assert kwargs["json"]["data"]["due_date"] == {"__type__": "timestamp", "seconds": 1708387200, "nanos": 0}
        assert kwargs["json"]["serverTimestamps"] == ["created_at", "updated_at"]
        assert kwargs["headers"]["Authorization"] == "Bearer key-123"
        assert kwargs["timeout"] == 5
        assert result == {"title": "T", "id": "abc"}

    def test_set_uses_put_with_id(self, store, session):
        session.request.return_value = make_response(200, {"id": "uid-1", "data": {}})
        store.set("users", "uid-1", {"email": "a@b.c"})
        method, url = session.request.call_args.args
        assert method == "PUT"
        assert url.endswith("/collections/users/documents/uid-1")

    def test_update_uses_patch(self, store, session):
        session.request.return_value = make_response(200, {"id": "t1", "data": {"status": "done"}})
        assert store.update("tasks", "t1", {"status": "done"}, server_timestamps=("updated_at",))["status"] == "done"
        assert session.request.call_args.args[0] == "PATCH"
        assert session.request.call_args.kwargs["json"]["serverTimestamps"] == ["updated_at"]

    def test_list_sends_ordering_and_decodes(self, store, session):
        session.request.return_value = make_response(200, {"documents": [
            {"id": "a", "data": {"created_at": {"__type__": "timestamp", "seconds": 0, "nanos": 0}}},
        ]})
        records = store.list("tasks")
        assert session.request.call_args.kwargs["params"] == {"orderBy": "created_at", "direction": "desc"}
        assert records[0]["created_at"] == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_query_body(self, store, session):
        session.request.return_value = make_response(200, {"documents": []})
        when = datetime(2024, 2, 20, tzinfo=timezone.utc)
        store.query("finances", [{"field": "date", "op": ">=", "value": when}])
        method, url = session.request.call_args.args
        body = session.request.call_args.kwargs["json"]
        assert method == "POST"
        assert url.endswith("/collections/finances:query")
        assert body["where"][0]["op"] == ">="
        assert body["where"][0]["value"]["__type__"] == "timestamp"
        assert body["orderBy"] == "created_at"
        assert body["direction"] == "desc"

    def test_no_api_key_no_auth_header(self, session):
        session.request.return_value = make_response(200, {"documents": []})
        RemoteDocumentStore("https://store.example.com", session=session).list("tasks")
        assert "Authorization" not in session.request.call_args.kwargs["headers"]


class TestMissingDocuments:
    def test_get_404_returns_none(self, store, session):
        session.request.return_value = make_response(404, {"error": "not found"})
        assert store.get("tasks", "missing") is None

    def test_delete_404_is_fine(self, store, session):
        session.request.return_value = make_response(404, {})
        store.delete("tasks", "missing")

    def test_delete_204(self, store, session):
        session.request.return_value = make_response(204)
        store.delete("tasks", "t1")
        assert session.request.call_args.args[0] == "DELETE"


class TestErrorMapping:
    def test_timeout(self, store, session):
        session.request.side_effect = requests.exceptions.Timeout()
        with pytest.raises(RemoteStoreError, match="Timeout"):
            store.list("tasks")

    def test_connection_error(self, store, session):
        session.request.side_effect = requests.exceptions.ConnectionError()
        with pytest.raises(RemoteStoreError, match="ConnectionError"):
            store.get("tasks", "t1")

    def test_server_error_status(self, store, session):
        session.request.return_value = make_response(503, {})
        with pytest.raises(RemoteStoreError) as exc:
            store.add("tasks", {"title": "T"})
        assert exc.value.status_code == 503

    def test_update_404_is_an_error(self, store, session):
        session.request.return_value = make_response(404, {})
        with pytest.raises(RemoteStoreError):
            store.update("tasks", "missing", {"title": "T"})

    def test_invalid_json(self, store, session):
        session.request.return_value = make_response(200, ValueError("bad json"))
        with pytest.raises(RemoteStoreError, match="Invalid JSON"):
            store.list("tasks")

    def test_malformed_document(self, store, session):
        session.request.return_value = make_response(200, {"data": {}})
        with pytest.raises(RemoteStoreError, match="Malformed"):
            store.add("tasks", {"title": "T"})

    def test_ping(self, store, session):
        session.request.return_value = make_response(200, {"ok": True})
        assert store.ping() is True
        session.request.side_effect = requests.exceptions.ConnectionError()
        assert store.ping() is False

    def test_empty_base_url_rejected(self):
        with pytest.raises(ValueError):
            RemoteDocumentStore("")
