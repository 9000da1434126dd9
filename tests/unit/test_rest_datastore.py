"""Unit tests for the REST datastore with a mocked HTTP session."""

from unittest.mock import MagicMock

import pytest
import requests

from enterprise_migration.datastore import InMemoryDatastore, RestDatastore, create_datastore
from enterprise_migration.datastore.base import eq, in_, lte
from enterprise_migration.exceptions import DatastoreError
from enterprise_migration.models.migration import DatastoreSettings


def make_response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.content = b"x" if payload is not None else b""
    response.json.return_value = payload
    response.text = text
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def store(session):
    return RestDatastore("https://db.example.com/", api_key="key", session=session)


class TestRequests:
    """Test request building."""

    def test_select_params(self, store, session):
        session.request.return_value = make_response(payload=[{"retry_id": "r1"}])

        rows = store.select(
            "migration_retry_queue",
            [in_("status", ["pending", "retrying"]), lte("next_retry_at", "2024-01-15T12:00:00")],
            order_by=["next_retry_at", "-created_at"],
            limit=50,
        )

        assert rows == [{"retry_id": "r1"}]
        method, url = session.request.call_args[0]
        kwargs = session.request.call_args[1]
        assert method == "GET"
        assert url == "https://db.example.com/rest/v1/migration_retry_queue"
        assert kwargs["params"] == [
            ("select", "*"),
            ("status", 'in.("pending","retrying")'),
            ("next_retry_at", "lte.2024-01-15T12:00:00"),
            ("order", "next_retry_at.asc,created_at.desc"),
            ("limit", "50"),
        ]

    def test_boolean_and_null_filters(self, store, session):
        session.request.return_value = make_response(payload=[])
        store.select("t", [eq("is_active", True), eq("batch_id", None)])

        params = session.request.call_args[1]["params"]
        assert ("is_active", "eq.true") in params
        assert ("batch_id", "eq.null") in params

    def test_insert_prefers_representation(self, store, session):
        session.request.return_value = make_response(payload=[{"id": 1}])

        assert store.insert("hc_staff", [{"id": 1}]) == [{"id": 1}]
        assert session.request.call_args[1]["headers"] == {"Prefer": "return=representation"}
        assert session.request.call_args[1]["json"] == [{"id": 1}]

    def test_empty_insert_skips_request(self, store, session):
        assert store.insert("hc_staff", []) == []
        session.request.assert_not_called()

    def test_insert_if_absent(self, store, session):
        session.request.return_value = make_response(payload=[])

        assert store.insert_if_absent("migration_dedup_candidates", {"pair_key": "k"}, "pair_key") is False
        kwargs = session.request.call_args[1]
        assert kwargs["params"] == [("on_conflict", "pair_key")]
        assert "ignore-duplicates" in kwargs["headers"]["Prefer"]

    def test_unfiltered_delete_refused(self, store, session):
        with pytest.raises(DatastoreError):
            store.delete("hc_staff", [])
        session.request.assert_not_called()


class TestErrors:
    """Test mapping of HTTP failures to DatastoreError."""

    def test_server_error_is_transient(self, store, session):
        session.request.return_value = make_response(503, payload={"message": "unavailable"})

        with pytest.raises(DatastoreError) as exc_info:
            store.insert("hc_staff", [{"id": 1}])
        assert exc_info.value.transient is True
        assert exc_info.value.code == "503"
        assert str(exc_info.value) == "unavailable"

    def test_conflict_is_not_transient(self, store, session):
        session.request.return_value = make_response(409, payload={"message": "duplicate key"})

        with pytest.raises(DatastoreError) as exc_info:
            store.insert("hc_staff", [{"id": 1}])
        assert exc_info.value.transient is False

    def test_non_json_error_body(self, store, session):
        response = make_response(500, text="<html>boom</html>")
        response.json.side_effect = ValueError("no json")
        session.request.return_value = response

        with pytest.raises(DatastoreError, match="boom"):
            store.select("t")

    def test_connection_error(self, store, session):
        session.request.side_effect = requests.ConnectionError("reset")

        with pytest.raises(DatastoreError) as exc_info:
            store.select("t")
        assert exc_info.value.code == "CONNECTION"
        assert exc_info.value.transient is True


class TestRpc:
    """Test the server-side compound operations."""

    def test_create_snapshot(self, store, session):
        session.request.return_value = make_response(payload="snap-1")

        assert store.create_snapshot(["hc_staff"], batch_id="b1") == "snap-1"
        method, url = session.request.call_args[0]
        assert url.endswith("/rest/v1/rpc/create_migration_snapshot")
        assert session.request.call_args[1]["json"]["p_tables"] == ["hc_staff"]

    def test_rollback_failure(self, store, session):
        session.request.return_value = make_response(payload={"success": False, "error": "Snapshot not found"})

        with pytest.raises(DatastoreError) as exc_info:
            store.rollback_to_snapshot("snap-1", "bad load", "alice", "bob")
        assert exc_info.value.code == "ROLLBACK_FAILED"

    def test_claim_returns_first_row(self, store, session):
        session.request.return_value = make_response(payload=[{"work_id": "w1"}])
        assert store.claim_work_item("worker-1") == {"work_id": "w1"}

        session.request.return_value = make_response(payload=[])
        assert store.claim_work_item("worker-1") is None

    def test_quality_error(self, store, session):
        session.request.return_value = make_response(payload={"error": "Batch not found"})
        with pytest.raises(DatastoreError):
            store.calculate_quality_score("missing")


class TestSessionSetup:
    """Test session configuration and factory selection."""

    def test_headers_and_retry_adapter(self):
        store = RestDatastore("https://db.example.com", api_key="secret", schema="migration")
        session = store._session

        assert session.headers["Authorization"] == "Bearer secret"
        assert session.headers["Accept-Profile"] == "migration"
        adapter = session.get_adapter("https://db.example.com/rest/v1/")
        assert adapter.max_retries.total == 3
        assert "POST" not in adapter.max_retries.allowed_methods

    def test_validate_connection(self, store, session):
        session.get.return_value = make_response(200, payload={})
        assert store.validate_connection() is True

        session.get.side_effect = requests.ConnectionError("down")
        assert store.validate_connection() is False

    def test_factory(self, monkeypatch):
        monkeypatch.delenv("MIGRATION_DATASTORE_URL", raising=False)
        assert isinstance(create_datastore(), InMemoryDatastore)

        remote = create_datastore(DatastoreSettings(url="https://db.example.com"))
        assert isinstance(remote, RestDatastore)
