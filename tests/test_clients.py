"""
Tests for the CouchDB API client.

These tests use responses library to mock HTTP requests,
validating client behavior without making real API calls.
"""

import json
from urllib.parse import parse_qs, urlparse

import pytest
import requests
import responses

from bizsync.couchdb_client import (
    ChangesBatch,
    CouchDBClient,
    RemoteAPIError,
    RemoteConnectionError,
)


class TestCouchDBClient:
    """Test CouchDB server and database operations."""

    BASE_URL = "http://couch.test:5984"

    def make_client(self, **kwargs):
        return CouchDBClient(self.BASE_URL, "admin", "secret", max_retries=0, **kwargs)

    @responses.activate
    def test_test_connection_success(self):
        """Test connection check succeeds with valid response."""
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/",
            json={"couchdb": "Welcome", "version": "3.3.3"},
            status=200,
        )

        client = self.make_client()
        assert client.test_connection() is True

    @responses.activate
    def test_requests_use_basic_auth(self):
        responses.add(responses.GET, f"{self.BASE_URL}/", json={"couchdb": "Welcome"})

        self.make_client().ping()

        auth = responses.calls[0].request.headers["Authorization"]
        assert auth.startswith("Basic ")

    @responses.activate
    def test_test_connection_unauthorized(self):
        """A 401 is a failed probe, not an exception."""
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/",
            json={"error": "unauthorized"},
            status=401,
        )

        client = self.make_client()
        assert client.test_connection() is False

    @responses.activate
    def test_test_connection_unreachable(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/",
            body=requests.exceptions.ConnectionError("refused"),
        )

        assert self.make_client().test_connection() is False

    @responses.activate
    def test_timeout_is_connection_error(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/",
            body=requests.exceptions.ReadTimeout("slow"),
        )

        with pytest.raises(RemoteConnectionError, match="timed out"):
            self.make_client().ping()

    @responses.activate
    def test_trailing_slash_stripped(self):
        responses.add(responses.GET, f"{self.BASE_URL}/businesses/", json={"db_name": "businesses"})

        client = CouchDBClient(self.BASE_URL + "/", max_retries=0)

        assert client.base_url == self.BASE_URL
        assert client.database_exists("businesses") == (True, 200)

    @responses.activate
    def test_database_exists_not_found(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/articles/",
            json={"error": "not_found", "reason": "Database does not exist."},
            status=404,
        )

        assert self.make_client().database_exists("articles") == (False, 404)

    @responses.activate
    def test_database_exists_server_error_raises(self):
        responses.add(responses.GET, f"{self.BASE_URL}/articles/", status=500)

        with pytest.raises(RemoteAPIError) as exc_info:
            self.make_client().database_exists("articles")

        assert exc_info.value.status_code == 500

    @responses.activate
    def test_create_database(self):
        responses.add(responses.PUT, f"{self.BASE_URL}/businesses", json={"ok": True}, status=201)

        assert self.make_client().create_database("businesses") is True

    @responses.activate
    def test_create_database_already_exists(self):
        """HTTP 412 means the database already exists."""
        responses.add(
            responses.PUT,
            f"{self.BASE_URL}/businesses",
            json={"error": "file_exists"},
            status=412,
        )

        assert self.make_client().create_database("businesses") is False

    @responses.activate
    def test_delete_database(self):
        responses.add(responses.DELETE, f"{self.BASE_URL}/businesses", json={"ok": True})
        responses.add(responses.DELETE, f"{self.BASE_URL}/articles", status=404)

        client = self.make_client()
        assert client.delete_database("businesses") is True
        assert client.delete_database("articles") is False

    @responses.activate
    def test_count_documents(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/articles/_all_docs",
            json={"total_rows": 3, "offset": 0, "rows": []},
        )

        assert self.make_client().count_documents("articles") == 3


class TestReplicationPrimitives:
    """Test _changes, _all_docs keys lookup and _bulk_docs."""

    BASE_URL = "http://couch.test:5984"

    def make_client(self):
        return CouchDBClient(self.BASE_URL, "admin", "secret", max_retries=0)

    @responses.activate
    def test_get_changes_normal_feed(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/businesses/_changes",
            json={
                "results": [
                    {"seq": "1-a", "id": "b1", "changes": [{"rev": "1-x"}],
                     "doc": {"_id": "b1", "_rev": "1-x", "id": "b1", "name": "Shop A"}},
                ],
                "last_seq": "1-a",
                "pending": 0,
            },
        )

        batch = self.make_client().get_changes("businesses", since="0", limit=10)

        assert isinstance(batch, ChangesBatch)
        assert batch.last_seq == "1-a"
        assert len(batch.results) == 1

        params = parse_qs(urlparse(responses.calls[0].request.url).query)
        assert params["since"] == ["0"]
        assert params["limit"] == ["10"]
        assert params["include_docs"] == ["true"]
        assert "feed" not in params

    @responses.activate
    def test_get_changes_longpoll(self):
        responses.add(
            responses.GET,
            f"{self.BASE_URL}/businesses/_changes",
            json={"results": [], "last_seq": "5-z"},
        )

        batch = self.make_client().get_changes(
            "businesses", since="5-z", limit=10, longpoll_timeout=2.5
        )

        assert batch.results == []
        params = parse_qs(urlparse(responses.calls[0].request.url).query)
        assert params["feed"] == ["longpoll"]
        assert params["timeout"] == ["2500"]

    def test_changes_batch_integer_sequence(self):
        batch = ChangesBatch.from_api_response({"results": [], "last_seq": 42}, "0")
        assert batch.last_seq == "42"

    def test_changes_batch_missing_last_seq_keeps_since(self):
        batch = ChangesBatch.from_api_response({"results": []}, "7")
        assert batch.last_seq == "7"

    @responses.activate
    def test_fetch_revisions(self):
        responses.add(
            responses.POST,
            f"{self.BASE_URL}/articles/_all_docs",
            json={
                "total_rows": 2,
                "rows": [
                    {"id": "a1", "key": "a1", "value": {"rev": "2-abc"}},
                    {"id": "a2", "key": "a2", "value": {"rev": "3-def", "deleted": True}},
                    {"key": "a3", "error": "not_found"},
                ],
            },
        )

        revisions = self.make_client().fetch_revisions("articles", ["a1", "a2", "a3"])

        assert revisions == {
            "a1": {"rev": "2-abc", "deleted": False},
            "a2": {"rev": "3-def", "deleted": True},
        }
        body = json.loads(responses.calls[0].request.body)
        assert body == {"keys": ["a1", "a2", "a3"]}

    def test_fetch_revisions_empty_makes_no_request(self):
        assert self.make_client().fetch_revisions("articles", []) == {}

    @responses.activate
    def test_bulk_docs(self):
        responses.add(
            responses.POST,
            f"{self.BASE_URL}/articles/_bulk_docs",
            json=[
                {"ok": True, "id": "a1", "rev": "1-aaa"},
                {"id": "a2", "error": "conflict", "reason": "Document update conflict."},
                {"id": "a3", "error": "forbidden", "reason": "not allowed"},
            ],
            status=201,
        )

        result = self.make_client().bulk_docs(
            "articles", [{"_id": "a1"}, {"_id": "a2"}, {"_id": "a3"}]
        )

        assert result.written == ["a1"]
        assert result.conflicts == ["a2"]
        assert result.failed == {"a3": "not allowed"}

    @responses.activate
    def test_bulk_docs_error_status_raises(self):
        responses.add(
            responses.POST,
            f"{self.BASE_URL}/articles/_bulk_docs",
            json={"error": "unauthorized"},
            status=401,
        )

        with pytest.raises(RemoteAPIError) as exc_info:
            self.make_client().bulk_docs("articles", [{"_id": "a1"}])

        assert exc_info.value.status_code == 401
        assert "unauthorized" in exc_info.value.response_body
