"""
CouchDB HTTP client implementation.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from requests.auth import HTTPBasicAuth
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """Base exception for CouchDB client errors."""
    pass


class RemoteAPIError(RemoteError):
    """API returned an error response."""
    def __init__(self, status_code: int, message: str, response_body: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"CouchDB API error {status_code}: {message}")


class RemoteConnectionError(RemoteError):
    """Failed to connect to CouchDB (includes timeouts)."""
    pass


@dataclass
class ChangesBatch:
    """One page of a database _changes feed."""
    results: list[dict[str, Any]]
    last_seq: str
    pending: int = 0

    @classmethod
    def from_api_response(cls, data: dict, since: str) -> "ChangesBatch":
        last_seq = data.get("last_seq", since)
        return cls(
            results=list(data.get("results", [])),
            # CouchDB 2+ uses opaque string sequences, 1.x uses integers
            last_seq=str(last_seq) if last_seq is not None else since,
            pending=data.get("pending", 0) or 0,
        )


@dataclass
class BulkResult:
    """Outcome of a _bulk_docs submission."""
    written: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


class CouchDBClient:
    """
    Client for the CouchDB HTTP API.

    Features:
    - Server health probe
    - Database existence / create / delete / document count
    - _changes feed (normal and long-poll)
    - Revision lookup and _bulk_docs submission
    - HTTP Basic auth on every request, automatic retry with backoff
    """

    DEFAULT_TIMEOUT = 10

    def __init__(
        self,
        base_url: str,
        username: str = "",
        password: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 2,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize CouchDB client.

        Args:
            base_url: CouchDB server URL (e.g., "http://192.168.1.100:5984")
            username: Basic auth user
            password: Basic auth password
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
        })
        if username or password:
            self.session.auth = HTTPBasicAuth(username, password)

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "PUT", "DELETE"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _url(self, database: str, path: str = "") -> str:
        return f"{self.base_url}/{database}{path}"

    def _request(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_data: Optional[Any] = None,
        timeout: Optional[float] = None,
        allowed_status: tuple[int, ...] = (),
    ) -> requests.Response:
        """Make an API request with error handling."""
        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                timeout=timeout or self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            raise RemoteConnectionError(f"Failed to connect to CouchDB at {self.base_url}: {e}")
        except requests.exceptions.Timeout as e:
            raise RemoteConnectionError(f"Request to CouchDB timed out: {e}")
        except requests.exceptions.RequestException as e:
            raise RemoteError(f"Request failed: {e}")

        if not response.ok and response.status_code not in allowed_status:
            try:
                error_body = response.text
            except Exception:
                error_body = None
            raise RemoteAPIError(
                status_code=response.status_code,
                message=response.reason or "",
                response_body=error_body,
            )

        return response

    def close(self) -> None:
        self.session.close()

    # Server

    def ping(self) -> dict:
        """GET the server root; raises on any failure."""
        response = self._request("GET", f"{self.base_url}/")
        return response.json()

    def test_connection(self) -> bool:
        """Test connection to the CouchDB server."""
        try:
            self.ping()
            return True
        except (RemoteError, ValueError) as e:
            logger.debug("CouchDB probe failed for %s: %s", self.base_url, e)
            return False

    # Databases

    def database_exists(self, database: str) -> tuple[bool, int]:
        """Check a database via GET /<db>/.

        Returns:
            Tuple of (exists, http_status)
        """
        response = self._request("GET", self._url(database, "/"), allowed_status=(404,))
        return response.ok, response.status_code

    def create_database(self, database: str) -> bool:
        """Create a database.

        Returns:
            True if created, False if it already existed (HTTP 412)
        """
        response = self._request("PUT", self._url(database), allowed_status=(412,))
        if response.status_code == 412:
            logger.info("Database %s already exists", database)
            return False
        logger.info("Database %s created", database)
        return True

    def delete_database(self, database: str) -> bool:
        """Delete a database.

        Returns:
            True if deleted, False if it did not exist (HTTP 404)
        """
        response = self._request("DELETE", self._url(database), allowed_status=(404,))
        if response.status_code == 404:
            logger.info("Database %s did not exist", database)
            return False
        logger.info("Database %s deleted", database)
        return True

    def count_documents(self, database: str) -> int:
        """Return total_rows from GET /<db>/_all_docs."""
        response = self._request("GET", self._url(database, "/_all_docs"))
        return int(response.json().get("total_rows", 0))

    # Replication primitives

    def get_changes(
        self,
        database: str,
        since: str = "0",
        limit: int = 10,
        longpoll_timeout: Optional[float] = None,
    ) -> ChangesBatch:
        """
        Read one page of the _changes feed with documents included.

        Args:
            database: Remote database name
            since: Checkpoint sequence from the previous page
            limit: Batch size
            longpoll_timeout: If set, use feed=longpoll and let the server
                hold the request open up to this many seconds

        Returns:
            ChangesBatch
        """
        params: dict[str, Any] = {
            "since": since,
            "limit": limit,
            "include_docs": "true",
            "style": "main_only",
        }
        request_timeout = self.timeout
        if longpoll_timeout:
            params["feed"] = "longpoll"
            params["timeout"] = int(longpoll_timeout * 1000)
            request_timeout = self.timeout + longpoll_timeout

        response = self._request(
            "GET", self._url(database, "/_changes"), params=params, timeout=request_timeout
        )
        return ChangesBatch.from_api_response(response.json(), since)

    def fetch_revisions(self, database: str, doc_ids: list[str]) -> dict[str, dict]:
        """
        Look up current remote revisions.

        Returns:
            Mapping of doc id -> {"rev": str, "deleted": bool} for documents
            the remote knows about (including deleted ones)
        """
        if not doc_ids:
            return {}
        response = self._request(
            "POST", self._url(database, "/_all_docs"), json_data={"keys": doc_ids}
        )
        revisions: dict[str, dict] = {}
        for row in response.json().get("rows", []):
            if "error" in row or "value" not in row:
                continue
            value = row["value"] or {}
            revisions[row["id"]] = {
                "rev": value.get("rev"),
                "deleted": bool(value.get("deleted", False)),
            }
        return revisions

    def bulk_docs(self, database: str, docs: list[dict]) -> BulkResult:
        """Submit documents via POST /<db>/_bulk_docs."""
        result = BulkResult()
        if not docs:
            return result
        response = self._request(
            "POST", self._url(database, "/_bulk_docs"), json_data={"docs": docs}
        )
        for item in response.json():
            doc_id = item.get("id", "")
            if item.get("ok") or ("rev" in item and "error" not in item):
                result.written.append(doc_id)
            elif item.get("error") == "conflict":
                result.conflicts.append(doc_id)
            else:
                result.failed[doc_id] = item.get("reason") or item.get("error", "unknown")
        return result
