"""
CouchDB API Client.

Provides:
- Server health probe
- Database existence check, create (412 tolerated), delete, row count
- _changes feed reads and _bulk_docs writes for replication
- Retry/backoff for transient network failures

All requests use HTTP Basic auth.
"""

from .client import (
    BulkResult,
    ChangesBatch,
    CouchDBClient,
    RemoteAPIError,
    RemoteConnectionError,
    RemoteError,
)

__all__ = [
    "BulkResult",
    "ChangesBatch",
    "CouchDBClient",
    "RemoteAPIError",
    "RemoteConnectionError",
    "RemoteError",
]
