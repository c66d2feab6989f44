"""
SQLite-based durable cache implementation.

A small key/value table holding:
- one JSON array snapshot per collection ("<collection>_data")
- the last endpoint URL that answered a health probe ("couchdb_url")

Snapshots are only ever overwritten wholesale.
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..exceptions import DurablePersistenceError

logger = logging.getLogger(__name__)

LAST_GOOD_URL_KEY = "couchdb_url"


def snapshot_key(collection: str) -> str:
    """Key under which a collection snapshot is stored."""
    return f"{collection}_data"


class DurableCache:
    """
    On-device persisted snapshots.

    Every public method raises DurablePersistenceError on storage failure;
    callers decide whether that is fatal (it never is for CRUD).
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str):
        """
        Initialize the durable cache.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise DurablePersistenceError(f"Cannot open durable cache {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise DurablePersistenceError(f"Durable cache operation failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cache_entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """
            )
            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    # Raw key/value access

    def get_item(self, key: str) -> str | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT value FROM cache_entries WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def set_item(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO cache_entries (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                    updated_at = excluded.updated_at
            """,
                (key, value, now),
            )

    def remove_item(self, key: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))

    def keys(self) -> list[str]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT key FROM cache_entries ORDER BY key").fetchall()
        return [row["key"] for row in rows]

    def clear(self) -> None:
        """Remove every entry, including the persisted endpoint URL."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM cache_entries")
        logger.info("Durable cache cleared")

    # Collection snapshots

    def read_snapshot(self, collection: str) -> list[dict[str, Any]]:
        """Read the full snapshot of a collection (empty if never flushed)."""
        raw = self.get_item(snapshot_key(collection))
        if raw is None:
            return []
        try:
            docs = json.loads(raw)
        except json.JSONDecodeError as e:
            raise DurablePersistenceError(f"Corrupt snapshot for {collection}: {e}") from e
        if not isinstance(docs, list):
            raise DurablePersistenceError(
                f"Corrupt snapshot for {collection}: expected a JSON array"
            )
        return docs

    def write_snapshot(self, collection: str, docs: list[dict[str, Any]]) -> None:
        """Overwrite the snapshot of a collection."""
        try:
            payload = json.dumps(docs, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise DurablePersistenceError(f"Cannot serialize {collection}: {e}") from e
        self.set_item(snapshot_key(collection), payload)
        logger.debug("Saved %d %s to durable cache", len(docs), collection)

    def remove_snapshot(self, collection: str) -> None:
        self.remove_item(snapshot_key(collection))

    # Endpoint memory

    def get_last_good_url(self) -> str | None:
        return self.get_item(LAST_GOOD_URL_KEY)

    def set_last_good_url(self, url: str) -> None:
        self.set_item(LAST_GOOD_URL_KEY, url)

    def forget_last_good_url(self) -> None:
        self.remove_item(LAST_GOOD_URL_KEY)

    def get_stats(self, collections: list[str]) -> dict[str, int]:
        """Document counts per collection snapshot."""
        return {name: len(self.read_snapshot(name)) for name in collections}
