"""
Replication manager and sessions.

One bidirectional session per collection against the discovered CouchDB
endpoint. A session owns a pull channel (the remote _changes feed) and a
push channel (local change events submitted via _bulk_docs), both bounded
by the same batch size. Successful batches schedule a debounced flush of
the collection into the Durable Cache; channel errors move the session to
Errored without tearing it down.

Lifecycle per collection:

    Stopped -> Starting -> Active -> Errored
    any state -> Stopped (stop())

Sessions are never mutated in place: start() always cancels the previous
session and builds a new one.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ..couchdb_client import CouchDBClient, RemoteError
from ..exceptions import (
    RemoteNotFound,
    ReplicationError,
    SchemaValidationError,
    SyncError,
)
from ..local_store import ORIGIN_LOCAL, ChangeEvent

if TYPE_CHECKING:
    from ..config import ReplicationConfig
    from ..local_store import Collection, LocalStore
    from .synchronizer import ConsistencySynchronizer

logger = logging.getLogger(__name__)

PULL = "pull"
PUSH = "push"


class SessionState(str, Enum):
    """State of a replication session."""

    STOPPED = "Stopped"
    STARTING = "Starting"
    ACTIVE = "Active"
    ERRORED = "Errored"


@dataclass(frozen=True)
class ReplicationEvent:
    """A batch successfully moved in one direction."""

    collection: str
    direction: str
    documents: int


BatchHandler = Callable[[ReplicationEvent], None]
ErrorHandler = Callable[[ReplicationError], None]


def document_from_remote(remote_doc: dict) -> dict:
    """Strip CouchDB metadata (_id, _rev, ...) from a pulled document."""
    doc = {k: v for k, v in remote_doc.items() if not k.startswith("_")}
    if "id" not in doc and "_id" in remote_doc:
        doc["id"] = remote_doc["_id"]
    return doc


class ReplicationSession:
    """Live bidirectional replication of one collection."""

    def __init__(
        self,
        collection: Collection,
        client: CouchDBClient,
        database: str,
        batch_size: int = 10,
        live: bool = True,
        longpoll_timeout: float = 25.0,
        idle_interval: float = 2.0,
    ):
        self.collection = collection
        self.collection_name = collection.name
        self.client = client
        self.database = database
        self.remote_url = f"{client.base_url}/{database}/"
        self.batch_size = batch_size
        self.live = live
        self.longpoll_timeout = longpoll_timeout
        self.idle_interval = idle_interval

        self.state = SessionState.STOPPED
        self.last_error: ReplicationError | None = None
        self.pull_checkpoint = "0"
        self.push_checkpoint = 0
        self.docs_pulled = 0
        self.docs_pushed = 0

        self._batch_handlers: list[BatchHandler] = []
        self._error_handlers: list[ErrorHandler] = []
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._threads: list[threading.Thread] = []

    # Handlers

    def on_batch(self, handler: BatchHandler) -> None:
        self._batch_handlers.append(handler)

    def on_error(self, handler: ErrorHandler) -> None:
        self._error_handlers.append(handler)

    def _emit_batch(self, direction: str, documents: int) -> None:
        event = ReplicationEvent(self.collection_name, direction, documents)
        for handler in list(self._batch_handlers):
            try:
                handler(event)
            except Exception as e:
                logger.warning("Batch handler failed for %s: %s", self.collection_name, e)

    def _handle_error(self, direction: str, error: Exception) -> None:
        self.state = SessionState.ERRORED
        self.last_error = ReplicationError(self.collection_name, f"{direction}: {error}")
        logger.error("%s sync error (%s): %s", self.collection_name, direction, error)
        for handler in list(self._error_handlers):
            try:
                handler(self.last_error)
            except Exception as e:
                logger.warning("Error handler failed for %s: %s", self.collection_name, e)

    # Channels

    def pull_once(self, longpoll: bool = False) -> int:
        """
        Read one batch from the remote _changes feed and apply it locally.

        Returns:
            Number of change rows received (0 means caught up)
        """
        batch = self.client.get_changes(
            self.database,
            since=self.pull_checkpoint,
            limit=self.batch_size,
            longpoll_timeout=self.longpoll_timeout if longpoll else None,
        )

        applied = 0
        for row in batch.results:
            doc_id = row.get("id", "")
            if doc_id.startswith("_design/"):
                continue
            doc = None
            if not row.get("deleted"):
                doc = document_from_remote(row.get("doc") or {"_id": doc_id})
            try:
                # A local change not yet pushed wins over the pulled revision
                if self.collection.apply_remote(doc_id, doc, self.push_checkpoint):
                    applied += 1
            except SchemaValidationError as e:
                logger.warning("Skipping remote %s document %s: %s", self.collection_name, doc_id, e)

        self.pull_checkpoint = batch.last_seq
        if applied:
            self.docs_pulled += applied
            logger.info("Received %d %s documents from CouchDB", applied, self.collection_name)
            self._emit_batch(PULL, applied)
        return len(batch.results)

    def push_once(self) -> int:
        """
        Submit one batch of local changes.

        The checkpoint stops before the first document the remote rejected
        (other than a conflict), so that document is retried on the next
        call.

        Returns:
            Number of changed documents handled (0 means nothing to push
            or the first document was rejected)
        """
        events, checkpoint = self.collection.changes_since(
            self.push_checkpoint, origin=ORIGIN_LOCAL, limit=self.batch_size
        )
        if not events:
            self.push_checkpoint = checkpoint
            return 0

        ids = [event.doc_id for event in events]
        revisions = self.client.fetch_revisions(self.database, ids)

        docs: list[dict] = []
        for doc_id in ids:
            current = self.collection.get(doc_id)
            remote = revisions.get(doc_id)
            live_rev = remote["rev"] if remote and not remote["deleted"] else None
            if current is None:
                if live_rev:
                    docs.append({"_id": doc_id, "_rev": live_rev, "_deleted": True})
                continue
            body = {"_id": doc_id, **current}
            if live_rev:
                body["_rev"] = live_rev
            docs.append(body)

        result = self.client.bulk_docs(self.database, docs)
        for doc_id in result.conflicts:
            logger.warning("Conflict pushing %s/%s, left to the remote", self.collection_name, doc_id)
        for doc_id, reason in result.failed.items():
            logger.warning("Failed to push %s/%s: %s", self.collection_name, doc_id, reason)

        handled = len(events)
        failed_seqs = [event.seq for event in events if event.doc_id in result.failed]
        if failed_seqs:
            first_failed = min(failed_seqs)
            checkpoint = first_failed - 1
            handled = sum(1 for event in events if event.seq < first_failed)

        self.push_checkpoint = checkpoint
        if result.written:
            self.docs_pushed += len(result.written)
            logger.info("Sent %d %s documents to CouchDB", len(result.written), self.collection_name)
            self._emit_batch(PUSH, len(result.written))
        return handled

    def run_once(self) -> None:
        """Drain the pull feed, then push every pending local change."""
        try:
            while self.pull_once() >= self.batch_size and not self._stop.is_set():
                pass
        except (RemoteError, SyncError, ValueError) as e:
            self._handle_error(PULL, e)
            return
        try:
            while self.push_once() and not self._stop.is_set():
                pass
        except (RemoteError, SyncError, ValueError) as e:
            self._handle_error(PUSH, e)

    def _pull_loop(self) -> None:
        while not self._stop.is_set():
            try:
                received = self.pull_once(longpoll=True)
            except (RemoteError, SyncError, ValueError) as e:
                if self._stop.is_set():
                    break
                self._handle_error(PULL, e)
                self._stop.wait(self.idle_interval)
                continue
            if not received:
                self._stop.wait(self.idle_interval)

    def _push_loop(self) -> None:
        while not self._stop.is_set():
            try:
                pushed = self.push_once()
            except (RemoteError, SyncError, ValueError) as e:
                if self._stop.is_set():
                    break
                self._handle_error(PUSH, e)
                self._stop.wait(self.idle_interval)
                continue
            if not pushed:
                self._wake.wait(self.idle_interval)
                self._wake.clear()

    def _one_shot(self) -> None:
        self.run_once()
        if self.state != SessionState.ERRORED:
            self.state = SessionState.STOPPED
        logger.info("One-shot replication of %s finished", self.collection_name)

    def _on_local_change(self, event: ChangeEvent) -> None:
        if event.origin == ORIGIN_LOCAL:
            self._wake.set()

    # Lifecycle

    def start(self) -> None:
        self._stop.clear()
        self.state = SessionState.ACTIVE
        self.collection.subscribe(self._on_local_change)

        if self.live:
            targets = [(self._pull_loop, PULL), (self._push_loop, PUSH)]
        else:
            targets = [(self._one_shot, "once")]
        for target, label in targets:
            thread = threading.Thread(
                target=target,
                name=f"replication-{self.collection_name}-{label}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
        logger.info("Replication of %s started against %s", self.collection_name, self.remote_url)

    def stop(self, timeout: float = 1.0) -> None:
        """Cancel both channels and unregister handlers. Idempotent."""
        self._stop.set()
        self._wake.set()
        self.collection.unsubscribe(self._on_local_change)
        self._batch_handlers.clear()
        self._error_handlers.clear()
        # Cooperative: an in-flight long-poll finishes on its own
        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join(timeout=timeout)
        self._threads.clear()
        self.client.close()
        if self.state != SessionState.STOPPED:
            self.state = SessionState.STOPPED
            logger.info("%s sync stopped", self.collection_name)

    def join(self, timeout: float | None = None) -> None:
        """Wait for the channel threads (used for one-shot sessions)."""
        for thread in list(self._threads):
            thread.join(timeout=timeout)

    @property
    def is_active(self) -> bool:
        return self.state in (SessionState.ACTIVE, SessionState.ERRORED)


ClientFactory = Callable[[str], CouchDBClient]


class ReplicationManager:
    """
    Owns at most one ReplicationSession per collection.

    Every start() first cancels the existing session for that collection,
    which structurally rules out duplicates.
    """

    def __init__(
        self,
        store: LocalStore,
        synchronizer: ConsistencySynchronizer,
        databases: dict[str, str],
        client_factory: ClientFactory,
        settings: ReplicationConfig,
    ) -> None:
        self.store = store
        self.synchronizer = synchronizer
        self.databases = databases
        self._client_factory = client_factory
        self.settings = settings
        self.sessions: dict[str, ReplicationSession] = {}
        self._starting: set[str] = set()
        self._lock = threading.RLock()

    @property
    def collections(self) -> list[str]:
        return list(self.databases)

    def _on_batch(self, event: ReplicationEvent) -> None:
        self.synchronizer.schedule_flush(event.collection)

    def _on_error(self, error: ReplicationError) -> None:
        logger.debug("Session for %s is now Errored", error.collection)

    def start(self, collection: str, base_url: str) -> ReplicationSession:
        """
        (Re)start replication of one collection.

        Raises:
            RemoteNotFound: the remote database does not answer GET /<db>/
            ReplicationError: the existence check could not reach the remote
        """
        with self._lock:
            self.stop(collection)
            database = self.databases[collection]
            self._starting.add(collection)
            client = self._client_factory(base_url)
            try:
                exists, status = client.database_exists(database)
            except RemoteError as e:
                client.close()
                raise ReplicationError(collection, f"existence check failed: {e}") from e
            finally:
                self._starting.discard(collection)

            if not exists:
                client.close()
                logger.error("%s database not found: %s", collection, status)
                raise RemoteNotFound(database, status)

            session = ReplicationSession(
                self.store.collection(collection),
                client,
                database,
                batch_size=self.settings.batch_size,
                live=self.settings.live,
                longpoll_timeout=self.settings.longpoll_timeout_seconds,
                idle_interval=self.settings.idle_interval_seconds,
            )
            session.on_batch(self._on_batch)
            session.on_error(self._on_error)
            self.sessions[collection] = session
            session.start()
            return session

    def start_all(self, base_url: str) -> dict[str, ReplicationSession]:
        """Start every collection; on any failure all sessions are stopped."""
        with self._lock:
            self.stop_all()
            started: dict[str, ReplicationSession] = {}
            try:
                for collection in self.collections:
                    started[collection] = self.start(collection, base_url)
            except SyncError:
                self.stop_all()
                raise
            return started

    def stop(self, collection: str) -> None:
        """Stop one collection's session; a no-op if none is running."""
        with self._lock:
            session = self.sessions.pop(collection, None)
        if session is not None:
            session.stop()

    def stop_all(self) -> None:
        """Stop every session. Waits for an in-progress start_all()."""
        with self._lock:
            for collection in list(self.sessions):
                self.stop(collection)

    def state(self, collection: str) -> SessionState:
        if collection in self._starting:
            return SessionState.STARTING
        session = self.sessions.get(collection)
        return session.state if session else SessionState.STOPPED

    def is_active(self, collection: str) -> bool:
        session = self.sessions.get(collection)
        return bool(session and session.is_active)

    def active_map(self) -> dict[str, bool]:
        return {name: self.is_active(name) for name in self.collections}

    def errors(self) -> dict[str, str]:
        return {
            name: str(session.last_error)
            for name, session in self.sessions.items()
            if session.last_error is not None
        }

    def join(self, timeout: float | None = None) -> None:
        for session in list(self.sessions.values()):
            session.join(timeout)

    def rebind(self, store: LocalStore) -> None:
        """Use a freshly created Local Store; sessions must already be stopped."""
        self.stop_all()
        self.store = store
