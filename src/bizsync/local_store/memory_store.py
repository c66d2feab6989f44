"""
In-memory, schema-validated document store.

The Local Store is the system of record for reads. Every write is recorded
in a per-collection change feed so the replication push channel can pick
up local mutations; writes applied by the pull channel carry
origin="remote" and are never pushed back.

Collections are guarded by a re-entrant lock because replication channels
write from their own threads.
"""

import copy
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..exceptions import (
    AlreadyExistsError,
    NotFoundError,
    SchemaValidationError,
    StoreClosedError,
)
from ..schemas import CollectionSchema

logger = logging.getLogger(__name__)

ORIGIN_LOCAL = "local"
ORIGIN_REMOTE = "remote"

ChangeListener = Callable[["ChangeEvent"], None]


@dataclass(frozen=True)
class ChangeEvent:
    """One write applied to a collection."""

    seq: int
    collection: str
    doc_id: str
    deleted: bool
    origin: str


class Collection:
    """A named set of documents keyed by the schema's primary key."""

    def __init__(self, schema: CollectionSchema):
        self.schema = schema
        self.name = schema.name
        self._docs: dict[str, dict] = {}
        # Latest event per document id, ordered by seq
        self._changes: dict[str, ChangeEvent] = {}
        self._seq = 0
        self._listeners: list[ChangeListener] = []
        self._lock = threading.RLock()
        self._closed = False

    # Internal helpers

    def _check_open(self) -> None:
        if self._closed:
            raise StoreClosedError(f"Collection '{self.name}' has been destroyed")

    def _validate(self, doc: dict) -> None:
        errors = self.schema.validate(doc)
        if errors:
            raise SchemaValidationError(self.name, errors)

    def _record(self, doc_id: str, deleted: bool, origin: str) -> ChangeEvent:
        self._seq += 1
        event = ChangeEvent(
            seq=self._seq,
            collection=self.name,
            doc_id=doc_id,
            deleted=deleted,
            origin=origin,
        )
        self._changes.pop(doc_id, None)
        self._changes[doc_id] = event
        return event

    def _notify(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning("Change listener failed on %s/%s: %s", self.name, event.doc_id, e)

    # Writes

    def insert(self, doc: dict, origin: str = ORIGIN_LOCAL) -> dict:
        """Insert a new document. Raises AlreadyExistsError on duplicate id."""
        self._validate(doc)
        doc_id = doc[self.schema.primary_key]
        with self._lock:
            self._check_open()
            if doc_id in self._docs:
                raise AlreadyExistsError(self.name, doc_id)
            self._docs[doc_id] = copy.deepcopy(doc)
            event = self._record(doc_id, False, origin)
        self._notify(event)
        return copy.deepcopy(doc)

    def upsert(self, doc: dict, origin: str = ORIGIN_LOCAL) -> bool:
        """Insert or replace a document.

        Returns:
            True if the stored document changed
        """
        self._validate(doc)
        doc_id = doc[self.schema.primary_key]
        with self._lock:
            self._check_open()
            if self._docs.get(doc_id) == doc:
                return False
            self._docs[doc_id] = copy.deepcopy(doc)
            event = self._record(doc_id, False, origin)
        self._notify(event)
        return True

    def update(self, doc_id: str, changes: dict[str, Any], origin: str = ORIGIN_LOCAL) -> dict:
        """Field-level modify of an existing document.

        The primary key is immutable; attempting to change it is a
        validation error.
        """
        pk = self.schema.primary_key
        if pk in changes and changes[pk] != doc_id:
            raise SchemaValidationError(self.name, [f"{pk} is immutable"])

        with self._lock:
            self._check_open()
            current = self._docs.get(doc_id)
            if current is None:
                raise NotFoundError(self.name, doc_id)
            updated = {**current, **changes}
            self._validate(updated)
            if updated == current:
                return copy.deepcopy(current)
            self._docs[doc_id] = updated
            event = self._record(doc_id, False, origin)
        self._notify(event)
        return copy.deepcopy(updated)

    def remove(self, doc_id: str, origin: str = ORIGIN_LOCAL) -> bool:
        """Remove a document.

        Returns:
            True if removed, False if it did not exist
        """
        with self._lock:
            self._check_open()
            if doc_id not in self._docs:
                return False
            del self._docs[doc_id]
            event = self._record(doc_id, True, origin)
        self._notify(event)
        return True

    def clear(self, origin: str = ORIGIN_LOCAL) -> int:
        """Remove every document. Returns the number removed."""
        with self._lock:
            self._check_open()
            ids = list(self._docs)
        removed = 0
        for doc_id in ids:
            if self.remove(doc_id, origin=origin):
                removed += 1
        return removed

    # Reads

    def get(self, doc_id: str) -> dict | None:
        with self._lock:
            self._check_open()
            doc = self._docs.get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def find(self, **selector: Any) -> list[dict]:
        """Return documents whose fields equal every selector value."""
        with self._lock:
            self._check_open()
            return [
                copy.deepcopy(doc)
                for doc in self._docs.values()
                if all(doc.get(k) == v for k, v in selector.items())
            ]

    def all(self) -> list[dict]:
        return self.find()

    def count(self) -> int:
        with self._lock:
            self._check_open()
            return len(self._docs)

    # Change feed

    @property
    def last_seq(self) -> int:
        with self._lock:
            return self._seq

    def changes_since(
        self,
        seq: int,
        origin: str | None = ORIGIN_LOCAL,
        limit: int | None = None,
    ) -> tuple[list[ChangeEvent], int]:
        """Collect change events after `seq`.

        Only the latest event of each document is kept, so a document shows
        up once and with the origin of its most recent write. A local insert
        followed by a remote-origin removal is therefore never pushed.

        Returns:
            Tuple of (events, checkpoint). The checkpoint skips past events
            of other origins so they are not scanned again.
        """
        with self._lock:
            self._check_open()
            pending = [e for e in self._changes.values() if e.seq > seq]
            checkpoint = self._seq if pending else seq

        events: list[ChangeEvent] = []
        for event in pending:
            if origin is not None and event.origin != origin:
                continue
            if limit is not None and len(events) >= limit:
                checkpoint = event.seq - 1
                break
            events.append(event)
        return events, checkpoint

    def has_change_since(self, doc_id: str, seq: int, origin: str = ORIGIN_LOCAL) -> bool:
        """True if the latest write to `doc_id` came from `origin` after `seq`."""
        with self._lock:
            event = self._changes.get(doc_id)
            return event is not None and event.seq > seq and event.origin == origin

    def apply_remote(self, doc_id: str, doc: dict | None, local_since: int) -> bool:
        """Apply a pulled write unless a newer local change is still unpushed.

        Args:
            doc_id: Document id
            doc: New document body, or None for a remote deletion
            local_since: Push checkpoint; local changes after it are pending

        Returns:
            True if the stored document changed
        """
        with self._lock:
            if self.has_change_since(doc_id, local_since, origin=ORIGIN_LOCAL):
                logger.debug("Keeping unpushed local %s/%s over pulled revision", self.name, doc_id)
                return False
            if doc is None:
                return self.remove(doc_id, origin=ORIGIN_REMOTE)
            return self.upsert(doc, origin=ORIGIN_REMOTE)

    def subscribe(self, listener: ChangeListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: ChangeListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._docs.clear()
            self._changes.clear()
            self._listeners.clear()


class LocalStore:
    """
    Explicit Local Store handle.

    Created once at startup and passed to every component that needs it;
    destroy() releases all collections and makes the handle unusable.
    """

    def __init__(self, name: str = "businessapp"):
        self.name = name
        self._collections: dict[str, Collection] = {}
        self._destroyed = False

    def add_collections(self, schemas: dict[str, CollectionSchema]) -> None:
        """Register collections; already-registered names are left untouched."""
        if self._destroyed:
            raise StoreClosedError(f"Local store '{self.name}' has been destroyed")
        for name, schema in schemas.items():
            if name in self._collections:
                continue
            self._collections[name] = Collection(schema)
            logger.debug("Registered collection %s (schema v%d)", name, schema.version)

    def collection(self, name: str) -> Collection:
        if self._destroyed:
            raise StoreClosedError(f"Local store '{self.name}' has been destroyed")
        try:
            return self._collections[name]
        except KeyError:
            raise KeyError(f"Unknown collection: {name}") from None

    @property
    def collection_names(self) -> list[str]:
        return list(self._collections)

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def destroy(self) -> None:
        """Drop all collections. Safe to call twice."""
        if self._destroyed:
            return
        for collection in self._collections.values():
            collection.close()
        self._collections.clear()
        self._destroyed = True
        logger.info("Local store '%s' destroyed", self.name)
