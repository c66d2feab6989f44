"""
Consistency synchronizer.

Reconciles Local Store -> Durable Cache. Nothing here is transactional
across the two copies: a flush reads the whole collection and overwrites
its snapshot, so two racing flushes resolve as "last write wins".
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..exceptions import AlreadyExistsError, SyncError

if TYPE_CHECKING:
    from ..durable_cache import DurableCache
    from ..local_store import LocalStore

logger = logging.getLogger(__name__)


@dataclass
class LoadResult:
    """Outcome of loading durable snapshots into the Local Store."""

    loaded: int = 0
    duplicates: int = 0
    failed: int = 0


class DebouncedFlush:
    """Cancellable delayed flush of one collection.

    schedule() cancels any pending timer and starts a new one, so a burst of
    replication events produces a single flush after the last event.
    """

    def __init__(self, synchronizer: ConsistencySynchronizer, collection: str, delay: float):
        self.synchronizer = synchronizer
        self.collection = collection
        self.delay = delay
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def schedule(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(
                self.delay, self._fire, args=(self.synchronizer.generation,)
            )
            self._timer.daemon = True
            self._timer.name = f"flush-{self.collection}"
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _fire(self, generation: int) -> None:
        with self._lock:
            if self._timer is threading.current_thread():
                self._timer = None
        try:
            self.synchronizer.flush_if_current(self.collection, generation)
        except SyncError as e:
            logger.error("Debounced flush of %s failed: %s", self.collection, e)


class ConsistencySynchronizer:
    """Keeps the Durable Cache converging to the Local Store."""

    def __init__(
        self,
        store: LocalStore,
        cache: DurableCache,
        debounce_seconds: float = 1.0,
    ) -> None:
        self.store = store
        self.cache = cache
        self.debounce_seconds = debounce_seconds
        self._debouncers: dict[str, DebouncedFlush] = {}
        self._lock = threading.Lock()
        # Bumped by cancel_pending(); flushes scheduled earlier are dropped
        self.generation = 0
        self._flush_lock = threading.RLock()

    def load_durable_into_local(self, collections: list[str] | None = None) -> LoadResult:
        """
        Insert every persisted document into the Local Store.

        Duplicate ids are skipped silently so a reload is idempotent; any
        other per-record failure is logged and skipped.
        """
        result = LoadResult()
        for name in collections or self.store.collection_names:
            collection = self.store.collection(name)
            docs = self.cache.read_snapshot(name)
            for doc in docs:
                try:
                    collection.insert(doc)
                    result.loaded += 1
                except AlreadyExistsError:
                    result.duplicates += 1
                except SyncError as e:
                    result.failed += 1
                    logger.error("Error inserting %s from durable cache: %s", name, e)
            logger.info("Loaded %d %s from durable cache", len(docs), name)
        return result

    def flush_local_into_durable(self, collection: str) -> int:
        """Overwrite the snapshot of a collection. Returns documents written."""
        with self._flush_lock:
            docs = self.store.collection(collection).all()
            self.cache.write_snapshot(collection, docs)
        logger.debug("%s saved to durable cache (%d docs)", collection, len(docs))
        return len(docs)

    def flush_if_current(self, collection: str, generation: int) -> int | None:
        """Flush unless cancel_pending() ran after the flush was scheduled.

        Returns:
            Documents written, or None if the flush was dropped
        """
        with self._flush_lock:
            if generation != self.generation:
                logger.debug("Dropping stale flush of %s", collection)
                return None
            return self.flush_local_into_durable(collection)

    def reconcile(self, collection: str) -> int:
        """Flush after a mutation or replication event."""
        return self.flush_local_into_durable(collection)

    def flush_all(self) -> dict[str, int]:
        return {name: self.reconcile(name) for name in self.store.collection_names}

    # Debounced flushes after replication events

    def debouncer(self, collection: str) -> DebouncedFlush:
        with self._lock:
            if collection not in self._debouncers:
                self._debouncers[collection] = DebouncedFlush(
                    self, collection, self.debounce_seconds
                )
            return self._debouncers[collection]

    def schedule_flush(self, collection: str) -> None:
        self.debouncer(collection).schedule()

    def cancel_pending(self, collection: str | None = None) -> None:
        """Cancel scheduled flushes.

        Without a collection, this also waits for a flush already writing and
        invalidates any timer that has fired but not yet written, so nothing
        reaches the cache after this returns.
        """
        if collection is None:
            with self._flush_lock:
                self.generation += 1
        with self._lock:
            debouncers = list(self._debouncers.items())
        for name, debouncer in debouncers:
            if collection is None or name == collection:
                debouncer.cancel()

    def rebind(self, store: LocalStore) -> None:
        """Point at a freshly created Local Store after a reset."""
        self.cancel_pending()
        self.store = store
