"""
Reset, teardown and storage maintenance.

Ordering matters on teardown: sessions stop before the Local Store they
write into is destroyed, and the Durable Cache is never read again after
it has been cleared.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..exceptions import SyncError
from ..local_store import ORIGIN_REMOTE
from ..sync.controller import OperationResult

if TYPE_CHECKING:
    from ..durable_cache import DurableCache
    from ..local_store import LocalStore
    from ..sync.controller import SyncController, SyncStatus
    from ..sync.synchronizer import ConsistencySynchronizer

logger = logging.getLogger(__name__)


@dataclass
class StorageStats:
    """Durable snapshot sizes plus the current sync status."""

    counts: dict[str, int]
    sync_status: SyncStatus


class MaintenanceService:
    """Teardown and storage utilities."""

    def __init__(
        self,
        store: LocalStore,
        cache: DurableCache,
        synchronizer: ConsistencySynchronizer,
        controller: SyncController,
    ) -> None:
        self.store = store
        self.cache = cache
        self.synchronizer = synchronizer
        self.controller = controller

    def cleanup_and_reset(self) -> OperationResult:
        """Stop sessions, clear the durable cache, destroy the Local Store."""
        try:
            self.controller.stop_sync()
            self.synchronizer.cancel_pending()
            self.cache.clear()
            self.controller.discovery.current_url = None
            self.store.destroy()
        except SyncError as e:
            logger.error("Error clearing data: %s", e)
            return OperationResult(False, str(e))
        logger.info("All data cleared")
        return OperationResult(True, "All local data cleared")

    def permanently_delete_all_data(
        self,
        delete_remote: bool = True,
        recreate: bool = True,
    ) -> OperationResult:
        """
        Wipe local data and optionally the remote databases.

        Remote deletion runs first, while the endpoint is still known; the
        remote is given settle_delay_seconds before empty databases are
        recreated.
        """
        messages: list[str] = []
        if delete_remote:
            if recreate:
                remote = self.controller.recreate_remote_databases()
            else:
                remote = self.controller.delete_remote_databases()
            if not remote:
                return OperationResult(False, f"Remote deletion failed: {remote.message}")
            messages.append(remote.message)

        local = self.cleanup_and_reset()
        if not local:
            return local
        messages.append(local.message)
        return OperationResult(True, "; ".join(messages))

    def sync_storage_with_database(self) -> dict[str, int]:
        """Flush every collection into the durable cache."""
        return self.synchronizer.flush_all()

    def clear_local_cache(self) -> None:
        """Remove local documents and snapshots without destroying the store.

        Removals are recorded as remote-origin so a running session does not
        push them as deletions.
        """
        for name in self.store.collection_names:
            self.store.collection(name).clear(origin=ORIGIN_REMOTE)
            self.cache.remove_snapshot(name)
        logger.info("Local cache cleared")

    def refresh_from_server(self) -> OperationResult:
        """Drop local data and restart replication to pull a fresh copy."""
        if not self.controller.is_online:
            return OperationResult(False, "Cannot refresh from server while offline")
        self.controller.stop_sync()
        try:
            self.clear_local_cache()
        except SyncError as e:
            return OperationResult(False, str(e))
        return self.controller.force_sync_now()

    def get_storage_stats(self) -> StorageStats:
        names = self.store.collection_names
        try:
            counts = self.cache.get_stats(names)
        except SyncError as e:
            logger.error("Error getting storage stats: %s", e)
            counts = {name: 0 for name in names}
        return StorageStats(counts=counts, sync_status=self.controller.get_sync_status())
