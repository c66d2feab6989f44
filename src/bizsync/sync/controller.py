"""
Sync controller.

Owns the sync-enabled switch and reacts to connectivity transitions:
offline -> online runs one endpoint discovery and starts every session,
online -> offline stops every session immediately.

Operations that report status (discovery, sync toggling, remote database
provisioning) never raise: failures come back as OperationResult.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..couchdb_client import RemoteError
from ..exceptions import ConnectivityError, SyncError

if TYPE_CHECKING:
    from .connectivity import ConnectivityMonitor
    from .discovery import EndpointDiscovery
    from .replication import ReplicationManager

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Outcome of a status-reporting operation."""

    success: bool
    message: str

    def __bool__(self) -> bool:
        return self.success


@dataclass
class VerificationResult(OperationResult):
    """Outcome of checking whether the remote databases are empty."""

    is_empty: bool = False
    counts: dict[str, int] = field(default_factory=dict)


@dataclass
class SyncStatus:
    """Read-only snapshot of the sync subsystem."""

    is_online: bool
    sync_enabled: bool
    per_collection_active: dict[str, bool]
    current_url: str | None
    collection_databases: dict[str, str]
    session_states: dict[str, str] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


class SyncController:
    """Coordinates discovery, replication and connectivity."""

    def __init__(
        self,
        discovery: EndpointDiscovery,
        manager: ReplicationManager,
        monitor: ConnectivityMonitor,
        sync_enabled: bool = True,
        settle_delay_seconds: float = 2.0,
    ) -> None:
        self.discovery = discovery
        self.manager = manager
        self.monitor = monitor
        self.sync_enabled = sync_enabled
        self.settle_delay_seconds = settle_delay_seconds
        self._lock = threading.RLock()
        self.monitor.subscribe(self._on_connectivity_change)

    @property
    def is_online(self) -> bool:
        return self.monitor.is_online

    @property
    def current_url(self) -> str | None:
        return self.discovery.current_url

    def _require_online(self) -> None:
        if not self.is_online:
            raise ConnectivityError("Offline")

    # Connectivity

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            if self.sync_enabled:
                logger.info("Coming back online - detecting CouchDB...")
                self.go_online()
        else:
            logger.info("Going offline - stopping sync...")
            self.manager.stop_all()

    def go_online(self) -> OperationResult:
        """Discover an endpoint and start every session."""
        with self._lock:
            try:
                url = self.discovery.discover()
            except SyncError as e:
                logger.warning("No accessible CouchDB server found: %s", e)
                return OperationResult(False, str(e))
            return self._start_sessions(url)

    def _start_sessions(self, url: str) -> OperationResult:
        if not self.is_online or not self.sync_enabled:
            logger.info("Cannot start sync - offline or sync disabled")
            return OperationResult(False, "Offline or sync disabled")
        try:
            self.manager.start_all(url)
        except SyncError as e:
            logger.error("Error starting sync: %s", e)
            return OperationResult(False, str(e))
        if not self.is_online:
            # Went offline while the sessions were starting
            self.manager.stop_all()
            logger.info("Went offline during sync start - sessions stopped")
            return OperationResult(False, "Went offline while starting sync")
        return OperationResult(True, f"Sync started with {url}")

    def initialize(self) -> OperationResult:
        """Apply the initial connectivity state at boot."""
        logger.info("Initial network status: %s", "Online" if self.is_online else "Offline")
        if self.is_online and self.sync_enabled:
            return self.go_online()
        return OperationResult(False, "Offline" if not self.is_online else "Sync disabled")

    def stop_sync(self) -> None:
        self.manager.stop_all()

    # Status-reporting operations

    def force_sync_now(self) -> OperationResult:
        """Restart every session, discovering an endpoint if none is known."""
        with self._lock:
            try:
                self._require_online()
                url = self.discovery.ensure_url()
            except SyncError as e:
                return OperationResult(False, str(e))
            return self._start_sessions(url)

    def push_local_data(self, local_count: int) -> OperationResult:
        """Restart sessions so every local document is pushed again."""
        with self._lock:
            try:
                self._require_online()
                url = self.discovery.ensure_url()
            except SyncError as e:
                return OperationResult(False, str(e))
            if local_count == 0:
                return OperationResult(True, "No local data to sync")
            result = self._start_sessions(url)
            if not result:
                return result
            return OperationResult(True, f"Sync restarted for {local_count} documents")

    def set_sync_enabled(self, enabled: bool) -> OperationResult:
        self.sync_enabled = enabled
        logger.info("Sync %s", "enabled" if enabled else "disabled")
        if not enabled:
            self.manager.stop_all()
            return OperationResult(True, "Sync disabled")
        if self.is_online:
            return self.go_online()
        return OperationResult(True, "Sync enabled (will start when online)")

    def rediscover_endpoint(self) -> OperationResult:
        try:
            self._require_online()
            url = self.discovery.rediscover()
        except SyncError as e:
            return OperationResult(False, str(e))
        return OperationResult(True, f"Using CouchDB at {url}")

    def test_connectivity(self) -> OperationResult:
        """Probe the current endpoint, or discover one if none is known."""
        try:
            self._require_online()
            current = self.discovery.current_url
            if current is None:
                current = self.discovery.discover()
            elif not self.discovery.probe(current):
                return OperationResult(False, f"CouchDB not reachable at {current}")
        except SyncError as e:
            return OperationResult(False, str(e))
        return OperationResult(True, f"CouchDB reachable at {current}")

    def create_remote_databases(self) -> OperationResult:
        """Create every remote database (HTTP 412 means it already exists)."""
        try:
            self._require_online()
            url = self.discovery.ensure_url()
            client = self.discovery.client(url)
        except SyncError as e:
            return OperationResult(False, str(e))
        try:
            client.ping()
            for database in self.manager.databases.values():
                client.create_database(database)
        except (RemoteError, ValueError) as e:
            logger.error("Error creating CouchDB databases: %s", e)
            return OperationResult(False, str(e))
        finally:
            client.close()
        return OperationResult(True, f"Databases ready at {url}")

    def delete_remote_databases(self) -> OperationResult:
        """Stop sessions and DELETE every remote database."""
        try:
            self._require_online()
            url = self.discovery.ensure_url()
            client = self.discovery.client(url)
        except SyncError as e:
            return OperationResult(False, str(e))
        self.manager.stop_all()
        deleted = []
        try:
            for database in self.manager.databases.values():
                if client.delete_database(database):
                    deleted.append(database)
        except RemoteError as e:
            logger.error("Error deleting CouchDB databases: %s", e)
            return OperationResult(False, str(e))
        finally:
            client.close()
        return OperationResult(True, f"Deleted {', '.join(deleted) or 'nothing'} at {url}")

    def recreate_remote_databases(self) -> OperationResult:
        """Delete, wait for the remote to settle, then create empty databases."""
        result = self.delete_remote_databases()
        if not result:
            return result
        time.sleep(self.settle_delay_seconds)
        return self.create_remote_databases()

    def verify_remote_databases_empty(self) -> VerificationResult:
        try:
            self._require_online()
            url = self.discovery.ensure_url()
            client = self.discovery.client(url)
        except SyncError as e:
            return VerificationResult(False, str(e))
        counts: dict[str, int] = {}
        try:
            for database in self.manager.databases.values():
                counts[database] = client.count_documents(database)
        except (RemoteError, ValueError) as e:
            return VerificationResult(False, str(e), counts=counts)
        finally:
            client.close()
        summary = ", ".join(f"{db}: {n} docs" for db, n in counts.items())
        return VerificationResult(
            True,
            f"Database contents - {summary}",
            is_empty=all(n == 0 for n in counts.values()),
            counts=counts,
        )

    def get_sync_status(self) -> SyncStatus:
        return SyncStatus(
            is_online=self.is_online,
            sync_enabled=self.sync_enabled,
            per_collection_active=self.manager.active_map(),
            current_url=self.current_url,
            collection_databases=dict(self.manager.databases),
            session_states={
                name: self.manager.state(name).value for name in self.manager.collections
            },
            errors=self.manager.errors(),
        )

    def shutdown(self) -> None:
        self.monitor.unsubscribe(self._on_connectivity_change)
        self.manager.stop_all()
