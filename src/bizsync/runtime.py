"""
Runtime wiring.

Boot order:
1. Local Store created and schemas registered
2. Durable Cache snapshots loaded into the Local Store
3. Connectivity state applied
4. if online: endpoint discovery, then replication sessions

The Local Store handle is created here once and passed to every component;
reset() is the only place a new one is created.
"""

import logging

from .config import Config, ConfigValidationError
from .durable_cache import DurableCache
from .exceptions import DurablePersistenceError, SyncError
from .local_store import LocalStore
from .schemas import SCHEMAS
from .services import CatalogService, MaintenanceService
from .sync import (
    ConnectivityMonitor,
    ConsistencySynchronizer,
    EndpointDiscovery,
    OperationResult,
    ReplicationManager,
    SyncController,
)

logger = logging.getLogger(__name__)


def create_local_store(config: Config) -> LocalStore:
    store = LocalStore(config.store_name)
    store.add_collections(SCHEMAS)
    return store


class SyncRuntime:
    """All sync components for one process."""

    def __init__(
        self,
        config: Config,
        store: LocalStore,
        cache: DurableCache,
        synchronizer: ConsistencySynchronizer,
        discovery: EndpointDiscovery,
        manager: ReplicationManager,
        monitor: ConnectivityMonitor,
        controller: SyncController,
    ):
        self.config = config
        self.store = store
        self.cache = cache
        self.synchronizer = synchronizer
        self.discovery = discovery
        self.manager = manager
        self.monitor = monitor
        self.controller = controller
        self.catalog = CatalogService(store, synchronizer)
        self.maintenance = MaintenanceService(store, cache, synchronizer, controller)

    @classmethod
    def boot(cls, config: Config, online: bool = False) -> "SyncRuntime":
        """
        Build and start the runtime.

        Args:
            config: Validated application configuration
            online: Initial platform connectivity signal
        """
        errors = config.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))

        logger.info("Creating local store with durable cache and CouchDB sync...")
        store = create_local_store(config)
        cache = DurableCache(config.cache_db_path)
        synchronizer = ConsistencySynchronizer(
            store, cache, debounce_seconds=config.replication.flush_debounce_seconds
        )
        try:
            loaded = synchronizer.load_durable_into_local()
            logger.info(
                "Loaded %d documents from durable cache (%d duplicates, %d failed)",
                loaded.loaded,
                loaded.duplicates,
                loaded.failed,
            )
        except DurablePersistenceError as e:
            logger.error("Error loading persisted data: %s", e)

        monitor = ConnectivityMonitor(online)
        discovery = EndpointDiscovery(config.remote, cache)
        manager = ReplicationManager(
            store,
            synchronizer,
            config.remote.databases,
            client_factory=discovery.client,
            settings=config.replication,
        )
        controller = SyncController(
            discovery,
            manager,
            monitor,
            settle_delay_seconds=config.replication.settle_delay_seconds,
        )

        runtime = cls(config, store, cache, synchronizer, discovery, manager, monitor, controller)
        controller.initialize()
        logger.info("Runtime ready")
        return runtime

    def set_online(self, online: bool) -> bool:
        """Feed the platform connectivity signal."""
        return self.monitor.update(online)

    def local_document_count(self) -> int:
        return sum(self.store.collection(n).count() for n in self.store.collection_names)

    def push_local_data(self) -> OperationResult:
        return self.controller.push_local_data(self.local_document_count())

    def reset(self) -> OperationResult:
        """cleanup_and_reset, then continue with a fresh empty Local Store."""
        result = self.maintenance.cleanup_and_reset()
        if not result:
            return result
        store = create_local_store(self.config)
        self.store = store
        self.synchronizer.rebind(store)
        self.manager.rebind(store)
        self.catalog.store = store
        self.maintenance.store = store
        return result

    def shutdown(self) -> None:
        """Stop sessions and polling, then flush every collection once."""
        self.monitor.stop_polling()
        self.controller.shutdown()
        self.synchronizer.cancel_pending()
        if self.store.destroyed:
            return
        try:
            self.synchronizer.flush_all()
        except SyncError as e:
            logger.error("Final flush failed: %s", e)
        logger.info("Runtime stopped")
