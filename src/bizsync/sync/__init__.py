"""
Offline-first synchronization.

- discovery: pick a reachable CouchDB endpoint
- connectivity: edge-triggered online/offline transitions
- replication: one live bidirectional session per collection
- synchronizer: Local Store -> Durable Cache reconciliation
- controller: ties the above together and reports status
"""

from .connectivity import ConnectivityMonitor
from .controller import OperationResult, SyncController, SyncStatus, VerificationResult
from .discovery import EndpointDiscovery
from .replication import (
    ReplicationEvent,
    ReplicationManager,
    ReplicationSession,
    SessionState,
)
from .synchronizer import ConsistencySynchronizer, DebouncedFlush, LoadResult

__all__ = [
    "ConnectivityMonitor",
    "ConsistencySynchronizer",
    "DebouncedFlush",
    "EndpointDiscovery",
    "LoadResult",
    "OperationResult",
    "ReplicationEvent",
    "ReplicationManager",
    "ReplicationSession",
    "SessionState",
    "SyncController",
    "SyncStatus",
    "VerificationResult",
]
