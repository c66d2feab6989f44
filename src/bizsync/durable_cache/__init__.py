"""
Durable Cache (SQLite-based).

Persists a full JSON snapshot of each collection plus the last endpoint
URL that answered a health probe, so the app survives process restarts.
"""

from .sqlite_cache import LAST_GOOD_URL_KEY, DurableCache, snapshot_key

__all__ = [
    "LAST_GOOD_URL_KEY",
    "DurableCache",
    "snapshot_key",
]
