"""
Local Store (in-memory).

Fast, queryable copy of every collection; the system of record for reads.
"""

from .memory_store import (
    ORIGIN_LOCAL,
    ORIGIN_REMOTE,
    ChangeEvent,
    Collection,
    LocalStore,
)

__all__ = [
    "ORIGIN_LOCAL",
    "ORIGIN_REMOTE",
    "ChangeEvent",
    "Collection",
    "LocalStore",
]
