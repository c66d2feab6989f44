"""
Services layer for the offline store.

- CatalogService: business / article CRUD with durable reconciliation
- MaintenanceService: reset, permanent deletion, storage stats
"""

from .catalog import CatalogService
from .maintenance import MaintenanceService, StorageStats

__all__ = [
    "CatalogService",
    "MaintenanceService",
    "StorageStats",
]
