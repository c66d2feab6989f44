"""Test fixtures and utilities."""

from pathlib import Path

import pytest

from bizsync.config import Config, RemoteConfig, ReplicationConfig
from bizsync.durable_cache import DurableCache
from bizsync.local_store import LocalStore
from bizsync.schemas import SCHEMAS
from bizsync.sync import ConsistencySynchronizer

BASE_URL = "http://couch.test:5984"
FALLBACK_URL = "http://couch-fallback.test:5984"


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary durable cache path for testing."""
    return tmp_path / "test_cache.db"


@pytest.fixture
def cache(temp_db) -> DurableCache:
    return DurableCache(temp_db)


@pytest.fixture
def store() -> LocalStore:
    """Local store with the business and article collections registered."""
    local = LocalStore("test")
    local.add_collections(SCHEMAS)
    return local


@pytest.fixture
def synchronizer(store, cache) -> ConsistencySynchronizer:
    return ConsistencySynchronizer(store, cache, debounce_seconds=0.05)


@pytest.fixture
def remote_config() -> RemoteConfig:
    return RemoteConfig(
        candidate_urls=[BASE_URL, FALLBACK_URL],
        username="admin",
        password="secret",
        timeout_seconds=1.0,
        max_retries=0,
    )


@pytest.fixture
def config(remote_config, temp_db) -> Config:
    """Configuration with short delays and one-shot replication."""
    return Config(
        remote=remote_config,
        replication=ReplicationConfig(
            batch_size=10,
            live=False,
            flush_debounce_seconds=0.05,
            longpoll_timeout_seconds=0.1,
            idle_interval_seconds=0.05,
            settle_delay_seconds=0.0,
        ),
        cache_db_path=temp_db,
        environment="test",
    )


@pytest.fixture
def sample_business() -> dict:
    return {"id": "b1", "name": "Shop A"}


@pytest.fixture
def sample_article() -> dict:
    return {
        "id": "a1",
        "name": "Pen",
        "qty": 5,
        "selling_price": 1.5,
        "business_id": "b1",
    }
