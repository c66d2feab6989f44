"""
Configuration management (SSOT).

All configuration for the sync subsystem is defined here. Each build
variant (development, production) carries its own static remote block:
an ordered list of candidate CouchDB base URLs, credentials, and the probe
timeout. There are no runtime flags beyond the environment overrides
documented on load_config().
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


BUSINESSES = "businesses"
ARTICLES = "articles"

DEFAULT_ENVIRONMENT = "development"

DEFAULT_CANDIDATE_URLS = [
    "http://localhost:5984",
    "http://10.0.2.2:5984",  # Android emulator host loopback
    "http://192.168.1.100:5984",
    "http://192.168.0.100:5984",
    "http://192.168.1.101:5984",
    "http://192.168.0.101:5984",
]


@dataclass
class RemoteConfig:
    """CouchDB remote replica configuration.

    candidate_urls are probed in order (no trailing slash needed); the
    last URL that answered is persisted and tried first on the next run.
    """

    candidate_urls: list[str] = field(default_factory=lambda: list(DEFAULT_CANDIDATE_URLS))
    username: str = ""
    password: str = ""
    # Health probe timeout (seconds)
    timeout_seconds: float = 5.0
    businesses_db: str = BUSINESSES
    articles_db: str = ARTICLES
    # Transport-level retries for regular requests (probes never retry)
    max_retries: int = 2
    backoff_factor: float = 0.5

    @property
    def databases(self) -> dict[str, str]:
        """Local collection name -> remote database name."""
        return {
            BUSINESSES: self.businesses_db,
            ARTICLES: self.articles_db,
        }


@dataclass
class ReplicationConfig:
    """Replication session settings."""

    # Documents per pull/push batch
    batch_size: int = 10
    # Continuous (long-poll) replication
    live: bool = True
    # Delay before flushing a collection after replication events
    flush_debounce_seconds: float = 1.0
    # Server-side long-poll wait for the _changes feed
    longpoll_timeout_seconds: float = 25.0
    # Wait between push checks and after channel errors
    idle_interval_seconds: float = 2.0
    # Wait between deleting and recreating remote databases
    settle_delay_seconds: float = 2.0


@dataclass
class Config:
    """Application configuration (SSOT)."""

    remote: RemoteConfig = field(default_factory=RemoteConfig)
    replication: ReplicationConfig = field(default_factory=ReplicationConfig)
    cache_db_path: Path = field(default_factory=lambda: Path("data/cache.db"))
    environment: str = DEFAULT_ENVIRONMENT
    store_name: str = "businessapp"

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.remote.candidate_urls:
            errors.append("remote.candidate_urls must contain at least one URL")
        for url in self.remote.candidate_urls:
            if not url.startswith(("http://", "https://")):
                errors.append(f"remote.candidate_urls: not an http(s) URL: {url}")

        if not self.remote.businesses_db or not self.remote.articles_db:
            errors.append("remote database names must not be empty")
        elif self.remote.businesses_db == self.remote.articles_db:
            errors.append("remote.businesses_db and remote.articles_db must differ")

        if self.remote.timeout_seconds <= 0:
            errors.append("remote.timeout_seconds must be positive")
        if self.replication.batch_size < 1:
            errors.append("replication.batch_size must be >= 1")
        if self.replication.flush_debounce_seconds < 0:
            errors.append("replication.flush_debounce_seconds must be >= 0")

        return errors


def _select_environment(data: dict, environment: str | None) -> tuple[str, dict]:
    """Pick the build-variant block from the loaded YAML."""
    name = environment or os.environ.get("BIZSYNC_ENV") or data.get("environment")
    name = name or DEFAULT_ENVIRONMENT
    environments = data.get("environments") or {}
    if environments and name not in environments:
        raise ConfigValidationError(
            f"Unknown environment '{name}' (known: {', '.join(sorted(environments))})"
        )
    return name, environments.get(name, {})


def load_config(config_path: Path, environment: str | None = None) -> Config:
    """
    Load configuration from YAML file.

    The file may hold an `environments:` mapping with one block per build
    variant; top-level `remote:` values are used as defaults for every
    variant.

    Environment variables can override config values:
    - BIZSYNC_ENV (build variant name)
    - COUCHDB_URLS (comma-separated candidate URLs)
    - COUCHDB_USERNAME
    - COUCHDB_PASSWORD
    - COUCHDB_TIMEOUT (probe timeout in seconds)
    - BIZSYNC_CACHE_DB (durable cache path)
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    env_name, env_data = _select_environment(data, environment)

    remote_data = dict(data.get("remote", {}))
    remote_data.update(env_data.get("remote", {}))

    urls_env = os.environ.get("COUCHDB_URLS", "")
    if urls_env:
        candidate_urls = [u.strip() for u in urls_env.split(",") if u.strip()]
    else:
        candidate_urls = list(remote_data.get("candidate_urls", DEFAULT_CANDIDATE_URLS))

    remote = RemoteConfig(
        candidate_urls=candidate_urls,
        username=os.environ.get("COUCHDB_USERNAME", remote_data.get("username", "")),
        password=os.environ.get("COUCHDB_PASSWORD", remote_data.get("password", "")),
        timeout_seconds=float(
            os.environ.get("COUCHDB_TIMEOUT", remote_data.get("timeout_seconds", 5.0))
        ),
        businesses_db=remote_data.get("businesses_db", BUSINESSES),
        articles_db=remote_data.get("articles_db", ARTICLES),
        max_retries=remote_data.get("max_retries", 2),
        backoff_factor=remote_data.get("backoff_factor", 0.5),
    )

    repl_data = dict(data.get("replication", {}))
    repl_data.update(env_data.get("replication", {}))
    replication = ReplicationConfig(
        batch_size=repl_data.get("batch_size", 10),
        live=repl_data.get("live", True),
        flush_debounce_seconds=repl_data.get("flush_debounce_seconds", 1.0),
        longpoll_timeout_seconds=repl_data.get("longpoll_timeout_seconds", 25.0),
        idle_interval_seconds=repl_data.get("idle_interval_seconds", 2.0),
        settle_delay_seconds=repl_data.get("settle_delay_seconds", 2.0),
    )

    cache_db = os.environ.get(
        "BIZSYNC_CACHE_DB", env_data.get("cache_db_path", data.get("cache_db_path", "data/cache.db"))
    )

    return Config(
        remote=remote,
        replication=replication,
        cache_db_path=Path(cache_db),
        environment=env_name,
        store_name=data.get("store_name", "businessapp"),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# bizsync configuration
#
# One block per build variant under `environments:`. Select with
# `environment:` below or the BIZSYNC_ENV environment variable.
# Candidate URLs are probed in order; the first one that answers wins and
# is remembered for the next start.

environment: development
store_name: businessapp
cache_db_path: "data/cache.db"

replication:
  batch_size: 10                  # Documents per pull/push batch
  live: true                      # Continuous replication
  flush_debounce_seconds: 1.0     # Re-flush delay after replication events
  longpoll_timeout_seconds: 25.0
  idle_interval_seconds: 2.0
  settle_delay_seconds: 2.0       # Wait between remote delete and recreate

environments:
  development:
    remote:
      candidate_urls:
        - "http://localhost:5984"
        - "http://10.0.2.2:5984"
        - "http://192.168.1.100:5984"
        - "http://192.168.0.100:5984"
      businesses_db: businesses
      articles_db: articles
      username: "admin"
      password: "CHANGE_ME"
      timeout_seconds: 5.0
  production:
    remote:
      candidate_urls:
        - "https://couchdb.example.com"
      businesses_db: businesses
      articles_db: articles
      username: "admin"
      password: "CHANGE_ME"
      timeout_seconds: 10.0
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
