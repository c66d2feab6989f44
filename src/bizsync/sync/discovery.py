"""
Endpoint discovery.

Finds a reachable CouchDB base URL from the configured candidates:
1. the persisted last-good URL, if any, is probed first
2. otherwise candidates are probed sequentially in priority order
3. the first URL answering the authenticated GET / wins and is persisted

Probes are never run in parallel and never retried within one call, so a
low-bandwidth link only ever carries one probe at a time.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from ..couchdb_client import CouchDBClient
from ..exceptions import DurablePersistenceError, NoEndpointAvailable

if TYPE_CHECKING:
    from ..config import RemoteConfig
    from ..durable_cache import DurableCache

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], CouchDBClient]


class EndpointDiscovery:
    """Resolve and remember the remote endpoint URL."""

    def __init__(
        self,
        remote: RemoteConfig,
        cache: DurableCache,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """Initialize discovery.

        Args:
            remote: Remote configuration (candidates, credentials, timeout).
            cache: Durable cache holding the last-good URL.
            client_factory: Builds a client for a URL. Defaults to a
                CouchDBClient bounded by the probe timeout with no retries.
        """
        self.remote = remote
        self.cache = cache
        self._client_factory = client_factory or self._default_factory
        self.current_url: str | None = None
        self.probe_count = 0

    def _default_factory(self, url: str) -> CouchDBClient:
        return CouchDBClient(
            url,
            username=self.remote.username,
            password=self.remote.password,
            timeout=self.remote.timeout_seconds,
            max_retries=0,
        )

    @staticmethod
    def _clean(url: str) -> str:
        return url.rstrip("/")

    def probe(self, url: str) -> bool:
        """Send one bounded-timeout health probe to a base URL."""
        self.probe_count += 1
        client = self._client_factory(self._clean(url))
        try:
            ok = client.test_connection()
        finally:
            client.close()
        if ok:
            logger.info("CouchDB accessible at %s", url)
        else:
            logger.info("CouchDB not reachable at %s", url)
        return ok

    def _saved_url(self) -> str | None:
        try:
            return self.cache.get_last_good_url()
        except DurablePersistenceError as e:
            logger.warning("Cannot read saved endpoint: %s", e)
            return None

    def discover(self) -> str:
        """
        Find a working endpoint.

        Returns:
            The base URL (no trailing slash)

        Raises:
            NoEndpointAvailable: if no candidate answered
        """
        logger.info("Auto-detecting CouchDB URL...")
        tried: list[str] = []

        saved = self._saved_url()
        if saved:
            logger.debug("Trying saved URL %s", saved)
            tried.append(saved)
            if self.probe(saved):
                self.current_url = self._clean(saved)
                return self.current_url

        for url in self.remote.candidate_urls:
            if saved and self._clean(url) == self._clean(saved):
                continue
            tried.append(url)
            if self.probe(url):
                self.current_url = self._clean(url)
                try:
                    self.cache.set_last_good_url(self.current_url)
                except DurablePersistenceError as e:
                    logger.warning("Cannot persist endpoint %s: %s", self.current_url, e)
                logger.info("Found working CouchDB URL: %s", self.current_url)
                return self.current_url

        self.current_url = None
        logger.warning("No working CouchDB URL found")
        raise NoEndpointAvailable(tried)

    def rediscover(self) -> str:
        """Forget the current and persisted URL, then discover from scratch."""
        logger.info("Manual CouchDB URL rediscovery triggered")
        self.forget()
        return self.discover()

    def forget(self) -> None:
        self.current_url = None
        try:
            self.cache.forget_last_good_url()
        except DurablePersistenceError as e:
            logger.warning("Cannot clear saved endpoint: %s", e)

    def ensure_url(self) -> str:
        """Return the current URL, discovering one if none is known."""
        if self.current_url:
            return self.current_url
        return self.discover()

    def client(self, url: str | None = None) -> CouchDBClient:
        """Client for regular (retrying) requests against an endpoint."""
        return CouchDBClient(
            url or self.ensure_url(),
            username=self.remote.username,
            password=self.remote.password,
            timeout=max(self.remote.timeout_seconds, CouchDBClient.DEFAULT_TIMEOUT),
            max_retries=self.remote.max_retries,
            backoff_factor=self.remote.backoff_factor,
        )
