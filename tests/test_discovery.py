"""Tests for CouchDB endpoint discovery."""

import pytest
import requests
import responses

from bizsync.config import RemoteConfig
from bizsync.exceptions import NoEndpointAvailable
from bizsync.sync import EndpointDiscovery

PRIMARY = "http://x.test:5984"
SECONDARY = "http://y.test:5984"
SAVED = "http://saved.test:5984"


def unreachable(url: str) -> None:
    responses.add(
        responses.GET,
        f"{url}/",
        body=requests.exceptions.ConnectionError("unreachable"),
    )


def reachable(url: str) -> None:
    responses.add(responses.GET, f"{url}/", json={"couchdb": "Welcome"})


def probed_urls() -> list[str]:
    return [call.request.url for call in responses.calls]


@pytest.fixture
def discovery(cache):
    remote = RemoteConfig(
        candidate_urls=[PRIMARY, SECONDARY],
        username="admin",
        password="secret",
        timeout_seconds=1.0,
    )
    return EndpointDiscovery(remote, cache)


class TestDiscover:
    """Sequential candidate probing."""

    @responses.activate
    def test_first_reachable_candidate_wins(self, discovery, cache):
        unreachable(PRIMARY)
        reachable(SECONDARY)

        url = discovery.discover()

        assert url == SECONDARY
        assert discovery.current_url == SECONDARY
        assert cache.get_last_good_url() == SECONDARY
        assert probed_urls() == [f"{PRIMARY}/", f"{SECONDARY}/"]

    @responses.activate
    def test_next_discovery_probes_remembered_url_first(self, discovery):
        unreachable(PRIMARY)
        reachable(SECONDARY)
        discovery.discover()
        responses.calls.reset()

        assert discovery.discover() == SECONDARY
        assert probed_urls() == [f"{SECONDARY}/"]

    @responses.activate
    def test_stops_at_first_success(self, discovery):
        reachable(PRIMARY)
        reachable(SECONDARY)

        assert discovery.discover() == PRIMARY
        assert discovery.probe_count == 1

    @responses.activate
    def test_unauthorized_candidate_is_skipped(self, discovery):
        responses.add(responses.GET, f"{PRIMARY}/", json={"error": "unauthorized"}, status=401)
        reachable(SECONDARY)

        assert discovery.discover() == SECONDARY

    @responses.activate
    def test_saved_url_probed_first(self, discovery, cache):
        cache.set_last_good_url(SAVED)
        reachable(SAVED)
        reachable(PRIMARY)

        assert discovery.discover() == SAVED
        assert probed_urls() == [f"{SAVED}/"]

    @responses.activate
    def test_stale_saved_url_falls_back_to_candidates(self, discovery, cache):
        cache.set_last_good_url(SAVED)
        unreachable(SAVED)
        unreachable(PRIMARY)
        reachable(SECONDARY)

        assert discovery.discover() == SECONDARY
        assert cache.get_last_good_url() == SECONDARY
        assert probed_urls() == [f"{SAVED}/", f"{PRIMARY}/", f"{SECONDARY}/"]

    @responses.activate
    def test_saved_candidate_not_probed_twice(self, discovery, cache):
        cache.set_last_good_url(PRIMARY)
        unreachable(PRIMARY)
        reachable(SECONDARY)

        discovery.discover()

        assert probed_urls() == [f"{PRIMARY}/", f"{SECONDARY}/"]

    @responses.activate
    def test_nothing_reachable(self, discovery, cache):
        unreachable(PRIMARY)
        unreachable(SECONDARY)

        with pytest.raises(NoEndpointAvailable) as exc_info:
            discovery.discover()

        assert exc_info.value.tried == [PRIMARY, SECONDARY]
        assert discovery.current_url is None
        assert cache.get_last_good_url() is None

    @responses.activate
    def test_probe_sends_basic_auth(self, discovery):
        reachable(PRIMARY)

        discovery.discover()

        assert responses.calls[0].request.headers["Authorization"].startswith("Basic ")


class TestRediscover:
    @responses.activate
    def test_rediscover_forgets_saved_url(self, discovery, cache):
        cache.set_last_good_url(SAVED)
        discovery.current_url = SAVED
        reachable(SAVED)
        reachable(PRIMARY)

        assert discovery.rediscover() == PRIMARY
        assert probed_urls() == [f"{PRIMARY}/"]
        assert cache.get_last_good_url() == PRIMARY

    @responses.activate
    def test_ensure_url_reuses_current(self, discovery):
        discovery.current_url = PRIMARY

        assert discovery.ensure_url() == PRIMARY
        assert len(responses.calls) == 0

    def test_client_uses_regular_retries(self, discovery):
        client = discovery.client(PRIMARY)

        assert client.base_url == PRIMARY
        assert client.timeout >= discovery.remote.timeout_seconds
        client.close()

    def test_custom_client_factory(self, cache):
        calls = []

        class FakeClient:
            def __init__(self, url):
                calls.append(url)

            def test_connection(self):
                return True

            def close(self):
                pass

        discovery = EndpointDiscovery(
            RemoteConfig(candidate_urls=[PRIMARY + "/"]), cache, client_factory=FakeClient
        )

        assert discovery.discover() == PRIMARY
        assert calls == [PRIMARY]
