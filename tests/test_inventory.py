"""Tests for inventory fetching."""

import httpx
import pytest

from taghost import __version__
from taghost.core.inventory import (
    DatadogClient,
    InventoryFetcher,
    downtime_hosts,
    is_active_downtime,
)
from taghost.exceptions import ConfigError, NetworkError

NOW = 1_700_000_000


def make_client(handler):
    return DatadogClient(
        "https://api.example.com/",
        "api-123",
        "app-456",
        transport=httpx.MockTransport(handler),
    )


def inventory_handler(tags, downtimes=None, requests=None):
    def handler(request):
        if requests is not None:
            requests.append(request)
        if request.url.path == "/api/v1/tags/hosts":
            return httpx.Response(200, json={"tags": tags})
        if request.url.path == "/api/v1/downtime":
            return httpx.Response(200, json=downtimes or [])
        return httpx.Response(404)

    return handler


class TestDatadogClient:
    """Tests for the HTTP client wrapper."""

    def test_requires_keys(self):
        with pytest.raises(ConfigError):
            DatadogClient("https://api.example.com", None, "app")
        with pytest.raises(ConfigError):
            DatadogClient("https://api.example.com", "api", "")

    def test_sends_keys_and_user_agent(self):
        requests = []
        with make_client(inventory_handler({}, requests=requests)) as client:
            client.get_json("/api/v1/tags/hosts")

        request = requests[0]
        assert request.url.params["api_key"] == "api-123"
        assert request.url.params["application_key"] == "app-456"
        assert request.headers["User-Agent"] == f"taghost/{__version__}"

    def test_non_success_status(self):
        with make_client(lambda request: httpx.Response(403)) as client:
            with pytest.raises(NetworkError) as exc_info:
                client.get_json("/api/v1/downtime")

        assert exc_info.value.status_code == 403
        assert "returns [403" in str(exc_info.value)

    def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with make_client(handler) as client:
            with pytest.raises(NetworkError, match="connection refused"):
                client.get_json("/api/v1/downtime")

    def test_invalid_json(self):
        with make_client(lambda request: httpx.Response(200, text="<html>")) as client:
            with pytest.raises(NetworkError, match="invalid JSON"):
                client.get_json("/api/v1/downtime")


class TestDowntimes:
    """Tests for downtime filtering rules."""

    def test_active_downtime(self):
        assert is_active_downtime({"active": True, "start": NOW - 10, "end": NOW + 10}, NOW)

    def test_open_ended_downtime(self):
        assert is_active_downtime({"active": True}, NOW)

    def test_inactive_downtime(self):
        assert not is_active_downtime({"active": False}, NOW)

    def test_monitor_downtime_is_ignored(self):
        assert not is_active_downtime({"active": True, "monitor_id": 42}, NOW)

    def test_future_downtime(self):
        assert not is_active_downtime({"active": True, "start": NOW + 60}, NOW)

    def test_finished_downtime(self):
        assert not is_active_downtime({"active": True, "end": NOW - 60}, NOW)

    def test_downtime_hosts_only_reads_host_scopes(self):
        downtimes = [
            {"active": True, "scope": ["host:web-2", "env:prod"]},
            {"active": False, "scope": ["host:db-1"]},
            {"active": True, "scope": None},
        ]
        assert downtime_hosts(downtimes, NOW) == {"web-2"}


class TestInventoryFetcher:
    """Tests for the filtered tag map."""

    def test_fetches_both_endpoints(self):
        requests = []
        client = make_client(inventory_handler({}, requests=requests))
        InventoryFetcher(client, clock=lambda: NOW).fetch_tag_map()
        client.close()

        assert sorted(r.url.path for r in requests) == [
            "/api/v1/downtime",
            "/api/v1/tags/hosts",
        ]

    def test_excludes_hosts_in_downtime(self, caplog):
        tags = {"role:web": ["web-1", "web-2"], "maintenance": ["web-2"]}
        downtimes = [{"active": True, "scope": ["host:web-2"]}]
        client = make_client(inventory_handler(tags, downtimes))

        with caplog.at_level("INFO", logger="taghost"):
            tag_map = InventoryFetcher(client, clock=lambda: NOW).fetch_tag_map()
        client.close()

        assert tag_map == {"role:web": {"web-1"}, "maintenance": set()}
        assert "ignore host(s) with scheduled downtimes: ['web-2']" in caplog.text

    def test_keeps_hosts_in_inactive_or_monitor_downtime(self):
        tags = {"role:web": ["web-1", "web-2"], "env:prod": ["web-1", "web-2"]}
        downtimes = [
            {"active": False, "scope": ["host:web-1"]},
            {"active": True, "monitor_id": 7, "scope": ["host:web-2"]},
        ]
        client = make_client(inventory_handler(tags, downtimes))

        tag_map = InventoryFetcher(client, clock=lambda: NOW).fetch_tag_map()
        client.close()

        assert tag_map == {"role:web": {"web-1", "web-2"}, "env:prod": {"web-1", "web-2"}}

    def test_error_is_fatal(self):
        def handler(request):
            if request.url.path == "/api/v1/downtime":
                return httpx.Response(500)
            return httpx.Response(200, json={"tags": {}})

        client = make_client(handler)
        with pytest.raises(NetworkError):
            InventoryFetcher(client).fetch_tag_map()
        client.close()

    def test_close_closes_client(self):
        client = make_client(inventory_handler({}))
        fetcher = InventoryFetcher(client)
        fetcher.close()
        with pytest.raises(RuntimeError):
            client.get_json("/api/v1/downtime")
