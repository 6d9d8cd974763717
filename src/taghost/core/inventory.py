"""Inventory fetching from the remote authority.

Retrieves the tag -> hosts mapping and the scheduled downtimes in parallel,
then drops hosts that are currently in an active downtime.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from .. import __version__
from ..constants import APP_NAME, DEFAULT_TIMEOUT, DOWNTIME_PATH, TAGS_HOSTS_PATH
from ..exceptions import ConfigError, NetworkError
from ..utils.parallel import parallel_map, processor_count

logger = logging.getLogger(__name__)

HOST_SCOPE_PREFIX = "host:"


class DatadogClient:
    """Minimal read-only client for the inventory API.

    Built once at startup and handed to InventoryFetcher.

    Example:
        >>> client = DatadogClient("https://app.datadoghq.com", api_key, app_key)
        >>> client.get_json("/api/v1/tags/hosts")
        {'tags': {...}}
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str | None,
        application_key: str | None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize client.

        Args:
            endpoint: Base URL of the API
            api_key: API key sent as query parameter
            application_key: Application key sent as query parameter
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        if not api_key or not application_key:
            raise ConfigError("api_key and application_key are required to fetch inventory")

        self.endpoint = endpoint.rstrip("/")
        self._http_client = httpx.Client(
            base_url=self.endpoint,
            params={"api_key": api_key, "application_key": application_key},
            headers={"User-Agent": f"{APP_NAME}/{__version__}"},
            timeout=timeout,
            transport=transport,
        )

    def get_json(self, path: str) -> Any:
        """GET path and decode the JSON body.

        Raises:
            NetworkError: On transport failure or a non-success status
        """
        try:
            response = self._http_client.get(path)
        except httpx.RequestError as exc:
            raise NetworkError(f"GET {path} failed: {exc}") from exc

        if not response.is_success:
            raise NetworkError(
                f"GET {path} returns [{response.status_code}, ...]",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise NetworkError(f"GET {path} returned invalid JSON: {exc}") from exc

    def close(self) -> None:
        self._http_client.close()

    def __enter__(self) -> "DatadogClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def is_active_downtime(downtime: dict[str, Any], now: float) -> bool:
    """Whether a downtime currently mutes its hosts.

    Only downtimes not bound to a monitor count; a missing start or end
    leaves that side unbounded.
    """
    start = downtime.get("start")
    end = downtime.get("end")
    return bool(
        downtime.get("active")
        and downtime.get("monitor_id") is None
        and (start is None or start < now)
        and (end is None or now <= end)
    )


def downtime_hosts(downtimes: list[dict[str, Any]], now: float) -> set[str]:
    """Collect host names listed in the scope of active downtimes."""
    hosts: set[str] = set()
    for downtime in downtimes:
        if not is_active_downtime(downtime, now):
            continue
        for scope in downtime.get("scope") or []:
            if scope.startswith(HOST_SCOPE_PREFIX):
                hosts.add(scope[len(HOST_SCOPE_PREFIX) :])
    return hosts


class InventoryFetcher:
    """Builds the filtered tag map used to rebuild the cache.

    Example:
        >>> fetcher = InventoryFetcher(client)
        >>> fetcher.fetch_tag_map()
        {'role:web': {'web-1', 'web-2'}, ...}
    """

    REQUESTS = {
        "all_downtime": DOWNTIME_PATH,
        "all_tags": TAGS_HOSTS_PATH,
    }

    def __init__(
        self,
        client: DatadogClient,
        clock: Callable[[], float] = time.time,
        parallelism: int | None = None,
    ):
        self.client = client
        self._clock = clock
        self._parallelism = parallelism

    def fetch_responses(self) -> dict[str, Any]:
        """Issue both requests concurrently.

        Raises:
            NetworkError: If either request fails
        """
        requests = list(self.REQUESTS.items())

        def fetch(item: tuple[str, str]) -> tuple[str, Any]:
            name, path = item
            return name, self.client.get_json(path)

        return dict(
            parallel_map(fetch, requests, max_workers=self._parallelism or processor_count())
        )

    def fetch_tag_map(self) -> dict[str, set[str]]:
        """Fetch tags and hosts, minus hosts in an active downtime.

        Returns:
            Mapping of "name:value" tag strings to host names

        Raises:
            NetworkError: If the inventory cannot be fetched
        """
        responses = self.fetch_responses()

        excluded = downtime_hosts(responses.get("all_downtime") or [], self._clock())
        if excluded:
            logger.info(f"ignore host(s) with scheduled downtimes: {sorted(excluded)!r}")

        tags = (responses.get("all_tags") or {}).get("tags") or {}
        return {
            tag: {host for host in hosts if host not in excluded}
            for tag, hosts in tags.items()
        }

    def close(self) -> None:
        self.client.close()
