"""Cache synchronization.

Decides whether the durable cache can be reused and, if not, rebuilds it:

1. Build a fresh in-memory store
2. Fetch the filtered tag map
3. Load tags, hosts and associations in one transaction
4. Clone the committed store to a temporary file and rename it over the
   durable cache
5. Adopt the durable store
"""

import logging
import os
import tempfile
from collections.abc import Sequence
from enum import Enum
from pathlib import Path
from typing import Any

from ..exceptions import ConfigError
from ..storage.sqlite import Store
from ..utils.config import Settings
from ..utils.tags import split_tag
from .inventory import InventoryFetcher

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    """Lifecycle of the active cache handle."""

    COLD = "cold"
    CHECKING = "checking"
    REUSE = "reuse"
    REBUILD = "rebuild"
    READY = "ready"


class CacheSynchronizer:
    """Owns the one active cache store of the process.

    Example:
        >>> sync = CacheSynchronizer(settings, fetcher)
        >>> sync.execute("SELECT COUNT(*) FROM hosts")
        [(42,)]
    """

    def __init__(self, settings: Settings, fetcher: InventoryFetcher | None = None):
        """Initialize synchronizer.

        Args:
            settings: Runtime settings (paths, expiry, force, offline)
            fetcher: Inventory source; only needed when a rebuild happens
        """
        self.settings = settings
        self.fetcher = fetcher
        self.state = SyncState.COLD
        self._store: Store | None = None

    @property
    def store(self) -> Store:
        """The active store, opened or rebuilt on first access."""
        return self.update()

    def update(self, force: bool | None = None) -> Store:
        """Make sure a usable store is active.

        Args:
            force: Override settings.force for this call

        Returns:
            The active store

        Raises:
            CacheUnavailableError: If offline and no valid cache exists
            NetworkError: If a rebuild cannot fetch the inventory
        """
        if self._store is not None:
            return self._store

        self.state = SyncState.CHECKING
        path = self.settings.persistent_db
        path.parent.mkdir(parents=True, exist_ok=True)

        store = Store.open(
            path,
            expiry=self.settings.expiry,
            force=self.settings.force if force is None else force,
            offline=self.settings.offline,
        )
        if store is not None:
            self.state = SyncState.REUSE
        else:
            self.state = SyncState.REBUILD
            store = self.rebuild(path)

        self._store = store
        self.state = SyncState.READY
        return store

    def rebuild(self, path: Path) -> Store:
        """Rebuild the cache from the remote inventory and publish it to path."""
        if self.fetcher is None:
            raise ConfigError("api_key and application_key are required to rebuild the cache")

        memory_store = Store.memory()
        try:
            tag_map = self.fetcher.fetch_tag_map()
            self.load(memory_store, tag_map)
            return self.publish(memory_store, path)
        finally:
            memory_store.close()

    @staticmethod
    def load(store: Store, tag_map: dict[str, set[str]]) -> None:
        """Write a tag map into store as a single transaction."""
        known_tags = list(dict.fromkeys(split_tag(tag) for tag in tag_map))
        known_hosts = list(
            dict.fromkeys(host for hosts in tag_map.values() for host in sorted(hosts))
        )

        with store.transaction():
            # Associations join on names, so tags and hosts go first
            store.batch_insert_tags(known_tags)
            store.batch_insert_hosts(known_hosts)
            for tag, hosts in tag_map.items():
                store.associate_hosts_with_tag(tag, sorted(hosts))

        logger.info(f"loaded {len(known_hosts)} host(s) and {len(known_tags)} tag(s)")

    @staticmethod
    def publish(source: Store, path: Path) -> Store:
        """Copy a committed store over the durable file and open it.

        The copy goes to a temporary file first and is renamed into place,
        so readers never see a half-written cache.
        """
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f"{path.name}.", suffix=".tmp")
        os.close(fd)
        tmp_path = Path(tmp_name)

        try:
            with Store(tmp_path) as tmp_store:
                source.clone(tmp_store)
            os.replace(tmp_path, path)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise

        logger.debug(f"published cache to {path}")
        return Store(path)

    def execute(self, query: str, args: Sequence[Any] = ()) -> list[tuple]:
        """Run a statement against the active store."""
        return self.store.execute(query, args)

    def reload(self, force: bool | None = None) -> Store:
        """Drop the active store and go through the reuse/rebuild check again."""
        self.close()
        return self.update(force=force)

    def close(self) -> None:
        """Release the active store."""
        if self._store is not None:
            self._store.close()
            self._store = None
        self.state = SyncState.COLD

    def __enter__(self) -> "CacheSynchronizer":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
