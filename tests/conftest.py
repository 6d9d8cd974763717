"""Pytest configuration and fixtures."""

import stat
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from taghost.core.sync import CacheSynchronizer
from taghost.storage.sqlite import Store
from taghost.utils.config import Settings

TAG_MAP = {
    "role:web": {"web-1", "web-2"},
    "role:db": {"db-1"},
    "env:prod": {"web-1", "db-1"},
    "maintenance": {"web-2"},
}


class FakeFetcher:
    """Stands in for InventoryFetcher and counts how often it is used."""

    def __init__(self, tag_map=None, error=None):
        self.tag_map = TAG_MAP if tag_map is None else tag_map
        self.error = error
        self.calls = 0
        self.closed = False

    def fetch_tag_map(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return {tag: set(hosts) for tag, hosts in self.tag_map.items()}

    def close(self):
        self.closed = True


@pytest.fixture
def runner():
    """Create a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config_path(temp_dir):
    """Point the config file at a temporary location."""
    path = temp_dir / "config" / "config.toml"
    with patch("taghost.utils.config.get_config_path", return_value=path):
        yield path


@pytest.fixture
def settings(temp_dir):
    """Settings with the cache inside the temporary directory."""
    return Settings(confdir=temp_dir / "cache", expiry=180)


@pytest.fixture
def fetcher():
    """Fake inventory source with a small fixed tag map."""
    return FakeFetcher()


@pytest.fixture
def store():
    """In-memory store loaded with TAG_MAP."""
    memory_store = Store.memory()
    CacheSynchronizer.load(memory_store, TAG_MAP)
    yield memory_store
    memory_store.close()


@pytest.fixture
def synchronizer(settings, fetcher):
    """Synchronizer backed by the fake fetcher."""
    with CacheSynchronizer(settings, fetcher) as sync:
        yield sync


@pytest.fixture
def fake_ssh(temp_dir):
    """Executable that plays ssh: runs the remote command locally.

    The host name is exported as HOST so commands can behave per host.
    """
    script = temp_dir / "fake-ssh"
    script.write_text(
        "#!/bin/sh\n"
        'host="$1"\n'
        "shift\n"
        'if [ "$1" = "--" ]; then shift; fi\n'
        'HOST="$host" exec sh -c "$*"\n'
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(script)


@pytest.fixture
def make_fetcher():
    """Factory for fake fetchers with a custom tag map or error."""
    return FakeFetcher


@pytest.fixture
def tag_map():
    return {tag: set(hosts) for tag, hosts in TAG_MAP.items()}
