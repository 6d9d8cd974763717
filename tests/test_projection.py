"""Tests for field projection."""

import pytest

from taghost.core.projection import FieldProjector, is_host_field
from taghost.core.sync import CacheSynchronizer
from taghost.storage.sqlite import Store
from taghost.utils.config import Settings


def host_ids(store, *names):
    ids = dict(
        (name, host_id) for host_id, name in store.execute("SELECT id, name FROM hosts;")
    )
    return [ids[name] for name in names]


@pytest.fixture
def small_store():
    """Two hosts: a is role:web and env:prod, b is role:web only."""
    store = Store.memory()
    CacheSynchronizer.load(store, {"role:web": {"a", "b"}, "env:prod": {"a"}})
    yield store
    store.close()


class TestProject:
    """Tests for reading field values."""

    def test_end_to_end_values(self, small_store):
        projector = FieldProjector(small_store)
        ids = host_ids(small_store, "a", "b")

        rows, fields = projector.project(ids, ["role"])
        assert fields == ["role"]
        assert [row[0] for row in rows] == ["web", "web"]

        rows, _ = projector.project(ids, ["env"])
        assert [row[0] for row in rows] == ["prod", None]

    def test_rows_follow_requested_order(self, small_store):
        projector = FieldProjector(small_store)
        rows, _ = projector.project(host_ids(small_store, "b", "a"), ["host", "env"])
        assert rows == [["b", None], ["a", "prod"]]

    def test_field_names_are_case_insensitive(self, small_store):
        rows, fields = FieldProjector(small_store).project(
            host_ids(small_store, "a"), ["ROLE", "Host"]
        )
        assert fields == ["ROLE", "Host"]
        assert rows == [["web", "a"]]

    def test_valueless_tag_shows_its_name(self, store):
        rows, _ = FieldProjector(store).project(host_ids(store, "web-2", "web-1"), ["maintenance"])
        assert rows == [["maintenance"], [None]]

    def test_repeated_tag_values_are_joined(self):
        with Store.memory() as store:
            CacheSynchronizer.load(store, {"role:web": {"a"}, "role:api": {"a"}})
            projector = FieldProjector(store, Settings(separator="|"))
            rows, _ = projector.project(host_ids(store, "a"), ["role"])

        assert sorted(rows[0][0].split("|")) == ["api", "web"]

    def test_no_hosts(self, small_store):
        assert FieldProjector(small_store).project([], ["role"]) == ([], ["role"])

    def test_host_names(self, small_store):
        ids = host_ids(small_store, "b", "a")
        assert FieldProjector(small_store).host_names(ids) == ["b", "a"]

    def test_many_hosts(self):
        names = [f"host-{i:04d}" for i in range(600)]
        with Store.memory() as store:
            CacheSynchronizer.load(store, {"role:web": set(names)})
            ids = host_ids(store, *names)
            rows, _ = FieldProjector(store).project(ids, ["host", "role"])

        assert [row[0] for row in rows] == names
        assert {row[1] for row in rows} == {"web"}


class TestDefaultFields:
    """Tests for field resolution when none are requested."""

    def test_host_by_default(self, store):
        rows, fields = FieldProjector(store).project(host_ids(store, "db-1"))
        assert fields == ["host"]
        assert rows == [["db-1"]]

    def test_primary_tag(self, store):
        projector = FieldProjector(store, Settings(primary_tag="role"))
        rows, fields = projector.project(host_ids(store, "db-1"))
        assert fields == ["role"]
        assert rows == [["db"]]

    def test_configured_tags(self, store):
        projector = FieldProjector(store, Settings(tags=["env:prod", "role"]))
        _, fields = projector.project(host_ids(store, "db-1"))
        assert fields == ["env", "role"]

    def test_listing(self, store):
        projector = FieldProjector(store, Settings(listing=True))
        rows, fields = projector.project(host_ids(store, "web-2"))
        assert fields == ["host", "maintenance", "role"]
        assert rows == [["web-2", "maintenance", "web"]]

    def test_listing_with_primary_tag(self, store):
        projector = FieldProjector(store, Settings(listing=True, primary_tag="role"))
        _, fields = projector.project(host_ids(store, "web-1", "db-1"))
        assert fields == ["role", "host", "env"]


class TestSearchFields:
    """Tests for columns derived from an expression."""

    def test_referenced_names(self, store):
        projector = FieldProjector(store)
        assert projector.search_fields(["role", "ROLE", "env"]) == ["host", "role", "env"]

    def test_primary_tag_first(self, store):
        projector = FieldProjector(store, Settings(primary_tag="role"))
        assert projector.search_fields(["role", "env"]) == ["role", "env"]

    def test_nothing_referenced(self, store):
        assert FieldProjector(store).search_fields([]) is None

    def test_settings_win(self, store):
        assert FieldProjector(store, Settings(listing=True)).search_fields(["role"]) is None


def test_is_host_field():
    assert is_host_field("host")
    assert is_host_field("HOST")
    assert not is_host_field("hostname")
