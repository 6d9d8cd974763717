"""Field projection over cached hosts.

Turns a list of host ids into a table with one column per requested
field. The synthetic "host" field reads host names; every other field is
a tag name whose values are read through the association table.
"""

import logging
from collections.abc import Sequence
from typing import Any, Protocol

from ..constants import HOST_FIELD, SQLITE_LIMIT_COMPOUND_SELECT
from ..storage.sqlite import chunked, placeholders
from ..utils.config import Settings
from ..utils.tags import display_tag, split_tag

logger = logging.getLogger(__name__)

# One parameter is taken by the GROUP_CONCAT separator
PAIR_CHUNK = (SQLITE_LIMIT_COMPOUND_SELECT - 1) // 2


class QueryContext(Protocol):
    """Anything that can run a parameterized statement against the cache."""

    def execute(self, query: str, args: Sequence[Any] = ()) -> list[tuple]: ...


def is_host_field(field: str) -> bool:
    return field.lower() == HOST_FIELD


class FieldProjector:
    """Resolves display fields and reads their values for a set of hosts.

    Example:
        >>> projector = FieldProjector(synchronizer, settings)
        >>> projector.project([1, 2], ["role"])
        ([['web'], ['db']], ['role'])
    """

    def __init__(self, context: QueryContext, settings: Settings | None = None):
        self.context = context
        self.settings = settings or Settings()

    def project(
        self,
        host_ids: Sequence[int],
        fields: Sequence[str] | None = None,
    ) -> tuple[list[list[str | None]], list[str]]:
        """Read field values for hosts.

        Args:
            host_ids: Host ids; output rows follow this order
            fields: Field names; resolved from settings when empty

        Returns:
            Tuple of (rows, fields). Absent tags are None, valueless tags
            show their own name, repeated tags are joined by the separator.
        """
        host_ids = list(host_ids)
        if not host_ids:
            return [], list(fields or [])

        fields = list(fields) if fields else self.default_fields(host_ids)
        if not fields:
            return [[] for _ in host_ids], fields

        values: dict[int, dict[str, str]] = {host_id: {} for host_id in host_ids}

        if any(is_host_field(field) for field in fields):
            for host_name_id, host_name in self._host_names(host_ids):
                values.setdefault(host_name_id, {})[HOST_FIELD] = host_name

        tag_names = list(
            dict.fromkeys(field.lower() for field in fields if not is_host_field(field))
        )
        if tag_names:
            for host_id, tag_name, tag_value in self._tag_values(host_ids, tag_names):
                values.setdefault(host_id, {})[tag_name] = tag_value

        rows = [
            [self._cell(values.get(host_id, {}), field) for field in fields]
            for host_id in host_ids
        ]
        return rows, fields

    def host_names(self, host_ids: Sequence[int]) -> list[str]:
        """Host names for ids, in the same order."""
        rows, _fields = self.project(host_ids, [HOST_FIELD])
        return [row[0] for row in rows if row[0] is not None]

    def search_fields(self, referenced: Sequence[str]) -> list[str] | None:
        """Columns for a search result that show the tags an expression used.

        Returns None when settings already decide the columns.
        """
        if self.settings.tags or self.settings.listing or not referenced:
            return None
        first = self.settings.primary_tag or HOST_FIELD
        columns = {first.lower(): first}
        for name in referenced:
            columns.setdefault(name.lower(), name)
        return list(columns.values())

    def default_fields(self, host_ids: Sequence[int]) -> list[str]:
        """Fields used when none are requested.

        Priority:
        1. Configured tag list
        2. Listing mode: primary tag, host, then every tag name seen
        3. Primary tag alone
        4. host
        """
        if self.settings.tags:
            return [split_tag(tag)[0] for tag in self.settings.tags]

        primary_tag = self.settings.primary_tag
        if self.settings.listing:
            names = self.tag_names(host_ids)
            if primary_tag:
                others = [name for name in names if name.lower() != primary_tag.lower()]
                return [primary_tag, HOST_FIELD, *others]
            return [HOST_FIELD, *names]

        if primary_tag:
            return [primary_tag]
        return [HOST_FIELD]

    def tag_names(self, host_ids: Sequence[int]) -> list[str]:
        """Distinct tag names carried by any of the hosts."""
        names: list[str] = []
        for chunk in chunked(list(host_ids), SQLITE_LIMIT_COMPOUND_SELECT):
            q = (
                "SELECT DISTINCT tags.name FROM hosts_tags "
                "INNER JOIN tags ON hosts_tags.tag_id = tags.id "
                f"WHERE hosts_tags.host_id IN ({placeholders(len(chunk))}) "
                "ORDER BY tags.name;"
            )
            names.extend(row[0] for row in self.context.execute(q, chunk))
        return list(dict.fromkeys(names))

    def _host_names(self, host_ids: list[int]) -> list[tuple[int, str]]:
        rows: list[tuple[int, str]] = []
        for chunk in chunked(host_ids, SQLITE_LIMIT_COMPOUND_SELECT):
            q = f"SELECT id, name FROM hosts WHERE id IN ({placeholders(len(chunk))});"
            rows.extend((row[0], row[1]) for row in self.context.execute(q, chunk))
        return rows

    def _tag_values(
        self, host_ids: list[int], tag_names: list[str]
    ) -> list[tuple[int, str, str]]:
        rows: list[tuple[int, str, str]] = []
        for host_chunk in chunked(host_ids, PAIR_CHUNK):
            for name_chunk in chunked(tag_names, PAIR_CHUNK):
                q = (
                    "SELECT hosts_tags.host_id, LOWER(tags.name), GROUP_CONCAT(tags.value, ?) "
                    "FROM hosts_tags "
                    "INNER JOIN tags ON hosts_tags.tag_id = tags.id "
                    f"WHERE hosts_tags.host_id IN ({placeholders(len(host_chunk))}) "
                    f"AND tags.name IN ({placeholders(len(name_chunk))}) "
                    "GROUP BY hosts_tags.host_id, tags.name;"
                )
                args = [self.settings.separator, *host_chunk, *name_chunk]
                rows.extend((row[0], row[1], row[2]) for row in self.context.execute(q, args))
        return rows

    @staticmethod
    def _cell(host_values: dict[str, str], field: str) -> str | None:
        if is_host_field(field):
            return host_values.get(HOST_FIELD)
        return display_tag(field, host_values.get(field.lower()))
