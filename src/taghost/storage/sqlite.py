"""SQLite storage backend for the host/tag cache.

Holds hosts, tags and their associations. A cache is always rebuilt as a
whole in a fresh in-memory store and then cloned to the durable file, so
rows are only ever inserted, never updated or deleted one by one.
"""

import logging
import os
import sqlite3
import time
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..constants import SQLITE_LIMIT_COMPOUND_SELECT
from ..exceptions import BindLimitError, CacheUnavailableError, QueryError
from ..utils.tags import split_tag

logger = logging.getLogger(__name__)

# SQL schema
SCHEMA_SQL = (
    "CREATE TABLE IF NOT EXISTS hosts ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, "
    "name VARCHAR(255) NOT NULL COLLATE NOCASE);",
    "CREATE UNIQUE INDEX IF NOT EXISTS hosts_name ON hosts (name);",
    "CREATE TABLE IF NOT EXISTS tags ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, "
    "name VARCHAR(200) NOT NULL COLLATE NOCASE, "
    "value VARCHAR(200) NOT NULL COLLATE NOCASE);",
    "CREATE UNIQUE INDEX IF NOT EXISTS tags_name_value ON tags (name, value);",
    "CREATE TABLE IF NOT EXISTS hosts_tags ("
    "host_id INTEGER NOT NULL, "
    "tag_id INTEGER NOT NULL);",
    "CREATE UNIQUE INDEX IF NOT EXISTS hosts_tags_host_id_tag_id ON hosts_tags (host_id, tag_id);",
)

# Touches every table; fails on a missing or foreign schema
PROBE_SQL = (
    "SELECT hosts_tags.host_id FROM hosts_tags "
    "INNER JOIN hosts ON hosts_tags.host_id = hosts.id "
    "INNER JOIN tags ON hosts_tags.tag_id = tags.id LIMIT 1;"
)

HOSTS_CHUNK = SQLITE_LIMIT_COMPOUND_SELECT
TAGS_CHUNK = SQLITE_LIMIT_COMPOUND_SELECT // 2
ASSOCIATION_CHUNK = SQLITE_LIMIT_COMPOUND_SELECT - 2

ASSOCIATE_SQL = (
    "INSERT OR REPLACE INTO hosts_tags (host_id, tag_id) "
    "SELECT host.id, tag.id FROM "
    "( SELECT id FROM hosts WHERE name IN ({}) ) AS host, "
    "( SELECT id FROM tags WHERE name = ? AND value = ? LIMIT 1 ) AS tag;"
)

ASSOCIATE_ONE_SQL = (
    "INSERT OR REPLACE INTO hosts_tags (host_id, tag_id) "
    "SELECT host.id, tag.id FROM "
    "( SELECT id FROM hosts WHERE name = ? ) AS host, "
    "( SELECT id FROM tags WHERE name = ? AND value = ? LIMIT 1 ) AS tag;"
)


def chunked(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Yield consecutive slices of at most size items."""
    for start in range(0, len(items), size):
        yield items[start : start + size]


def placeholders(count: int) -> str:
    """Comma separated "?" markers for an IN (...) list."""
    return ", ".join("?" for _ in range(count))


def is_fresh(mtime: float, expiry: float, now: float | None = None) -> bool:
    """Whether a file last written at mtime is still within expiry seconds."""
    now = time.time() if now is None else now
    return now < mtime + expiry


class StatementCache:
    """Reusable cursors keyed by (store identity, query text).

    sqlite3 keeps compiled statements per connection; holding one cursor
    per query lets a store re-run a statement without re-preparing it.
    Entries of a store are dropped together when the store closes.
    """

    def __init__(self) -> None:
        self._statements: dict[tuple[int, str], sqlite3.Cursor] = {}

    def get(self, store: "Store", query: str) -> sqlite3.Cursor:
        """Get the cursor for query on store, creating it on first use."""
        key = (id(store), query)
        cursor = self._statements.get(key)
        if cursor is None:
            cursor = store.connection.cursor()
            self._statements[key] = cursor
        return cursor

    def invalidate(self, store: "Store") -> int:
        """Close and forget every cursor owned by store.

        Returns:
            Number of cursors released
        """
        owner = id(store)
        keys = [key for key in self._statements if key[0] == owner]
        for key in keys:
            self._statements.pop(key).close()
        return len(keys)

    def __len__(self) -> int:
        return len(self._statements)


class Store:
    """SQLite-backed replica of the host/tag inventory.

    Example:
        >>> store = Store.memory()
        >>> with store.transaction():
        ...     store.batch_insert_tags([("role", "web")])
        ...     store.batch_insert_hosts(["web-1"])
        ...     store.associate_hosts_with_tag("role:web", ["web-1"])
    """

    def __init__(
        self,
        path: str | Path = ":memory:",
        statements: StatementCache | None = None,
    ):
        """Open a connection to a database.

        Args:
            path: Database file, or ":memory:" for an ephemeral store
            statements: Shared statement cache (a private one by default)
        """
        self.path = path
        # Autocommit; transaction() issues BEGIN/COMMIT explicitly
        self._conn = sqlite3.connect(str(path), isolation_level=None)
        self._statements = statements if statements is not None else StatementCache()
        self._closed = False

    @classmethod
    def memory(cls, statements: StatementCache | None = None) -> "Store":
        """Create an empty in-memory store with the cache schema."""
        return cls.create(":memory:", statements)

    @classmethod
    def create(
        cls, path: str | Path, statements: StatementCache | None = None
    ) -> "Store":
        """Open (or create) a database at path and make sure the schema exists."""
        store = cls(path, statements)
        store.create_schema()
        return store

    @classmethod
    def open(
        cls,
        path: str | Path,
        expiry: float,
        force: bool = False,
        offline: bool = False,
        now: float | None = None,
    ) -> "Store | None":
        """Open the durable cache if it can be used as is.

        Args:
            path: Durable cache file
            expiry: Seconds the file stays fresh after its last write
            force: Never reuse the file (ignored when offline)
            offline: Reuse any valid file regardless of freshness
            now: Current time in epoch seconds (default: time.time())

        Returns:
            The opened store, or None when the cache has to be rebuilt

        Raises:
            CacheUnavailableError: If offline and no valid file exists
        """
        path = Path(path)
        usable = path.exists() and (
            offline or (not force and is_fresh(path.stat().st_mtime, expiry, now))
        )
        if not usable:
            if offline:
                raise CacheUnavailableError("no database available on offline mode")
            return None

        store = cls(path)
        if store.is_valid():
            logger.debug(f"reusing cache {path}")
            return store

        store.close()
        if offline:
            raise CacheUnavailableError("no database available on offline mode")
        return None

    @property
    def connection(self) -> sqlite3.Connection:
        """Underlying sqlite3 connection."""
        return self._conn

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def mtime(self) -> float | None:
        """Modification time of the backing file, None for memory stores."""
        if str(self.path) == ":memory:":
            return None
        try:
            return os.path.getmtime(self.path)
        except OSError:
            return None

    def is_fresh(self, expiry: float, now: float | None = None) -> bool:
        """Whether the backing file is younger than expiry seconds."""
        mtime = self.mtime
        return mtime is not None and is_fresh(mtime, expiry, now)

    def create_schema(self) -> None:
        """Create tables and indexes if missing."""
        for statement in SCHEMA_SQL:
            self.execute(statement)

    def is_valid(self) -> bool:
        """Check that the database carries the cache schema."""
        try:
            self.execute(PROBE_SQL)
        except QueryError:
            return False
        return True

    def set_variable_limit(self, limit: int) -> int:
        """Lower the bound-parameter ceiling of this connection.

        Returns:
            The previous limit
        """
        return self._conn.setlimit(sqlite3.SQLITE_LIMIT_VARIABLE_NUMBER, limit)

    # =========================================================================
    # STATEMENTS
    # =========================================================================

    def execute(self, query: str, args: Sequence[Any] = ()) -> list[tuple]:
        """Run a parameterized statement.

        Args:
            query: SQL text with "?" placeholders
            args: Bound parameters

        Returns:
            All result rows (empty for writes)

        Raises:
            BindLimitError: If args exceed the connection's parameter ceiling
            QueryError: For any other SQLite failure
        """
        args = list(args)
        logger.debug(f"execute: {query} -- {args!r}")
        try:
            cursor = self._statements.get(self, query)
            return cursor.execute(query, args).fetchall()
        except sqlite3.Error as e:
            logger.warning(f"failed: {query} -- {args!r}")
            if "too many SQL variables" in str(e):
                raise BindLimitError(str(e)) from e
            raise QueryError(str(e)) from e

    @contextmanager
    def transaction(self) -> Iterator["Store"]:
        """Run the block in a single transaction.

        Commits on success; rolls back and re-raises on any error.
        """
        self.execute("BEGIN")
        try:
            yield self
        except Exception:
            self.execute("ROLLBACK")
            raise
        self.execute("COMMIT")

    # =========================================================================
    # BULK WRITES
    # =========================================================================

    def batch_insert_hosts(self, names: Iterable[str]) -> None:
        """Insert hosts that do not exist yet."""
        names = list(names)
        for chunk in chunked(names, HOSTS_CHUNK):
            q = "INSERT OR IGNORE INTO hosts (name) VALUES {}".format(
                ", ".join("(?)" for _ in chunk)
            )
            self.execute(q, chunk)

    def batch_insert_tags(self, pairs: Iterable[tuple[str, str]]) -> None:
        """Insert (name, value) tags that do not exist yet."""
        pairs = list(pairs)
        for chunk in chunked(pairs, TAGS_CHUNK):
            q = "INSERT OR IGNORE INTO tags (name, value) VALUES {}".format(
                ", ".join("(?, ?)" for _ in chunk)
            )
            self.execute(q, [item for pair in chunk for item in pair])

    def associate_hosts_with_tag(self, tag: str, host_names: Iterable[str]) -> None:
        """Link hosts to a tag; existing links are left as they are.

        Hosts and the tag must already exist. A chunk that overflows the
        connection's parameter ceiling is written one host at a time.

        Args:
            tag: Tag string "name:value" (or "name" for a valueless tag)
            host_names: Hosts carrying the tag
        """
        tag_name, tag_value = split_tag(tag)
        host_names = list(host_names)
        for chunk in chunked(host_names, ASSOCIATION_CHUNK):
            q = ASSOCIATE_SQL.format(placeholders(len(chunk)))
            try:
                self.execute(q, [*chunk, tag_name, tag_value])
            except BindLimitError as e:
                logger.warning(f"bulk insert failed due to {e}. fallback to normal insert.")
                for host in chunk:
                    self.execute(ASSOCIATE_ONE_SQL, [host, tag_name, tag_value])

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def clone(self, destination: "Store") -> None:
        """Overwrite destination with the full content of this store."""
        destination._statements.invalidate(destination)
        try:
            self._conn.backup(destination.connection)
        except sqlite3.Error as e:
            raise QueryError(str(e)) from e

    def close(self) -> None:
        """Release cached statements and the connection."""
        if self._closed:
            return
        released = self._statements.invalidate(self)
        logger.debug(f"closing {self.path} ({released} cached statement(s))")
        self._conn.close()
        self._closed = True

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Store(path={str(self.path)!r})"
