"""Storage backends for taghost.

Provides the SQLite host/tag cache.
"""

from taghost.storage.sqlite import StatementCache, Store

__all__ = ["Store", "StatementCache"]
