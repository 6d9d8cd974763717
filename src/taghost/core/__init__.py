"""Core taghost logic.

This module contains:
- InventoryFetcher: Remote tag/downtime retrieval
- CacheSynchronizer: Cache reuse/rebuild lifecycle
- FieldProjector: Tag values per host
- Dispatcher: Parallel and single-host command execution
"""

from .dispatch import Dispatcher, SingleHostDispatcher, SshSettings
from .expression import SimpleExpressionEvaluator
from .inventory import DatadogClient, InventoryFetcher
from .projection import FieldProjector
from .sync import CacheSynchronizer, SyncState

__all__ = [
    "CacheSynchronizer",
    "DatadogClient",
    "Dispatcher",
    "FieldProjector",
    "InventoryFetcher",
    "SimpleExpressionEvaluator",
    "SingleHostDispatcher",
    "SshSettings",
    "SyncState",
]
