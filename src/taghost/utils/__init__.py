"""Utility functions for taghost.

This module contains:
- Config file management
- Bounded thread-pool mapping
- Retry with backoff
"""

from .config import (
    Settings,
    get_config_path,
    get_value,
    load_config,
    save_config,
    set_value,
)
from .parallel import parallel_map, processor_count
from .retry import with_retry

__all__ = [
    "Settings",
    "load_config",
    "save_config",
    "get_value",
    "set_value",
    "get_config_path",
    "parallel_map",
    "processor_count",
    "with_retry",
]
