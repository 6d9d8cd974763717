"""Bounded parallel map over a list of items.

All results are collected before returning, in input order, so callers
can rely on ordering regardless of which worker finishes first.
"""

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

import psutil

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def processor_count() -> int:
    """Number of logical processors, at least 1."""
    return psutil.cpu_count(logical=True) or 1


def parallel_map(
    func: Callable[[T], R],
    items: Iterable[T],
    max_workers: int | None = None,
) -> list[R]:
    """Apply func to every item on a bounded thread pool.

    Workers are not cancelled when a sibling fails; the first exception is
    re-raised only after every task has finished.

    Args:
        func: Callable run once per item
        items: Items to process
        max_workers: Concurrency cap (default: processor count)

    Returns:
        Results in the same order as items
    """
    items = list(items)
    if not items:
        return []

    workers = max(1, min(max_workers or processor_count(), len(items)))
    logger.debug(f"parallel_map: {len(items)} task(s) on {workers} worker(s)")

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(func, item) for item in items]

    # Leaving the executor waits for every future
    return [future.result() for future in futures]
