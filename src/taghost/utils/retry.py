"""Bounded retry with exponential backoff."""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from ..exceptions import RetryExceededError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def with_retry(
    func: Callable[[], T],
    retry: int = 1,
    retry_delay: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call func until it succeeds or the attempts run out.

    Args:
        func: Zero-argument callable to attempt
        retry: Number of attempts (1 means no retry)
        retry_delay: Fixed delay between attempts; doubles from 1s if None
        sleep: Sleep function, replaceable in tests

    Returns:
        Whatever func returns on the first successful attempt

    Raises:
        RetryExceededError: If every attempt raised
    """
    last_error: Exception | None = None
    for i in range(retry):
        try:
            return func()
        except Exception as e:
            logger.warning(str(e))
            last_error = e
            if i + 1 < retry:
                sleep(retry_delay if retry_delay is not None else float(1 << i))
    raise RetryExceededError("retry count exceeded") from last_error
