"""Exponential backoff around outbound provider calls."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def exponential(
    operation: Callable[[], T],
    max_attempts: int,
    initial_backoff_ms: int,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``operation`` until it succeeds or ``max_attempts`` is used up.

    After each failure the call sleeps for the current backoff, then doubles
    it. No jitter is applied. When attempts are exhausted the last exception
    is re-raised unchanged. With ``max_attempts=1`` this is a plain call.

    Args:
        operation: Zero-argument callable performing the provider call.
        max_attempts: Total number of invocations allowed (>= 1).
        initial_backoff_ms: Delay before the second attempt, in milliseconds.
        sleep: Sleep function taking seconds; injectable for tests.

    Returns:
        Whatever ``operation`` returns on its first successful call.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 0
    delay_ms = initial_backoff_ms
    while True:
        try:
            return operation()
        except Exception as exc:
            attempt += 1
            if attempt >= max_attempts:
                raise
            logger.debug(
                "Attempt %s/%s failed (%s); retrying in %sms",
                attempt,
                max_attempts,
                exc,
                delay_ms,
            )
            sleep(delay_ms / 1000)
            delay_ms *= 2
