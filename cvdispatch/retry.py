"""
Bounded retry with exponential backoff and full jitter.

Used for durable-store writes and for queue-level retries of whole runs.
"""

from __future__ import annotations

import random
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from .config import BackoffPolicy
from .logging_utils import LOG

T = TypeVar("T")


def backoff_delay(
    policy: BackoffPolicy,
    attempt_idx: int,
    *,
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Delay before the next attempt. attempt_idx is 0-based (0 => after first failure).
    """
    raw = policy.base_delay_s * (2**attempt_idx)
    capped = min(policy.max_delay_s, raw)
    if not policy.jitter:
        return capped
    return rand() * capped  # full jitter


def call_with_backoff(
    fn: Callable[[], T],
    *,
    policy: BackoffPolicy,
    op_name: str,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn until it succeeds or the policy's attempts are exhausted.

    The last exception is re-raised unchanged so callers can map it to their
    own error type.
    """
    attempts = max(1, policy.max_attempts)
    for attempt in range(attempts):
        try:
            return fn()
        except retry_on as e:
            if should_retry is not None and not should_retry(e):
                raise
            if attempt >= attempts - 1:
                LOG.warning("%s failed after %d attempts: %s", op_name, attempts, e)
                raise
            delay = backoff_delay(policy, attempt)
            LOG.debug(
                "%s attempt %d/%d failed (%s); retrying in %.2fs",
                op_name, attempt + 1, attempts, e, delay,
            )
            sleep(delay)

    raise RuntimeError(f"{op_name} failed unexpectedly")
