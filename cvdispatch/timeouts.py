"""
Timeout races for external calls.

A call is submitted to a shared thread pool and awaited with a deadline.
The loser of the race is abandoned, not cancelled: Python threads cannot be
interrupted, so a late result is simply dropped. Anything a late call does
must therefore be idempotent.
"""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Optional, TypeVar

from .errors import ExternalServiceTimeout
from .logging_utils import LOG

T = TypeVar("T")


class TimeoutRunner:
    """Races callables against deadlines on a shared executor."""

    def __init__(
        self,
        max_workers: int = 16,
        *,
        thread_name_prefix: str = "race",
        _time: Callable[[], float] = time.monotonic,
    ):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=thread_name_prefix)
        self._time = _time

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> "RaceHandle":
        """Start fn now; the deadline clock starts now too."""
        return RaceHandle(self._executor.submit(fn, *args, **kwargs), started_at=self._time(), clock=self._time)

    def call(self, fn: Callable[[], T], *, timeout_s: float, op_name: str) -> T:
        """
        Run fn and wait at most timeout_s for it.

        Raises:
            ExternalServiceTimeout: If fn has not finished in time
            Exception: Whatever fn raised, unchanged
        """
        return self.submit(fn).result(timeout_s=timeout_s, op_name=op_name)

    def shutdown(self) -> None:
        # abandoned calls keep running; do not wait for them
        self._executor.shutdown(wait=False)

    def __enter__(self) -> "TimeoutRunner":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()


class RaceHandle:
    """A started call whose deadline is measured from submission."""

    def __init__(self, future: Future, *, started_at: float, clock: Callable[[], float]):
        self._future = future
        self._started_at = started_at
        self._clock = clock

    def result(self, *, timeout_s: float, op_name: str) -> Any:
        remaining = max(0.0, timeout_s - (self._clock() - self._started_at))
        try:
            return self._future.result(timeout=remaining)
        except FutureTimeoutError:
            LOG.warning("%s lost its timeout race (%.1fs); abandoning the call", op_name, timeout_s)
            raise ExternalServiceTimeout(op_name, timeout_s) from None

    def done(self) -> bool:
        return self._future.done()


def run_with_timeout(fn: Callable[[], T], *, timeout_s: float, op_name: str, runner: Optional[TimeoutRunner] = None) -> T:
    """One-off race; prefer a long-lived TimeoutRunner in services."""
    if runner is not None:
        return runner.call(fn, timeout_s=timeout_s, op_name=op_name)
    own = TimeoutRunner(max_workers=1)
    try:
        return own.call(fn, timeout_s=timeout_s, op_name=op_name)
    finally:
        own.shutdown()
