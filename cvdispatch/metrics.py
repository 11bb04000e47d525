"""
Process-wide pipeline counters.

One MetricsRegistry is created per process and injected into the pipeline
and worker; nothing here is a module global.
"""

from __future__ import annotations

import threading
from collections import Counter
from typing import Dict

from .logging_utils import LOG

# Counter names
JOBS_COMPLETED = "jobs_completed"
JOBS_REJECTED = "jobs_rejected"
JOBS_FAILED = "jobs_failed"
JOBS_DEAD_LETTERED = "jobs_dead_lettered"
EXTRACTIONS_BY_SOURCE = "extraction_source"
LETTERS_BY_SOURCE = "letter_source"
RECORDS_CREATED = "records_created"
RECORDS_UNPERSISTED = "records_unpersisted"
EMAILS_SENT = "emails_sent"
EMAILS_FAILED = "emails_failed"
ALERTS_SENT = "alerts_sent"
TIMEOUTS = "timeouts"


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Counter = Counter()
        self._consecutive_rejections = 0

    def increment(self, name: str, amount: int = 1, *, label: str = "") -> None:
        key = f"{name}:{label}" if label else name
        with self._lock:
            self._counters[key] += amount

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def reset(self) -> Dict[str, int]:
        """Return the current counters and zero them."""
        with self._lock:
            snap = dict(self._counters)
            self._counters.clear()
            self._consecutive_rejections = 0
            return snap

    def record_rejection(self) -> int:
        """Count a validation rejection; returns the current consecutive streak."""
        with self._lock:
            self._counters[JOBS_REJECTED] += 1
            self._consecutive_rejections += 1
            return self._consecutive_rejections

    def clear_rejection_streak(self) -> None:
        with self._lock:
            self._consecutive_rejections = 0

    @property
    def consecutive_rejections(self) -> int:
        with self._lock:
            return self._consecutive_rejections

    def log_summary(self) -> None:
        snap = self.snapshot()
        if not snap:
            LOG.info("No pipeline activity recorded")
            return
        LOG.info("Pipeline counters: %s", ", ".join(f"{k}={v}" for k, v in sorted(snap.items())))
