"""
Deferred deletion of transient upload copies.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Dict, Optional

from .logging_utils import LOG


def delete_document(path: Path) -> bool:
    """Delete path; a missing file is logged, not raised."""
    try:
        path.unlink()
    except FileNotFoundError:
        LOG.info("Transient document already gone: %s", path)
        return False
    except OSError as e:
        LOG.warning("Could not delete transient document %s: %s", path, e)
        return False
    LOG.debug("Deleted transient document %s", path)
    return True


class ResourceReaper:
    """
    Schedules one deletion per path on a daemon timer.

    Rescheduling a path replaces its pending timer. Timers are daemons, so a
    process that exits must drain() first; files whose timers are cancelled
    are left in place and logged.
    """

    def __init__(self, retention_s: float = 600.0):
        self._retention_s = retention_s
        self._lock = threading.Lock()
        self._timers: Dict[Path, threading.Timer] = {}

    def schedule(self, path: Path, delay_s: Optional[float] = None) -> threading.Timer:
        delay = self._retention_s if delay_s is None else delay_s
        timer = threading.Timer(delay, self._reap, args=(path,))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(path, None)
            if previous is not None:
                previous.cancel()
            self._timers[path] = timer
        timer.start()
        LOG.debug("Scheduled deletion of %s in %.0fs", path, delay)
        return timer

    def _reap(self, path: Path) -> None:
        with self._lock:
            self._timers.pop(path, None)
        delete_document(path)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def drain(self, timeout_s: Optional[float] = None) -> int:
        """
        Wait for pending deletions to fire, then cancel whatever is left.

        Args:
            timeout_s: Longest total wait; None waits for every timer

        Returns:
            Number of deletions cancelled (their files stay in place)
        """
        with self._lock:
            timers = list(self._timers.values())
        deadline = None if timeout_s is None else time.monotonic() + timeout_s
        for timer in timers:
            timer.join(None if deadline is None else max(0.0, deadline - time.monotonic()))
        return self.cancel_all()

    def cancel_all(self) -> int:
        with self._lock:
            pending = list(self._timers.items())
            self._timers.clear()
        for path, timer in pending:
            timer.cancel()
            LOG.warning("Deletion of %s cancelled; document left in place", path)
        return len(pending)
