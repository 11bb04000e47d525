"""
Extraction cache.

Holds applicant data pre-processed in the background right after upload,
keyed by requester, so the main run can skip extraction entirely.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

CACHE_KEY_PREFIX = "processed_cv"
DEFAULT_TTL_S = 2 * 60 * 60


def cache_key(requester_identifier: str) -> str:
    return f"{CACHE_KEY_PREFIX}:{requester_identifier}"


class ExtractionCache(ABC):
    """Key-value store for pre-processed extraction results."""

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def set(self, key: str, value: Mapping[str, Any], ttl_s: float = DEFAULT_TTL_S) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class InMemoryExtractionCache(ExtractionCache):
    """Process-local cache with per-entry expiry."""

    def __init__(self, *, _time: Callable[[], float] = time.monotonic):
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._time = _time

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._time() >= expires_at:
                del self._entries[key]
                return None
            return dict(value)

    def set(self, key: str, value: Mapping[str, Any], ttl_s: float = DEFAULT_TTL_S) -> None:
        with self._lock:
            self._entries[key] = (self._time() + ttl_s, dict(value))

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
