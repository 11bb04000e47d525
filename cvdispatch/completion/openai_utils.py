"""
Shared OpenAI helper utilities: retry with backoff and tolerant JSON parsing.
"""

from __future__ import annotations

import json
import random
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, TypeVar

from ..errors import CompletionError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    # Total attempts includes the first call. Kept small: every call is
    # already raced against a stage timeout.
    max_attempts: int = 3
    base_delay_s: float = 0.75
    max_delay_s: float = 8.0
    deterministic: bool = False


def strip_markdown_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```json"):
        text = text[len("```json") :]
    elif text.startswith("```"):
        text = text[len("```") :]
    if text.endswith("```"):
        text = text[: -len("```")]
    return text.strip()


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Robustly extract a JSON object from model output.

    Handles:
    - pure JSON
    - fenced code blocks
    - extra commentary around JSON
    """
    if not isinstance(text, str):
        return None

    cleaned = strip_markdown_fences(text)

    try:
        obj = json.loads(cleaned)
        return obj if isinstance(obj, dict) else None
    except json.JSONDecodeError:
        pass

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None

    try:
        obj = json.loads(cleaned[start : end + 1])
        return obj if isinstance(obj, dict) else None
    except json.JSONDecodeError:
        return None


class OpenAIRetry:
    """Retries transient completion failures (429, 5xx, transport errors)."""

    _TRANSIENT_MARKERS = (
        "timeout",
        "timed out",
        "temporarily unavailable",
        "connection reset",
        "connection aborted",
        "connection refused",
        "remote disconnected",
        "bad gateway",
        "service unavailable",
        "gateway timeout",
        "tls",
        "ssl",
    )

    def __init__(
        self,
        *,
        retry: RetryConfig,
        sleep: Callable[[float], None],
    ):
        self._retry = retry
        self._sleep = sleep

    def _get_status_code(self, exc: Exception) -> Optional[int]:
        for attr in ("status_code", "status", "http_status"):
            val = getattr(exc, attr, None)
            if isinstance(val, int):
                return val
        resp = getattr(exc, "response", None)
        if resp is not None:
            sc = getattr(resp, "status_code", None)
            if isinstance(sc, int):
                return sc
        return None

    def _get_retry_after_s(self, exc: Exception) -> Optional[float]:
        headers = getattr(exc, "headers", None)
        resp = getattr(exc, "response", None)
        if headers is None and resp is not None:
            headers = getattr(resp, "headers", None)
        if not headers or not hasattr(headers, "get"):
            return None
        ra = headers.get("retry-after") or headers.get("Retry-After")
        if ra is None:
            return None
        try:
            return float(ra)
        except (TypeError, ValueError):
            return None

    def is_transient(self, exc: Exception) -> bool:
        status = self._get_status_code(exc)
        if status == 429:
            return True
        if status is not None and 500 <= status <= 599:
            return True
        msg = str(exc).lower()
        return any(m in msg for m in self._TRANSIENT_MARKERS)

    def _sleep_with_backoff(self, attempt_idx: int, *, exc: Exception) -> None:
        retry_after = self._get_retry_after_s(exc)
        if retry_after is not None and retry_after > 0:
            self._sleep(min(self._retry.max_delay_s, retry_after))
            return

        raw = self._retry.base_delay_s * (2**attempt_idx)
        capped = min(self._retry.max_delay_s, raw)

        if self._retry.deterministic:
            delay = capped
        else:
            delay = random.random() * capped  # full jitter

        self._sleep(max(0.25, delay))

    def call(self, fn: Callable[[], T], *, op_name: str) -> T:
        for attempt in range(self._retry.max_attempts):
            try:
                return fn()
            except Exception as e:
                if not self.is_transient(e):
                    raise CompletionError(f"{op_name} failed (non-retryable): {e}") from e
                if attempt >= self._retry.max_attempts - 1:
                    status = self._get_status_code(e)
                    raise CompletionError(
                        f"{op_name} failed after {self._retry.max_attempts} attempts"
                        + (f" (HTTP {status})" if status else "")
                        + f": {e}"
                    ) from e
                self._sleep_with_backoff(attempt, exc=e)

        raise CompletionError(f"{op_name} made no attempts")
