"""
Logging helpers for cvdispatch.

Defines the package logger and simple utilities for configuring
console and optional file logging.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:
    from .shared import DispatchResult

LOG = logging.getLogger("cvdispatch")

# Verbosity levels
VERBOSITY_QUIET = 0    # Warnings and errors only (default)
VERBOSITY_NORMAL = 1   # Per-run progress
VERBOSITY_VERBOSE = 2  # Detailed debug output


def setup_logging(debug: bool, log_file: Optional[str] = None, verbosity: int = VERBOSITY_QUIET) -> None:
    """
    Setup logging with verbosity control.

    Args:
        debug: Debug flag (overrides verbosity to VERBOSITY_VERBOSE)
        log_file: Optional log file path
        verbosity: Verbosity level (0=quiet, 1=normal, 2=verbose)
    """
    if debug:
        verbosity = VERBOSITY_VERBOSE

    if verbosity >= VERBOSITY_VERBOSE:
        level = logging.DEBUG
    elif verbosity >= VERBOSITY_NORMAL:
        level = logging.INFO
    else:
        level = logging.WARNING

    console_format = "%(asctime)s %(levelname)s [%(threadName)s] %(message)s"

    # Handlers may already be configured (e.g., by pytest)
    if logging.root.handlers:
        for handler in logging.root.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
                handler.setLevel(level)
                handler.setFormatter(logging.Formatter(console_format, datefmt="%H:%M:%S"))
        logging.root.setLevel(level)
    else:
        handlers: List[logging.Handler] = []

        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(logging.Formatter(console_format, datefmt="%H:%M:%S"))
        handlers.append(console)

        logging.basicConfig(level=level, handlers=handlers, force=True)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)  # always full detail in file
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)s | %(threadName)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logging.root.addHandler(file_handler)

    # Suppress noisy third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def mask_identifier(identifier: Optional[str]) -> str:
    """Requester identifiers are phone numbers; never log them in full."""
    if not identifier:
        return "***"
    return f"{identifier[:6]}***"


def fmt_outcomes(results: Sequence["DispatchResult"]) -> str:
    """
    Compact sent/failed string for the one-line-per-run log.
    """
    sent = [r.target_id for r in results if r.success]
    failed = [f"{r.target_id} ({r.reason})" for r in results if not r.success]
    parts: List[str] = []
    if sent:
        parts.append("sent: " + ", ".join(sent))
    if failed:
        parts.append("failed: " + ", ".join(failed))
    return " | ".join(parts) if parts else "-"
