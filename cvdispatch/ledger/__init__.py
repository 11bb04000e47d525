"""
Application records: durable store and ledger operations.
"""

from .ledger import ApplicationLedger, parse_match_score, record_id_for
from .store import ApplicationStore, SqliteApplicationStore

__all__ = [
    "ApplicationLedger",
    "ApplicationStore",
    "SqliteApplicationStore",
    "parse_match_score",
    "record_id_for",
]
