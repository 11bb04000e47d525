"""
Durable application store.

The applications table enforces one row per (request_id, target_id).
Inserts are idempotent and status updates are conditional on the row still
being 'submitted', so a late or repeated write can never duplicate a record
or move its status backwards.
"""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from ..errors import PersistenceError
from ..shared import ApplicationRecord, ApplicationStatus

SCHEMA = """
CREATE TABLE IF NOT EXISTS applications (
    id TEXT PRIMARY KEY,
    request_id TEXT NOT NULL,
    requester_identifier TEXT NOT NULL,
    target_id TEXT NOT NULL,
    cv_snapshot_text TEXT NOT NULL,
    match_score INTEGER NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('submitted', 'email_sent', 'email_failed')),
    applied_at TEXT NOT NULL,
    email_sent_at TEXT,
    error_message TEXT,
    applicant_name TEXT NOT NULL DEFAULT '',
    applicant_email TEXT NOT NULL DEFAULT '',
    applicant_phone TEXT NOT NULL DEFAULT '',
    UNIQUE (request_id, target_id)
);
CREATE INDEX IF NOT EXISTS idx_applications_requester ON applications (requester_identifier);
"""

_COLUMNS = (
    "id, request_id, requester_identifier, target_id, cv_snapshot_text, match_score, status, "
    "applied_at, email_sent_at, error_message, applicant_name, applicant_email, applicant_phone"
)


class ApplicationStore(ABC):
    """Persistence boundary for application records."""

    @abstractmethod
    def insert_if_absent(self, record: ApplicationRecord) -> ApplicationRecord:
        """Insert record unless (request_id, target_id) exists; return the stored row."""
        ...

    @abstractmethod
    def get(self, request_id: str, target_id: str) -> Optional[ApplicationRecord]:
        ...

    @abstractmethod
    def mark_status(
        self,
        record_id: str,
        status: ApplicationStatus,
        *,
        at: Optional[datetime] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """Move a 'submitted' row to status. Returns False if it had already moved."""
        ...

    @abstractmethod
    def list_for_request(self, request_id: str) -> List[ApplicationRecord]:
        ...


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_record(row: sqlite3.Row) -> ApplicationRecord:
    return ApplicationRecord(
        id=row["id"],
        request_id=row["request_id"],
        requester_identifier=row["requester_identifier"],
        target_id=row["target_id"],
        cv_snapshot=row["cv_snapshot_text"],
        match_score=int(row["match_score"]),
        status=ApplicationStatus(row["status"]),
        applied_at=_from_iso(row["applied_at"]),
        email_sent_at=_from_iso(row["email_sent_at"]),
        error_message=row["error_message"],
        applicant_name=row["applicant_name"],
        applicant_email=row["applicant_email"],
        applicant_phone=row["applicant_phone"],
    )


class SqliteApplicationStore(ApplicationStore):
    """
    SQLite-backed store, safe to share between worker threads.
    """

    def __init__(self, path: Union[str, Path] = ":memory:"):
        self._path = str(path)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self._path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            with self._conn:
                self._conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open application store {self._path}: {e}") from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _fetch_one(self, sql: str, params: tuple) -> Optional[ApplicationRecord]:
        row = self._conn.execute(sql, params).fetchone()
        return _row_to_record(row) if row is not None else None

    def insert_if_absent(self, record: ApplicationRecord) -> ApplicationRecord:
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        f"INSERT OR IGNORE INTO applications ({_COLUMNS}) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            record.id,
                            record.request_id,
                            record.requester_identifier,
                            record.target_id,
                            record.cv_snapshot,
                            record.match_score,
                            record.status.value,
                            _to_iso(record.applied_at),
                            _to_iso(record.email_sent_at),
                            record.error_message,
                            record.applicant_name,
                            record.applicant_email,
                            record.applicant_phone,
                        ),
                    )
                stored = self._fetch_one(
                    f"SELECT {_COLUMNS} FROM applications WHERE request_id = ? AND target_id = ?",
                    (record.request_id, record.target_id),
                )
            except sqlite3.Error as e:
                raise PersistenceError(f"Insert failed for target {record.target_id}: {e}") from e
        if stored is None:
            raise PersistenceError(f"Insert for target {record.target_id} left no row")
        return stored

    def get(self, request_id: str, target_id: str) -> Optional[ApplicationRecord]:
        with self._lock:
            try:
                return self._fetch_one(
                    f"SELECT {_COLUMNS} FROM applications WHERE request_id = ? AND target_id = ?",
                    (request_id, target_id),
                )
            except sqlite3.Error as e:
                raise PersistenceError(f"Lookup failed for target {target_id}: {e}") from e

    def mark_status(
        self,
        record_id: str,
        status: ApplicationStatus,
        *,
        at: Optional[datetime] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        if status == ApplicationStatus.SUBMITTED:
            raise ValueError("Status can only move forward from 'submitted'")
        with self._lock:
            try:
                with self._conn:
                    cur = self._conn.execute(
                        "UPDATE applications SET status = ?, email_sent_at = ?, error_message = ? "
                        "WHERE id = ? AND status = 'submitted'",
                        (status.value, _to_iso(at), error_message, record_id),
                    )
            except sqlite3.Error as e:
                raise PersistenceError(f"Status update failed for {record_id}: {e}") from e
        return cur.rowcount == 1

    def list_for_request(self, request_id: str) -> List[ApplicationRecord]:
        with self._lock:
            try:
                rows = self._conn.execute(
                    f"SELECT {_COLUMNS} FROM applications WHERE request_id = ? ORDER BY applied_at, target_id",
                    (request_id,),
                ).fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(f"Listing records failed for {request_id}: {e}") from e
        return [_row_to_record(r) for r in rows]
