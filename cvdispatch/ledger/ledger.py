"""
Application ledger.

Exactly one record per (request, target). Record ids are derived from the
pair, inserts are idempotent, and each write is retried with backoff under
a per-attempt timeout. Store I/O runs on its own executor so slow completion
calls cannot starve it. When every attempt fails the store is checked once
more, since a timed-out write may still have landed; only a target whose row
is truly missing is reported with persisted=False.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..completion import extract_json_object
from ..config import LedgerSettings
from ..errors import ExternalServiceTimeout, PersistenceError
from ..logging_utils import LOG, mask_identifier
from ..metrics import RECORDS_CREATED, RECORDS_UNPERSISTED, TIMEOUTS, MetricsRegistry
from ..retry import call_with_backoff
from ..shared import (
    ApplicationRecord,
    ApplicationRequest,
    ApplicationStatus,
    DispatchResult,
    ExtractedApplicant,
    TargetPosting,
    format_prompt,
)
from ..timeouts import RaceHandle, TimeoutRunner
from .store import ApplicationStore

_RECORD_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "cvdispatch/applications")


def record_id_for(request_id: str, target_id: str) -> str:
    """Same (request, target) always maps to the same record id."""
    return str(uuid.uuid5(_RECORD_NAMESPACE, f"{request_id}:{target_id}"))


def parse_match_score(response: str) -> Optional[int]:
    data = extract_json_object(response)
    if data is None:
        return None
    for key in ("job_match_score", "match_score", "score", "overall_score"):
        value = data.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return max(0, min(100, int(round(value))))
    return None


class ApplicationLedger:
    def __init__(
        self,
        store: ApplicationStore,
        runner: TimeoutRunner,
        *,
        client=None,
        completion_runner: Optional[TimeoutRunner] = None,
        settings: Optional[LedgerSettings] = None,
        metrics: Optional[MetricsRegistry] = None,
        _sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self._runner = runner
        self._completion_runner = completion_runner or runner
        self._client = client
        self._settings = settings or LedgerSettings()
        self._metrics = metrics
        self._sleep = _sleep

    # --------------------------
    # Match scoring
    # --------------------------

    def score_matches(self, cv_text: str, targets: Sequence[TargetPosting]) -> Dict[str, int]:
        """
        Best-effort score per target id. Calls run concurrently; anything
        that fails or is late gets the default score.
        """
        default = self._settings.default_match_score
        scores: Dict[str, int] = {t.id: default for t in targets}
        if self._client is None or not targets:
            return scores

        system_prompt = format_prompt("match_scoring_system")
        if not system_prompt:
            return scores

        handles: List[Tuple[TargetPosting, RaceHandle]] = []
        for target in targets:
            user_prompt = format_prompt(
                "match_scoring_user",
                job_title=target.title,
                company=target.company,
                location=target.location or "Nigeria",
                cv_summary=cv_text[:2000],
            )
            if not user_prompt:
                continue
            handles.append((
                target,
                self._completion_runner.submit(
                    self._client.complete,
                    system_prompt,
                    user_prompt,
                    op_name=f"Match score for {target.id}",
                    temperature=0.0,
                    json_mode=True,
                ),
            ))

        for target, handle in handles:
            try:
                response = handle.result(timeout_s=self._settings.scoring_timeout_s, op_name=f"Match score for {target.id}")
            except ExternalServiceTimeout:
                if self._metrics:
                    self._metrics.increment(TIMEOUTS, label="match_score")
                continue
            except Exception as e:
                LOG.warning("Match scoring failed for %s: %s", target.id, e)
                continue
            score = parse_match_score(response)
            if score is None:
                LOG.warning("Match scoring for %s returned no usable score", target.id)
                continue
            scores[target.id] = score
        return scores

    # --------------------------
    # Record creation
    # --------------------------

    def _existing(self, request_id: str, target_id: str) -> Optional[ApplicationRecord]:
        try:
            return self._runner.call(
                lambda: self._store.get(request_id, target_id),
                timeout_s=self._settings.write_timeout_s,
                op_name=f"Record lookup {target_id}",
            )
        except (PersistenceError, ExternalServiceTimeout) as e:
            LOG.warning("Could not look up existing record for %s: %s", target_id, e)
            return None

    def _write(self, record: ApplicationRecord) -> ApplicationRecord:
        return call_with_backoff(
            lambda: self._runner.call(
                lambda: self._store.insert_if_absent(record),
                timeout_s=self._settings.write_timeout_s,
                op_name=f"Record write {record.target_id}",
            ),
            policy=self._settings.write_backoff,
            op_name=f"Record write {record.target_id}",
            retry_on=(PersistenceError, ExternalServiceTimeout),
            sleep=self._sleep,
        )

    def create_records(
        self,
        request: ApplicationRequest,
        applicant: ExtractedApplicant,
        cv_text: str,
    ) -> List[ApplicationRecord]:
        """
        One record per target, in target order.

        Records already written by an earlier attempt of the same request are
        returned as stored, status included.
        """
        existing: Dict[str, ApplicationRecord] = {}
        for target in request.targets:
            found = self._existing(request.request_id, target.id)
            if found is not None:
                existing[target.id] = found

        to_score = [t for t in request.targets if t.id not in existing]
        scores = self.score_matches(cv_text, to_score)

        records: List[ApplicationRecord] = []
        for target in request.targets:
            if target.id in existing:
                LOG.info("Record for target %s already exists (%s)", target.id, existing[target.id].status.value)
                records.append(existing[target.id])
                continue

            record = ApplicationRecord(
                id=record_id_for(request.request_id, target.id),
                request_id=request.request_id,
                requester_identifier=request.requester_identifier,
                target_id=target.id,
                cv_snapshot=cv_text,
                match_score=scores[target.id],
                applicant_name=applicant.name,
                applicant_email=applicant.email,
                applicant_phone=applicant.phone,
            )
            try:
                stored = self._write(record)
            except (PersistenceError, ExternalServiceTimeout) as e:
                landed = self._existing(request.request_id, target.id)
                if landed is not None:
                    LOG.warning("Record write for target %s reported %s but the row exists; using it", target.id, e)
                    records.append(landed)
                    if self._metrics:
                        self._metrics.increment(RECORDS_CREATED)
                    continue
                LOG.error("Record for target %s not persisted: %s", target.id, e)
                record.persisted = False
                record.error_message = str(e)
                records.append(record)
                if self._metrics:
                    self._metrics.increment(RECORDS_UNPERSISTED)
                continue
            records.append(stored)
            if self._metrics:
                self._metrics.increment(RECORDS_CREATED)

        persisted = sum(1 for r in records if r.persisted)
        LOG.info(
            "Ledger for %s: %d/%d records persisted",
            mask_identifier(request.requester_identifier), persisted, len(records),
        )
        return records

    # --------------------------
    # Status updates
    # --------------------------

    def mark_dispatched(self, record: ApplicationRecord, result: DispatchResult) -> ApplicationRecord:
        """
        Record a dispatch outcome. Only a 'submitted' record moves; the
        in-memory record mirrors what the store accepted.

        Records reported as unpersisted still get the conditional update: a
        write that landed after its timeout must not stay 'submitted'.
        """
        if record.status != ApplicationStatus.SUBMITTED:
            return record

        now = datetime.now(timezone.utc)
        if result.success:
            status, at, message = ApplicationStatus.EMAIL_SENT, now, None
        else:
            status, at, message = ApplicationStatus.EMAIL_FAILED, None, result.reason or "Unknown error"

        try:
            moved = call_with_backoff(
                lambda: self._runner.call(
                    lambda: self._store.mark_status(record.id, status, at=at, error_message=message),
                    timeout_s=self._settings.write_timeout_s,
                    op_name=f"Status update {record.target_id}",
                ),
                policy=self._settings.write_backoff,
                op_name=f"Status update {record.target_id}",
                retry_on=(PersistenceError, ExternalServiceTimeout),
                sleep=self._sleep,
            )
        except (PersistenceError, ExternalServiceTimeout) as e:
            LOG.error("Status update for target %s failed: %s", record.target_id, e)
            return record

        if moved:
            if not record.persisted:
                LOG.warning("Late-landing record for target %s closed as %s", record.target_id, status.value)
                record.persisted = True
            record.status = status
            record.email_sent_at = at
            record.error_message = message
        elif record.persisted:
            LOG.info("Record for target %s had already left 'submitted'", record.target_id)
        return record
