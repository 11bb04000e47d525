"""
Dispatch batcher.

Targets go out in list order, in small batches. Within a batch every target
runs on its own thread and the batch is joined as a whole; batches are
separated by a fixed delay to stay under relay rate limits. Each target's
ledger update happens as soon as its own outcome is known, and no target's
failure affects another.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from ..config import DispatchSettings
from ..logging_utils import LOG, fmt_outcomes, mask_identifier
from ..metrics import EMAILS_FAILED, EMAILS_SENT, MetricsRegistry
from ..shared import (
    DEFAULT_LETTER_KEY,
    ApplicationRecord,
    ApplicationRequest,
    ApplicationStatus,
    CoverLetterArtifact,
    DispatchResult,
    ExtractedApplicant,
    TargetPosting,
    replace_name_placeholders,
)
from ..timeouts import TimeoutRunner
from .mailer import Attachment, Mailer, OutboundMessage
from .templates import attachment_filename, recruiter_html, recruiter_subject, recruiter_text

REASON_NO_CONTACT = "No recipient contact provided"
REASON_NOT_PERSISTED = "Application record not persisted"
REASON_ALREADY_DISPATCHED = "Already dispatched"
REASON_DOCUMENT_MISSING = "Document not found"
REASON_CANCELLED = "Run cancelled before send"


def batches(items: Sequence, size: int) -> List[Sequence]:
    size = max(1, size)
    return [items[i : i + size] for i in range(0, len(items), size)]


class DispatchBatcher:
    def __init__(
        self,
        mailer: Mailer,
        runner: TimeoutRunner,
        ledger,
        *,
        settings: Optional[DispatchSettings] = None,
        metrics: Optional[MetricsRegistry] = None,
        _sleep: Callable[[float], None] = time.sleep,
    ):
        self._mailer = mailer
        self._runner = runner
        self._ledger = ledger
        self._settings = settings or DispatchSettings()
        self._metrics = metrics
        self._sleep = _sleep

    def dispatch(
        self,
        request: ApplicationRequest,
        applicant: ExtractedApplicant,
        records: Sequence[ApplicationRecord],
        letters: Mapping[str, CoverLetterArtifact],
        cancel: Optional[threading.Event] = None,
    ) -> List[DispatchResult]:
        """
        Send one notification per target and record each outcome.

        Once cancel is set no further message goes out; targets not yet sent
        are reported with REASON_CANCELLED and their records stay 'submitted'
        for the next attempt.

        Returns:
            One DispatchResult per target, in target order
        """
        by_target: Dict[str, ApplicationRecord] = {r.target_id: r for r in records}
        groups = batches(list(request.targets), self._settings.batch_size)
        results: List[DispatchResult] = []

        for idx, batch in enumerate(groups):
            LOG.info("Dispatch batch %d/%d (%d targets)", idx + 1, len(groups), len(batch))
            with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="dispatch") as executor:
                futures = [
                    executor.submit(
                        self._dispatch_one, request, applicant, target, by_target.get(target.id), letters, cancel
                    )
                    for target in batch
                ]
                for target, future in zip(batch, futures):
                    try:
                        results.append(future.result())
                    except Exception as e:
                        LOG.error("Dispatch worker for %s crashed: %s", target.id, e)
                        results.append(DispatchResult(target.id, False, str(e)))
            if idx < len(groups) - 1 and not (cancel is not None and cancel.is_set()):
                self._sleep(self._settings.inter_batch_delay_s)

        LOG.info("Dispatch for %s: %s", mask_identifier(request.requester_identifier), fmt_outcomes(results))
        return results

    def _dispatch_one(
        self,
        request: ApplicationRequest,
        applicant: ExtractedApplicant,
        target: TargetPosting,
        record: Optional[ApplicationRecord],
        letters: Mapping[str, CoverLetterArtifact],
        cancel: Optional[threading.Event] = None,
    ) -> DispatchResult:
        if record is None or not record.persisted:
            return self._finish(record, DispatchResult(target.id, False, REASON_NOT_PERSISTED))
        if record.status != ApplicationStatus.SUBMITTED:
            # a previous attempt of this request already sent (or failed) it
            return DispatchResult(target.id, record.status == ApplicationStatus.EMAIL_SENT, REASON_ALREADY_DISPATCHED)
        if not target.recipient_contact:
            return self._finish(record, DispatchResult(target.id, False, REASON_NO_CONTACT))
        if not request.document.path.is_file():
            return self._finish(record, DispatchResult(target.id, False, REASON_DOCUMENT_MISSING))

        message = self.compose(request, applicant, target, record, letters)
        if cancel is not None and cancel.is_set():
            LOG.info("Email for target %s skipped; run cancelled", target.id)
            return DispatchResult(target.id, False, REASON_CANCELLED)
        try:
            self._runner.call(
                lambda: self._mailer.send(message),
                timeout_s=self._settings.send_timeout_s,
                op_name=f"Email to {target.recipient_contact}",
            )
        except Exception as e:
            LOG.warning("Email for target %s (%s) failed: %s", target.id, target.company, e)
            return self._finish(record, DispatchResult(target.id, False, str(e)))

        LOG.info("Email sent for target %s (%s), application %s", target.id, target.company, record.id)
        return self._finish(record, DispatchResult(target.id, True))

    def _finish(self, record: Optional[ApplicationRecord], result: DispatchResult) -> DispatchResult:
        if self._metrics:
            self._metrics.increment(EMAILS_SENT if result.success else EMAILS_FAILED)
        if record is not None:
            self._ledger.mark_dispatched(record, result)
        return result

    def compose(
        self,
        request: ApplicationRequest,
        applicant: ExtractedApplicant,
        target: TargetPosting,
        record: ApplicationRecord,
        letters: Mapping[str, CoverLetterArtifact],
    ) -> OutboundMessage:
        artifact = letters.get(target.id) or letters.get(DEFAULT_LETTER_KEY)
        letter = replace_name_placeholders(artifact.text, applicant.name) if artifact else ""
        document = request.document
        return OutboundMessage(
            sender=self._settings.sender_address,
            to=target.recipient_contact,
            subject=recruiter_subject(target, applicant),
            text=recruiter_text(target, applicant, letter, record),
            html=recruiter_html(target, applicant, letter, record),
            reply_to=applicant.email or None,
            attachments=[
                Attachment(
                    filename=attachment_filename(applicant.name, document.extension),
                    path=document.path,
                    content_type=document.mime_type,
                )
            ],
        )
