"""
The fulfillment pipeline: one run per application request.

Stages run in a fixed order and report progress checkpoints:

    intake (10) -> extraction (30) -> cover letters (50) -> records (70)
    -> dispatch (85) -> confirmation (95) -> reaper scheduled (100)

A rejected CV ends the run normally with a message to the requester.
Any other failure is reported to the operator and re-raised so the worker
can decide whether to retry.
"""

from __future__ import annotations

import threading
import time
import traceback
from typing import Callable, Optional

from .config import ExtractionSettings, PipelineConfig
from .cover_letters import CoverLetterSynthesizer
from .errors import CatastrophicError, PipelineError, RunCancelled, ValidationError, error_type_of
from .extractors import ExtractionCache, ExtractionCascade, build_cascade
from .intake import IntakeValidator
from .ledger import ApplicationLedger, ApplicationStore
from .logging_utils import LOG, fmt_outcomes, mask_identifier
from .metrics import JOBS_COMPLETED, JOBS_FAILED, MetricsRegistry
from .notifications import ConfirmationNotifier, DispatchBatcher, Mailer, OperatorAlerter, RequesterChannel
from .notifications.templates import rejection_text
from .reaper import ResourceReaper
from .shared import ApplicationRequest, PipelineOutcome, RunStatus
from .timeouts import TimeoutRunner
from .verifiers import ApplicantVerifier

ProgressCallback = Callable[[int], None]

VALIDATION_PATTERN_ALERT = "CV_VALIDATION_PATTERN"

# Progress checkpoints
PROGRESS_INTAKE = 10
PROGRESS_EXTRACTED = 30
PROGRESS_LETTERS = 50
PROGRESS_RECORDS = 70
PROGRESS_DISPATCHED = 85
PROGRESS_CONFIRMED = 95
PROGRESS_DONE = 100


def _is_set(event: Optional[threading.Event]) -> bool:
    return event is not None and event.is_set()


class FulfillmentPipeline:
    def __init__(
        self,
        *,
        intake: IntakeValidator,
        cascade: ExtractionCascade,
        synthesizer: CoverLetterSynthesizer,
        ledger: ApplicationLedger,
        batcher: DispatchBatcher,
        notifier: ConfirmationNotifier,
        alerter: OperatorAlerter,
        reaper: ResourceReaper,
        metrics: MetricsRegistry,
        rejection_alert_threshold: int = 3,
        _time: Callable[[], float] = time.monotonic,
    ):
        self.intake = intake
        self.cascade = cascade
        self.synthesizer = synthesizer
        self.ledger = ledger
        self.batcher = batcher
        self.notifier = notifier
        self.alerter = alerter
        self.reaper = reaper
        self.metrics = metrics
        self._rejection_alert_threshold = max(1, rejection_alert_threshold)
        self._time = _time

    def run(
        self,
        request: ApplicationRequest,
        progress: Optional[ProgressCallback] = None,
        cancel: Optional[threading.Event] = None,
    ) -> PipelineOutcome:
        """
        Execute one request end to end.

        Args:
            request: The application request
            progress: Optional callback receiving progress checkpoints
            cancel: Set by the caller when it abandons the run. It is checked
                between stages and before every outbound message, so an
                abandoned run stops without messaging anyone.

        Returns:
            PipelineOutcome with status completed or rejected

        Raises:
            RunCancelled: cancel was set (no alert is sent)
            PipelineError: Intake or infrastructure failure (operator already alerted)
            CatastrophicError: Any unexpected exception, wrapped
        """
        started = self._time()
        who = mask_identifier(request.requester_identifier)
        stage = "intake"

        def report(percent: int) -> None:
            if progress is None:
                return
            try:
                progress(percent)
            except Exception as e:
                LOG.warning("Progress callback failed at %d%%: %s", percent, e)

        def checkpoint(next_stage: str) -> None:
            if _is_set(cancel):
                LOG.warning("Run %s abandoned before %s; remaining side effects skipped", request.request_id, next_stage)
                raise RunCancelled(f"Run {request.request_id} cancelled before {next_stage}")

        LOG.info("Run %s started for %s (%d targets)", request.request_id, who, len(request.targets))
        try:
            text = self.intake.validate(request.document, request.requester_identifier)
            report(PROGRESS_INTAKE)

            stage = "extraction"
            checkpoint(stage)
            applicant = self.cascade.run(request.requester_identifier, text)
            report(PROGRESS_EXTRACTED)

            stage = "cover_letters"
            checkpoint(stage)
            letters = self.synthesizer.synthesize(applicant, text, request.targets)
            report(PROGRESS_LETTERS)

            stage = "records"
            checkpoint(stage)
            records = self.ledger.create_records(request, applicant, text)
            report(PROGRESS_RECORDS)

            stage = "dispatch"
            checkpoint(stage)
            results = self.batcher.dispatch(request, applicant, records, letters, cancel=cancel)
            checkpoint("reaper")
            self.reaper.schedule(request.document.path)
            report(PROGRESS_DISPATCHED)

            stage = "confirmation"
            checkpoint(stage)
            self.notifier.confirm(request.requester_identifier, applicant, request.targets, results)
            report(PROGRESS_CONFIRMED)
            report(PROGRESS_DONE)

        except ValidationError as e:
            checkpoint("rejection")
            return self._rejected(request, e, started)
        except RunCancelled:
            raise
        except PipelineError as e:
            if not _is_set(cancel):
                self._fail(request, e, stage, started, traceback.format_exc())
            raise
        except Exception as e:
            elapsed = self._time() - started
            wrapped = CatastrophicError(f"{type(e).__name__} during {stage}: {e}", elapsed_s=elapsed)
            if not _is_set(cancel):
                self._fail(request, wrapped, stage, started, traceback.format_exc())
            raise wrapped from e

        elapsed = self._time() - started
        self.metrics.increment(JOBS_COMPLETED)
        self.metrics.clear_rejection_streak()
        LOG.info("Run %s for %s done in %.1fs | %s", request.request_id, who, elapsed, fmt_outcomes(results))
        return PipelineOutcome(
            request_id=request.request_id,
            status=RunStatus.COMPLETED,
            applicant=applicant,
            records=list(records),
            dispatch_results=results,
            elapsed_s=elapsed,
        )

    def _rejected(self, request: ApplicationRequest, error: ValidationError, started: float) -> PipelineOutcome:
        elapsed = self._time() - started
        LOG.warning("Run %s rejected for %s: %s", request.request_id, mask_identifier(request.requester_identifier), error)
        self.notifier.reject(request.requester_identifier, rejection_text(str(error)))
        self.reaper.schedule(request.document.path)

        streak = self.metrics.record_rejection()
        if streak % self._rejection_alert_threshold == 0:
            self.alerter.alert(
                VALIDATION_PATTERN_ALERT,
                request.requester_identifier,
                f"{streak} consecutive CV validation failures",
                details={"request_id": request.request_id, "reasons": "; ".join(error.reasons)},
            )
        return PipelineOutcome(
            request_id=request.request_id,
            status=RunStatus.REJECTED,
            elapsed_s=elapsed,
            rejection_reason=str(error),
        )

    def _fail(self, request: ApplicationRequest, error: Exception, stage: str, started: float, stack: str) -> None:
        self.metrics.increment(JOBS_FAILED)
        self.alerter.alert(
            error_type_of(error),
            request.requester_identifier,
            str(error),
            details={
                "request_id": request.request_id,
                "stage": stage,
                "elapsed_s": round(self._time() - started, 2),
                "target_count": len(request.targets),
            },
            stack=stack,
        )


def build_verifier(settings: ExtractionSettings) -> ApplicantVerifier:
    return ApplicantVerifier.with_extensions(
        extra_name_tokens=settings.extra_disallowed_name_tokens,
        extra_domains=settings.extra_placeholder_domains,
        min_name_length=settings.min_name_length,
        max_name_length=settings.max_name_length,
    )


def build_pipeline(
    config: PipelineConfig,
    *,
    store: ApplicationStore,
    mailer: Mailer,
    channel: RequesterChannel,
    runner: TimeoutRunner,
    metrics: MetricsRegistry,
    reaper: ResourceReaper,
    client=None,
    cache: Optional[ExtractionCache] = None,
    io_runner: Optional[TimeoutRunner] = None,
) -> FulfillmentPipeline:
    """
    Wire the standard stages from configuration.

    runner races completion calls; io_runner races store I/O and sends. They
    are separate pools so abandoned completion calls cannot starve writes.
    An io_runner is created when none is given.
    """
    if io_runner is None:
        io_runner = TimeoutRunner(thread_name_prefix="io")
    verifier = build_verifier(config.extraction)
    ledger = ApplicationLedger(
        store, io_runner, client=client, completion_runner=runner, settings=config.ledger, metrics=metrics
    )
    return FulfillmentPipeline(
        intake=IntakeValidator(),
        cascade=build_cascade(
            config.extraction,
            verifier=verifier,
            cache=cache,
            client=client,
            runner=runner,
            metrics=metrics,
        ),
        synthesizer=CoverLetterSynthesizer(runner, client=client, settings=config.cover_letters, metrics=metrics),
        ledger=ledger,
        batcher=DispatchBatcher(mailer, io_runner, ledger, settings=config.dispatch, metrics=metrics),
        notifier=ConfirmationNotifier(mailer, channel, config.alerts),
        alerter=OperatorAlerter(mailer, config.alerts, metrics=metrics),
        reaper=reaper,
        metrics=metrics,
        rejection_alert_threshold=config.alerts.rejection_alert_threshold,
    )
