"""
Queue worker: runs pipeline jobs with bounded concurrency.

Each attempt runs under a wall-clock budget. An attempt that overruns it is
abandoned: its cancellation event is set, so the run stops at its next
checkpoint without sending anything further. Retryable failures are retried
with backoff; once attempts are exhausted the job is dead-lettered and the
operator is alerted. Rejected CVs and intake failures are final.
"""

from __future__ import annotations

import threading
import time
import traceback
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Callable, List, Mapping, Optional, Sequence

from .config import WorkerSettings
from .errors import IntakeError, error_type_of, is_retryable
from .logging_utils import LOG, mask_identifier
from .metrics import JOBS_DEAD_LETTERED, MetricsRegistry
from .notifications import OperatorAlerter
from .pipeline import FulfillmentPipeline
from .retry import backoff_delay
from .shared import ApplicationRequest, PipelineOutcome, RunStatus
from .timeouts import TimeoutRunner

DEAD_LETTER_ALERT = "JOB_DEAD_LETTERED"


class JobStatus(str, Enum):
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"
    DEAD_LETTERED = "dead_lettered"


@dataclass
class JobResult:
    job_id: str
    status: JobStatus
    attempts: int = 0
    outcome: Optional[PipelineOutcome] = None
    error: Optional[str] = None


def _field(payload: Any, key: str) -> str:
    if not isinstance(payload, Mapping):
        return ""
    return str(payload.get(key) or "")


class ApplicationWorker:
    def __init__(
        self,
        pipeline: FulfillmentPipeline,
        *,
        settings: Optional[WorkerSettings] = None,
        alerter: Optional[OperatorAlerter] = None,
        metrics: Optional[MetricsRegistry] = None,
        _sleep: Callable[[float], None] = time.sleep,
    ):
        self._pipeline = pipeline
        self._settings = settings or WorkerSettings()
        self._alerter = alerter or pipeline.alerter
        self._metrics = metrics or pipeline.metrics
        self._sleep = _sleep
        # abandoned attempts keep their thread until the next checkpoint
        slots = max(1, self._settings.concurrency) * max(1, self._settings.retry.max_attempts)
        self._budget = TimeoutRunner(max_workers=slots, thread_name_prefix="run")

    def shutdown(self) -> None:
        self._budget.shutdown()

    def process(self, payload: Mapping[str, Any], *, job_id: Optional[str] = None) -> JobResult:
        """Parse and run one job payload, retrying as configured."""
        try:
            request = ApplicationRequest.from_payload(payload)
        except IntakeError as e:
            requester = _field(payload, "requesterIdentifier")
            LOG.error("Rejected malformed job %s: %s", job_id or "-", e)
            self._alerter.alert(e.error_type, requester, str(e), details={"job_id": job_id or "-"})
            return JobResult(job_id or "-", JobStatus.FAILED, error=str(e))

        job_id = job_id or request.request_id
        policy = self._settings.retry
        attempts = max(1, policy.max_attempts)
        last_error: Optional[BaseException] = None

        for attempt in range(attempts):
            cancel = threading.Event()
            try:
                outcome = self._budget.call(
                    partial(self._pipeline.run, request, cancel=cancel),
                    timeout_s=self._settings.run_budget_s,
                    op_name=f"Run {request.request_id}",
                )
            except Exception as e:
                cancel.set()
                last_error = e
                if not is_retryable(e):
                    LOG.error("Job %s failed (not retryable): %s", job_id, e)
                    return JobResult(job_id, JobStatus.FAILED, attempt + 1, error=str(e))
                if attempt < attempts - 1:
                    delay = backoff_delay(policy, attempt)
                    LOG.warning(
                        "Job %s attempt %d/%d failed (%s); retrying in %.1fs",
                        job_id, attempt + 1, attempts, error_type_of(e), delay,
                    )
                    self._sleep(delay)
                continue

            status = JobStatus.COMPLETED if outcome.status == RunStatus.COMPLETED else JobStatus.REJECTED
            return JobResult(job_id, status, attempt + 1, outcome=outcome)

        return self._dead_letter(job_id, request, attempts, last_error)

    def _dead_letter(
        self,
        job_id: str,
        request: ApplicationRequest,
        attempts: int,
        error: Optional[BaseException],
    ) -> JobResult:
        message = str(error) if error else "unknown error"
        LOG.error("Job %s dead-lettered after %d attempts: %s", job_id, attempts, message)
        if self._metrics:
            self._metrics.increment(JOBS_DEAD_LETTERED)
        # no attempt will use the document again
        self._pipeline.reaper.schedule(request.document.path)
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__)) if error else None
        self._alerter.alert(
            DEAD_LETTER_ALERT,
            request.requester_identifier,
            f"Job {job_id} failed {attempts} times: {message}",
            details={
                "request_id": request.request_id,
                "last_error_type": error_type_of(error) if error else "-",
                "target_count": len(request.targets),
            },
            stack=stack,
        )
        return JobResult(job_id, JobStatus.DEAD_LETTERED, attempts, error=message)

    def run_all(self, payloads: Sequence[Mapping[str, Any]]) -> List[JobResult]:
        """
        Process payloads with the configured concurrency.

        Returns:
            One JobResult per payload, in input order
        """
        results: List[Optional[JobResult]] = [None] * len(payloads)
        total = len(payloads)
        done = 0
        with ThreadPoolExecutor(max_workers=max(1, self._settings.concurrency), thread_name_prefix="job") as executor:
            future_to_idx = {
                executor.submit(self.process, payload, job_id=_field(payload, "requestId") or f"job-{idx + 1}"): idx
                for idx, payload in enumerate(payloads)
            }
            for future in as_completed(future_to_idx):
                idx = future_to_idx[future]
                done += 1
                try:
                    result = future.result()
                except Exception as e:
                    LOG.error("Job %d crashed outside the pipeline: %s", idx + 1, e)
                    result = JobResult(f"job-{idx + 1}", JobStatus.FAILED, error=str(e))
                results[idx] = result
                requester = _field(payloads[idx], "requesterIdentifier")
                LOG.info("[%d/%d] %s %s (%s)", done, total, result.job_id, result.status.value, mask_identifier(requester))
        return [r for r in results if r is not None]
