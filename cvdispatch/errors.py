"""
Exception taxonomy for the fulfillment pipeline.

Which errors abort a run, which are retried by the worker pool and which are
recovered locally is decided by type, never by message text.
"""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    error_type = "PIPELINE_ERROR"
    retryable = True


class IntakeError(PipelineError):
    """The submitted document is missing, empty or unreadable."""

    error_type = "INTAKE_FAILED"
    retryable = False


class ValidationError(PipelineError):
    """No strategy produced an applicant identity that passes the validity predicate."""

    error_type = "CV_VALIDATION_FAILED"
    retryable = False

    def __init__(self, message: str, *, reasons: Optional[list] = None):
        super().__init__(message)
        self.reasons = list(reasons or [])


class ExternalServiceTimeout(PipelineError):
    """An external call lost its timeout race."""

    error_type = "EXTERNAL_SERVICE_TIMEOUT"

    def __init__(self, op_name: str, timeout_s: float):
        super().__init__(f"{op_name} timed out after {timeout_s:g}s")
        self.op_name = op_name
        self.timeout_s = timeout_s


class PersistenceError(PipelineError):
    """A durable-store write failed after all retry attempts."""

    error_type = "DATABASE_ERROR"


class DispatchError(PipelineError):
    """An outbound notification could not be delivered."""

    error_type = "DISPATCH_FAILED"


class RunCancelled(PipelineError):
    """The caller abandoned the run; its remaining side effects are skipped."""

    error_type = "RUN_CANCELLED"


class CatastrophicError(PipelineError):
    """An unexpected exception reached the top of a run."""

    error_type = "CRITICAL_PROCESSING_ERROR"

    def __init__(self, message: str, *, elapsed_s: float = 0.0):
        super().__init__(message)
        self.elapsed_s = elapsed_s


def error_type_of(exc: BaseException) -> str:
    """Alert-friendly error type for any exception."""
    if isinstance(exc, PipelineError):
        return exc.error_type
    return CatastrophicError.error_type


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, PipelineError):
        return exc.retryable
    return True


class CompletionError(PipelineError):
    """The completion service failed or returned nothing usable."""

    error_type = "AI_SERVICE_ERROR"
