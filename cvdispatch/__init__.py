# cvdispatch/__init__.py

from .config import PipelineConfig
from .errors import (
    CatastrophicError,
    DispatchError,
    ExternalServiceTimeout,
    IntakeError,
    PersistenceError,
    PipelineError,
    RunCancelled,
    ValidationError,
)
from .pipeline import FulfillmentPipeline, build_pipeline
from .shared import ApplicationRequest, PipelineOutcome
from .worker import ApplicationWorker

__all__ = [
    "ApplicationRequest",
    "ApplicationWorker",
    "CatastrophicError",
    "DispatchError",
    "ExternalServiceTimeout",
    "FulfillmentPipeline",
    "IntakeError",
    "PersistenceError",
    "PipelineConfig",
    "PipelineError",
    "PipelineOutcome",
    "RunCancelled",
    "ValidationError",
    "build_pipeline",
]
