"""
Pipeline configuration data structures.

Defines per-stage settings dataclasses and the PipelineConfig that groups
them. Defaults mirror the production worker; everything can be overridden
from the environment or constructed directly in tests.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Tuple


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with optional full jitter."""
    max_attempts: int = 3
    base_delay_s: float = 0.5
    max_delay_s: float = 10.0
    jitter: bool = True


@dataclass(frozen=True)
class ExtractionSettings:
    ai_timeout_s: float = 45.0
    text_prefix_chars: int = 3000
    cache_ttl_s: float = 7200.0
    # appended to the verifier defaults
    extra_disallowed_name_tokens: Tuple[str, ...] = ()
    extra_placeholder_domains: Tuple[str, ...] = ()
    min_name_length: int = 4
    max_name_length: int = 60
    # cascade order, by registered strategy name
    strategies: Tuple[str, ...] = ("cached", "openai", "heuristic", "fallback")


@dataclass(frozen=True)
class CoverLetterSettings:
    generation_timeout_s: float = 60.0
    min_letter_length: int = 100
    cv_summary_chars: int = 1500


@dataclass(frozen=True)
class LedgerSettings:
    scoring_timeout_s: float = 20.0
    default_match_score: int = 75
    write_timeout_s: float = 10.0
    write_backoff: BackoffPolicy = field(default_factory=BackoffPolicy)


@dataclass(frozen=True)
class DispatchSettings:
    batch_size: int = 3
    inter_batch_delay_s: float = 1.5
    send_timeout_s: float = 20.0
    sender_address: str = "SmartCV Recruitment <recruit@smartcv.example>"


@dataclass(frozen=True)
class ReaperSettings:
    retention_s: float = 600.0


@dataclass(frozen=True)
class SmtpSettings:
    host: str = "localhost"
    port: int = 587
    user: Optional[str] = None
    password: Optional[str] = None
    use_starttls: bool = True
    timeout_s: float = 20.0


@dataclass(frozen=True)
class AlertSettings:
    confirmation_sender: str = "SmartCV <noreply@smartcv.example>"
    admin_email: Optional[str] = None
    webhook_url: Optional[str] = None
    alert_timeout_s: float = 10.0
    rejection_alert_threshold: int = 3
    environment: str = "development"


@dataclass(frozen=True)
class WorkerSettings:
    concurrency: int = 5
    run_budget_s: float = 300.0
    retry: BackoffPolicy = field(
        default_factory=lambda: BackoffPolicy(max_attempts=3, base_delay_s=10.0, max_delay_s=60.0)
    )


@dataclass(frozen=True)
class OpenAISettings:
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    base_url: Optional[str] = None


@dataclass(frozen=True)
class PipelineConfig:
    """Configuration for a pipeline process."""

    extraction: ExtractionSettings = field(default_factory=ExtractionSettings)
    cover_letters: CoverLetterSettings = field(default_factory=CoverLetterSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    dispatch: DispatchSettings = field(default_factory=DispatchSettings)
    reaper: ReaperSettings = field(default_factory=ReaperSettings)
    smtp: SmtpSettings = field(default_factory=SmtpSettings)
    alerts: AlertSettings = field(default_factory=AlertSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    openai: OpenAISettings = field(default_factory=OpenAISettings)
    db_path: Path = Path("cvdispatch.db")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PipelineConfig":
        """Build a configuration from environment variables, keeping defaults for anything unset."""
        env = os.environ if environ is None else environ

        def _get(name: str) -> Optional[str]:
            value = env.get(name)
            return value.strip() if value and value.strip() else None

        smtp_defaults = SmtpSettings()
        smtp = SmtpSettings(
            host=_get("SMTP_HOST") or smtp_defaults.host,
            port=int(_get("SMTP_PORT") or smtp_defaults.port),
            user=_get("SMTP_USER"),
            password=_get("SMTP_PASS"),
            use_starttls=(_get("SMTP_STARTTLS") or "1") not in ("0", "false", "no"),
        )

        alert_defaults = AlertSettings()
        alerts = AlertSettings(
            confirmation_sender=_get("CONFIRMATION_FROM") or alert_defaults.confirmation_sender,
            admin_email=_get("ADMIN_EMAIL"),
            webhook_url=_get("ALERT_WEBHOOK_URL"),
            environment=_get("CVDISPATCH_ENV") or alert_defaults.environment,
        )

        dispatch_defaults = DispatchSettings()
        dispatch = DispatchSettings(
            sender_address=_get("RECRUITER_FROM") or dispatch_defaults.sender_address,
        )

        openai_defaults = OpenAISettings()
        openai_settings = OpenAISettings(
            api_key=_get("OPENAI_API_KEY"),
            model=_get("OPENAI_MODEL") or openai_defaults.model,
            base_url=_get("OPENAI_BASE_URL"),
        )

        return cls(
            dispatch=dispatch,
            smtp=smtp,
            alerts=alerts,
            openai=openai_settings,
            db_path=Path(_get("CVDISPATCH_DB") or "cvdispatch.db"),
        )
