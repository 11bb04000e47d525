"""
Shared models and text utilities.

Defines the data structures that flow through a pipeline run (request,
applicant, artifacts, records, dispatch results) and the text normalization
and prompt loading helpers used across extraction, synthesis and dispatch.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import IntakeError
from .logging_utils import LOG


# ------------------------- Models -------------------------

@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    errors: List[str]
    warnings: List[str]


@dataclass(frozen=True)
class DocumentRef:
    path: Path
    mime_type: str = ""
    original_name: str = ""

    @property
    def extension(self) -> str:
        """File extension (without dot) from the original name, the path or the MIME type."""
        for name in (self.original_name, self.path.name):
            suffix = Path(name).suffix.lstrip(".").lower()
            if suffix:
                return suffix
        mime = (self.mime_type or "").lower()
        if mime == "application/pdf":
            return "pdf"
        if "wordprocessingml" in mime:
            return "docx"
        if mime.startswith("text/"):
            return "txt"
        return "bin"


@dataclass(frozen=True)
class TargetPosting:
    id: str
    title: str
    company: str
    location: str = ""
    recipient_contact: str = ""
    salary: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "TargetPosting":
        target_id = data.get("id")
        if target_id is None or str(target_id).strip() == "":
            raise IntakeError("Target posting without an id")
        salary = data.get("salary")
        return cls(
            id=str(target_id),
            title=str(data.get("title") or "").strip(),
            company=str(data.get("company") or "").strip(),
            location=str(data.get("location") or "").strip(),
            recipient_contact=str(data.get("recipientContact") or data.get("email") or "").strip(),
            salary=str(salary) if salary not in (None, "") else None,
        )


@dataclass(frozen=True)
class ApplicationRequest:
    """
    One unit of work: a submitted document plus the postings to apply to.

    Immutable once accepted. Duplicate target ids are collapsed, keeping
    the first occurrence.
    """
    request_id: str
    requester_identifier: str
    document: DocumentRef
    targets: Tuple[TargetPosting, ...]

    def __post_init__(self) -> None:
        seen = set()
        unique: List[TargetPosting] = []
        for target in self.targets:
            if target.id in seen:
                LOG.warning("Dropping duplicate target %s in request %s", target.id, self.request_id)
                continue
            seen.add(target.id)
            unique.append(target)
        object.__setattr__(self, "targets", tuple(unique))

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ApplicationRequest":
        """
        Build a request from a queue job payload.

        Raises:
            IntakeError: If the payload is missing the requester, document or targets
        """
        if not isinstance(payload, Mapping):
            raise IntakeError("Job payload must be an object")

        requester = str(payload.get("requesterIdentifier") or "").strip()
        if not requester:
            raise IntakeError("Job payload has no requesterIdentifier")

        document = payload.get("document") or {}
        handle = document.get("handleOrPath") if isinstance(document, Mapping) else None
        if not handle:
            raise IntakeError("Job payload has no document.handleOrPath")

        raw_targets = payload.get("targets")
        if not isinstance(raw_targets, list) or not raw_targets:
            raise IntakeError("Job payload has no targets")

        return cls(
            request_id=str(payload.get("requestId") or uuid.uuid4()),
            requester_identifier=requester,
            document=DocumentRef(
                path=Path(str(handle)),
                mime_type=str(document.get("mimeType") or ""),
                original_name=str(document.get("originalName") or ""),
            ),
            targets=tuple(TargetPosting.from_payload(t) for t in raw_targets),
        )


@dataclass(frozen=True)
class ExtractedApplicant:
    name: str = ""
    email: str = ""
    phone: str = ""
    confidence_score: float = 0.0
    extraction_source: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "confidence": self.confidence_score,
            "source": self.extraction_source,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, source: str) -> "ExtractedApplicant":
        confidence = data.get("confidence", data.get("confidence_score", 0.0))
        try:
            confidence = float(confidence)
        except (TypeError, ValueError):
            confidence = 0.0
        return cls(
            name=clean_text(str(data.get("name") or "")),
            email=str(data.get("email") or "").strip(),
            phone=str(data.get("phone") or "").strip(),
            confidence_score=max(0.0, min(1.0, confidence)),
            extraction_source=source,
        )


class LetterSource(str, Enum):
    AI = "ai"
    TEMPLATE = "template"
    DEFAULT = "default"


DEFAULT_LETTER_KEY = "default"


@dataclass(frozen=True)
class CoverLetterArtifact:
    target_id: str
    text: str
    source: LetterSource


class ApplicationStatus(str, Enum):
    SUBMITTED = "submitted"
    EMAIL_SENT = "email_sent"
    EMAIL_FAILED = "email_failed"


@dataclass
class ApplicationRecord:
    """
    One ledger row per (request, target).

    persisted is False when the durable write failed after all retries;
    such a record exists only for reporting within the run.
    """
    id: str
    request_id: str
    requester_identifier: str
    target_id: str
    cv_snapshot: str
    match_score: int
    status: ApplicationStatus = ApplicationStatus.SUBMITTED
    applied_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    email_sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    applicant_name: str = ""
    applicant_email: str = ""
    applicant_phone: str = ""
    persisted: bool = True


@dataclass(frozen=True)
class DispatchResult:
    target_id: str
    success: bool
    reason: Optional[str] = None


class RunStatus(str, Enum):
    COMPLETED = "completed"
    REJECTED = "rejected"


@dataclass
class PipelineOutcome:
    request_id: str
    status: RunStatus
    applicant: Optional[ExtractedApplicant] = None
    records: List[ApplicationRecord] = field(default_factory=list)
    dispatch_results: List[DispatchResult] = field(default_factory=list)
    elapsed_s: float = 0.0
    rejection_reason: Optional[str] = None

    @property
    def sent_count(self) -> int:
        return sum(1 for r in self.dispatch_results if r.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.dispatch_results if not r.success)


# ------------------------- Text helpers -------------------------

_WS_RE = re.compile(r"[ \t\f\v]+")
_CONTROL_RE = re.compile(r"[\u0000-\u0008\u000B-\u001F\u007F-\u009F]")


def normalize_text_for_processing(s: str) -> str:
    """
    Normalize what we consider "text":
    - convert NBSP to normal space
    - replace soft hyphen with real hyphen
    - normalize newlines
    - replace control characters with spaces
    """
    s = s.replace("\u00A0", " ")
    s = s.replace("\u00AD", "-")  # preserve "high-quality"
    s = s.replace("\r\n", "\n").replace("\r", "\n")
    s = _CONTROL_RE.sub(" ", s)
    return s


def clean_text(text: str) -> str:
    """Collapse all whitespace to single spaces."""
    text = normalize_text_for_processing(text)
    return re.sub(r"\s+", " ", text).strip()


def clean_document_text(text: str) -> str:
    """
    Clean extracted document text while keeping line structure,
    which the heuristic extractor relies on.
    """
    text = normalize_text_for_processing(text)
    lines = [_WS_RE.sub(" ", line).strip() for line in text.split("\n")]
    joined = "\n".join(lines)
    return re.sub(r"\n{3,}", "\n\n", joined).strip()


def replace_name_placeholders(text: str, applicant_name: str) -> str:
    return re.sub(r"\[(?:Applicant Name|Your Name)\]", applicant_name, text)


# ---------------------- Prompt Loading ----------------------

_PROMPT_DIRS = (
    Path(__file__).parent / "extractors" / "prompts",
    Path(__file__).parent / "cover_letters" / "prompts",
    Path(__file__).parent / "ledger" / "prompts",
)


def load_prompt(prompt_name: str) -> Optional[str]:
    """
    Load a prompt template from a Markdown file.

    Searches the extractor, cover letter and ledger prompt folders in order.

    Args:
        prompt_name: Name of the prompt file (without .md extension)

    Returns:
        The prompt text, or None if the file doesn't exist or can't be read
    """
    for prompt_dir in _PROMPT_DIRS:
        prompt_path = prompt_dir / f"{prompt_name}.md"
        if not prompt_path.exists():
            continue
        try:
            return prompt_path.read_text(encoding="utf-8")
        except OSError as e:
            LOG.error("Failed to read prompt %s: %s", prompt_path, e)
            return None
    LOG.error("Prompt not found: %s", prompt_name)
    return None


def format_prompt(prompt_name: str, **kwargs) -> Optional[str]:
    """
    Load a prompt template and format it with the provided variables.

    Returns:
        The formatted prompt text, or None if the file doesn't exist or can't be read
    """
    template = load_prompt(prompt_name)
    if template is None:
        return None

    try:
        return template.format(**kwargs)
    except (KeyError, IndexError, ValueError) as e:
        LOG.error("Failed to format prompt %s: %s", prompt_name, e)
        return None
