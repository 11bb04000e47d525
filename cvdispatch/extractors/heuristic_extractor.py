"""
Pattern-based applicant extraction.

No network, bounded cost, deterministic: the same text always yields the
same candidate. Name sources, tried in order:

1. labeled fields ("Name:", "Full Name:")
2. the name written before "Nationality:", "Date of birth:" or "Gender:"
3. a capitalized 2-4 word name at the document head (initials allowed)
4. the name on the line just before the email address

Email and phone come from regex anchors, labeled values first.
"""

from __future__ import annotations

import re
from typing import Iterator, List, Optional, Tuple

from ..shared import ExtractedApplicant
from ..verifiers import ApplicantVerifier, normalize_phone
from .base import ApplicantExtractor, ExtractionContext

HEAD_LINES = 5

_WORD = r"(?:[A-Z][A-Za-z'\-]+|[A-Z]\.)"
NAME_SHAPE_RE = re.compile(rf"^{_WORD}(?:\s+{_WORD}){{1,3}}$")

LABELED_NAME_RE = re.compile(r"^\s*(?:full\s+name|name)\s*[:\-]\s*(?P<value>.+)$", re.IGNORECASE)
BEFORE_LABEL_RE = re.compile(r"^(?P<value>.*?)\s*\b(?:nationality|date\s+of\s+birth|gender)\s*:", re.IGNORECASE)
_NEXT_LABEL_RE = re.compile(
    r"\s+\b(?:e-?mail|phone|tel|telephone|mobile|address|nationality|date\s+of\s+birth|gender)\b\s*[:\-].*$",
    re.IGNORECASE,
)
_SEGMENT_SPLIT_RE = re.compile(r"\s*(?:[,|\u2022;]|\s{2,}|\s[\-\u2013]\s)\s*")

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}")
LABELED_EMAIL_RE = re.compile(r"\be-?mail\s*(?:address)?\s*[:\-]\s*(?P<value>\S+@\S+)", re.IGNORECASE)
PHONE_CANDIDATE_RE = re.compile(r"(?<![\w+])\+?\d[\d\s\-()]{7,22}\d(?!\d)")
LABELED_PHONE_RE = re.compile(
    r"\b(?:phone|tel|telephone|mobile)\s*(?:no\.?|number)?\s*[:\-]\s*(?P<value>\+?[\d\s\-()]{8,24})",
    re.IGNORECASE,
)

# Confidence by name source
_CONFIDENCE = {"labeled": 0.9, "before_label": 0.8, "head": 0.7, "before_email": 0.6}


def _lines(text: str) -> List[str]:
    return [line.strip() for line in text.split("\n") if line.strip()]


def _first_segment(value: str) -> str:
    value = _NEXT_LABEL_RE.sub("", value.strip())
    parts = _SEGMENT_SPLIT_RE.split(value, maxsplit=1)
    return parts[0].strip() if parts else ""


def _normalize_name(value: str) -> str:
    value = re.sub(r"\s+", " ", value).strip(" .,:;-")
    if value.isupper():
        value = value.title()
    return value


def as_name(value: str) -> Optional[str]:
    """Return value as a name if it has the shape of one, else None."""
    candidate = _normalize_name(_first_segment(value))
    if NAME_SHAPE_RE.match(candidate):
        return candidate
    return None


def find_email(text: str, verifier: ApplicantVerifier) -> str:
    m = LABELED_EMAIL_RE.search(text)
    if m:
        labeled = m.group("value").strip(".,;:()<>")
        if verifier.is_valid_email(labeled):
            return labeled
    for match in EMAIL_RE.finditer(text):
        email = match.group(0).strip(".")
        if verifier.is_valid_email(email):
            return email
    return ""


def _phone_from_candidate(raw: str, verifier: ApplicantVerifier) -> str:
    # shortest valid prefix, so trailing numbers do not get glued on
    groups = raw.strip().split()
    for i in range(1, len(groups) + 1):
        candidate = " ".join(groups[:i])
        if verifier.is_valid_phone(candidate):
            return normalize_phone(candidate)
    return ""


def find_phone(text: str, verifier: ApplicantVerifier) -> str:
    m = LABELED_PHONE_RE.search(text)
    if m:
        phone = _phone_from_candidate(m.group("value"), verifier)
        if phone:
            return phone
    for match in PHONE_CANDIDATE_RE.finditer(text):
        phone = _phone_from_candidate(match.group(0), verifier)
        if phone:
            return phone
    return ""


def name_candidates(lines: List[str]) -> Iterator[Tuple[str, str]]:
    """Yield (kind, name) in priority order."""
    for line in lines:
        m = LABELED_NAME_RE.match(line)
        if m:
            name = as_name(m.group("value"))
            if name:
                yield "labeled", name

    for idx, line in enumerate(lines):
        m = BEFORE_LABEL_RE.match(line)
        if not m:
            continue
        name = as_name(m.group("value")) if m.group("value").strip() else None
        if name is None and idx > 0:
            name = as_name(lines[idx - 1])
        if name:
            yield "before_label", name

    for line in lines[:HEAD_LINES]:
        name = as_name(line)
        if name:
            yield "head", name

    for idx, line in enumerate(lines):
        m = EMAIL_RE.search(line)
        if not m:
            continue
        prefix = line[: m.start()].strip()
        name = as_name(prefix) if prefix else None
        if name is None and idx > 0:
            name = as_name(lines[idx - 1])
        if name:
            yield "before_email", name
        break


def plausible_name_lines(text: str) -> Iterator[str]:
    """Every line anywhere in the text that has the shape of a 2-4 word name."""
    for line in _lines(text):
        name = as_name(line)
        if name:
            yield name


def extract_applicant_fields(text: str, verifier: ApplicantVerifier) -> ExtractedApplicant:
    lines = _lines(text)

    name = ""
    confidence = 0.0
    first_seen: Optional[Tuple[str, str]] = None
    for kind, candidate in name_candidates(lines):
        if first_seen is None:
            first_seen = (kind, candidate)
        if verifier.is_valid_name(candidate):
            name, confidence = candidate, _CONFIDENCE[kind]
            break
    if not name and first_seen is not None:
        # keep it for the merge step; it will not pass the predicate alone
        name, confidence = first_seen[1], 0.1

    return ExtractedApplicant(
        name=name,
        email=find_email(text, verifier),
        phone=find_phone(text, verifier),
        confidence_score=confidence,
        extraction_source=HeuristicApplicantExtractor.name,
    )


class HeuristicApplicantExtractor(ApplicantExtractor):
    """
    Regex and layout heuristics over the document text.
    """

    name = "heuristic"

    def __init__(self, verifier: Optional[ApplicantVerifier] = None):
        self._verifier = verifier or ApplicantVerifier()

    def extract(self, context: ExtractionContext) -> Tuple[Optional[ExtractedApplicant], bool]:
        if not context.text.strip():
            return None, False
        return self._judge(extract_applicant_fields(context.text, self._verifier), context)
