"""
Enhanced merge: the last strategy in the cascade.

Combines the AI and heuristic partials field by field, then derives a name
from the email address or from any name-shaped line if one is still
missing.
"""

from __future__ import annotations

import re
from typing import Optional, Tuple

from ..shared import ExtractedApplicant
from ..verifiers import ApplicantVerifier
from .base import ApplicantExtractor, ExtractionContext
from .heuristic_extractor import HeuristicApplicantExtractor, extract_applicant_fields, plausible_name_lines
from .openai_extractor import OpenAIApplicantExtractor

_LOCAL_PART_SPLIT_RE = re.compile(r"[._\-]+")


def name_from_email(email: str) -> Optional[str]:
    """jane.okoro@mail.com -> "Jane Okoro"; None unless the local part is dotted."""
    if "@" not in (email or ""):
        return None
    local = email.split("@", 1)[0]
    parts = [p for p in _LOCAL_PART_SPLIT_RE.split(local) if p]
    if not 2 <= len(parts) <= 4:
        return None
    if not all(p.isalpha() for p in parts):
        return None
    return " ".join(p.capitalize() for p in parts)


class FallbackMergeExtractor(ApplicantExtractor):
    """
    Field-by-field merge of earlier partial results.
    """

    name = "fallback"

    def __init__(self, verifier: Optional[ApplicantVerifier] = None):
        self._verifier = verifier or ApplicantVerifier()

    def _pick(self, ai_value: str, heuristic_value: str, is_valid) -> str:
        if ai_value and is_valid(ai_value):
            return ai_value
        return heuristic_value or ""

    def extract(self, context: ExtractionContext) -> Tuple[Optional[ExtractedApplicant], bool]:
        v = self._verifier
        ai = context.partials.get(OpenAIApplicantExtractor.name) or ExtractedApplicant()
        heuristic = context.partials.get(HeuristicApplicantExtractor.name)
        if heuristic is None:
            heuristic = extract_applicant_fields(context.text, v)

        name = self._pick(ai.name, heuristic.name, v.is_valid_name)
        email = self._pick(ai.email, heuristic.email, v.is_valid_email)
        phone = self._pick(ai.phone, heuristic.phone, v.is_valid_phone)

        if not v.is_valid_name(name):
            derived = name_from_email(email)
            if derived and v.is_valid_name(derived):
                name = derived
            else:
                name = next((n for n in plausible_name_lines(context.text) if v.is_valid_name(n)), name)

        merged = ExtractedApplicant(
            name=name,
            email=email,
            phone=phone,
            confidence_score=0.5,
            extraction_source=self.name,
        )
        return self._judge(merged, context)
