"""
Validity predicate for extracted applicant identity.

A candidate is usable when its name looks like a person's name AND it carries
at least one usable contact: a real email address or a recognized phone
number. Every list here is a constructor argument so deployments can extend
it without code changes.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Pattern, Sequence

from ..shared import ExtractedApplicant, VerificationResult
from .base import ApplicantCheck

# Words that show up at a document head but are never part of a name:
# section headings, job titles, locations.
DEFAULT_DISALLOWED_NAME_TOKENS = frozenset({
    "curriculum", "vitae", "resume", "cv", "profile", "summary", "objective",
    "experience", "education", "skills", "referee", "referees", "reference",
    "references", "contact", "address", "phone", "email", "available",
    "request", "personal", "details", "information",
    "accountant", "manager", "junior", "senior", "intern", "engineer",
    "developer", "officer", "assistant", "professional", "project",
    "team", "leader", "leadership",
    "lagos", "nigeria", "abuja",
})

DEFAULT_PLACEHOLDER_DOMAINS = frozenset({
    "example.com", "domain.com", "email.com", "test.com", "smartcvnaija.com",
    "mailinator.com", "tempmail.com", "10minutemail.com", "guerrillamail.com",
    "yopmail.com", "trashmail.com",
})

DEFAULT_PHONE_PATTERNS: Sequence[Pattern[str]] = (
    re.compile(r"^(?:\+234|234|0)[789][01]\d{8}$"),  # Nigerian mobile
    re.compile(r"^\+\d{10,15}$"),  # E.164
)

NAME_RE = re.compile(r"^[A-Za-z][A-Za-z .'\-]*$")
EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+\-]+@([A-Za-z0-9.\-]+\.[A-Za-z]{2,})$")
_PHONE_STRIP_RE = re.compile(r"[\s\-()]")


def normalize_phone(phone: str) -> str:
    return _PHONE_STRIP_RE.sub("", phone or "")


class ApplicantVerifier(ApplicantCheck):
    """
    Name plus (email or phone) validity predicate.
    """

    def __init__(
        self,
        *,
        disallowed_name_tokens: Optional[Iterable[str]] = None,
        placeholder_domains: Optional[Iterable[str]] = None,
        phone_patterns: Optional[Sequence[Pattern[str]]] = None,
        min_name_length: int = 4,
        max_name_length: int = 60,
    ):
        tokens = DEFAULT_DISALLOWED_NAME_TOKENS if disallowed_name_tokens is None else disallowed_name_tokens
        domains = DEFAULT_PLACEHOLDER_DOMAINS if placeholder_domains is None else placeholder_domains
        self._disallowed = frozenset(t.lower() for t in tokens)
        self._placeholder_domains = frozenset(d.lower() for d in domains)
        self._phone_patterns = tuple(phone_patterns or DEFAULT_PHONE_PATTERNS)
        self._min_name_length = min_name_length
        self._max_name_length = max_name_length

    @classmethod
    def with_extensions(
        cls,
        *,
        extra_name_tokens: Iterable[str] = (),
        extra_domains: Iterable[str] = (),
        min_name_length: int = 4,
        max_name_length: int = 60,
    ) -> "ApplicantVerifier":
        """Defaults plus deployment-specific additions."""
        return cls(
            disallowed_name_tokens=DEFAULT_DISALLOWED_NAME_TOKENS | frozenset(extra_name_tokens),
            placeholder_domains=DEFAULT_PLACEHOLDER_DOMAINS | frozenset(extra_domains),
            min_name_length=min_name_length,
            max_name_length=max_name_length,
        )

    # Field checks are public: the fallback merge picks fields one at a time.

    def name_problems(self, name: str) -> List[str]:
        name = (name or "").strip()
        if not name:
            return ["missing name"]
        problems: List[str] = []
        tokens = name.split()
        if len(tokens) < 2:
            problems.append("name has fewer than two words")
        if not (self._min_name_length <= len(name) <= self._max_name_length):
            problems.append(f"name length {len(name)} out of bounds")
        if not NAME_RE.match(name):
            problems.append("name contains invalid characters")
        bad = [t for t in tokens if t.strip(".'-").lower() in self._disallowed]
        if bad:
            problems.append("name contains disallowed word: " + ", ".join(bad))
        return problems

    def is_valid_name(self, name: str) -> bool:
        return not self.name_problems(name)

    def is_valid_email(self, email: str) -> bool:
        m = EMAIL_RE.match((email or "").strip())
        if not m:
            return False
        return m.group(1).lower() not in self._placeholder_domains

    def is_valid_phone(self, phone: str) -> bool:
        digits = normalize_phone(phone)
        if not digits:
            return False
        return any(p.match(digits) for p in self._phone_patterns)

    def verify(self, applicant: ExtractedApplicant) -> VerificationResult:
        errs: List[str] = list(self.name_problems(applicant.name))
        warns: List[str] = []

        email_ok = self.is_valid_email(applicant.email)
        phone_ok = self.is_valid_phone(applicant.phone)
        if not email_ok and not phone_ok:
            errs.append("no valid email or phone")
        elif not email_ok:
            warns.append("no valid email; phone only")
        elif not phone_ok:
            warns.append("no valid phone; email only")

        return VerificationResult(ok=not errs, errors=errs, warnings=warns)
