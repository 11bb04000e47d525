"""
Applicant verification interfaces and implementations.
"""

from .applicant_verifier import (
    DEFAULT_DISALLOWED_NAME_TOKENS,
    DEFAULT_PHONE_PATTERNS,
    DEFAULT_PLACEHOLDER_DOMAINS,
    ApplicantVerifier,
    normalize_phone,
)
from .base import ApplicantCheck

__all__ = [
    "ApplicantCheck",
    "ApplicantVerifier",
    "DEFAULT_DISALLOWED_NAME_TOKENS",
    "DEFAULT_PHONE_PATTERNS",
    "DEFAULT_PLACEHOLDER_DOMAINS",
    "normalize_phone",
]
