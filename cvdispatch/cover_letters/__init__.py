"""
Cover letter generation and templates.
"""

from .synthesizer import CoverLetterSynthesizer
from .templates import APPLICANT_PLACEHOLDER, default_letter, fallback_letter

__all__ = [
    "APPLICANT_PLACEHOLDER",
    "CoverLetterSynthesizer",
    "default_letter",
    "fallback_letter",
]
