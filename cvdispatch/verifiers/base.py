"""
Base interface for applicant verifiers.

Defines the contract for pluggable identity validation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..shared import ExtractedApplicant, VerificationResult


class ApplicantCheck(ABC):
    """
    Abstract base class for applicant verifiers.

    A verifier decides whether extracted identity data is good enough to
    create application records with. Errors make the result not ok;
    warnings are informational.
    """

    @abstractmethod
    def verify(self, applicant: ExtractedApplicant) -> VerificationResult:
        """
        Verify extracted applicant data.

        Args:
            applicant: Candidate identity produced by an extraction strategy

        Returns:
            VerificationResult with errors for disqualifying issues
        """
        ...
