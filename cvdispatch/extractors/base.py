"""
Base interface for applicant extraction strategies.

Defines the contract for pluggable strategies in the extraction cascade.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from ..logging_utils import LOG
from ..shared import ExtractedApplicant
from ..verifiers import ApplicantCheck


@dataclass
class ExtractionContext:
    """
    Inputs shared by every strategy in one cascade run.

    partials holds the candidate each strategy produced, keyed by strategy
    name, so later strategies can merge earlier results.
    """
    requester_identifier: str
    text: str
    verifier: ApplicantCheck
    partials: Dict[str, ExtractedApplicant] = field(default_factory=dict)


class ApplicantExtractor(ABC):
    """
    Abstract base class for applicant extraction strategies.

    Implementations derive a candidate identity from document text and
    report whether it passed the shared validity predicate.
    """

    #: Strategy name, also recorded as the applicant's extraction_source
    name: str = ""

    @abstractmethod
    def extract(self, context: ExtractionContext) -> Tuple[Optional[ExtractedApplicant], bool]:
        """
        Produce a candidate applicant.

        Args:
            context: Document text, requester and the validity predicate

        Returns:
            (candidate, ok) where ok is True only if candidate passed the
            validity predicate. candidate may be None when the strategy had
            nothing to offer.
        """
        ...

    def _judge(
        self, candidate: Optional[ExtractedApplicant], context: ExtractionContext
    ) -> Tuple[Optional[ExtractedApplicant], bool]:
        if candidate is None:
            return None, False
        context.partials[self.name] = candidate
        result = context.verifier.verify(candidate)
        if not result.ok:
            LOG.debug("%s candidate rejected: %s", self.name, "; ".join(result.errors))
        return candidate, result.ok
