"""
Applicant extraction cascade.

Runs strategies in order and accepts the first candidate that passes the
shared validity predicate. If none does, the request is rejected with
ValidationError before any record exists.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from ..config import ExtractionSettings
from ..errors import ValidationError
from ..logging_utils import LOG, mask_identifier
from ..metrics import EXTRACTIONS_BY_SOURCE, MetricsRegistry
from ..shared import ExtractedApplicant
from ..timeouts import TimeoutRunner
from ..verifiers import ApplicantVerifier
from .base import ApplicantExtractor, ExtractionContext
from .cache import DEFAULT_TTL_S, ExtractionCache, cache_key
from .cached_extractor import CachedApplicantExtractor
from .extractor_registry import get_extractor
from .fallback_extractor import FallbackMergeExtractor
from .heuristic_extractor import HeuristicApplicantExtractor, extract_applicant_fields
from .openai_extractor import OpenAIApplicantExtractor


class ExtractionCascade:
    def __init__(
        self,
        strategies: Sequence[ApplicantExtractor],
        verifier: ApplicantVerifier,
        *,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self._strategies = list(strategies)
        self._verifier = verifier
        self._metrics = metrics

    @property
    def strategy_names(self) -> List[str]:
        return [s.name for s in self._strategies]

    def run(self, requester_identifier: str, text: str) -> ExtractedApplicant:
        """
        Extract a verified applicant from document text.

        Raises:
            ValidationError: No strategy produced a valid applicant
        """
        context = ExtractionContext(
            requester_identifier=requester_identifier,
            text=text,
            verifier=self._verifier,
        )
        who = mask_identifier(requester_identifier)

        for strategy in self._strategies:
            try:
                candidate, ok = strategy.extract(context)
            except Exception as e:
                LOG.warning("Extraction strategy %s failed for %s: %s", strategy.name, who, e)
                continue
            if ok and candidate is not None:
                LOG.info(
                    "Applicant extracted for %s via %s (confidence %.2f)",
                    who, strategy.name, candidate.confidence_score,
                )
                if self._metrics:
                    self._metrics.increment(EXTRACTIONS_BY_SOURCE, label=strategy.name)
                return candidate

        reasons: List[str] = []
        for source, partial in context.partials.items():
            result = self._verifier.verify(partial)
            reasons.append(f"{source}: " + "; ".join(result.errors))
        LOG.warning("No valid applicant data for %s (%s)", who, " | ".join(reasons) or "no candidates")
        raise ValidationError(
            "Unable to extract valid applicant information from CV. "
            "Please ensure your CV contains your full name and an email address or phone number.",
            reasons=reasons,
        )


def build_cascade(
    settings: ExtractionSettings,
    *,
    verifier: ApplicantVerifier,
    cache: Optional[ExtractionCache] = None,
    client=None,
    runner: Optional[TimeoutRunner] = None,
    metrics: Optional[MetricsRegistry] = None,
) -> ExtractionCascade:
    """
    Build the cascade from registered strategy names in settings.strategies.

    Built-in strategies whose collaborators are not configured (no cache,
    no completion client) are left out. Other registered strategies are
    constructed without arguments.

    Raises:
        ValueError: A name is not registered
    """
    collaborators: Dict[str, Optional[Dict[str, Any]]] = {
        CachedApplicantExtractor.name: {"cache": cache} if cache is not None else None,
        OpenAIApplicantExtractor.name: (
            {
                "client": client,
                "runner": runner,
                "timeout_s": settings.ai_timeout_s,
                "prefix_chars": settings.text_prefix_chars,
            }
            if client is not None and runner is not None
            else None
        ),
        HeuristicApplicantExtractor.name: {"verifier": verifier},
        FallbackMergeExtractor.name: {"verifier": verifier},
    }

    strategies: List[ApplicantExtractor] = []
    for name in settings.strategies:
        kwargs = collaborators.get(name, {})
        if kwargs is None:
            LOG.debug("Extraction strategy %s not configured; skipped", name)
            continue
        strategy = get_extractor(name, **kwargs)
        if strategy is None:
            raise ValueError(f"Unknown extraction strategy: {name}")
        strategies.append(strategy)
    return ExtractionCascade(strategies, verifier, metrics=metrics)


def preprocess_upload(
    cache: ExtractionCache,
    requester_identifier: str,
    text: str,
    *,
    verifier: Optional[ApplicantVerifier] = None,
    ttl_s: float = DEFAULT_TTL_S,
) -> Optional[ExtractedApplicant]:
    """
    Background pre-processing right after upload: run the heuristic
    strategy and cache the result if it passes the predicate.
    """
    verifier = verifier or ApplicantVerifier()
    applicant = extract_applicant_fields(text, verifier)
    if not verifier.verify(applicant).ok:
        LOG.debug("Pre-processing found no valid applicant for %s", mask_identifier(requester_identifier))
        return None
    cache.set(cache_key(requester_identifier), applicant.to_dict(), ttl_s)
    return applicant
