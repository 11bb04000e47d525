"""
Applicant extraction interfaces and implementations.

This module provides the pluggable strategies of the extraction cascade.
"""

from .base import ApplicantExtractor, ExtractionContext
from .cache import ExtractionCache, InMemoryExtractionCache, cache_key
from .cached_extractor import CachedApplicantExtractor
from .cascade import ExtractionCascade, build_cascade, preprocess_upload
from .extractor_registry import get_extractor, list_extractors, register_extractor, unregister_extractor
from .fallback_extractor import FallbackMergeExtractor, name_from_email
from .heuristic_extractor import HeuristicApplicantExtractor, extract_applicant_fields
from .openai_extractor import OpenAIApplicantExtractor

register_extractor(CachedApplicantExtractor.name, CachedApplicantExtractor)
register_extractor(OpenAIApplicantExtractor.name, OpenAIApplicantExtractor)
register_extractor(HeuristicApplicantExtractor.name, HeuristicApplicantExtractor)
register_extractor(FallbackMergeExtractor.name, FallbackMergeExtractor)

__all__ = [
    "ApplicantExtractor",
    "ExtractionContext",
    "ExtractionCache",
    "InMemoryExtractionCache",
    "cache_key",
    "CachedApplicantExtractor",
    "OpenAIApplicantExtractor",
    "HeuristicApplicantExtractor",
    "FallbackMergeExtractor",
    "ExtractionCascade",
    "build_cascade",
    "preprocess_upload",
    "extract_applicant_fields",
    "name_from_email",
    "register_extractor",
    "get_extractor",
    "list_extractors",
    "unregister_extractor",
]
