"""
Cached extraction strategy.
"""

from __future__ import annotations

from typing import Optional, Tuple

from ..logging_utils import LOG, mask_identifier
from ..shared import ExtractedApplicant
from .base import ApplicantExtractor, ExtractionContext
from .cache import ExtractionCache, cache_key


class CachedApplicantExtractor(ApplicantExtractor):
    """
    Reuses a prior extraction stored for the same requester.
    """

    name = "cached"

    def __init__(self, cache: ExtractionCache):
        self._cache = cache

    def extract(self, context: ExtractionContext) -> Tuple[Optional[ExtractedApplicant], bool]:
        data = self._cache.get(cache_key(context.requester_identifier))
        if not data:
            return None, False
        LOG.debug("Extraction cache hit for %s", mask_identifier(context.requester_identifier))
        return self._judge(ExtractedApplicant.from_dict(data, source=self.name), context)
