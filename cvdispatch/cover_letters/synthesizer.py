"""
Cover letter synthesis.

One letter per target: generation calls start together and each is raced
against its own deadline. Slow, failed or short results are replaced by
the deterministic template. A shared default letter is always produced
first so every target has something to send.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from ..config import CoverLetterSettings
from ..errors import ExternalServiceTimeout
from ..logging_utils import LOG
from ..metrics import LETTERS_BY_SOURCE, TIMEOUTS, MetricsRegistry
from ..shared import (
    DEFAULT_LETTER_KEY,
    CoverLetterArtifact,
    ExtractedApplicant,
    LetterSource,
    TargetPosting,
    format_prompt,
    load_prompt,
    replace_name_placeholders,
)
from ..timeouts import RaceHandle, TimeoutRunner
from .templates import default_letter, fallback_letter


class CoverLetterSynthesizer:
    def __init__(
        self,
        runner: TimeoutRunner,
        *,
        client=None,
        settings: Optional[CoverLetterSettings] = None,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self._runner = runner
        self._client = client
        self._settings = settings or CoverLetterSettings()
        self._metrics = metrics

    def synthesize(
        self,
        applicant: ExtractedApplicant,
        cv_text: str,
        targets: Sequence[TargetPosting],
    ) -> Dict[str, CoverLetterArtifact]:
        """
        Produce one artifact per target id plus the DEFAULT_LETTER_KEY artifact.
        """
        name = applicant.name
        letters: Dict[str, CoverLetterArtifact] = {
            DEFAULT_LETTER_KEY: CoverLetterArtifact(DEFAULT_LETTER_KEY, default_letter(name), LetterSource.DEFAULT)
        }

        pending = self._start_generation(applicant, cv_text, targets)
        for target, handle in pending:
            text = self._await_generation(target, handle)
            if text is not None:
                artifact = CoverLetterArtifact(target.id, replace_name_placeholders(text, name), LetterSource.AI)
            else:
                artifact = self._template_artifact(target, cv_text, name, letters[DEFAULT_LETTER_KEY])
            letters[target.id] = artifact
            if self._metrics:
                self._metrics.increment(LETTERS_BY_SOURCE, label=artifact.source.value)

        ai_count = sum(1 for k, a in letters.items() if k != DEFAULT_LETTER_KEY and a.source == LetterSource.AI)
        LOG.info("Cover letters ready: %d targets, %d generated, %d from template", len(targets), ai_count, len(targets) - ai_count)
        return letters

    # --------------------------

    def _prompts(self, applicant: ExtractedApplicant, cv_text: str, target: TargetPosting) -> Tuple[Optional[str], Optional[str]]:
        system_prompt = load_prompt("cover_letter_system")
        user_prompt = format_prompt(
            "cover_letter_user",
            job_title=target.title or "the advertised position",
            company=target.company or "your organization",
            applicant_name=applicant.name,
            cv_summary=cv_text[: self._settings.cv_summary_chars],
        )
        return system_prompt, user_prompt

    def _start_generation(
        self,
        applicant: ExtractedApplicant,
        cv_text: str,
        targets: Sequence[TargetPosting],
    ) -> List[Tuple[TargetPosting, Optional[RaceHandle]]]:
        started: List[Tuple[TargetPosting, Optional[RaceHandle]]] = []
        for target in targets:
            handle = None
            if self._client is not None:
                system_prompt, user_prompt = self._prompts(applicant, cv_text, target)
                if system_prompt and user_prompt:
                    handle = self._runner.submit(
                        self._client.complete,
                        system_prompt,
                        user_prompt,
                        op_name=f"Cover letter for {target.id}",
                        temperature=0.7,
                        max_tokens=500,
                    )
            started.append((target, handle))
        return started

    def _await_generation(self, target: TargetPosting, handle: Optional[RaceHandle]) -> Optional[str]:
        if handle is None:
            return None
        try:
            text = handle.result(timeout_s=self._settings.generation_timeout_s, op_name=f"Cover letter for {target.id}")
        except ExternalServiceTimeout:
            if self._metrics:
                self._metrics.increment(TIMEOUTS, label="cover_letter")
            return None
        except Exception as e:
            LOG.warning("Cover letter generation failed for %s: %s", target.id, e)
            return None

        text = (text or "").strip()
        if len(text) < self._settings.min_letter_length:
            LOG.warning("Cover letter for %s too short (%d chars); using template", target.id, len(text))
            return None
        return text

    def _template_artifact(
        self,
        target: TargetPosting,
        cv_text: str,
        applicant_name: str,
        default: CoverLetterArtifact,
    ) -> CoverLetterArtifact:
        try:
            text = fallback_letter(cv_text, target.title, target.company)
        except Exception as e:
            LOG.error("Template cover letter failed for %s: %s", target.id, e)
            return CoverLetterArtifact(target.id, default.text, LetterSource.DEFAULT)
        return CoverLetterArtifact(target.id, replace_name_placeholders(text, applicant_name), LetterSource.TEMPLATE)
