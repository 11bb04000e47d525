"""
OpenAI-based applicant extraction.

Sends a bounded prefix of the document text to the completion service and
parses the JSON identity it returns. The call is raced against a timeout;
any failure means this strategy yields nothing and the cascade moves on.
"""

from __future__ import annotations

from typing import Optional, Tuple

from ..completion import CompletionClient, extract_json_object
from ..errors import ExternalServiceTimeout
from ..logging_utils import LOG
from ..shared import ExtractedApplicant, format_prompt, load_prompt
from ..timeouts import TimeoutRunner
from .base import ApplicantExtractor, ExtractionContext


class OpenAIApplicantExtractor(ApplicantExtractor):
    """
    Applicant extraction using an OpenAI chat completion.
    """

    name = "openai"

    def __init__(
        self,
        client: CompletionClient,
        runner: TimeoutRunner,
        *,
        timeout_s: float = 45.0,
        prefix_chars: int = 3000,
    ):
        self._client = client
        self._runner = runner
        self._timeout_s = timeout_s
        self._prefix_chars = prefix_chars

    def extract(self, context: ExtractionContext) -> Tuple[Optional[ExtractedApplicant], bool]:
        system_prompt = load_prompt("applicant_extraction_system")
        user_prompt = format_prompt(
            "applicant_extraction_user",
            document_text=context.text[: self._prefix_chars],
        )
        if not system_prompt or not user_prompt:
            LOG.warning("AI extraction skipped: failed to load prompt templates")
            return None, False

        try:
            response = self._runner.call(
                lambda: self._client.complete(
                    system_prompt,
                    user_prompt,
                    op_name="Applicant extraction",
                    temperature=0.0,
                    json_mode=True,
                ),
                timeout_s=self._timeout_s,
                op_name="Applicant extraction",
            )
        except ExternalServiceTimeout:
            return None, False
        except Exception as e:
            LOG.warning("AI extraction failed: %s", e)
            return None, False

        data = extract_json_object(response)
        if data is None:
            LOG.warning("AI extraction returned malformed JSON")
            return None, False

        return self._judge(ExtractedApplicant.from_dict(data, source=self.name), context)
