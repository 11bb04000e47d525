"""
Chat-completion client over the OpenAI SDK.

Any OpenAI-compatible provider works through base_url. Callers own their
prompts; this class only sends them and returns the text.
"""

from __future__ import annotations

import os
import time
from typing import Any, Callable, Optional

from openai import OpenAI

from ..config import OpenAISettings
from ..errors import CompletionError
from ..logging_utils import LOG
from .openai_utils import OpenAIRetry, RetryConfig


class CompletionClient:
    def __init__(
        self,
        model: str = "gpt-4o-mini",
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None,
        _sleep: Callable[[float], None] = time.sleep,
    ):
        self.model = model
        self._api_key = api_key
        self._base_url = base_url
        self._client: Optional[OpenAI] = None
        self._retryer = OpenAIRetry(retry=retry_config or RetryConfig(), sleep=_sleep)

    @classmethod
    def from_settings(cls, settings: OpenAISettings) -> "CompletionClient":
        return cls(settings.model, api_key=settings.api_key, base_url=settings.base_url)

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            api_key = self._api_key or os.environ.get("OPENAI_API_KEY")
            if not api_key:
                raise CompletionError("OPENAI_API_KEY must be set to use the completion service")
            # SDK retries disabled; OpenAIRetry is the single retry layer
            self._client = OpenAI(api_key=api_key, base_url=self._base_url, max_retries=0)
        return self._client

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        op_name: str,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> str:
        """
        Send one chat completion and return the message text.

        Raises:
            CompletionError: Service failure or empty completion
        """
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
        }
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        completion = self._retryer.call(
            lambda: self.client.chat.completions.create(**kwargs),
            op_name=op_name,
        )

        choices = getattr(completion, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content or not content.strip():
            raise CompletionError(f"{op_name} returned an empty completion")
        LOG.debug("%s: %d chars from %s", op_name, len(content), self.model)
        return content.strip()
