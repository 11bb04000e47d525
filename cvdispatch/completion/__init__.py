"""
Completion service access.
"""

from .client import CompletionClient
from .openai_utils import OpenAIRetry, RetryConfig, extract_json_object, strip_markdown_fences

__all__ = [
    "CompletionClient",
    "OpenAIRetry",
    "RetryConfig",
    "extract_json_object",
    "strip_markdown_fences",
]
