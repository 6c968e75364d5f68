"""LLM client infrastructure for Tangent.

Provides an OpenAI-compatible HTTP client, the pluggable LLMClient and
Summarizer protocols, and LLMSummarizer, which turns any client into the
summary generator used for merge summaries and conversation titles.
"""

from tangent.llm.client import OpenAIClient
from tangent.llm.errors import (
    LLMAuthError,
    LLMClientError,
    LLMConfigError,
    LLMRateLimitError,
    LLMResponseError,
)
from tangent.llm.protocols import LLMClient, Summarizer
from tangent.llm.summarizer import LLMSummarizer

__all__ = [
    "OpenAIClient",
    "LLMClient",
    "Summarizer",
    "LLMSummarizer",
    "LLMClientError",
    "LLMConfigError",
    "LLMRateLimitError",
    "LLMAuthError",
    "LLMResponseError",
]
