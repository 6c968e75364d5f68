"""LLM client and summary generator protocols.

A Workspace only needs a Summarizer. LLMSummarizer adapts any LLMClient
into one; tests and offline callers can pass a plain object instead.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class LLMClient(Protocol):
    """Protocol for pluggable chat-completion clients.

    Any object with chat() and close() methods matching this signature works.
    The built-in OpenAIClient implements this protocol.
    """

    def chat(
        self,
        messages: list[dict[str, str]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> dict:
        """Send messages, return response dict."""
        ...

    def close(self) -> None:
        """Release underlying resources."""
        ...


@runtime_checkable
class Summarizer(Protocol):
    """Summary generator used for merge summaries and conversation titles.

    ``summarize`` receives capped ``{"role", "content"}`` dicts in
    chronological order and returns short text. Raising any exception
    means "no summary"; callers never treat it as fatal.
    """

    def summarize(
        self,
        messages: list[dict[str, str]],
        *,
        instructions: str | None = None,
    ) -> str:
        ...

    def title(self, text: str, *, opening_message: bool = False) -> str:
        """Short title for a conversation about *text*.

        *opening_message* marks text that is the first user message rather
        than a highlighted span.
        """
        ...
