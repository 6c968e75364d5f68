"""LLMSummarizer: the Summarizer protocol over any LLMClient."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from tangent.llm.errors import LLMResponseError
from tangent.prompts.summarize import (
    BRANCH_TITLE_TEMPLATE,
    CONVERSATION_TITLE_TEMPLATE,
    build_merge_summary_prompt,
    build_title_prompt,
    clean_title,
)

if TYPE_CHECKING:
    from tangent.llm.protocols import LLMClient

logger = logging.getLogger(__name__)


def _response_text(client: LLMClient, response: dict) -> str:
    extract = getattr(client, "extract_content", None)
    if extract is not None:
        return extract(response)
    try:
        return response["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError) as exc:
        raise LLMResponseError(f"Invalid LLM response structure: {exc}") from exc


class LLMSummarizer:
    """Generate merge summaries and titles with a chat-completion client.

    Args:
        client: Any LLMClient (OpenAIClient or a custom implementation).
        model: Model override passed to every chat() call.
        max_chars: Cap applied to generated summaries.
        title_max_chars: Cap applied to generated titles.
        llm_kwargs: Extra keyword arguments forwarded to chat().
    """

    def __init__(
        self,
        client: LLMClient,
        *,
        model: str | None = None,
        max_chars: int = 80,
        title_max_chars: int = 50,
        llm_kwargs: dict[str, Any] | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._max_chars = max_chars
        self._title_max_chars = title_max_chars
        self._llm_kwargs = dict(llm_kwargs or {})

    def _ask(self, prompt: str, max_tokens: int) -> str:
        response = self._client.chat(
            [{"role": "user", "content": prompt}],
            model=self._model,
            max_tokens=max_tokens,
            **self._llm_kwargs,
        )
        text = _response_text(self._client, response).strip()
        if not text:
            raise LLMResponseError("LLM returned empty text")
        return text

    def summarize(
        self,
        messages: list[dict[str, str]],
        *,
        instructions: str | None = None,
    ) -> str:
        prompt = build_merge_summary_prompt(messages, instructions=instructions)
        summary = self._ask(prompt, max_tokens=60)[: self._max_chars]
        logger.debug("Generated summary (%d chars)", len(summary))
        return summary

    def title(self, text: str, *, opening_message: bool = False) -> str:
        template = CONVERSATION_TITLE_TEMPLATE if opening_message else BRANCH_TITLE_TEMPLATE
        title = clean_title(
            self._ask(build_title_prompt(text, template=template), max_tokens=20),
            self._title_max_chars,
        )
        if not title:
            raise LLMResponseError("LLM returned an empty title")
        return title

    def close(self) -> None:
        self._client.close()
