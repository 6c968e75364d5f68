"""OpenAI-compatible chat client over httpx, with tenacity retry.

Configuration comes from constructor arguments or the environment
variables TANGENT_OPENAI_API_KEY and TANGENT_OPENAI_BASE_URL.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx
import tenacity

from tangent.llm.errors import (
    LLMAuthError,
    LLMConfigError,
    LLMRateLimitError,
    LLMResponseError,
)

logger = logging.getLogger(__name__)

API_KEY_ENV = "TANGENT_OPENAI_API_KEY"
BASE_URL_ENV = "TANGENT_OPENAI_BASE_URL"
DEFAULT_BASE_URL = "https://api.openai.com/v1"

_TRANSIENT_STATUS = frozenset({429, 500, 502, 503, 504})
_AUTH_STATUS = frozenset({401, 403})


def _is_retryable(exc: BaseException) -> bool:
    """Rate limits, 5xx and connection failures retry; auth and 4xx do not."""
    if isinstance(exc, LLMRateLimitError):
        return True
    if isinstance(exc, LLMAuthError):
        return False
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _TRANSIENT_STATUS
    return isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _raise_for_response(response: httpx.Response) -> None:
    """Map an HTTP failure onto the LLM error types."""
    status = response.status_code
    if status in _AUTH_STATUS:
        raise LLMAuthError(f"API rejected credentials: HTTP {status} - {response.text}")
    if status == 429:
        raise LLMRateLimitError(
            f"Rate limited: HTTP 429 - {response.text}",
            retry_after=_parse_retry_after(response.headers.get("Retry-After")),
        )
    response.raise_for_status()


class OpenAIClient:
    """Sync client for OpenAI-compatible ``/chat/completions`` endpoints.

    Implements the LLMClient protocol. 429, 5xx and connection errors are
    retried with jittered exponential backoff; 401/403 fail at once.

    Usage::

        with OpenAIClient(api_key="sk-...") as client:
            text = client.complete([{"role": "user", "content": "Hello"}])
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        max_retries: int = 3,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """
        Args:
            api_key: Bearer token; defaults to $TANGENT_OPENAI_API_KEY.
            base_url: Endpoint root; defaults to $TANGENT_OPENAI_BASE_URL,
                then the public OpenAI API.
            default_model: Model for calls that name none.
            timeout: Per-request timeout in seconds.
            max_retries: Attempts allowed for a retryable failure.
            transport: httpx transport override (tests pass a MockTransport).

        Raises:
            LLMConfigError: No API key anywhere.
        """
        api_key = api_key or os.environ.get(API_KEY_ENV)
        if not api_key:
            raise LLMConfigError(f"No API key: pass api_key= or set {API_KEY_ENV}")
        self._base_url = (base_url or os.environ.get(BASE_URL_ENV) or DEFAULT_BASE_URL).rstrip("/")
        self._default_model = default_model
        self._max_retries = max_retries
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def _retrying(self) -> tenacity.Retrying:
        return tenacity.Retrying(
            retry=tenacity.retry_if_exception(_is_retryable),
            wait=tenacity.wait_exponential(multiplier=1, min=1, max=30) + tenacity.wait_random(0, 2),
            stop=tenacity.stop_after_attempt(self._max_retries),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def chat(
        self,
        messages: list[dict[str, str]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> dict:
        """POST a chat completion and return the decoded body.

        Raises:
            LLMAuthError: 401/403, never retried.
            LLMRateLimitError: 429 still returned on the last attempt.
            LLMResponseError: Body without ``choices``.
            httpx.HTTPStatusError: Any other HTTP failure.
        """
        payload: dict[str, Any] = {"model": model or self._default_model, "messages": messages}
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if temperature is not None:
            payload["temperature"] = temperature
        payload.update(kwargs)
        return self._retrying()(self._post, payload)

    def complete(self, messages: list[dict[str, str]], **kwargs: Any) -> str:
        """Like :meth:`chat` but returns the assistant text only."""
        return self.extract_content(self.chat(messages, **kwargs))

    def _post(self, payload: dict[str, Any]) -> dict:
        response = self._client.post(f"{self._base_url}/chat/completions", json=payload)
        _raise_for_response(response)
        body = response.json()
        if "choices" not in body:
            raise LLMResponseError(f"Response has no 'choices': {body}")
        return body

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OpenAIClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @staticmethod
    def extract_content(response: dict) -> str:
        """``choices[0].message.content``, or ``""`` when the content is null."""
        try:
            return response["choices"][0]["message"].get("content") or ""
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise LLMResponseError(f"Cannot read content from response: {response}") from exc
