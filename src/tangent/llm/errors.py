"""Errors raised by the LLM layer.

Every one is a DependencyFailureError: callers treat a failed model call
as recoverable and fall back (null summary, provisional title).
"""

from __future__ import annotations

from tangent.exceptions import DependencyFailureError


class LLMClientError(DependencyFailureError):
    """Base for errors raised by an LLM client."""


class LLMConfigError(LLMClientError):
    """The client cannot be built, e.g. no API key was found."""


class LLMRateLimitError(LLMClientError):
    """HTTP 429 that outlasted the retry budget.

    ``retry_after`` carries the server's Retry-After hint in seconds, if any.
    """

    def __init__(self, message: str = "Rate limited", retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        if retry_after is not None:
            message = f"{message} (retry after {retry_after}s)"
        super().__init__(message)


class LLMAuthError(LLMClientError):
    """The API rejected the credentials (401/403)."""


class LLMResponseError(LLMClientError):
    """The API answered with a body we cannot use."""
