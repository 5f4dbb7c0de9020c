"""Custom exception hierarchy for the bookmark pipeline.

All application exceptions inherit from :class:`BookmarkPipelineError`,
which carries an optional ``provider_name`` so error handlers can identify
which external service (e.g. "openrouter", "tmdb", "jina") caused the
failure.

Subclasses by concern:

    BookmarkPipelineError  (base -- catch-all for any pipeline error)
    +-- FetchError              (fetch stage: page retrieval / conversion)
    +-- LLMError                (any LLM API call failure)
    +-- EmbeddingError          (embedding API failure)
    +-- CatalogError            (book / movie / TV catalog lookups)
    +-- EntityExtractionError   (LLM entity parsing)
    +-- PipelineError           (orchestration / stage preconditions)
    +-- RepositoryError         (persistence contract violations)
    +-- ConfigurationError      (startup / missing config)
    +-- HttpStatusError         (non-2xx HTTP response, carries status + retry-after)
        +-- RateLimitError      (HTTP 429)

Stage functions let these errors reach the orchestrator, which records them
as a FAILED status with a human readable message.  Anything outside this
hierarchy is treated as unexpected and left to the queue dispatcher, which
schedules the message for redelivery.
"""

from __future__ import annotations

import asyncio

import httpx
import openai


class BookmarkPipelineError(Exception):
    """Root of every error the pipeline raises on purpose.

    ``provider_name`` names the adapter involved (``"web_fetcher"``,
    ``"tmdb"``, ``"jina"`` ...).  ``str()`` renders ``[provider] message``,
    which is the exact text stored in a FAILED bookmark's ``error_message``.
    """

    def __init__(
        self,
        message: str = "Bookmark pipeline error",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# External service errors
# ---------------------------------------------------------------------------

class FetchError(BookmarkPipelineError):
    """Raised when a bookmarked page cannot be retrieved or converted to markdown."""

    def __init__(
        self,
        message: str = "Page fetch failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LLMError(BookmarkPipelineError):
    """Chat completion failed, came back empty, or did not match the expected schema."""

    def __init__(
        self,
        message: str = "LLM request failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingError(BookmarkPipelineError):
    """Raised when an embedding request fails or returns mismatched vectors."""

    def __init__(
        self,
        message: str = "Embedding request failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class CatalogError(BookmarkPipelineError):
    """Raised when a book / movie / TV catalog search fails."""

    def __init__(
        self,
        message: str = "Catalog search failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EntityExtractionError(BookmarkPipelineError):
    """Raised when entity mentions cannot be extracted from a bookmark."""

    def __init__(
        self,
        message: str = "Could not extract entities",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class HttpStatusError(BookmarkPipelineError):
    """Raised by provider adapters when a remote API answers with a non-2xx status.

    Carries the HTTP ``status``, the request ``url`` and, when the server
    supplied one, the ``Retry-After`` hint in seconds.  The retry decorator
    in :mod:`bookmark_pipeline.utils.retry` reads all three.
    """

    def __init__(
        self,
        message: str = "HTTP request failed",
        provider_name: str | None = None,
        status: int = 0,
        url: str = "",
        retry_after_seconds: float | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self.status = status
        self.url = url
        self.retry_after_seconds = retry_after_seconds


class RateLimitError(HttpStatusError):
    """Raised when an API rate limit is exceeded (HTTP 429)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
        url: str = "",
        retry_after_seconds: float | None = None,
    ) -> None:
        super().__init__(
            message=message,
            provider_name=provider_name,
            status=429,
            url=url,
            retry_after_seconds=retry_after_seconds,
        )


# ---------------------------------------------------------------------------
# Pipeline, storage and startup errors
# ---------------------------------------------------------------------------

class PipelineError(BookmarkPipelineError):
    """Raised when a pipeline stage precondition is not met (e.g. missing markdown)."""

    def __init__(
        self,
        message: str = "Pipeline stage precondition failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RepositoryError(BookmarkPipelineError):
    """Raised when a repository operation violates its contract (e.g. row vanished)."""

    def __init__(
        self,
        message: str = "Repository operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(BookmarkPipelineError):
    """A required setting (API key, provider name) is missing or unknown."""

    def __init__(
        self,
        message: str = "Configuration error",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Retry classification
# ---------------------------------------------------------------------------

# Statuses worth another attempt: request timeout, conflict, too early,
# rate limited.  Every 5xx is retryable as well.
_RETRYABLE_STATUSES = frozenset({408, 409, 425, 429})


def is_retryable_status(status: int) -> bool:
    """Return ``True`` if an HTTP *status* is worth retrying."""
    return status in _RETRYABLE_STATUSES or 500 <= status <= 599


def is_retryable_error(error: BaseException) -> bool:
    """Classify *error* for the retry decorator.

    HTTP errors are classified by status (408/409/425/429 and 5xx retry,
    every other 4xx does not).  Transport failures and timeouts retry.
    Anything else is treated as permanent.
    """
    if isinstance(error, HttpStatusError):
        return is_retryable_status(error.status)
    if isinstance(error, httpx.HTTPStatusError):
        return is_retryable_status(error.response.status_code)
    if isinstance(error, openai.APIStatusError):
        return is_retryable_status(error.status_code)
    if isinstance(error, (httpx.TransportError, openai.APIConnectionError)):
        return True
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    return False
