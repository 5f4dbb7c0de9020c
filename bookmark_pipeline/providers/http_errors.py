"""Translate non-2xx httpx responses into the pipeline's HTTP error types.

Every httpx-based adapter calls :func:`raise_for_status` right after a
request so the retry policy sees the status and ``Retry-After`` hint.
"""

from __future__ import annotations

import httpx

from bookmark_pipeline.utils.errors import HttpStatusError, RateLimitError
from bookmark_pipeline.utils.retry import parse_retry_after


def raise_for_status(
    response: httpx.Response,
    provider_name: str,
    messages: dict[int, str] | None = None,
) -> None:
    """Raise :class:`HttpStatusError` (or :class:`RateLimitError`) for error responses.

    Args:
        response: The httpx response to check.
        provider_name: Provider label carried on the raised error.
        messages: Optional per-status messages, e.g. ``{401: "API key invalid"}``.
    """
    if not response.is_error:
        return

    status = response.status_code
    # Query strings may carry API keys (TMDB); keep them out of errors and logs.
    url = str(response.request.url.copy_with(query=None))
    retry_after = parse_retry_after(response.headers.get("Retry-After"))
    message = (messages or {}).get(status) or f"HTTP {status} from {provider_name}"

    if status == 429:
        raise RateLimitError(
            message=message,
            provider_name=provider_name,
            url=url,
            retry_after_seconds=retry_after,
        )
    raise HttpStatusError(
        message=message,
        provider_name=provider_name,
        status=status,
        url=url,
        retry_after_seconds=retry_after,
    )
