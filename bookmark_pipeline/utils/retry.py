"""Retry with exponential backoff for outbound API calls, built on tenacity.

Every provider adapter wraps its raw HTTP / SDK call with a
:class:`RetryPolicy` so catalog, LLM, embedding and fetch requests all
share one contract:

- at most ``attempts`` retries after the first call;
- delay ``min(max_delay, base_delay * 2**n * jitter)`` with jitter in [1, 2);
- a server-supplied ``Retry-After`` (carried on
  :class:`~bookmark_pipeline.utils.errors.HttpStatusError`, or in the
  response headers of openai and httpx status errors) replaces the
  computed delay when present;
- errors classified as permanent by
  :func:`~bookmark_pipeline.utils.errors.is_retryable_error` are re-raised
  immediately.

Usage::

    policy = RetryPolicy(attempts=2, base_delay=2.0, max_delay=30.0)
    self._get_json = policy(self._get_json_once)
"""

from __future__ import annotations

import asyncio
import functools
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, TypeVar

import httpx
import openai
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from bookmark_pipeline.utils.errors import HttpStatusError, is_retryable_error

logger = structlog.get_logger(logger_name=__name__)

_T = TypeVar("_T")

DEFAULT_ATTEMPTS = 2
DEFAULT_BASE_DELAY_SECONDS = 2.0
DEFAULT_MAX_DELAY_SECONDS = 30.0
_BACKOFF_FACTOR = 2


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a ``Retry-After`` header value into seconds.

    Accepts either delta-seconds (``"120"``) or an HTTP date
    (``"Wed, 21 Oct 2026 07:28:00 GMT"``).  Returns ``None`` for missing or
    unparseable values; dates in the past yield ``0.0``.
    """
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max(0.0, (when - current).total_seconds())


def retry_after_hint(exc: BaseException | None) -> float | None:
    """Return the server's ``Retry-After`` hint carried by *exc*, in seconds.

    Reads our own :class:`HttpStatusError` as well as the response headers
    attached to ``openai.APIStatusError`` and ``httpx.HTTPStatusError``.
    """
    if isinstance(exc, HttpStatusError):
        return exc.retry_after_seconds
    if isinstance(exc, (openai.APIStatusError, httpx.HTTPStatusError)):
        return parse_retry_after(exc.response.headers.get("retry-after"))
    return None


@dataclass(frozen=True)
class RetryPolicy:
    """Callable wrapper factory implementing the shared retry contract.

    Parameters
    ----------
    attempts:
        Retries after the first call (``2`` means at most three calls).
    base_delay:
        Delay in seconds before the first retry, before jitter.
    max_delay:
        Upper bound on any computed backoff delay.
    classify:
        Predicate deciding whether an exception is worth retrying.
    sleep:
        Awaitable sleep function; tests inject a fake to avoid real waits.
    """

    attempts: int = DEFAULT_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS
    classify: Callable[[BaseException], bool] = is_retryable_error
    sleep: Callable[[float], Awaitable[Any]] | None = field(default=None, compare=False)

    def backoff_delay(self, retry_number: int) -> float:
        """Return the jittered delay before retry *retry_number* (0-based)."""
        jitter = 1 + random.random()
        delay = self.base_delay * (_BACKOFF_FACTOR ** retry_number) * jitter
        return min(self.max_delay, delay)

    def wait(self, retry_state: RetryCallState) -> float:
        """tenacity wait strategy: ``Retry-After`` when given, jittered backoff otherwise."""
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = retry_after_hint(exc)
        if retry_after is not None and retry_after > 0:
            return retry_after
        return self.backoff_delay(retry_state.attempt_number - 1)

    def __call__(self, fn: Callable[..., Awaitable[_T]]) -> Callable[..., Awaitable[_T]]:
        call_name = getattr(fn, "__qualname__", repr(fn))

        def _log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                "retrying_call",
                call=call_name,
                retry=retry_state.attempt_number,
                of=self.attempts,
                delay_s=round(delay, 2),
                error=str(exc),
            )

        @functools.wraps(fn)
        async def _wrapped(*args: Any, **kwargs: Any) -> _T:
            retrying = AsyncRetrying(
                stop=stop_after_attempt(self.attempts + 1),
                wait=self.wait,
                retry=retry_if_exception(self.classify),
                before_sleep=_log_retry,
                sleep=self.sleep or asyncio.sleep,
                reraise=True,
            )
            return await retrying(fn, *args, **kwargs)

        return _wrapped

