"""Bounded-concurrency helpers shared by the dispatcher and the enrichment engine.

Every fan-out in the pipeline (messages within a queue batch, catalog
searches, clear-match enrichment, embedding batches) goes through
:func:`throttled_gather` so downstream LLM / catalog rate limits see at
most ``limit`` requests in flight from one worker.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, TypeVar

_T = TypeVar("_T")
_R = TypeVar("_R")


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently, at most ``semaphore`` slots at a time.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Semaphore bounding how many awaitables execute simultaneously.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


async def map_bounded(
    fn: Callable[[_T], Awaitable[_R]],
    items: Iterable[_T],
    limit: int,
) -> list[_R | BaseException]:
    """Apply async *fn* to every item with at most *limit* calls in flight.

    Exceptions are returned in place of results so that one failing item
    never cancels its siblings.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")
    semaphore = asyncio.Semaphore(limit)
    return await throttled_gather([fn(item) for item in items], semaphore)
