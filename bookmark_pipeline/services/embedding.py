"""Batched embedding generation for the embed stage."""

from __future__ import annotations

import asyncio

from bookmark_pipeline.interfaces.embedding_provider import IEmbeddingProvider
from bookmark_pipeline.utils.concurrency import throttled_gather
from bookmark_pipeline.utils.errors import EmbeddingError
from bookmark_pipeline.utils.logging import get_logger

EMBEDDING_BATCH_SIZE = 100
MAX_CONCURRENT_BATCHES = 5

logger = get_logger(__name__)


async def generate_embeddings(
    texts: list[str],
    provider: IEmbeddingProvider,
    batch_size: int = EMBEDDING_BATCH_SIZE,
    max_concurrency: int = MAX_CONCURRENT_BATCHES,
) -> list[list[float]]:
    """Embed *texts* in batches, returning vectors in input order.

    Parameters
    ----------
    texts:
        Strings to embed.
    provider:
        Embedding backend; one ``embed_batch`` call per batch.
    batch_size:
        Maximum texts per provider call.
    max_concurrency:
        Maximum batches in flight.

    Raises
    ------
    EmbeddingError
        If any batch fails or returns the wrong number of vectors.
    """
    if not texts:
        return []
    if len(texts) <= batch_size:
        return await _embed_checked(texts, provider)

    batches = [texts[i : i + batch_size] for i in range(0, len(texts), batch_size)]
    results = await throttled_gather(
        [_embed_checked(batch, provider) for batch in batches],
        asyncio.Semaphore(max_concurrency),
        return_exceptions=False,
    )
    logger.debug("embedding_batches_complete", batches=len(batches), texts=len(texts))
    return [vector for batch_vectors in results for vector in batch_vectors]


async def _embed_checked(texts: list[str], provider: IEmbeddingProvider) -> list[list[float]]:
    vectors = await provider.embed_batch(texts)
    if len(vectors) != len(texts):
        raise EmbeddingError(
            message=f"Expected {len(texts)} embeddings, got {len(vectors)}",
            provider_name=provider.get_provider_name(),
        )
    return vectors
