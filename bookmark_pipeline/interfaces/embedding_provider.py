"""Abstract base class for text-embedding providers.

Embeddings are produced for every chunk during the embed stage and stored
alongside the chunk; the search path (outside this package) consumes them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations: JinaEmbeddingProvider, OpenAIEmbeddingProvider
# Located in: bookmark_pipeline/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for services that turn text into dense vectors."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for a single *text*.

        Raises
        ------
        bookmark_pipeline.utils.errors.EmbeddingError
            If the API call fails.
        """

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Return one embedding per input text, in input order.

        Parameters
        ----------
        texts:
            The strings to embed.  Implementations may cap the batch size
            accepted in one request; callers split larger inputs.

        Returns
        -------
        list[list[float]]
            ``len(texts)`` vectors.  An empty input returns ``[]``.

        Raises
        ------
        bookmark_pipeline.utils.errors.EmbeddingError
            If the API call fails or returns the wrong number of vectors.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"jina"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider has credentials configured."""
