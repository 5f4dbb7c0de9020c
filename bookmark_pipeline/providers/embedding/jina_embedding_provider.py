"""Jina AI embedding provider adapter.

Calls ``POST https://api.jina.ai/v1/embeddings`` with httpx.  Chunks are
embedded with the ``retrieval.passage`` task and L2-normalised vectors;
the response is re-ordered by its ``index`` field so vectors line up with
the input texts.
"""

from __future__ import annotations

import httpx
import structlog

from bookmark_pipeline.config.settings import Settings
from bookmark_pipeline.interfaces.embedding_provider import IEmbeddingProvider
from bookmark_pipeline.providers.http_errors import raise_for_status
from bookmark_pipeline.utils.errors import EmbeddingError
from bookmark_pipeline.utils.retry import RetryPolicy

logger = structlog.get_logger(logger_name=__name__)

_JINA_EMBEDDINGS_URL = "https://api.jina.ai/v1/embeddings"
_TASK = "retrieval.passage"
_DEFAULT_TIMEOUT = 30.0


class JinaEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by the Jina embeddings API (``jina-embeddings-v3``)."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._api_key = settings.jina_api_key
        self._model = settings.jina_embedding_model
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(_DEFAULT_TIMEOUT))
        self._post = (retry_policy or settings.retry_policy())(self._post_once)

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        result = await self.embed_batch([text])
        return result[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        try:
            payload = await self._post(texts)
        except httpx.HTTPError as exc:
            raise EmbeddingError(
                message=f"Jina request failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        data = sorted(payload.get("data", []), key=lambda item: item["index"])
        vectors = [item["embedding"] for item in data]
        if len(vectors) != len(texts):
            raise EmbeddingError(
                message=f"Jina returned {len(vectors)} embeddings for {len(texts)} inputs",
                provider_name=self.get_provider_name(),
            )
        logger.info(
            "jina_embedding_batch",
            model=self._model,
            batch_size=len(texts),
            tokens=payload.get("usage", {}).get("total_tokens"),
        )
        return vectors

    def get_provider_name(self) -> str:
        return "jina"

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _post_once(self, texts: list[str]) -> dict:
        response = await self._client.post(
            _JINA_EMBEDDINGS_URL,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            json={
                "model": self._model,
                "task": _TASK,
                "normalized": True,
                "input": texts,
            },
        )
        raise_for_status(
            response,
            self.get_provider_name(),
            {429: "Jina rate limit exceeded", 401: "Jina API key invalid"},
        )
        return response.json()
