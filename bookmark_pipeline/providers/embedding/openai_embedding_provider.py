"""Chunk embeddings through the ``openai`` SDK.

Selected with ``EMBEDDING_PROVIDER=openai``.  ``OPENAI_BASE_URL`` points the
client at any server speaking the OpenAI embeddings API; the SDK's own
retries are disabled in favour of the shared :class:`RetryPolicy`.
"""

from __future__ import annotations

import openai
import structlog

from bookmark_pipeline.config.settings import Settings
from bookmark_pipeline.interfaces.embedding_provider import IEmbeddingProvider
from bookmark_pipeline.utils.errors import EmbeddingError
from bookmark_pipeline.utils.retry import RetryPolicy

logger = structlog.get_logger(logger_name=__name__)


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """``embeddings.create`` adapter; vectors are returned in input order."""

    def __init__(
        self,
        settings: Settings,
        client: openai.AsyncOpenAI | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._api_key = settings.openai_api_key

        client_kwargs: dict = {"api_key": self._api_key or "not-configured", "max_retries": 0}
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = client or openai.AsyncOpenAI(**client_kwargs)
        self._model = settings.openai_embedding_model
        self._provider_label = (
            "openai-compatible-embeddings" if settings.openai_base_url else "openai-embeddings"
        )
        self._create = (retry_policy or settings.retry_policy())(self._create_once)

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
            response = await self._create(texts)
        except openai.APIError as exc:
            raise EmbeddingError(
                message=f"Embedding request failed ({len(texts)} texts): {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        ordered = sorted(response.data, key=lambda item: item.index)
        logger.info(
            "embedding_batch_done",
            provider=self._provider_label,
            model=self._model,
            texts=len(texts),
            tokens=response.usage.total_tokens if response.usage else None,
        )
        return [item.embedding for item in ordered]

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def _create_once(self, texts: list[str]):  # noqa: ANN202
        return await self._client.embeddings.create(input=texts, model=self._model)
