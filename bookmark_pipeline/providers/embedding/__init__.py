"""Embedding provider adapters.

Two concrete implementations of IEmbeddingProvider:
    - JinaEmbeddingProvider   -- jina-embeddings-v3 over httpx (default)
    - OpenAIEmbeddingProvider -- OpenAI or any OpenAI-compatible endpoint

main.py picks one from the ``EMBEDDING_PROVIDER`` setting.
"""

from bookmark_pipeline.providers.embedding.jina_embedding_provider import JinaEmbeddingProvider
from bookmark_pipeline.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["JinaEmbeddingProvider", "OpenAIEmbeddingProvider"]
