"""Public interface definitions for every external collaborator.

Business logic in ``services`` and ``pipeline`` only ever sees these
abstract base classes; concrete adapters live in
``bookmark_pipeline/providers/`` and are wired in ``bookmark_pipeline/main.py``.
Unit tests inject ``MagicMock(spec=...)`` / ``AsyncMock`` stand-ins.

CONCRETE PROVIDER MAP:
    Interface              ->  Concrete implementations
    ---------------------------------------------------------------------
    ILLMProvider           ->  OpenAICompatibleLLMProvider
    IEmbeddingProvider     ->  JinaEmbeddingProvider, OpenAIEmbeddingProvider
    ICatalogProvider       ->  OpenLibraryProvider, TMDBMovieProvider,
                               TMDBTvProvider
    IContentFetcher        ->  WebPageFetcher
    IMessageQueue          ->  InMemoryQueue
    IBookmarkRepository    ->  SQLiteBookmarkRepository
    IChunkRepository       ->  SQLiteChunkRepository
    IEntityRepository      ->  SQLiteEntityRepository
"""

from bookmark_pipeline.interfaces.catalog_provider import ICatalogProvider
from bookmark_pipeline.interfaces.content_fetcher import IContentFetcher
from bookmark_pipeline.interfaces.embedding_provider import IEmbeddingProvider
from bookmark_pipeline.interfaces.llm_provider import ChatMessage, ILLMProvider
from bookmark_pipeline.interfaces.message_queue import IMessageQueue, QueueMessage
from bookmark_pipeline.interfaces.repositories import (
    IBookmarkRepository,
    IChunkRepository,
    IEntityRepository,
    Repositories,
)

__all__ = [
    "ChatMessage",
    "IBookmarkRepository",
    "ICatalogProvider",
    "IChunkRepository",
    "IContentFetcher",
    "IEmbeddingProvider",
    "IEntityRepository",
    "ILLMProvider",
    "IMessageQueue",
    "QueueMessage",
    "Repositories",
]
