"""Bookmark pipeline composition root.

Wires providers, services and queue dispatchers together from
:class:`~bookmark_pipeline.config.settings.Settings`.  Nothing below the
``pipeline`` layer constructs its own collaborators; everything is built
here and injected.

``build_worker`` returns the assembled components as a dict, the same
shape the CLI consumes; ``shutdown_worker`` closes the HTTP clients the
components own.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from bookmark_pipeline.config.settings import Settings
from bookmark_pipeline.interfaces.catalog_provider import ICatalogProvider
from bookmark_pipeline.interfaces.embedding_provider import IEmbeddingProvider
from bookmark_pipeline.interfaces.llm_provider import ILLMProvider
from bookmark_pipeline.models.entities import EntityType
from bookmark_pipeline.pipeline.dispatcher import EntityDispatcher, IngestionDispatcher
from bookmark_pipeline.providers.catalog.openlibrary_provider import OpenLibraryProvider
from bookmark_pipeline.providers.catalog.tmdb_provider import TMDBMovieProvider, TMDBTvProvider
from bookmark_pipeline.providers.embedding.jina_embedding_provider import JinaEmbeddingProvider
from bookmark_pipeline.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from bookmark_pipeline.providers.fetch.web_page_fetcher import WebPageFetcher
from bookmark_pipeline.providers.llm.openai_compatible_provider import OpenAICompatibleLLMProvider
from bookmark_pipeline.providers.queue.memory_queue import InMemoryQueue
from bookmark_pipeline.providers.storage.sqlite_repositories import SQLiteDatabase
from bookmark_pipeline.services.entity_extractor import EntityExtractor
from bookmark_pipeline.services.summarizer import Summarizer
from bookmark_pipeline.services.tokenizer import count_tokens
from bookmark_pipeline.utils.errors import ConfigurationError

_logger: structlog.BoundLogger = structlog.get_logger(logger_name=__name__)

INGESTION_QUEUE_NAME = "bookmark-ingestion"
ENTITY_QUEUE_NAME = "entity-processing"


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def build_llm_provider(app_settings: Settings) -> ILLMProvider:
    """Build the chat-completion provider.

    Raises
    ------
    ConfigurationError
        If ``OPENROUTER_API_KEY`` is not set.
    """
    provider = OpenAICompatibleLLMProvider(settings=app_settings)
    if not provider.is_available():
        raise ConfigurationError(
            message="OPENROUTER_API_KEY is required for summaries and entity extraction",
            provider_name=provider.get_provider_name(),
        )
    return provider


def build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """Build the embedding provider named by ``EMBEDDING_PROVIDER``.

    ``"jina"`` (default) needs ``JINA_API_KEY``; ``"openai"`` needs
    ``OPENAI_API_KEY`` and honours ``OPENAI_BASE_URL``.
    """
    name = app_settings.embedding_provider.lower()
    if name == "jina":
        provider: IEmbeddingProvider = JinaEmbeddingProvider(settings=app_settings)
    elif name == "openai":
        provider = OpenAIEmbeddingProvider(settings=app_settings)
    else:
        raise ConfigurationError(message=f"Unknown embedding provider: {app_settings.embedding_provider}")

    if not provider.is_available():
        raise ConfigurationError(
            message=f"API key missing for embedding provider '{name}'",
            provider_name=provider.get_provider_name(),
        )
    return provider


def build_catalogs(
    app_settings: Settings, http_client: httpx.AsyncClient | None = None
) -> dict[EntityType, ICatalogProvider]:
    """Build one catalog per entity type, skipping unconfigured ones.

    Entities of a type with no catalog are marked FAILED by the
    enrichment engine, so a missing ``TMDB_API_KEY`` is logged here.
    """
    candidates: list[ICatalogProvider] = [
        OpenLibraryProvider(settings=app_settings, http_client=http_client),
        TMDBMovieProvider(settings=app_settings, http_client=http_client),
        TMDBTvProvider(settings=app_settings, http_client=http_client),
    ]

    catalogs: dict[EntityType, ICatalogProvider] = {}
    for catalog in candidates:
        if catalog.is_available():
            catalogs[catalog.get_entity_type()] = catalog
        else:
            _logger.warning(
                "catalog_unavailable",
                provider=catalog.get_provider_name(),
                entity_type=catalog.get_entity_type().value,
            )
    return catalogs


def build_database(app_settings: Settings) -> SQLiteDatabase:
    return SQLiteDatabase(app_settings.database_path)


# ---------------------------------------------------------------------------
# Full assembly
# ---------------------------------------------------------------------------


def build_worker(app_settings: Settings) -> dict[str, Any]:
    """Construct every provider, queue and dispatcher for a worker process.

    Returns a dict with the keys ``database``, ``ingestion_queue``,
    ``entity_queue``, ``ingestion_dispatcher``, ``entity_dispatcher``,
    ``fetcher``, ``embedding_provider`` and ``http_client``.
    """
    llm_provider = build_llm_provider(app_settings)
    embedding_provider = build_embedding_provider(app_settings)

    # Catalog adapters share one client; the fetcher keeps its own
    # (browser headers, redirects).
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(app_settings.catalog_timeout_seconds),
        headers={"Accept": "application/json"},
    )
    catalogs = build_catalogs(app_settings, http_client=http_client)
    fetcher = WebPageFetcher(settings=app_settings)

    database = build_database(app_settings)
    ingestion_queue = InMemoryQueue(INGESTION_QUEUE_NAME)
    entity_queue = InMemoryQueue(ENTITY_QUEUE_NAME)

    ingestion_dispatcher = IngestionDispatcher(
        open_session=database.session,
        fetcher=fetcher,
        summarizer=Summarizer(llm_provider),
        embedding_provider=embedding_provider,
        entity_queue=entity_queue,
        chunking_config=app_settings.chunking_config(),
        token_counter=count_tokens,
        concurrency=app_settings.queue_concurrency,
    )
    entity_dispatcher = EntityDispatcher(
        open_session=database.session,
        extractor=EntityExtractor(llm_provider),
        catalogs=catalogs,
        llm_provider=llm_provider,
        entity_queue=entity_queue,
        concurrency=app_settings.queue_concurrency,
        enrichment_concurrency=app_settings.enrichment_concurrency,
    )

    _logger.info(
        "worker_assembled",
        llm=llm_provider.get_provider_name(),
        embedding=embedding_provider.get_provider_name(),
        catalogs=sorted(entity_type.value for entity_type in catalogs),
        database=str(database.path),
    )

    return {
        "database": database,
        "ingestion_queue": ingestion_queue,
        "entity_queue": entity_queue,
        "ingestion_dispatcher": ingestion_dispatcher,
        "entity_dispatcher": entity_dispatcher,
        "fetcher": fetcher,
        "embedding_provider": embedding_provider,
        "http_client": http_client,
    }


async def shutdown_worker(components: dict[str, Any]) -> None:
    """Close the HTTP clients owned by *components*."""
    await components["fetcher"].close()
    embedding_provider = components["embedding_provider"]
    if isinstance(embedding_provider, JinaEmbeddingProvider):
        await embedding_provider.close()
    http_client: httpx.AsyncClient = components["http_client"]
    await http_client.aclose()
    _logger.info("worker_shutdown", message="HTTP clients closed")
