"""Integration tests for entity extraction and the extraction -> enrichment hand-off."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from bookmark_pipeline.interfaces.catalog_provider import ICatalogProvider
from bookmark_pipeline.interfaces.repositories import Repositories
from bookmark_pipeline.models.bookmark import BookmarkStatus
from bookmark_pipeline.models.entities import (
    BookCandidate,
    BookMetadata,
    EntityStatus,
    EntityType,
    ExtractedEntity,
    ExtractionHints,
)
from bookmark_pipeline.models.messages import EntityExtractionMessage
from bookmark_pipeline.pipeline.dispatcher import EntityDispatcher
from bookmark_pipeline.pipeline.entity_handlers import EntityExtractionHandler
from bookmark_pipeline.providers.queue.memory_queue import InMemoryQueue
from bookmark_pipeline.providers.storage.sqlite_repositories import SQLiteDatabase
from bookmark_pipeline.services.entity_extractor import EntityExtractor

USER = "user-1"
MARKDOWN = "# Reading list\n\nThis month I finally read Dune, then rewatched the film adaptation twice."


def _extractor(*batches: list[ExtractedEntity]) -> MagicMock:
    extractor = MagicMock(spec=EntityExtractor)
    extractor.extract = AsyncMock(side_effect=list(batches))
    return extractor


async def _ready_bookmark(repositories: Repositories, url: str = "https://example.com/list") -> str:
    bookmark = await repositories.bookmarks.create(USER, url)
    await repositories.bookmarks.transition(
        bookmark.id,
        BookmarkStatus.PENDING,
        BookmarkStatus.CONTENT_READY,
        {"title": "Reading list", "markdown": MARKDOWN},
    )
    return bookmark.id


class TestEntityExtractionHandler:
    @pytest.mark.asyncio()
    async def test_name_variants_share_one_entity(self, repositories: Repositories) -> None:
        first = await _ready_bookmark(repositories, "https://example.com/1")
        second = await _ready_bookmark(repositories, "https://example.com/2")
        extractor = _extractor(
            [ExtractedEntity(type=EntityType.BOOK, name="Dune", confidence=0.9, context_snippet="read Dune")],
            [
                ExtractedEntity(
                    type=EntityType.BOOK,
                    name="DUNE!",
                    confidence=0.7,
                    hints=ExtractionHints(author="Frank Herbert"),
                )
            ],
        )
        handler = EntityExtractionHandler(repositories.bookmarks, repositories.entities, extractor)

        created_first = await handler.handle(EntityExtractionMessage(bookmark_id=first, user_id=USER))
        created_second = await handler.handle(EntityExtractionMessage(bookmark_id=second, user_id=USER))

        assert created_first is True
        assert created_second is False
        [entity] = await repositories.entities.find_by_status(USER, EntityStatus.PENDING)
        assert entity.name == "Dune"
        assert entity.normalized_name == "dune"
        links = await repositories.entities.find_links(entity.id)
        assert {link.bookmark_id for link in links} == {first, second}
        assert {link.context_snippet for link in links} == {"read Dune", ""}

    @pytest.mark.asyncio()
    async def test_same_name_different_type_are_separate(self, repositories: Repositories) -> None:
        bookmark_id = await _ready_bookmark(repositories)
        extractor = _extractor(
            [
                ExtractedEntity(type=EntityType.BOOK, name="Dune", confidence=0.9),
                ExtractedEntity(type=EntityType.MOVIE, name="Dune", confidence=0.8),
            ]
        )
        handler = EntityExtractionHandler(repositories.bookmarks, repositories.entities, extractor)

        await handler.handle(EntityExtractionMessage(bookmark_id=bookmark_id, user_id=USER))

        pending = await repositories.entities.find_by_status(USER, EntityStatus.PENDING)
        assert sorted(e.type.value for e in pending) == ["book", "movie"]

    @pytest.mark.asyncio()
    async def test_extraction_runs_once_per_bookmark(self, repositories: Repositories) -> None:
        bookmark_id = await _ready_bookmark(repositories)
        extractor = _extractor([ExtractedEntity(type=EntityType.BOOK, name="Dune", confidence=0.9)])
        handler = EntityExtractionHandler(repositories.bookmarks, repositories.entities, extractor)
        message = EntityExtractionMessage(bookmark_id=bookmark_id, user_id=USER)

        await handler.handle(message)
        again = await handler.handle(message)

        assert again is False
        extractor.extract.assert_awaited_once()
        bookmark = await repositories.bookmarks.find_by_id(bookmark_id)
        assert bookmark is not None and bookmark.entities_extracted

    @pytest.mark.asyncio()
    async def test_bookmark_without_markdown_is_skipped(self, repositories: Repositories) -> None:
        bookmark = await repositories.bookmarks.create(USER, "https://example.com/empty")
        extractor = _extractor()
        handler = EntityExtractionHandler(repositories.bookmarks, repositories.entities, extractor)

        assert await handler.handle(EntityExtractionMessage(bookmark_id=bookmark.id, user_id=USER)) is False
        assert await handler.handle(EntityExtractionMessage(bookmark_id="missing", user_id=USER)) is False
        extractor.extract.assert_not_called()

    @pytest.mark.asyncio()
    async def test_punctuation_only_names_are_skipped(self, repositories: Repositories) -> None:
        bookmark_id = await _ready_bookmark(repositories)
        extractor = _extractor([ExtractedEntity(type=EntityType.BOOK, name="?!", confidence=0.9)])
        handler = EntityExtractionHandler(repositories.bookmarks, repositories.entities, extractor)

        created = await handler.handle(EntityExtractionMessage(bookmark_id=bookmark_id, user_id=USER))

        assert created is False
        assert await repositories.entities.find_by_status(USER, EntityStatus.PENDING) == []
        bookmark = await repositories.bookmarks.find_by_id(bookmark_id)
        assert bookmark is not None and bookmark.entities_extracted


class TestExtractionToEnrichment:
    @pytest.mark.asyncio()
    async def test_extracted_book_is_enriched_by_follow_up_message(
        self, database: SQLiteDatabase, mock_llm
    ) -> None:
        async with database.session() as repos:
            bookmark_id = await _ready_bookmark(repos)
        book_catalog = MagicMock(spec=ICatalogProvider)
        book_catalog.search = AsyncMock(
            return_value=[
                BookCandidate(
                    external_id="openlibrary:/works/OL893415W",
                    title="Dune",
                    authors=["Frank Herbert"],
                    year=1965,
                )
            ]
        )
        book_catalog.get_entity_type.return_value = EntityType.BOOK
        book_catalog.get_provider_name.return_value = "openlibrary"
        entity_queue = InMemoryQueue("entity-processing")
        dispatcher = EntityDispatcher(
            open_session=database.session,
            extractor=_extractor([ExtractedEntity(type=EntityType.BOOK, name="Dune", confidence=0.95)]),
            catalogs={EntityType.BOOK: book_catalog},
            llm_provider=mock_llm,
            entity_queue=entity_queue,
        )
        await entity_queue.send(EntityExtractionMessage(bookmark_id=bookmark_id, user_id=USER).model_dump(by_alias=True))

        while len(entity_queue):
            batch = entity_queue.receive_batch()
            await dispatcher.process_batch(batch)
            entity_queue.settle(batch)

        async with database.session() as repos:
            [entity] = await repos.entities.find_by_status(USER, EntityStatus.ENRICHED)
        assert entity.external_id == "openlibrary:/works/OL893415W"
        assert isinstance(entity.metadata, BookMetadata)
        assert entity.metadata.authors == ["Frank Herbert"]
        book_catalog.search.assert_awaited_once_with("Dune")
        mock_llm.generate_structured.assert_not_called()
        assert entity_queue.dead_letters == []
