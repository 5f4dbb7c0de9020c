"""Integration tests for the SQLite repositories.

Each test runs against a fresh database file under ``tmp_path`` so the
suite is isolated and parallel-safe.
"""

from __future__ import annotations

import datetime

import pytest

from bookmark_pipeline.interfaces.repositories import Repositories
from bookmark_pipeline.models.bookmark import BookmarkStatus
from bookmark_pipeline.models.chunking import TextChunk
from bookmark_pipeline.models.entities import (
    BookCandidate,
    BookMetadata,
    EntityBookmarkLink,
    EntityStatus,
    EntityType,
    ExtractionHints,
    FailedMetadata,
    SearchCandidates,
    StoredCandidate,
)
from bookmark_pipeline.providers.storage.sqlite_repositories import SQLiteDatabase
from bookmark_pipeline.utils.errors import RepositoryError

USER = "user-1"


# ---------------------------------------------------------------------------
# Bookmarks
# ---------------------------------------------------------------------------


class TestBookmarkRepository:
    @pytest.mark.asyncio()
    async def test_create_starts_pending(self, repositories: Repositories) -> None:
        bookmark = await repositories.bookmarks.create(USER, "https://example.com/a", "A")

        assert bookmark.status == BookmarkStatus.PENDING
        assert bookmark.title == "A"
        assert not bookmark.entities_extracted
        assert bookmark.created_at is not None

    @pytest.mark.asyncio()
    async def test_create_is_idempotent_per_user_and_url(self, repositories: Repositories) -> None:
        first = await repositories.bookmarks.create(USER, "https://example.com/a")
        again = await repositories.bookmarks.create(USER, "https://example.com/a")
        other_user = await repositories.bookmarks.create("user-2", "https://example.com/a")

        assert again.id == first.id
        assert other_user.id != first.id

    @pytest.mark.asyncio()
    async def test_transition_is_compare_and_swap(self, repositories: Repositories) -> None:
        bookmark = await repositories.bookmarks.create(USER, "https://example.com/a")

        won = await repositories.bookmarks.transition(
            bookmark.id, BookmarkStatus.PENDING, BookmarkStatus.MARKDOWN_READY, {"markdown": "# A"}
        )
        lost = await repositories.bookmarks.transition(
            bookmark.id, BookmarkStatus.PENDING, BookmarkStatus.MARKDOWN_READY, {"markdown": "# B"}
        )

        assert won is True
        assert lost is False
        stored = await repositories.bookmarks.find_by_id(bookmark.id)
        assert stored is not None
        assert stored.status == BookmarkStatus.MARKDOWN_READY
        assert stored.markdown == "# A"

    @pytest.mark.asyncio()
    async def test_transition_rejects_unknown_columns(self, repositories: Repositories) -> None:
        bookmark = await repositories.bookmarks.create(USER, "https://example.com/a")

        with pytest.raises(RepositoryError, match="status"):
            await repositories.bookmarks.transition(
                bookmark.id, BookmarkStatus.PENDING, BookmarkStatus.DONE, {"status": "DONE"}
            )

    @pytest.mark.asyncio()
    async def test_mark_failed_and_clear_on_transition(self, repositories: Repositories) -> None:
        bookmark = await repositories.bookmarks.create(USER, "https://example.com/a")

        await repositories.bookmarks.mark_failed(bookmark.id, "fetch failed")
        failed = await repositories.bookmarks.find_by_id(bookmark.id)
        await repositories.bookmarks.transition(bookmark.id, BookmarkStatus.FAILED, BookmarkStatus.MARKDOWN_READY)
        recovered = await repositories.bookmarks.find_by_id(bookmark.id)

        assert failed is not None and failed.status == BookmarkStatus.FAILED
        assert failed.error_message == "fetch failed"
        assert recovered is not None and recovered.error_message is None

    @pytest.mark.asyncio()
    async def test_find_by_status(self, repositories: Repositories) -> None:
        a = await repositories.bookmarks.create(USER, "https://example.com/a")
        b = await repositories.bookmarks.create(USER, "https://example.com/b")
        await repositories.bookmarks.transition(b.id, BookmarkStatus.PENDING, BookmarkStatus.CONTENT_READY)

        pending = await repositories.bookmarks.find_by_status(BookmarkStatus.PENDING)
        ready = await repositories.bookmarks.find_by_status(BookmarkStatus.CONTENT_READY)

        assert [x.id for x in pending] == [a.id]
        assert [x.id for x in ready] == [b.id]

    @pytest.mark.asyncio()
    async def test_mark_entities_extracted(self, repositories: Repositories) -> None:
        bookmark = await repositories.bookmarks.create(USER, "https://example.com/a")

        await repositories.bookmarks.mark_entities_extracted(bookmark.id)

        stored = await repositories.bookmarks.find_by_id(bookmark.id)
        assert stored is not None and stored.entities_extracted

    @pytest.mark.asyncio()
    async def test_find_missing_returns_none(self, repositories: Repositories) -> None:
        assert await repositories.bookmarks.find_by_id("nope") is None


# ---------------------------------------------------------------------------
# Chunks
# ---------------------------------------------------------------------------


class TestChunkRepository:
    @pytest.mark.asyncio()
    async def test_create_and_embed(self, repositories: Repositories) -> None:
        bookmark = await repositories.bookmarks.create(USER, "https://example.com/a")
        stored = await repositories.chunks.create_many(
            bookmark.id,
            [
                TextChunk(content="one", position=0, token_count=1, breadcrumb_path="A"),
                TextChunk(content="two", position=1, token_count=1, breadcrumb_path="A > B"),
            ],
        )

        await repositories.chunks.update_embedding(stored[0].id, [0.5, 0.25])

        chunks = await repositories.chunks.find_by_bookmark(bookmark.id)
        pending = await repositories.chunks.find_pending_embedding(bookmark.id)
        assert [c.content for c in chunks] == ["one", "two"]
        assert chunks[0].embedding == [0.5, 0.25]
        assert chunks[1].breadcrumb_path == "A > B"
        assert [c.id for c in pending] == [stored[1].id]

    @pytest.mark.asyncio()
    async def test_delete_by_bookmark(self, repositories: Repositories) -> None:
        bookmark = await repositories.bookmarks.create(USER, "https://example.com/a")
        await repositories.chunks.create_many(
            bookmark.id, [TextChunk(content=str(i), position=i, token_count=1) for i in range(3)]
        )

        deleted = await repositories.chunks.delete_by_bookmark(bookmark.id)

        assert deleted == 3
        assert await repositories.chunks.find_by_bookmark(bookmark.id) == []


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


def _book_candidates() -> SearchCandidates:
    candidate = BookCandidate(external_id="openlibrary:/works/OL1W", title="Dune", authors=["Frank Herbert"])
    return SearchCandidates(
        provider="openlibrary",
        searched_at=datetime.datetime(2026, 1, 1, tzinfo=datetime.timezone.utc),
        results=[
            StoredCandidate(
                external_id=candidate.external_id,
                title=candidate.title,
                confidence=1.0,
                candidate=candidate,
            )
        ],
    )


class TestEntityRepository:
    @pytest.mark.asyncio()
    async def test_get_or_create_dedups_on_key(self, repositories: Repositories) -> None:
        entity, created = await repositories.entities.get_or_create(USER, EntityType.BOOK, "Dune", "dune")
        again, created_again = await repositories.entities.get_or_create(USER, EntityType.BOOK, "DUNE", "dune")
        movie, movie_created = await repositories.entities.get_or_create(USER, EntityType.MOVIE, "Dune", "dune")

        assert created and not created_again and movie_created
        assert again.id == entity.id
        assert again.name == "Dune"
        assert movie.id != entity.id
        assert entity.status == EntityStatus.PENDING

    @pytest.mark.asyncio()
    async def test_links_are_idempotent(self, repositories: Repositories) -> None:
        bookmark = await repositories.bookmarks.create(USER, "https://example.com/a")
        entity, _ = await repositories.entities.get_or_create(USER, EntityType.BOOK, "Dune", "dune")
        link = EntityBookmarkLink(
            entity_id=entity.id,
            bookmark_id=bookmark.id,
            context_snippet="reading Dune",
            confidence=0.9,
            extraction_hints=ExtractionHints(author="Frank Herbert"),
        )

        await repositories.entities.link_to_bookmark(link)
        existing = await repositories.entities.link_to_bookmark(
            EntityBookmarkLink(entity_id=entity.id, bookmark_id=bookmark.id, confidence=0.5)
        )

        links = await repositories.entities.find_links(entity.id)
        assert len(links) == 1
        assert existing.confidence == 0.9
        assert links[0].extraction_hints == ExtractionHints(author="Frank Herbert")

    @pytest.mark.asyncio()
    async def test_store_candidates_only_from_pending(self, repositories: Repositories) -> None:
        entity, _ = await repositories.entities.get_or_create(USER, EntityType.BOOK, "Dune", "dune")

        first = await repositories.entities.store_candidates(entity.id, _book_candidates())
        second = await repositories.entities.store_candidates(entity.id, _book_candidates())

        stored = await repositories.entities.find_by_id(entity.id)
        assert first is True
        assert second is False
        assert stored is not None
        assert stored.status == EntityStatus.CANDIDATES_FOUND
        assert stored.search_candidates == _book_candidates()

    @pytest.mark.asyncio()
    async def test_update_metadata_round_trips_union(self, repositories: Repositories) -> None:
        entity, _ = await repositories.entities.get_or_create(USER, EntityType.BOOK, "Dune", "dune")
        metadata = BookMetadata(canonical_title="Dune", authors=["Frank Herbert"], openlibrary_key="/works/OL1W")

        await repositories.entities.update_metadata(
            entity.id, metadata, EntityStatus.ENRICHED, external_id="openlibrary:/works/OL1W"
        )

        stored = await repositories.entities.find_by_id(entity.id)
        assert stored is not None
        assert stored.status == EntityStatus.ENRICHED
        assert stored.external_id == "openlibrary:/works/OL1W"
        assert stored.metadata == metadata

    @pytest.mark.asyncio()
    async def test_update_metadata_many_and_find_by_status(self, repositories: Repositories) -> None:
        a, _ = await repositories.entities.get_or_create(USER, EntityType.MOVIE, "Heat", "heat")
        b, _ = await repositories.entities.get_or_create(USER, EntityType.MOVIE, "Alien", "alien")
        await repositories.entities.get_or_create("user-2", EntityType.MOVIE, "Heat", "heat")

        await repositories.entities.update_metadata_many(
            [a.id, b.id], FailedMetadata(error="Disambiguation failed"), EntityStatus.FAILED
        )

        failed = await repositories.entities.find_by_status(USER, EntityStatus.FAILED)
        assert {e.id for e in failed} == {a.id, b.id}
        assert all(e.metadata == FailedMetadata(error="Disambiguation failed") for e in failed)
        assert await repositories.entities.find_by_status("user-2", EntityStatus.FAILED) == []


@pytest.mark.asyncio()
async def test_initialize_is_idempotent(database: SQLiteDatabase) -> None:
    await database.initialize()

    async with database.session() as repos:
        bookmark = await repos.bookmarks.create(USER, "https://example.com/a")
    assert bookmark.id
