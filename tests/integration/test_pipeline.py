"""Integration tests for IngestionPipeline -- stages, resume and failure handling.

Uses a real SQLite database in a temporary directory; the fetcher, LLM and
embedding provider are mocked.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from bookmark_pipeline.interfaces.content_fetcher import IContentFetcher
from bookmark_pipeline.interfaces.repositories import Repositories
from bookmark_pipeline.models.bookmark import Bookmark, BookmarkStatus, PageContent
from bookmark_pipeline.models.chunking import ChunkingConfig, TextChunk
from bookmark_pipeline.models.messages import ExtractedContent, IngestionMessage
from bookmark_pipeline.pipeline.orchestrator import PIPELINE, IngestionPipeline
from bookmark_pipeline.providers.queue.memory_queue import InMemoryQueue
from bookmark_pipeline.services.summarizer import Summarizer
from bookmark_pipeline.utils.errors import FetchError

USER = "user-1"
URL = "https://example.com/posts/dune"

PAGE_MARKDOWN = (
    "# Dune\n\n"
    "Dune is a 1965 science fiction novel by Frank Herbert. It is set on the desert planet Arrakis.\n\n"
    "## Adaptations\n\n"
    "The novel was adapted for film in 1984 and again in 2021.\n"
)


def _page() -> PageContent:
    return PageContent(
        title="Dune review",
        markdown=PAGE_MARKDOWN,
        description="Thoughts on Dune",
        favicon="https://example.com/favicon.ico",
    )


def _fetcher(page: PageContent | None = None, error: BaseException | None = None) -> MagicMock:
    fetcher = MagicMock(spec=IContentFetcher)
    fetcher.fetch = AsyncMock(return_value=page, side_effect=error)
    fetcher.get_provider_name.return_value = "mock-fetcher"
    return fetcher


def _message(bookmark: Bookmark, extracted: ExtractedContent | None = None) -> IngestionMessage:
    return IngestionMessage(
        bookmark_id=bookmark.id,
        url=bookmark.url,
        user_id=bookmark.user_id,
        extracted_content=extracted,
    )


@pytest.fixture
def entity_queue() -> InMemoryQueue:
    return InMemoryQueue("entity-processing")


@pytest.fixture
def make_pipeline(repositories: Repositories, mock_llm, mock_embedder, entity_queue, token_counter):
    mock_llm.chat.return_value = "Dune is a classic science fiction novel."

    def _make(fetcher: MagicMock) -> IngestionPipeline:
        return IngestionPipeline(
            bookmarks=repositories.bookmarks,
            chunks=repositories.chunks,
            fetcher=fetcher,
            summarizer=Summarizer(mock_llm),
            embedding_provider=mock_embedder,
            entity_queue=entity_queue,
            chunking_config=ChunkingConfig(max_tokens=20, overlap_tokens=0, hard_max_tokens=30),
            token_counter=token_counter,
        )

    return _make


class TestTransitionTable:
    def test_stages_chain_from_pending_to_done(self) -> None:
        assert PIPELINE[0].from_status == BookmarkStatus.PENDING
        assert PIPELINE[-1].to_status == BookmarkStatus.DONE
        for current, following in zip(PIPELINE, PIPELINE[1:]):
            assert current.to_status == following.from_status
        assert [stage.name for stage in PIPELINE] == ["fetch", "summarize", "chunk", "embed"]


class TestIngestionPipeline:
    @pytest.mark.asyncio()
    async def test_full_run_reaches_done(
        self, repositories: Repositories, make_pipeline, mock_embedder, entity_queue
    ) -> None:
        bookmark = await repositories.bookmarks.create(USER, URL)
        fetcher = _fetcher(_page())

        status = await make_pipeline(fetcher).handle(_message(bookmark))

        assert status == BookmarkStatus.DONE
        stored = await repositories.bookmarks.find_by_id(bookmark.id)
        assert stored is not None
        assert stored.status == BookmarkStatus.DONE
        assert stored.title == "Dune review"
        assert stored.markdown == PAGE_MARKDOWN
        assert stored.summary == "Dune is a classic science fiction novel."
        assert stored.description == "Thoughts on Dune"
        assert stored.og_image is None
        assert stored.error_message is None

        chunks = await repositories.chunks.find_by_bookmark(bookmark.id)
        assert len(chunks) >= 2
        assert [c.position for c in chunks] == list(range(len(chunks)))
        assert all(c.embedding is not None for c in chunks)
        assert await repositories.chunks.find_pending_embedding(bookmark.id) == []

        extraction = entity_queue.receive_batch()
        assert [m.body for m in extraction] == [
            {"type": "entity-extraction", "bookmarkId": bookmark.id, "userId": USER}
        ]
        fetcher.fetch.assert_awaited_once_with(URL)

    @pytest.mark.asyncio()
    async def test_done_bookmark_is_a_no_op(
        self, repositories: Repositories, make_pipeline, mock_llm, mock_embedder, entity_queue
    ) -> None:
        bookmark = await repositories.bookmarks.create(USER, URL)
        await make_pipeline(_fetcher(_page())).handle(_message(bookmark))
        assert len(entity_queue.receive_batch()) == 1
        before = await repositories.bookmarks.find_by_id(bookmark.id)
        chunks_before = await repositories.chunks.find_by_bookmark(bookmark.id)
        mock_llm.chat.reset_mock()
        mock_embedder.embed_batch.reset_mock()
        fetcher = _fetcher(_page())

        status = await make_pipeline(fetcher).handle(_message(bookmark))

        assert status == BookmarkStatus.DONE
        fetcher.fetch.assert_not_called()
        mock_llm.chat.assert_not_called()
        mock_embedder.embed_batch.assert_not_called()
        after = await repositories.bookmarks.find_by_id(bookmark.id)
        assert after == before
        assert after is not None and after.updated_at == before.updated_at
        assert await repositories.chunks.find_by_bookmark(bookmark.id) == chunks_before
        assert len(entity_queue) == 0

    @pytest.mark.asyncio()
    async def test_resume_from_chunks_ready_only_embeds(
        self, repositories: Repositories, make_pipeline, mock_llm, mock_embedder
    ) -> None:
        bookmark = await repositories.bookmarks.create(USER, URL)
        await repositories.bookmarks.transition(
            bookmark.id,
            BookmarkStatus.PENDING,
            BookmarkStatus.CHUNKS_READY,
            {"title": "Dune", "markdown": PAGE_MARKDOWN, "summary": "Already summarized."},
        )
        first, second = await repositories.chunks.create_many(
            bookmark.id,
            [
                TextChunk(content="first chunk", position=0, token_count=2),
                TextChunk(content="second chunk", position=1, token_count=2),
            ],
        )
        await repositories.chunks.update_embedding(first.id, [0.1, 0.2, 0.3])
        fetcher = _fetcher(_page())

        status = await make_pipeline(fetcher).handle(_message(bookmark))

        assert status == BookmarkStatus.DONE
        fetcher.fetch.assert_not_called()
        mock_llm.chat.assert_not_called()
        mock_embedder.embed_batch.assert_awaited_once_with(["second chunk"])
        chunks = {c.id: c for c in await repositories.chunks.find_by_bookmark(bookmark.id)}
        assert chunks[first.id].embedding == [0.1, 0.2, 0.3]
        assert chunks[second.id].embedding == [float(len("second chunk")), 0.0, 1.0]

    @pytest.mark.asyncio()
    async def test_resume_from_content_ready_replaces_chunks(
        self, repositories: Repositories, make_pipeline
    ) -> None:
        bookmark = await repositories.bookmarks.create(USER, URL)
        await repositories.bookmarks.transition(
            bookmark.id,
            BookmarkStatus.PENDING,
            BookmarkStatus.CONTENT_READY,
            {"title": "Dune", "markdown": PAGE_MARKDOWN, "summary": "Already summarized."},
        )
        [stale] = await repositories.chunks.create_many(
            bookmark.id, [TextChunk(content="stale partial chunk", position=0, token_count=3)]
        )

        status = await make_pipeline(_fetcher()).handle(_message(bookmark))

        assert status == BookmarkStatus.DONE
        chunks = await repositories.chunks.find_by_bookmark(bookmark.id)
        assert stale.id not in {c.id for c in chunks}
        assert all("stale" not in c.content for c in chunks)

    @pytest.mark.asyncio()
    async def test_fetch_error_marks_failed(self, repositories: Repositories, make_pipeline) -> None:
        bookmark = await repositories.bookmarks.create(USER, URL)
        error = FetchError(message="Unsupported content type: application/pdf", provider_name="web_fetcher")

        status = await make_pipeline(_fetcher(error=error)).handle(_message(bookmark))

        assert status == BookmarkStatus.FAILED
        stored = await repositories.bookmarks.find_by_id(bookmark.id)
        assert stored is not None
        assert stored.status == BookmarkStatus.FAILED
        assert stored.error_message == "[web_fetcher] Unsupported content type: application/pdf"

    @pytest.mark.asyncio()
    async def test_failed_bookmark_restarts_at_fetch(self, repositories: Repositories, make_pipeline) -> None:
        bookmark = await repositories.bookmarks.create(USER, URL)
        await make_pipeline(_fetcher(error=FetchError(message="boom"))).handle(_message(bookmark))
        fetcher = _fetcher(_page())

        status = await make_pipeline(fetcher).handle(_message(bookmark))

        assert status == BookmarkStatus.DONE
        fetcher.fetch.assert_awaited_once()
        stored = await repositories.bookmarks.find_by_id(bookmark.id)
        assert stored is not None
        assert stored.error_message is None

    @pytest.mark.asyncio()
    async def test_unexpected_error_propagates(self, repositories: Repositories, make_pipeline) -> None:
        bookmark = await repositories.bookmarks.create(USER, URL)

        with pytest.raises(RuntimeError):
            await make_pipeline(_fetcher(error=RuntimeError("socket closed"))).handle(_message(bookmark))

        stored = await repositories.bookmarks.find_by_id(bookmark.id)
        assert stored is not None
        assert stored.status == BookmarkStatus.PENDING

    @pytest.mark.asyncio()
    async def test_lost_transition_stops_run(
        self, repositories: Repositories, make_pipeline, mock_llm
    ) -> None:
        bookmark = await repositories.bookmarks.create(USER, URL)

        async def _fetch_and_race(url: str) -> PageContent:
            await repositories.bookmarks.transition(
                bookmark.id, BookmarkStatus.PENDING, BookmarkStatus.MARKDOWN_READY, {"markdown": "other"}
            )
            return _page()

        fetcher = _fetcher()
        fetcher.fetch.side_effect = _fetch_and_race

        status = await make_pipeline(fetcher).handle(_message(bookmark))

        assert status == BookmarkStatus.PENDING
        mock_llm.chat.assert_not_called()
        stored = await repositories.bookmarks.find_by_id(bookmark.id)
        assert stored is not None
        assert stored.status == BookmarkStatus.MARKDOWN_READY
        assert stored.markdown == "other"

    @pytest.mark.asyncio()
    async def test_extracted_content_skips_fetcher(self, repositories: Repositories, make_pipeline) -> None:
        bookmark = await repositories.bookmarks.create(USER, URL)
        fetcher = _fetcher(_page())
        extracted = ExtractedContent(title="", content="Captured in the browser. It mentions Dune.")

        status = await make_pipeline(fetcher).handle(_message(bookmark, extracted))

        assert status == BookmarkStatus.DONE
        fetcher.fetch.assert_not_called()
        stored = await repositories.bookmarks.find_by_id(bookmark.id)
        assert stored is not None
        assert stored.title == "example.com"
        assert stored.markdown == "Captured in the browser. It mentions Dune."

    @pytest.mark.asyncio()
    async def test_missing_bookmark_returns_none(self, make_pipeline) -> None:
        message = IngestionMessage(bookmark_id="missing", url=URL, user_id=USER)

        assert await make_pipeline(_fetcher(_page())).handle(message) is None
