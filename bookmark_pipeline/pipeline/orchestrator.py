"""Resumable ingestion pipeline for one bookmark.

Drives a bookmark through four fixed stages, persisting the new status
after each one::

    PENDING         -> MARKDOWN_READY   fetch      page -> title / markdown / metadata
    MARKDOWN_READY  -> CONTENT_READY    summarize  LLM summary; enqueue entity extraction
    CONTENT_READY   -> CHUNKS_READY     chunk      delete + recreate every chunk
    CHUNKS_READY    -> DONE             embed      embed chunks whose embedding is NULL

The persisted status is the only checkpoint.  A redelivered message looks
up the stage whose ``from_status`` matches the bookmark and runs from
there; DONE is a no-op.  A status with no matching stage (FAILED) starts
over at fetch.

Every transition is compare-and-swap on the status this run observed.  If
another delivery moved the bookmark first, this run logs and stops.

Domain errors (:class:`BookmarkPipelineError`) mark the bookmark FAILED
with the error text and end the run normally, so the message is
acknowledged.  Any other exception propagates to the dispatcher, which
schedules redelivery.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import structlog

from bookmark_pipeline.interfaces.content_fetcher import IContentFetcher
from bookmark_pipeline.interfaces.embedding_provider import IEmbeddingProvider
from bookmark_pipeline.interfaces.message_queue import IMessageQueue
from bookmark_pipeline.interfaces.repositories import IBookmarkRepository, IChunkRepository
from bookmark_pipeline.models.bookmark import Bookmark, BookmarkStatus, PageContent
from bookmark_pipeline.models.chunking import ChunkingConfig
from bookmark_pipeline.models.messages import EntityExtractionMessage, IngestionMessage
from bookmark_pipeline.services.chunker import MarkdownChunker
from bookmark_pipeline.services.embedding import generate_embeddings
from bookmark_pipeline.services.summarizer import Summarizer
from bookmark_pipeline.services.tokenizer import TokenCounter
from bookmark_pipeline.utils.errors import BookmarkPipelineError, PipelineError
from bookmark_pipeline.utils.logging import get_logger
from bookmark_pipeline.utils.urls import hostname

StageFn = Callable[["IngestionPipeline", Bookmark, IngestionMessage], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class PipelineStage:
    """One row of the transition table."""

    from_status: BookmarkStatus
    to_status: BookmarkStatus
    name: str
    run: StageFn


class IngestionPipeline:
    """Runs the remaining ingestion stages for a bookmark.

    Parameters
    ----------
    bookmarks, chunks:
        Repositories bound to the current batch's database handle.
    fetcher:
        Page fetcher for the fetch stage.
    summarizer:
        Summary generator for the summarize stage.
    embedding_provider:
        Embedding backend for the embed stage.
    entity_queue:
        Queue receiving ``entity-extraction`` messages.
    chunking_config, token_counter:
        Passed to :class:`MarkdownChunker`.
    """

    def __init__(
        self,
        bookmarks: IBookmarkRepository,
        chunks: IChunkRepository,
        fetcher: IContentFetcher,
        summarizer: Summarizer,
        embedding_provider: IEmbeddingProvider,
        entity_queue: IMessageQueue,
        chunking_config: ChunkingConfig | None = None,
        token_counter: TokenCounter | None = None,
    ) -> None:
        self._bookmarks = bookmarks
        self._chunks = chunks
        self._fetcher = fetcher
        self._summarizer = summarizer
        self._embedding_provider = embedding_provider
        self._entity_queue = entity_queue
        self._chunker = MarkdownChunker(config=chunking_config, token_counter=token_counter)
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def handle(self, message: IngestionMessage) -> BookmarkStatus | None:
        """Process one ingestion message.

        Returns
        -------
        BookmarkStatus | None
            The bookmark's status when this run stopped, or ``None`` if the
            bookmark does not exist.
        """
        bookmark = await self._bookmarks.find_by_id(message.bookmark_id)
        if bookmark is None:
            self._logger.warning("bookmark_not_found")
            return None

        if bookmark.status == BookmarkStatus.DONE:
            self._logger.info("bookmark_already_done")
            return bookmark.status

        start = next(
            (i for i, stage in enumerate(PIPELINE) if stage.from_status == bookmark.status),
            0,
        )
        self._logger.info(
            "bookmark_pipeline_resume",
            status=bookmark.status.value,
            stage=PIPELINE[start].name,
        )

        current = bookmark
        for stage in PIPELINE[start:]:
            try:
                updates = await stage.run(self, current, message)
            except BookmarkPipelineError as exc:
                self._logger.error("bookmark_stage_failed", stage=stage.name, error=str(exc))
                await self._bookmarks.mark_failed(current.id, str(exc))
                return BookmarkStatus.FAILED

            advanced = await self._bookmarks.transition(
                current.id, current.status, stage.to_status, updates
            )
            if not advanced:
                self._logger.warning(
                    "bookmark_transition_lost",
                    stage=stage.name,
                    expected=current.status.value,
                )
                return current.status

            current = current.model_copy(update={**updates, "status": stage.to_status})
            self._logger.info("bookmark_stage_complete", stage=stage.name, status=stage.to_status.value)

        return current.status

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _fetch(self, bookmark: Bookmark, message: IngestionMessage) -> dict[str, Any]:
        url = message.url or bookmark.url
        if message.extracted_content is not None and message.extracted_content.content.strip():
            page = PageContent(
                title=message.extracted_content.title or hostname(url),
                markdown=message.extracted_content.content,
            )
            self._logger.info("bookmark_content_provided", chars=len(page.markdown))
        else:
            page = await self._fetcher.fetch(url)
            self._logger.info("bookmark_fetched", chars=len(page.markdown))

        updates = {"title": page.title, "markdown": page.markdown}
        for key in ("description", "favicon", "og_image"):
            value = getattr(page, key)
            if value:
                updates[key] = value
        return updates

    async def _summarize(self, bookmark: Bookmark, message: IngestionMessage) -> dict[str, Any]:
        markdown = self._require_markdown(bookmark, "summarize")
        title = bookmark.title or hostname(bookmark.url)
        summary = await self._summarizer.summarize(title, markdown)

        # Safe to repeat: extraction is guarded by entities_extracted.
        await self._entity_queue.send(
            EntityExtractionMessage(bookmark_id=bookmark.id, user_id=bookmark.user_id).model_dump(
                by_alias=True
            )
        )
        self._logger.info("entity_extraction_enqueued", summary_chars=len(summary))
        return {"summary": summary}

    async def _chunk(self, bookmark: Bookmark, message: IngestionMessage) -> dict[str, Any]:
        markdown = self._require_markdown(bookmark, "chunk")
        deleted = await self._chunks.delete_by_bookmark(bookmark.id)
        text_chunks = self._chunker.chunk(markdown)
        stored = await self._chunks.create_many(bookmark.id, text_chunks) if text_chunks else []
        self._logger.info("bookmark_chunked", chunks=len(stored), replaced=deleted)
        return {}

    async def _embed(self, bookmark: Bookmark, message: IngestionMessage) -> dict[str, Any]:
        pending = await self._chunks.find_pending_embedding(bookmark.id)
        if not pending:
            self._logger.info("bookmark_embeddings_complete", embedded=0)
            return {}

        vectors = await generate_embeddings([chunk.content for chunk in pending], self._embedding_provider)
        for chunk, vector in zip(pending, vectors):
            await self._chunks.update_embedding(chunk.id, vector)
        self._logger.info("bookmark_embeddings_complete", embedded=len(vectors))
        return {}

    @staticmethod
    def _require_markdown(bookmark: Bookmark, stage: str) -> str:
        if not bookmark.markdown:
            raise PipelineError(message=f"Missing markdown for {stage} stage")
        return bookmark.markdown


PIPELINE: tuple[PipelineStage, ...] = (
    PipelineStage(BookmarkStatus.PENDING, BookmarkStatus.MARKDOWN_READY, "fetch", IngestionPipeline._fetch),
    PipelineStage(BookmarkStatus.MARKDOWN_READY, BookmarkStatus.CONTENT_READY, "summarize", IngestionPipeline._summarize),
    PipelineStage(BookmarkStatus.CONTENT_READY, BookmarkStatus.CHUNKS_READY, "chunk", IngestionPipeline._chunk),
    PipelineStage(BookmarkStatus.CHUNKS_READY, BookmarkStatus.DONE, "embed", IngestionPipeline._embed),
)
