"""Bounded-concurrency queue consumers.

A dispatcher receives one delivered batch, opens a single database handle
for it, and processes the messages with at most ``concurrency`` in flight.
Every message is settled on its own:

- handled (including domain failures recorded as a FAILED status) -> ``ack``
- malformed body -> logged and ``ack`` (redelivery cannot fix it)
- any other exception -> logged and ``retry``

Message identifiers are bound to structlog's context for the duration of
the message, so every event logged by the handlers carries them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncContextManager, Callable, Generic, Mapping, TypeVar

import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError

from bookmark_pipeline.interfaces.catalog_provider import ICatalogProvider
from bookmark_pipeline.interfaces.content_fetcher import IContentFetcher
from bookmark_pipeline.interfaces.embedding_provider import IEmbeddingProvider
from bookmark_pipeline.interfaces.llm_provider import ILLMProvider
from bookmark_pipeline.interfaces.message_queue import IMessageQueue, QueueMessage
from bookmark_pipeline.interfaces.repositories import Repositories
from bookmark_pipeline.models.chunking import ChunkingConfig
from bookmark_pipeline.models.entities import EntityType
from bookmark_pipeline.models.messages import (
    EntityEnrichmentMessage,
    EntityExtractionMessage,
    EntityMessage,
    IngestionMessage,
)
from bookmark_pipeline.pipeline.entity_handlers import EntityEnrichmentHandler, EntityExtractionHandler
from bookmark_pipeline.pipeline.orchestrator import IngestionPipeline
from bookmark_pipeline.services.entity_enrichment import API_CONCURRENCY, EntityEnrichmentService
from bookmark_pipeline.services.entity_extractor import EntityExtractor
from bookmark_pipeline.services.summarizer import Summarizer
from bookmark_pipeline.services.tokenizer import TokenCounter
from bookmark_pipeline.utils.concurrency import map_bounded
from bookmark_pipeline.utils.logging import get_logger

SessionFactory = Callable[[], AsyncContextManager[Repositories]]

DEFAULT_CONCURRENCY = 2

_MessageT = TypeVar("_MessageT", bound=BaseModel)
_StateT = TypeVar("_StateT")

_ENTITY_MESSAGE_ADAPTER: TypeAdapter[EntityExtractionMessage | EntityEnrichmentMessage] = TypeAdapter(
    EntityMessage
)


@dataclass
class BatchResult:
    """Settlement counts of one processed batch."""

    acked: int = 0
    retried: int = 0
    invalid: int = 0
    enrichment_enqueued: list[str] = field(default_factory=list)


class BatchDispatcher(ABC, Generic[_MessageT, _StateT]):
    """Template for processing one delivered batch.

    Subclasses parse the message body, handle it against the batch's
    repositories, and may run a step after every message has settled.
    """

    def __init__(self, open_session: SessionFactory, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        self._open_session = open_session
        self._concurrency = concurrency
        self._logger: structlog.BoundLogger = get_logger(__name__)

    async def process_batch(self, messages: list[QueueMessage]) -> BatchResult:
        """Handle and settle every message of *messages*."""
        result = BatchResult()
        if not messages:
            return result

        self._logger.info("queue_batch_start", dispatcher=type(self).__name__, messages=len(messages))
        async with self._open_session() as repositories:
            state = self._new_batch_state()
            outcomes = await map_bounded(
                lambda message: self._process_message(message, repositories, state, result),
                messages,
                self._concurrency,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
            await self._after_batch(state, result)

        self._logger.info(
            "queue_batch_complete",
            dispatcher=type(self).__name__,
            acked=result.acked,
            retried=result.retried,
            invalid=result.invalid,
        )
        return result

    async def _process_message(
        self,
        message: QueueMessage,
        repositories: Repositories,
        state: _StateT,
        result: BatchResult,
    ) -> None:
        with structlog.contextvars.bound_contextvars(message_id=message.id, attempt=message.attempts):
            try:
                parsed = self._parse(message.body)
            except ValidationError as exc:
                self._logger.error("queue_message_invalid", errors=exc.error_count())
                message.ack()
                result.invalid += 1
                return

            with structlog.contextvars.bound_contextvars(**self._log_context(parsed)):
                try:
                    await self._handle(parsed, repositories, state)
                except Exception:  # noqa: BLE001
                    self._logger.exception("queue_message_failed")
                    message.retry()
                    result.retried += 1
                    return

                message.ack()
                result.acked += 1

    @abstractmethod
    def _parse(self, body: dict[str, Any]) -> _MessageT:
        """Validate a raw message body."""

    @abstractmethod
    async def _handle(self, message: _MessageT, repositories: Repositories, state: _StateT) -> None:
        """Process one parsed message."""

    @abstractmethod
    def _new_batch_state(self) -> _StateT:
        """Create the per-batch state shared by the batch's messages."""

    async def _after_batch(self, state: _StateT, result: BatchResult) -> None:
        """Hook run once all messages of the batch are settled."""

    def _log_context(self, message: _MessageT) -> dict[str, Any]:
        return {
            key: value
            for key, value in message.model_dump(include={"bookmark_id", "user_id", "type"}).items()
            if value is not None
        }


class IngestionDispatcher(BatchDispatcher[IngestionMessage, None]):
    """Consumes ``{bookmarkId, url, userId}`` messages."""

    def __init__(
        self,
        open_session: SessionFactory,
        fetcher: IContentFetcher,
        summarizer: Summarizer,
        embedding_provider: IEmbeddingProvider,
        entity_queue: IMessageQueue,
        chunking_config: ChunkingConfig | None = None,
        token_counter: TokenCounter | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        super().__init__(open_session, concurrency)
        self._fetcher = fetcher
        self._summarizer = summarizer
        self._embedding_provider = embedding_provider
        self._entity_queue = entity_queue
        self._chunking_config = chunking_config
        self._token_counter = token_counter

    def _parse(self, body: dict[str, Any]) -> IngestionMessage:
        return IngestionMessage.model_validate(body)

    def _new_batch_state(self) -> None:
        return None

    async def _handle(self, message: IngestionMessage, repositories: Repositories, state: None) -> None:
        pipeline = IngestionPipeline(
            bookmarks=repositories.bookmarks,
            chunks=repositories.chunks,
            fetcher=self._fetcher,
            summarizer=self._summarizer,
            embedding_provider=self._embedding_provider,
            entity_queue=self._entity_queue,
            chunking_config=self._chunking_config,
            token_counter=self._token_counter,
        )
        await pipeline.handle(message)


class EntityDispatcher(BatchDispatcher[Any, set]):
    """Consumes ``entity-extraction`` and ``entity-enrichment`` messages.

    Users whose extraction created new entities are collected in a
    per-batch set; after the batch, one ``entity-enrichment`` message is
    enqueued per user.
    """

    def __init__(
        self,
        open_session: SessionFactory,
        extractor: EntityExtractor,
        catalogs: Mapping[EntityType, ICatalogProvider],
        llm_provider: ILLMProvider,
        entity_queue: IMessageQueue,
        concurrency: int = DEFAULT_CONCURRENCY,
        enrichment_concurrency: int = API_CONCURRENCY,
    ) -> None:
        super().__init__(open_session, concurrency)
        self._extractor = extractor
        self._catalogs = dict(catalogs)
        self._llm = llm_provider
        self._entity_queue = entity_queue
        self._enrichment_concurrency = enrichment_concurrency

    def _parse(self, body: dict[str, Any]) -> EntityExtractionMessage | EntityEnrichmentMessage:
        return _ENTITY_MESSAGE_ADAPTER.validate_python(body)

    def _new_batch_state(self) -> set[str]:
        return set()

    async def _handle(
        self,
        message: EntityExtractionMessage | EntityEnrichmentMessage,
        repositories: Repositories,
        state: set[str],
    ) -> None:
        if isinstance(message, EntityExtractionMessage):
            handler = EntityExtractionHandler(repositories.bookmarks, repositories.entities, self._extractor)
            if await handler.handle(message):
                state.add(message.user_id)
            return

        service = EntityEnrichmentService(
            repositories.entities,
            self._catalogs,
            self._llm,
            concurrency=self._enrichment_concurrency,
        )
        await EntityEnrichmentHandler(service).handle(message)

    async def _after_batch(self, state: set[str], result: BatchResult) -> None:
        users = sorted(state)
        if not users:
            return
        await self._entity_queue.send_batch(
            [EntityEnrichmentMessage(user_id=user_id).model_dump(by_alias=True) for user_id in users]
        )
        result.enrichment_enqueued.extend(users)
        self._logger.info("entity_enrichment_enqueued", users=len(users))
