"""Handlers for the two entity queue message types.

``entity-extraction`` runs the LLM extractor over one bookmark and
creates / links entities; ``entity-enrichment`` resolves all of a user's
unresolved entities through :class:`EntityEnrichmentService`.
"""

from __future__ import annotations

import structlog

from bookmark_pipeline.interfaces.repositories import IBookmarkRepository, IEntityRepository
from bookmark_pipeline.models.entities import EntityBookmarkLink
from bookmark_pipeline.models.messages import EntityEnrichmentMessage, EntityExtractionMessage
from bookmark_pipeline.services.entity_enrichment import EnrichmentReport, EntityEnrichmentService
from bookmark_pipeline.services.entity_extractor import EntityExtractor
from bookmark_pipeline.utils.logging import get_logger
from bookmark_pipeline.utils.text_normalizer import normalize_entity_name


class EntityExtractionHandler:
    """Extracts entities from one bookmark, at most once per bookmark."""

    def __init__(
        self,
        bookmarks: IBookmarkRepository,
        entities: IEntityRepository,
        extractor: EntityExtractor,
    ) -> None:
        self._bookmarks = bookmarks
        self._entities = entities
        self._extractor = extractor
        self._logger: structlog.BoundLogger = get_logger(__name__)

    async def handle(self, message: EntityExtractionMessage) -> bool:
        """Extract, dedup and link the entities of one bookmark.

        Returns
        -------
        bool
            ``True`` if at least one new entity was created, meaning the
            user needs an enrichment run.
        """
        bookmark = await self._bookmarks.find_by_id(message.bookmark_id)
        if bookmark is None or not bookmark.markdown:
            self._logger.info("entity_extraction_skipped", reason="no_content")
            return False
        if bookmark.entities_extracted:
            self._logger.info("entity_extraction_skipped", reason="already_extracted")
            return False

        extracted = await self._extractor.extract(bookmark.markdown, bookmark.title or "", bookmark.url)

        created_new = False
        for mention in extracted:
            normalized = normalize_entity_name(mention.name)
            if not normalized:
                self._logger.debug("entity_name_empty_after_normalization", name=mention.name)
                continue

            entity = await self._entities.find_by_normalized_name(message.user_id, mention.type, normalized)
            if entity is None:
                entity, created = await self._entities.get_or_create(
                    message.user_id, mention.type, mention.name, normalized
                )
                created_new = created_new or created
                self._logger.info(
                    "entity_created" if created else "entity_reused",
                    entity_id=entity.id,
                    entity_type=mention.type.value,
                    name=mention.name,
                )

            await self._entities.link_to_bookmark(
                EntityBookmarkLink(
                    entity_id=entity.id,
                    bookmark_id=bookmark.id,
                    context_snippet=mention.context_snippet,
                    confidence=mention.confidence,
                    extraction_hints=mention.hints,
                )
            )

        await self._bookmarks.mark_entities_extracted(bookmark.id)
        self._logger.info("entity_extraction_complete", mentions=len(extracted), created_new=created_new)
        return created_new


class EntityEnrichmentHandler:
    """Thin adapter from an enrichment message to the enrichment engine."""

    def __init__(self, service: EntityEnrichmentService) -> None:
        self._service = service

    async def handle(self, message: EntityEnrichmentMessage) -> EnrichmentReport:
        return await self._service.enrich_pending_entities(message.user_id)
