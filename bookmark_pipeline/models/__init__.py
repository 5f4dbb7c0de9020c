"""Pydantic v2 data models for the bookmark pipeline.

All models are frozen; updates go through ``model_copy(update=...)``.
"""

from bookmark_pipeline.models.bookmark import Bookmark, BookmarkStatus, Chunk, PageContent
from bookmark_pipeline.models.chunking import ChunkingConfig, TextChunk
from bookmark_pipeline.models.entities import (
    AmbiguousMetadata,
    BookCandidate,
    BookMetadata,
    CandidateSummary,
    CatalogCandidate,
    Entity,
    EntityBookmarkLink,
    EntityMetadata,
    EntityStatus,
    EntityType,
    ExtractedEntity,
    ExtractionHints,
    FailedMetadata,
    MovieCandidate,
    MovieMetadata,
    SearchCandidates,
    StoredCandidate,
    TvShowCandidate,
    TvShowMetadata,
)
from bookmark_pipeline.models.messages import (
    EntityEnrichmentMessage,
    EntityExtractionMessage,
    EntityMessage,
    ExtractedContent,
    IngestionMessage,
)

__all__ = [
    "AmbiguousMetadata",
    "BookCandidate",
    "BookMetadata",
    "Bookmark",
    "BookmarkStatus",
    "CandidateSummary",
    "CatalogCandidate",
    "Chunk",
    "ChunkingConfig",
    "Entity",
    "EntityBookmarkLink",
    "EntityEnrichmentMessage",
    "EntityExtractionMessage",
    "EntityMessage",
    "EntityMetadata",
    "EntityStatus",
    "EntityType",
    "ExtractedContent",
    "ExtractedEntity",
    "ExtractionHints",
    "FailedMetadata",
    "IngestionMessage",
    "MovieCandidate",
    "MovieMetadata",
    "PageContent",
    "SearchCandidates",
    "StoredCandidate",
    "TextChunk",
    "TvShowCandidate",
    "TvShowMetadata",
]
