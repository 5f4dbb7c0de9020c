"""Repository contracts for bookmarks, chunks and entities.

The pipeline never issues queries itself; it calls these repository
operations.  Status-advancing writes are compare-and-swap: they take the
status the caller believes is current and return ``False`` when another
delivery has already moved the row, so overlapping redeliveries of the
same message cannot both advance it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from bookmark_pipeline.models.bookmark import Bookmark, BookmarkStatus, Chunk
from bookmark_pipeline.models.chunking import TextChunk
from bookmark_pipeline.models.entities import (
    Entity,
    EntityBookmarkLink,
    EntityMetadata,
    EntityStatus,
    EntityType,
    SearchCandidates,
)


class IBookmarkRepository(ABC):
    """Persistence for :class:`Bookmark` rows."""

    @abstractmethod
    async def create(self, user_id: str, url: str, title: str | None = None) -> Bookmark:
        """Create a PENDING bookmark, or return the existing one for ``(user_id, url)``."""

    @abstractmethod
    async def find_by_id(self, bookmark_id: str) -> Bookmark | None:
        """Return the bookmark or ``None`` when it does not exist."""

    @abstractmethod
    async def transition(
        self,
        bookmark_id: str,
        expected: BookmarkStatus,
        new_status: BookmarkStatus,
        updates: dict[str, Any] | None = None,
    ) -> bool:
        """Advance status from *expected* to *new_status*, writing *updates* too.

        Parameters
        ----------
        bookmark_id:
            The bookmark to update.
        expected:
            The status the caller observed.  The write only happens if the
            row still has this status.
        new_status:
            The status to persist.
        updates:
            Extra column values (``title``, ``markdown``, ``summary``,
            ``description``, ``favicon``, ``og_image``).  ``error_message``
            is always cleared.

        Returns
        -------
        bool
            ``True`` if the row was updated, ``False`` if its status had
            already changed.
        """

    @abstractmethod
    async def find_by_status(self, status: BookmarkStatus, limit: int = 100) -> list[Bookmark]:
        """Return up to *limit* bookmarks in *status*, oldest first."""

    @abstractmethod
    async def mark_failed(self, bookmark_id: str, error_message: str) -> None:
        """Set status FAILED with a human-readable *error_message*."""

    @abstractmethod
    async def mark_entities_extracted(self, bookmark_id: str) -> None:
        """Set the ``entities_extracted`` guard flag."""


class IChunkRepository(ABC):
    """Persistence for :class:`Chunk` rows."""

    @abstractmethod
    async def delete_by_bookmark(self, bookmark_id: str) -> int:
        """Delete every chunk of a bookmark; return the number deleted."""

    @abstractmethod
    async def create_many(self, bookmark_id: str, chunks: list[TextChunk]) -> list[Chunk]:
        """Insert chunks (without embeddings) and return the stored rows."""

    @abstractmethod
    async def find_by_bookmark(self, bookmark_id: str) -> list[Chunk]:
        """Return a bookmark's chunks ordered by position."""

    @abstractmethod
    async def find_pending_embedding(self, bookmark_id: str) -> list[Chunk]:
        """Return a bookmark's chunks whose embedding is ``None``, by position."""

    @abstractmethod
    async def update_embedding(self, chunk_id: str, embedding: list[float]) -> None:
        """Store the embedding vector of one chunk."""


class IEntityRepository(ABC):
    """Persistence for :class:`Entity` rows and their bookmark links."""

    @abstractmethod
    async def find_by_id(self, entity_id: str) -> Entity | None:
        """Return the entity or ``None``."""

    @abstractmethod
    async def find_by_normalized_name(
        self,
        user_id: str,
        entity_type: EntityType,
        normalized_name: str,
    ) -> Entity | None:
        """Look an entity up by its dedup key."""

    @abstractmethod
    async def get_or_create(
        self,
        user_id: str,
        entity_type: EntityType,
        name: str,
        normalized_name: str,
    ) -> tuple[Entity, bool]:
        """Create a PENDING entity unless the dedup key already exists.

        Returns
        -------
        tuple[Entity, bool]
            The stored entity and ``True`` if this call created it.  A
            concurrent insert of the same key returns the winner's row with
            ``False``.
        """

    @abstractmethod
    async def link_to_bookmark(self, link: EntityBookmarkLink) -> EntityBookmarkLink:
        """Insert a link; an existing ``(entity_id, bookmark_id)`` row is returned unchanged."""

    @abstractmethod
    async def find_links(self, entity_id: str) -> list[EntityBookmarkLink]:
        """Return every bookmark link of an entity, oldest first."""

    @abstractmethod
    async def find_by_status(self, user_id: str, status: EntityStatus) -> list[Entity]:
        """Return a user's entities in *status*, oldest first."""

    @abstractmethod
    async def store_candidates(self, entity_id: str, candidates: SearchCandidates) -> bool:
        """Cache catalog results and move PENDING -> CANDIDATES_FOUND.

        Returns ``False`` when the entity was no longer PENDING.
        """

    @abstractmethod
    async def update_metadata(
        self,
        entity_id: str,
        metadata: EntityMetadata,
        status: EntityStatus,
        external_id: str | None = None,
    ) -> None:
        """Persist a terminal enrichment result for one entity."""

    @abstractmethod
    async def update_metadata_many(
        self,
        entity_ids: list[str],
        metadata: EntityMetadata,
        status: EntityStatus,
    ) -> None:
        """Persist the same metadata and status for several entities."""


@dataclass(frozen=True)
class Repositories:
    """The three repositories bound to one database handle.

    A queue batch opens one handle and shares it across every message in
    the batch.
    """

    bookmarks: IBookmarkRepository
    chunks: IChunkRepository
    entities: IEntityRepository
