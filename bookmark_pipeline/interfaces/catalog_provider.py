"""Abstract base class for media catalog search providers.

One instance exists per entity type: a book catalog (Open Library), a movie
catalog and a TV catalog (both TMDB).  The enrichment engine routes each
entity to the instance registered for its :class:`EntityType`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from bookmark_pipeline.models.entities import CatalogCandidate, EntityType


class ICatalogProvider(ABC):
    """Contract for catalog services that resolve a title to candidates."""

    @abstractmethod
    async def search(self, query: str) -> list[CatalogCandidate]:
        """Search the catalog for works matching *query*.

        Parameters
        ----------
        query:
            The entity name as mentioned in the bookmark.

        Returns
        -------
        list[CatalogCandidate]
            Zero or more candidates in the provider's relevance order.  Every
            candidate's ``kind`` equals :meth:`get_entity_type`.

        Raises
        ------
        bookmark_pipeline.utils.errors.CatalogError
            If the catalog request fails.
        """

    @abstractmethod
    def get_entity_type(self) -> EntityType:
        """Return the entity type this catalog serves."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return the provider name stored with cached candidates, e.g. ``"tmdb"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured."""
