"""Abstract base class for page fetchers used by the fetch stage."""

from __future__ import annotations

from abc import ABC, abstractmethod

from bookmark_pipeline.models.bookmark import PageContent


class IContentFetcher(ABC):
    """Contract for services that turn a URL into readable markdown."""

    @abstractmethod
    async def fetch(self, url: str) -> PageContent:
        """Fetch *url* and extract its title, markdown and page metadata.

        Raises
        ------
        bookmark_pipeline.utils.errors.FetchError
            If the page cannot be retrieved, has an unsupported content
            type, or yields no readable content.
        bookmark_pipeline.utils.errors.HttpStatusError
            If the server answers with a non-2xx status.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this fetcher."""
