"""Open Library book catalog adapter.

Searches ``https://openlibrary.org/search.json`` and maps each document to
a :class:`BookCandidate`.  No API key is required.  Candidates keep Open
Library's relevance order; the enrichment engine trusts it as-is.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from bookmark_pipeline.config.settings import Settings
from bookmark_pipeline.interfaces.catalog_provider import ICatalogProvider
from bookmark_pipeline.models.entities import BookCandidate, EntityType
from bookmark_pipeline.providers.http_errors import raise_for_status
from bookmark_pipeline.utils.errors import CatalogError
from bookmark_pipeline.utils.retry import RetryPolicy

logger = structlog.get_logger(logger_name=__name__)

_BASE_URL = "https://openlibrary.org"
_COVER_URL = "https://covers.openlibrary.org/b/id/{cover_id}-M.jpg"
_SEARCH_FIELDS = "key,title,author_name,first_publish_year,cover_i,isbn,number_of_pages_median,subject"
_DEFAULT_LIMIT = 5
_MAX_SUBJECTS = 5
EXTERNAL_ID_PREFIX = "openlibrary:"


class OpenLibraryProvider(ICatalogProvider):
    """Book search backed by the Open Library search API."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
        limit: int = _DEFAULT_LIMIT,
    ) -> None:
        self._limit = limit
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.catalog_timeout_seconds),
            headers={"Accept": "application/json"},
        )
        self._search_once_with_retry = (retry_policy or settings.retry_policy())(self._search_once)

    # ------------------------------------------------------------------
    # ICatalogProvider implementation
    # ------------------------------------------------------------------

    async def search(self, query: str) -> list[BookCandidate]:
        try:
            payload = await self._search_once_with_retry(query)
            candidates = [self._to_candidate(doc) for doc in payload.get("docs", [])[: self._limit]]
        except httpx.HTTPError as exc:
            raise CatalogError(
                message=f"Open Library request failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise CatalogError(
                message=f"Malformed Open Library response for '{query}': {type(exc).__name__}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info("openlibrary_search", query=query, results=len(candidates))
        return candidates

    def get_entity_type(self) -> EntityType:
        return EntityType.BOOK

    def get_provider_name(self) -> str:
        return "openlibrary"

    def is_available(self) -> bool:
        """Always available -- Open Library needs no credentials."""
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _search_once(self, query: str) -> dict[str, Any]:
        response = await self._client.get(
            f"{_BASE_URL}/search.json",
            params={"q": query, "limit": str(self._limit), "fields": _SEARCH_FIELDS},
        )
        raise_for_status(response, self.get_provider_name())
        return response.json()

    @staticmethod
    def _to_candidate(doc: dict[str, Any]) -> BookCandidate:
        cover_id = doc.get("cover_i")
        isbns = doc.get("isbn") or []
        subjects = doc.get("subject")
        return BookCandidate(
            external_id=f"{EXTERNAL_ID_PREFIX}{doc['key']}",
            title=doc.get("title", ""),
            authors=doc.get("author_name") or [],
            year=doc.get("first_publish_year"),
            isbn=isbns[0] if isbns else None,
            cover_url=_COVER_URL.format(cover_id=cover_id) if cover_id else None,
            page_count=doc.get("number_of_pages_median"),
            subjects=subjects[:_MAX_SUBJECTS] if subjects else None,
        )
