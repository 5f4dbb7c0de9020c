"""TMDB movie and TV catalog adapters.

Both adapters search ``https://api.themoviedb.org/3`` and hydrate each of
the top results with a details call, because the search endpoints lack
genres, runtime, IMDb id and people.  Movies additionally fetch
``/movie/{id}/credits`` for directors; a failed credits call only leaves
``directors`` empty.

A payload that cannot be mapped to a candidate (missing ``id``, a
``null`` title, invalid JSON) surfaces as :class:`CatalogError`.

Popularity is TMDB's own popularity score; the enrichment engine uses the
ratio between the top two scores to detect clear matches.
"""

from __future__ import annotations

import asyncio
from abc import abstractmethod
from typing import Any

import httpx
import structlog

from bookmark_pipeline.config.settings import Settings
from bookmark_pipeline.interfaces.catalog_provider import ICatalogProvider
from bookmark_pipeline.models.entities import EntityType, MovieCandidate, TvShowCandidate
from bookmark_pipeline.providers.http_errors import raise_for_status
from bookmark_pipeline.utils.errors import CatalogError, HttpStatusError
from bookmark_pipeline.utils.retry import RetryPolicy

logger = structlog.get_logger(logger_name=__name__)

_BASE_URL = "https://api.themoviedb.org/3"
_IMAGE_BASE_URL = "https://image.tmdb.org/t/p/w500"
_DEFAULT_LIMIT = 5
EXTERNAL_ID_PREFIX = "tmdb:"

_ERROR_MESSAGES = {
    401: "TMDB API key invalid",
    429: "TMDB rate limit exceeded",
}


def _year(date_string: str | None) -> int | None:
    """Return the year of a ``YYYY-MM-DD`` date, or ``None``."""
    if not date_string or len(date_string) < 4 or not date_string[:4].isdigit():
        return None
    return int(date_string[:4])


def _poster_url(poster_path: str | None) -> str | None:
    return f"{_IMAGE_BASE_URL}{poster_path}" if poster_path else None


class _TMDBCatalog(ICatalogProvider):
    """Shared HTTP plumbing for the movie and TV adapters."""

    _search_path: str = ""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
        limit: int = _DEFAULT_LIMIT,
    ) -> None:
        self._api_key = settings.tmdb_api_key
        self._limit = limit
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.catalog_timeout_seconds),
            headers={"Accept": "application/json"},
        )
        self._get = (retry_policy or settings.retry_policy())(self._get_once)

    async def search(self, query: str) -> list:
        try:
            payload = await self._get(
                self._search_path,
                {"query": query, "include_adult": "false"},
            )
            top_results = payload.get("results", [])[: self._limit]
            candidates = await asyncio.gather(
                *(self._details(result["id"]) for result in top_results)
            )
        except httpx.HTTPError as exc:
            raise CatalogError(
                message=f"TMDB request failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise CatalogError(
                message=f"Malformed TMDB response for '{query}': {type(exc).__name__}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info(
            "tmdb_search",
            entity_type=self.get_entity_type().value,
            query=query,
            results=len(candidates),
        )
        return list(candidates)

    def get_provider_name(self) -> str:
        return "tmdb"

    def is_available(self) -> bool:
        return bool(self._api_key)

    @abstractmethod
    async def _details(self, tmdb_id: int) -> Any:
        """Fetch one search hit's details and map it to a candidate."""

    async def _get_once(self, path: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        response = await self._client.get(
            f"{_BASE_URL}{path}",
            params={"api_key": self._api_key, **(params or {})},
        )
        raise_for_status(response, self.get_provider_name(), _ERROR_MESSAGES)
        return response.json()


class TMDBMovieProvider(_TMDBCatalog):
    """Movie search backed by TMDB."""

    _search_path = "/search/movie"

    def get_entity_type(self) -> EntityType:
        return EntityType.MOVIE

    async def search(self, query: str) -> list[MovieCandidate]:
        return await super().search(query)

    async def _details(self, tmdb_id: int) -> MovieCandidate:
        details = await self._get(f"/movie/{tmdb_id}")
        try:
            credits = await self._get(f"/movie/{tmdb_id}/credits")
            directors = [
                member["name"] for member in credits.get("crew", []) if member.get("job") == "Director"
            ]
        except HttpStatusError as exc:
            logger.warning("tmdb_credits_unavailable", tmdb_id=tmdb_id, error=str(exc))
            directors = []

        return MovieCandidate(
            external_id=f"{EXTERNAL_ID_PREFIX}{details['id']}",
            tmdb_id=details["id"],
            title=details.get("title", ""),
            popularity=details.get("popularity") or 0.0,
            directors=directors or None,
            year=_year(details.get("release_date")),
            poster_url=_poster_url(details.get("poster_path")),
            imdb_id=details.get("imdb_id") or None,
            runtime=details.get("runtime") or None,
            genres=[genre["name"] for genre in details.get("genres", [])],
        )


class TMDBTvProvider(_TMDBCatalog):
    """TV show search backed by TMDB."""

    _search_path = "/search/tv"

    def get_entity_type(self) -> EntityType:
        return EntityType.TV_SHOW

    async def search(self, query: str) -> list[TvShowCandidate]:
        return await super().search(query)

    async def _details(self, tmdb_id: int) -> TvShowCandidate:
        details = await self._get(f"/tv/{tmdb_id}")
        creators = [creator["name"] for creator in details.get("created_by", [])]
        return TvShowCandidate(
            external_id=f"{EXTERNAL_ID_PREFIX}{details['id']}",
            tmdb_id=details["id"],
            title=details.get("name", ""),
            popularity=details.get("popularity") or 0.0,
            creators=creators or None,
            first_air_year=_year(details.get("first_air_date")),
            poster_url=_poster_url(details.get("poster_path")),
            seasons=details.get("number_of_seasons") or None,
            genres=[genre["name"] for genre in details.get("genres", [])],
        )
