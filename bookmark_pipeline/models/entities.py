"""Media entity models: books, movies and TV shows mentioned in bookmarks.

An :class:`Entity` is unique per ``(user_id, type, normalized_name)`` and is
linked to every bookmark that mentions it through an
:class:`EntityBookmarkLink`.  Enrichment moves it through::

    PENDING -> CANDIDATES_FOUND -> ENRICHED | AMBIGUOUS | FAILED

Catalog candidates and enrichment metadata are tagged unions keyed by a
``kind`` discriminator, so consumers dispatch on the concrete model class
instead of probing for optional fields.  Candidate ``kind`` values are the
:class:`EntityType` values; metadata additionally has ``"failed"`` and
``"ambiguous"`` payloads.
"""

from __future__ import annotations

import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class EntityType(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Kinds of media entity the extractor recognises."""

    BOOK = "book"        # Books, novels, textbooks, guides
    MOVIE = "movie"      # Films, documentaries
    TV_SHOW = "tv_show"  # TV series, web series, limited series


class EntityStatus(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Enrichment state of an entity.

    CANDIDATES_FOUND is the Phase 1 checkpoint: the catalog results are
    stored on the entity, so a rerun skips the catalog query.
    """

    PENDING = "PENDING"
    CANDIDATES_FOUND = "CANDIDATES_FOUND"
    ENRICHED = "ENRICHED"
    AMBIGUOUS = "AMBIGUOUS"
    FAILED = "FAILED"


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

class ExtractionHints(BaseModel):
    """Disambiguation signals noticed next to a mention (all optional)."""

    model_config = ConfigDict(frozen=True)

    year: int | None = None
    author: str | None = None
    director: str | None = None
    language: str | None = None

    def is_empty(self) -> bool:
        return not any((self.year, self.author, self.director, self.language))


class ExtractedEntity(BaseModel):
    """A single mention returned by the entity extractor."""

    model_config = ConfigDict(frozen=True)

    type: EntityType
    name: str = Field(min_length=1)
    context_snippet: str = ""
    confidence: float = Field(ge=0.0, le=1.0)
    hints: ExtractionHints | None = None


# ---------------------------------------------------------------------------
# Catalog candidates (tagged union on ``kind``)
# ---------------------------------------------------------------------------

class BookCandidate(BaseModel):
    """An Open Library search hit."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["book"] = "book"
    external_id: str  # "openlibrary:/works/OL..."
    title: str
    authors: list[str] = Field(default_factory=list)
    year: int | None = None
    isbn: str | None = None
    cover_url: str | None = None
    page_count: int | None = None
    subjects: list[str] | None = None


class MovieCandidate(BaseModel):
    """A TMDB movie hit hydrated with details and directors."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["movie"] = "movie"
    external_id: str  # "tmdb:<id>"
    tmdb_id: int
    title: str
    popularity: float = 0.0
    directors: list[str] | None = None
    year: int | None = None
    poster_url: str | None = None
    imdb_id: str | None = None
    runtime: int | None = None
    genres: list[str] = Field(default_factory=list)


class TvShowCandidate(BaseModel):
    """A TMDB TV hit hydrated with details and creators."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["tv_show"] = "tv_show"
    external_id: str  # "tmdb:<id>"
    tmdb_id: int
    title: str
    popularity: float = 0.0
    creators: list[str] | None = None
    first_air_year: int | None = None
    poster_url: str | None = None
    seasons: int | None = None
    genres: list[str] = Field(default_factory=list)


CatalogCandidate = Annotated[
    Union[BookCandidate, MovieCandidate, TvShowCandidate],
    Field(discriminator="kind"),
]


class StoredCandidate(BaseModel):
    """One catalog hit as cached on the entity after Phase 1."""

    model_config = ConfigDict(frozen=True)

    external_id: str
    title: str
    confidence: float
    candidate: CatalogCandidate


class SearchCandidates(BaseModel):
    """Cached catalog response: provider, timestamp and every hit."""

    model_config = ConfigDict(frozen=True)

    provider: str
    searched_at: datetime.datetime
    results: list[StoredCandidate] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Enrichment metadata (tagged union on ``kind``)
# ---------------------------------------------------------------------------

class BookMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["book"] = "book"
    canonical_title: str
    authors: list[str] = Field(default_factory=list)
    openlibrary_key: str
    cover_url: str | None = None
    year: int | None = None
    isbn: str | None = None
    page_count: int | None = None
    subjects: list[str] | None = None


class MovieMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["movie"] = "movie"
    canonical_title: str
    tmdb_id: int
    genres: list[str] = Field(default_factory=list)
    directors: list[str] | None = None
    poster_url: str | None = None
    year: int | None = None
    imdb_id: str | None = None
    runtime: int | None = None


class TvShowMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["tv_show"] = "tv_show"
    canonical_title: str
    tmdb_id: int
    genres: list[str] = Field(default_factory=list)
    creators: list[str] | None = None
    poster_url: str | None = None
    first_air_year: int | None = None
    seasons: int | None = None


class CandidateSummary(BaseModel):
    """Short form of a candidate kept on AMBIGUOUS entities for manual review."""

    model_config = ConfigDict(frozen=True)

    external_id: str
    title: str


class FailedMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["failed"] = "failed"
    error: str


class AmbiguousMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["ambiguous"] = "ambiguous"
    error: str
    candidates: list[CandidateSummary] = Field(default_factory=list)


EntityMetadata = Annotated[
    Union[BookMetadata, MovieMetadata, TvShowMetadata, FailedMetadata, AmbiguousMetadata],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Persisted rows
# ---------------------------------------------------------------------------

class Entity(BaseModel):
    """A media entity owned by one user."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    type: EntityType
    name: str
    normalized_name: str
    external_id: str | None = None
    status: EntityStatus = EntityStatus.PENDING
    metadata: EntityMetadata | None = None
    search_candidates: SearchCandidates | None = None
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None


class EntityBookmarkLink(BaseModel):
    """Join row between an entity and a bookmark that mentions it."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    bookmark_id: str
    context_snippet: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    extraction_hints: ExtractionHints | None = None
