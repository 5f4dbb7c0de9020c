"""Entity enrichment and disambiguation engine.

Resolves a user's unresolved entities to canonical catalog metadata in four
phases:

1. **Search** -- every PENDING entity is looked up in the catalog for its
   type (Open Library for books, TMDB for movies / TV shows), at most
   ``concurrency`` lookups in flight.  The raw hits are cached on the
   entity and its status moves to CANDIDATES_FOUND.  This is the
   resumability checkpoint: an entity already at CANDIDATES_FOUND is never
   searched again.  A failed lookup marks only that entity FAILED.
2. **Categorize** -- every CANDIDATES_FOUND entity (fresh or left over from
   an earlier run) is classified: no hits fail, one hit is a clear match,
   and for movies / TV shows a top hit more than twice as popular as the
   runner-up is a clear match too.  Everything else needs disambiguation.
3. **Clear matches** -- the chosen candidate is mapped to the type's
   metadata shape and the entity becomes ENRICHED.
4. **Disambiguation** -- all remaining entities go to the LLM in one
   structured request together with their candidates and extraction
   hints.  Decisions below 0.6 confidence, without a selection, or
   selecting an id that was not offered leave the entity AMBIGUOUS with
   the candidate list for manual review.  If the request itself fails,
   every entity in it is marked FAILED.

Any error raised by a catalog search or by the disambiguation request
is converted to entity status, so one malformed catalog response never
blocks the rest of the user's entities.  Repository failures propagate
and the queue redelivers the enrichment message; the cached candidates
make that rerun cheap.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Mapping, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from bookmark_pipeline.interfaces.catalog_provider import ICatalogProvider
from bookmark_pipeline.interfaces.llm_provider import ChatMessage, ILLMProvider
from bookmark_pipeline.interfaces.repositories import IEntityRepository
from bookmark_pipeline.models.entities import (
    AmbiguousMetadata,
    BookCandidate,
    BookMetadata,
    CandidateSummary,
    Entity,
    EntityMetadata,
    EntityStatus,
    EntityType,
    ExtractionHints,
    FailedMetadata,
    MovieCandidate,
    MovieMetadata,
    SearchCandidates,
    StoredCandidate,
    TvShowCandidate,
    TvShowMetadata,
)
from bookmark_pipeline.providers.catalog.openlibrary_provider import (
    EXTERNAL_ID_PREFIX as OPENLIBRARY_PREFIX,
)
from bookmark_pipeline.utils.concurrency import map_bounded
from bookmark_pipeline.utils.errors import PipelineError
from bookmark_pipeline.utils.logging import get_logger

Candidate = Union[BookCandidate, MovieCandidate, TvShowCandidate]

API_CONCURRENCY = 3
MIN_CONFIDENCE_THRESHOLD = 0.6
POPULARITY_RATIO_THRESHOLD = 2.0
BOOK_CANDIDATE_CONFIDENCE = 0.5

NO_CANDIDATES = "No candidates found"
NO_STORED_CANDIDATES = "No stored candidates found"
CANDIDATE_NOT_FOUND = "Selected candidate not found"
DISAMBIGUATION_FAILED = "Disambiguation failed"
NO_DECISION = "No disambiguation decision returned"

_SYSTEM_PROMPT = """\
You are a disambiguation assistant. Given an entity name, its context, and multiple candidates \
from external APIs, select the most likely match.

Rules:
1. Prefer recency when context has no signals (users more likely discussing recent works)
2. Prefer popularity as tiebreaker
3. Match language of content to work's original language when possible
4. Author/director/creator match is a strong signal - prioritize if mentioned
5. Year match in context is a strong signal

Return confidence score:
- >0.8: Very confident match
- 0.6-0.8: Reasonable match
- <0.6: Uncertain (will be marked ambiguous)

If no good match exists, set confidence < 0.6 and leave selectedExternalId empty."""

_PROMPT_HEADER = "Disambiguate the following entities by selecting the best matching candidate for each:"

_PROMPT_FOOTER = """\
For each entity, provide:
- entityId: The entity ID
- selectedExternalId: The external ID of the best matching candidate (or null if no good match)
- confidence: Your confidence score (0.0-1.0)
- reasoning: Brief explanation of your choice"""


# ---------------------------------------------------------------------------
# Structured-output schema
# ---------------------------------------------------------------------------

class DisambiguationDecision(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    entity_id: str
    selected_external_id: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


class DisambiguationResponse(BaseModel):
    model_config = ConfigDict(title="Disambiguation")

    decisions: list[DisambiguationDecision] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

@dataclass
class EnrichmentCandidate:
    """An entity at CANDIDATES_FOUND with its typed candidate list."""

    entity: Entity
    candidates: list[Candidate]
    hints: ExtractionHints | None = None


@dataclass
class EnrichmentReport:
    """Counts of what one enrichment run did."""

    searched: int = 0
    search_failed: int = 0
    clear_matches: int = 0
    disambiguated: int = 0
    ambiguous: int = 0
    failed: int = 0


def to_stored_candidate(candidate: Candidate) -> StoredCandidate:
    """Cache form of a catalog hit; confidence is popularity / 100 for screen works."""
    if isinstance(candidate, BookCandidate):
        confidence = BOOK_CANDIDATE_CONFIDENCE
    else:
        confidence = candidate.popularity / 100
    return StoredCandidate(
        external_id=candidate.external_id,
        title=candidate.title,
        confidence=confidence,
        candidate=candidate,
    )


def sort_by_relevance(candidates: list[Candidate]) -> list[Candidate]:
    """Order by descending popularity; books keep the catalog's order."""
    if all(isinstance(c, (MovieCandidate, TvShowCandidate)) for c in candidates):
        return sorted(candidates, key=lambda c: c.popularity, reverse=True)
    return list(candidates)


def select_clear_match(entity_type: EntityType, candidates: list[Candidate]) -> Candidate | None:
    """Return the candidate to accept without the LLM, or ``None``.

    A single candidate is always a clear match.  For movies and TV shows
    the most popular candidate wins outright when it is more than twice as
    popular as the runner-up.
    """
    if len(candidates) == 1:
        return candidates[0]
    if len(candidates) < 2 or entity_type not in (EntityType.MOVIE, EntityType.TV_SHOW):
        return None

    top, second = sort_by_relevance(candidates)[:2]
    screen = (MovieCandidate, TvShowCandidate)
    if not isinstance(top, screen) or not isinstance(second, screen):
        return None
    if second.popularity <= 0:
        return top if top.popularity > 0 else None
    if top.popularity / second.popularity > POPULARITY_RATIO_THRESHOLD:
        return top
    return None


def build_metadata(candidate: Candidate) -> BookMetadata | MovieMetadata | TvShowMetadata:
    """Map a catalog candidate to the canonical metadata of its kind."""
    if isinstance(candidate, BookCandidate):
        return BookMetadata(
            canonical_title=candidate.title,
            authors=candidate.authors,
            openlibrary_key=candidate.external_id.removeprefix(OPENLIBRARY_PREFIX),
            cover_url=candidate.cover_url,
            year=candidate.year,
            isbn=candidate.isbn,
            page_count=candidate.page_count,
            subjects=candidate.subjects,
        )
    if isinstance(candidate, MovieCandidate):
        return MovieMetadata(
            canonical_title=candidate.title,
            tmdb_id=candidate.tmdb_id,
            genres=candidate.genres,
            directors=candidate.directors,
            poster_url=candidate.poster_url,
            year=candidate.year,
            imdb_id=candidate.imdb_id,
            runtime=candidate.runtime,
        )
    if isinstance(candidate, TvShowCandidate):
        return TvShowMetadata(
            canonical_title=candidate.title,
            tmdb_id=candidate.tmdb_id,
            genres=candidate.genres,
            creators=candidate.creators,
            poster_url=candidate.poster_url,
            first_air_year=candidate.first_air_year,
            seasons=candidate.seasons,
        )
    raise PipelineError(message=f"Unknown candidate kind: {type(candidate).__name__}")


def merge_hints(hints: list[ExtractionHints | None]) -> ExtractionHints | None:
    """Take the first non-null value of each hint field across mentions."""
    merged: dict[str, object] = {}
    for item in hints:
        if item is None:
            continue
        for key, value in item.model_dump().items():
            if value is not None and key not in merged:
                merged[key] = value
    result = ExtractionHints(**merged)
    return None if result.is_empty() else result


def _format_candidate(index: int, candidate: Candidate) -> str:
    lines = [f"  {index}. {candidate.external_id}", f"     Title: {candidate.title}"]
    if isinstance(candidate, BookCandidate):
        lines.append(f"     Authors: {', '.join(candidate.authors) or 'Unknown'}")
        lines.append(f"     Year: {candidate.year or 'Unknown'}")
    elif isinstance(candidate, MovieCandidate):
        lines.append(f"     Directors: {', '.join(candidate.directors or []) or 'Unknown'}")
        lines.append(f"     Year: {candidate.year or 'Unknown'}")
        lines.append(f"     Popularity: {candidate.popularity}")
    else:
        lines.append(f"     Creators: {', '.join(candidate.creators or []) or 'Unknown'}")
        lines.append(f"     First Air Year: {candidate.first_air_year or 'Unknown'}")
        lines.append(f"     Popularity: {candidate.popularity}")
    return "\n".join(lines)


def _format_hints(hints: ExtractionHints) -> str:
    parts = [f"{key}={value}" for key, value in hints.model_dump().items() if value is not None]
    return "Hints: " + ", ".join(parts)


def build_disambiguation_prompt(items: list[EnrichmentCandidate]) -> str:
    """Render the user prompt listing each entity and its numbered candidates."""
    blocks = []
    for item in items:
        header = [
            f"Entity ID: {item.entity.id}",
            f"Type: {item.entity.type.value}",
            f'Name: "{item.entity.name}"',
        ]
        if item.hints is not None:
            header.append(_format_hints(item.hints))
        candidates_text = "\n\n".join(
            _format_candidate(i, c) for i, c in enumerate(item.candidates, start=1)
        )
        blocks.append("\n".join(header) + "\n\nCandidates:\n" + candidates_text)
    return f"{_PROMPT_HEADER}\n\n" + "\n\n---\n\n".join(blocks) + f"\n\n{_PROMPT_FOOTER}"


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class EntityEnrichmentService:
    """Runs the four enrichment phases for one user.

    Parameters
    ----------
    entity_repository:
        Persistence for entities and their bookmark links.
    catalogs:
        Catalog provider per entity type.
    llm_provider:
        LLM used for batched disambiguation.
    concurrency:
        Maximum catalog lookups / repository writes in flight.
    """

    def __init__(
        self,
        entity_repository: IEntityRepository,
        catalogs: Mapping[EntityType, ICatalogProvider],
        llm_provider: ILLMProvider,
        concurrency: int = API_CONCURRENCY,
        temperature: float = 0.1,
        max_tokens: int = 4000,
    ) -> None:
        self._entities = entity_repository
        self._catalogs = dict(catalogs)
        self._llm = llm_provider
        self._concurrency = concurrency
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._logger = get_logger(__name__)

    async def enrich_pending_entities(self, user_id: str) -> EnrichmentReport:
        """Run phases 1-4 for every unresolved entity of *user_id*."""
        report = EnrichmentReport()

        pending = await self._entities.find_by_status(user_id, EntityStatus.PENDING)
        if pending:
            self._logger.info("enrichment_search_start", user_id=user_id, entities=len(pending))
            await self._search_and_store_candidates(pending, report)

        with_candidates = await self._entities.find_by_status(user_id, EntityStatus.CANDIDATES_FOUND)
        if not with_candidates:
            self._logger.info("enrichment_nothing_to_resolve", user_id=user_id)
            return report

        clear_matches, ambiguous = await self._categorize(with_candidates, report)

        _raise_unexpected(
            await map_bounded(
                lambda match: self._enrich(*match),
                clear_matches,
                self._concurrency,
            )
        )
        report.clear_matches = len(clear_matches)

        if ambiguous:
            await self._disambiguate(ambiguous, report)

        self._logger.info(
            "enrichment_complete",
            user_id=user_id,
            clear_matches=report.clear_matches,
            disambiguated=report.disambiguated,
            ambiguous=report.ambiguous,
            failed=report.failed,
        )
        return report

    # ------------------------------------------------------------------
    # Phase 1: search
    # ------------------------------------------------------------------

    async def _search_and_store_candidates(self, entities: list[Entity], report: EnrichmentReport) -> None:
        results = await map_bounded(self._search_one, entities, self._concurrency)
        for entity, result in zip(entities, results):
            if result is True:
                report.searched += 1
            elif result is False:
                report.search_failed += 1
        _raise_unexpected(results)

    async def _search_one(self, entity: Entity) -> bool | None:
        """Return ``True`` when stored, ``False`` when failed, ``None`` when another run won."""
        catalog = self._catalogs.get(entity.type)
        try:
            if catalog is None:
                raise PipelineError(message=f"No catalog configured for {entity.type.value}")
            candidates = await catalog.search(entity.name)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "entity_search_failed",
                entity_id=entity.id,
                entity_type=entity.type.value,
                name=entity.name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            await self._mark_failed(entity, str(exc))
            return False

        search = SearchCandidates(
            provider=catalog.get_provider_name(),
            searched_at=datetime.datetime.now(datetime.timezone.utc),
            results=[to_stored_candidate(c) for c in candidates],
        )
        stored = await self._entities.store_candidates(entity.id, search)
        if not stored:
            self._logger.info("entity_search_superseded", entity_id=entity.id)
            return None
        self._logger.info(
            "entity_candidates_found",
            entity_id=entity.id,
            name=entity.name,
            candidates=len(candidates),
        )
        return True

    # ------------------------------------------------------------------
    # Phase 2: categorize
    # ------------------------------------------------------------------

    async def _categorize(
        self,
        entities: list[Entity],
        report: EnrichmentReport,
    ) -> tuple[list[tuple[Entity, Candidate]], list[EnrichmentCandidate]]:
        clear: list[tuple[Entity, Candidate]] = []
        ambiguous: list[EnrichmentCandidate] = []

        for entity in entities:
            if entity.search_candidates is None:
                self._logger.warning("entity_candidates_missing", entity_id=entity.id)
                await self._mark_failed(entity, NO_STORED_CANDIDATES)
                report.failed += 1
                continue

            candidates = [stored.candidate for stored in entity.search_candidates.results]
            if not candidates:
                await self._mark_failed(entity, NO_CANDIDATES)
                report.failed += 1
                continue

            match = select_clear_match(entity.type, candidates)
            if match is not None:
                clear.append((entity, match))
            else:
                ambiguous.append(
                    EnrichmentCandidate(entity=entity, candidates=sort_by_relevance(candidates))
                )

        return clear, ambiguous

    # ------------------------------------------------------------------
    # Phase 3: enrich
    # ------------------------------------------------------------------

    async def _enrich(self, entity: Entity, candidate: Candidate) -> None:
        await self._entities.update_metadata(
            entity.id,
            build_metadata(candidate),
            EntityStatus.ENRICHED,
            external_id=candidate.external_id,
        )
        self._logger.info(
            "entity_enriched",
            entity_id=entity.id,
            name=entity.name,
            external_id=candidate.external_id,
            title=candidate.title,
        )

    # ------------------------------------------------------------------
    # Phase 4: disambiguate
    # ------------------------------------------------------------------

    async def _disambiguate(self, items: list[EnrichmentCandidate], report: EnrichmentReport) -> None:
        for item in items:
            links = await self._entities.find_links(item.entity.id)
            item.hints = merge_hints([link.extraction_hints for link in links])

        try:
            response = await self._llm.generate_structured(
                [
                    ChatMessage(role="system", content=_SYSTEM_PROMPT),
                    ChatMessage(role="user", content=build_disambiguation_prompt(items)),
                ],
                DisambiguationResponse,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except Exception as exc:  # noqa: BLE001
            self._logger.error(
                "disambiguation_failed",
                entities=len(items),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            await self._entities.update_metadata_many(
                [item.entity.id for item in items],
                FailedMetadata(error=DISAMBIGUATION_FAILED),
                EntityStatus.FAILED,
            )
            report.failed += len(items)
            return

        by_id = {item.entity.id: item for item in items}
        decided: set[str] = set()
        accepted: list[tuple[Entity, Candidate]] = []
        for decision in response.decisions:
            item = by_id.get(decision.entity_id)
            if item is None or decision.entity_id in decided:
                self._logger.warning("disambiguation_unknown_entity", entity_id=decision.entity_id)
                continue
            decided.add(decision.entity_id)

            if decision.confidence < MIN_CONFIDENCE_THRESHOLD or not decision.selected_external_id:
                await self._mark_ambiguous(item, decision.reasoning or "Low confidence")
                report.ambiguous += 1
                continue

            selected = next(
                (c for c in item.candidates if c.external_id == decision.selected_external_id),
                None,
            )
            if selected is None:
                self._logger.warning(
                    "disambiguation_candidate_not_offered",
                    entity_id=item.entity.id,
                    selected_external_id=decision.selected_external_id,
                )
                await self._mark_ambiguous(item, CANDIDATE_NOT_FOUND)
                report.ambiguous += 1
                continue

            accepted.append((item.entity, selected))

        for item in items:
            if item.entity.id not in decided:
                await self._mark_ambiguous(item, NO_DECISION)
                report.ambiguous += 1

        _raise_unexpected(
            await map_bounded(lambda match: self._enrich(*match), accepted, self._concurrency)
        )
        report.disambiguated = len(accepted)

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    async def _mark_ambiguous(self, item: EnrichmentCandidate, reason: str) -> None:
        metadata: EntityMetadata = AmbiguousMetadata(
            error=reason,
            candidates=[CandidateSummary(external_id=c.external_id, title=c.title) for c in item.candidates],
        )
        await self._entities.update_metadata(item.entity.id, metadata, EntityStatus.AMBIGUOUS)
        self._logger.info("entity_ambiguous", entity_id=item.entity.id, name=item.entity.name, reason=reason)

    async def _mark_failed(self, entity: Entity, error: str) -> None:
        await self._entities.update_metadata(entity.id, FailedMetadata(error=error), EntityStatus.FAILED)
        self._logger.info("entity_failed", entity_id=entity.id, name=entity.name, error=error)


def _raise_unexpected(results: list[object]) -> None:
    """Re-raise the first exception collected by a bounded fan-out."""
    for result in results:
        if isinstance(result, BaseException):
            raise result
