"""LLM-based extraction of books, movies and TV shows from page markdown.

The page is sent to the LLM with a structured-output schema; the reply is
validated by pydantic, low-confidence mentions are dropped and duplicate
mentions of the same title collapse to the most confident one.  Mentions
may carry extraction hints (year / author / director / language) that the
enrichment engine later passes to disambiguation.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from bookmark_pipeline.interfaces.llm_provider import ChatMessage, ILLMProvider
from bookmark_pipeline.models.entities import EntityType, ExtractedEntity, ExtractionHints
from bookmark_pipeline.utils.errors import EntityExtractionError, LLMError
from bookmark_pipeline.utils.logging import get_logger

MAX_CONTENT_CHARS = 48_000
MIN_CONTENT_CHARS = 100
MIN_CONFIDENCE = 0.5
TRUNCATION_MARKER = "\n\n[Content truncated...]"

_SYSTEM_PROMPT = """\
You are an entity extraction assistant. Extract books, movies, and TV shows mentioned in the provided content.

Rules:
1. Only extract entities the author is recommending, reviewing, or discussing substantively
2. Ignore passing mentions, metaphors, or examples (e.g., "This startup is the Uber of..." - don't extract Uber)
3. Include a context snippet of ~100 characters around each mention
4. Assign confidence based on clarity:
   - >0.8: Clear recommendation or review
   - 0.5-0.8: Substantive discussion
   - <0.5: Passing mention (exclude these)
5. When the content states it, record hints for each entity: release or publication year, \
author (books), director or creator (movies, TV shows) and original language. Leave unknown hints null.

Entity types:
- book: Books, novels, textbooks, guides
- movie: Films, documentaries
- tv_show: TV series, web series, limited series

If an entity could be both book and movie (e.g., "Dune"), extract as the type most relevant to context. \
If unclear, prefer the more recent/popular format.

Return empty entities array if no qualifying entities found."""

_USER_PROMPT = """\
Extract entities from this webpage:

Title: {title}
URL: {url}

Content:
{content}"""


class _MentionHints(BaseModel):
    year: int | None = None
    author: str | None = None
    director: str | None = None
    language: str | None = None


class _Mention(BaseModel):
    type: EntityType
    name: str
    context_snippet: str = ""
    confidence: float = Field(ge=0.0, le=1.0)
    hints: _MentionHints | None = None


class ExtractionResponse(BaseModel):
    """Structured-output schema sent to the LLM."""

    model_config = ConfigDict(title="EntityExtraction")

    entities: list[_Mention] = Field(default_factory=list)


def dedupe_entities(entities: list[ExtractedEntity]) -> list[ExtractedEntity]:
    """Keep the most confident mention per ``type:lower(name)``, in first-seen order."""
    seen: dict[str, ExtractedEntity] = {}
    for entity in entities:
        key = f"{entity.type.value}:{entity.name.lower()}"
        existing = seen.get(key)
        if existing is None or entity.confidence > existing.confidence:
            seen[key] = entity
    return list(seen.values())


class EntityExtractor:
    """Extracts media mentions from a page with one structured LLM call."""

    def __init__(
        self,
        llm_provider: ILLMProvider,
        temperature: float = 0.1,
        max_tokens: int = 2000,
    ) -> None:
        self._llm = llm_provider
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._logger = get_logger(__name__)

    async def extract(self, markdown: str | None, title: str, url: str) -> list[ExtractedEntity]:
        """Return the qualifying mentions on a page.

        Parameters
        ----------
        markdown:
            Page content.  Pages shorter than 100 characters are skipped
            without calling the LLM.
        title:
            Page title, included in the prompt.
        url:
            Page URL, included in the prompt.

        Returns
        -------
        list[ExtractedEntity]
            Mentions with confidence >= 0.5, de-duplicated by type and
            case-insensitive name.

        Raises
        ------
        EntityExtractionError
            If the LLM call fails or its reply does not validate.
        """
        if not markdown or len(markdown.strip()) < MIN_CONTENT_CHARS:
            self._logger.info("entity_extraction_skipped", reason="content_too_short", url=url)
            return []

        content = markdown
        if len(content) > MAX_CONTENT_CHARS:
            content = content[:MAX_CONTENT_CHARS] + TRUNCATION_MARKER

        try:
            response = await self._llm.generate_structured(
                [
                    ChatMessage(role="system", content=_SYSTEM_PROMPT),
                    ChatMessage(
                        role="user",
                        content=_USER_PROMPT.format(title=title, url=url, content=content),
                    ),
                ],
                ExtractionResponse,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except LLMError as exc:
            raise EntityExtractionError(
                message=f"Entity extraction failed: {exc.message}",
                provider_name=self._llm.get_provider_name(),
            ) from exc

        mentions = [self._to_entity(m) for m in response.entities if m.confidence >= MIN_CONFIDENCE]
        mentions = [m for m in mentions if m is not None]
        entities = dedupe_entities(mentions)
        self._logger.info(
            "entities_extracted",
            url=url,
            returned=len(response.entities),
            kept=len(entities),
        )
        return entities

    @staticmethod
    def _to_entity(mention: _Mention) -> ExtractedEntity | None:
        name = mention.name.strip()
        if not name:
            return None
        hints = None
        if mention.hints is not None:
            hints = ExtractionHints(**mention.hints.model_dump())
            if hints.is_empty():
                hints = None
        return ExtractedEntity(
            type=mention.type,
            name=name,
            context_snippet=mention.context_snippet,
            confidence=mention.confidence,
            hints=hints,
        )
