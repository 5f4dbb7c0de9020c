"""Queue message bodies consumed by the workers.

Wire format is camelCase JSON, e.g. ``{"bookmarkId": ..., "url": ...,
"userId": ...}``; the models accept either spelling and serialise with
``model_dump(by_alias=True)``.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_WIRE_CONFIG = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class ExtractedContent(BaseModel):
    """Page content captured client-side; replaces the fetch when present."""

    model_config = _WIRE_CONFIG

    title: str = ""
    content: str


class IngestionMessage(BaseModel):
    """Triggers the ingestion pipeline for one bookmark."""

    model_config = _WIRE_CONFIG

    bookmark_id: str
    url: str
    user_id: str
    extracted_content: ExtractedContent | None = None


class EntityExtractionMessage(BaseModel):
    """Triggers entity extraction for one bookmark."""

    model_config = _WIRE_CONFIG

    type: Literal["entity-extraction"] = "entity-extraction"
    bookmark_id: str
    user_id: str


class EntityEnrichmentMessage(BaseModel):
    """Triggers enrichment of all unresolved entities of one user."""

    model_config = _WIRE_CONFIG

    type: Literal["entity-enrichment"] = "entity-enrichment"
    user_id: str


EntityMessage = Annotated[
    Union[EntityExtractionMessage, EntityEnrichmentMessage],
    Field(discriminator="type"),
]
