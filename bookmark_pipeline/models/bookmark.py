"""Bookmark and chunk models for the ingestion pipeline.

A :class:`Bookmark` is one saved URL for one user.  Its ``status`` is the
resumability checkpoint of the ingestion pipeline: every stage advances it
by exactly one step, and a redelivered message resumes from whatever status
was last persisted (see :mod:`bookmark_pipeline.pipeline.orchestrator`).

A :class:`Chunk` is one embedding-sized slice of a bookmark's markdown.
Chunks are always replaced wholesale by the chunk stage, so ``position`` is
dense from 0.  A chunk whose ``embedding`` is ``None`` is pending embedding.
"""

from __future__ import annotations

import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class BookmarkStatus(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Pipeline state of a bookmark.

    Transitions (one per stage)::

        PENDING -> MARKDOWN_READY -> CONTENT_READY -> CHUNKS_READY -> DONE
        (any)   -> FAILED
    """

    PENDING = "PENDING"
    MARKDOWN_READY = "MARKDOWN_READY"
    CONTENT_READY = "CONTENT_READY"
    CHUNKS_READY = "CHUNKS_READY"
    DONE = "DONE"
    FAILED = "FAILED"


class Bookmark(BaseModel):
    """A saved web page belonging to one user; ``(user_id, url)`` is unique."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    url: str
    title: str | None = None
    markdown: str | None = None
    summary: str | None = None
    description: str | None = None
    favicon: str | None = None
    og_image: str | None = None
    status: BookmarkStatus = BookmarkStatus.PENDING
    error_message: str | None = None
    entities_extracted: bool = False
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None


class PageContent(BaseModel):
    """Readable content extracted from a fetched page (output of the fetch stage)."""

    model_config = ConfigDict(frozen=True)

    title: str
    markdown: str
    description: str | None = None
    favicon: str | None = None
    og_image: str | None = None


class Chunk(BaseModel):
    """A persisted chunk of a bookmark's markdown."""

    model_config = ConfigDict(frozen=True)

    id: str
    bookmark_id: str
    content: str
    position: int = Field(ge=0)
    token_count: int = Field(ge=0)
    breadcrumb_path: str = ""
    embedding: list[float] | None = None
