"""Configuration and output models for the markdown chunking engine."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ChunkingConfig(BaseModel):
    """Token budgets for :class:`~bookmark_pipeline.services.chunker.MarkdownChunker`.

    ``max_tokens`` is the packing target, ``hard_max_tokens`` the ceiling a
    chunk may reach once overlap is prepended.  Chunks shorter than
    ``min_tokens_for_overlap`` never receive overlap.
    """

    model_config = ConfigDict(frozen=True)

    max_tokens: int = Field(default=500, gt=0)
    overlap_tokens: int = Field(default=100, ge=0)
    hard_max_tokens: int = Field(default=550, gt=0)
    min_tokens_for_overlap: int = Field(default=250, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> ChunkingConfig:
        if self.hard_max_tokens < self.max_tokens:
            raise ValueError("hard_max_tokens must be >= max_tokens")
        return self


class TextChunk(BaseModel):
    """One chunk produced by the chunking engine, ready to persist."""

    model_config = ConfigDict(frozen=True)

    content: str
    position: int
    token_count: int
    breadcrumb_path: str = ""
