"""Shared pytest fixtures for the bookmark pipeline test suite."""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from bookmark_pipeline.config.settings import Settings
from bookmark_pipeline.interfaces.embedding_provider import IEmbeddingProvider
from bookmark_pipeline.interfaces.llm_provider import ILLMProvider
from bookmark_pipeline.interfaces.repositories import Repositories
from bookmark_pipeline.providers.storage.sqlite_repositories import SQLiteDatabase
from bookmark_pipeline.utils.retry import RetryPolicy


def whitespace_tokens(text: str) -> int:
    """Deterministic token counter: one token per whitespace-separated word."""
    return len(text.split())


@pytest.fixture
def token_counter():
    return whitespace_tokens


@pytest.fixture
def settings() -> Settings:
    """Settings with test keys and no .env lookup."""
    return Settings(
        _env_file=None,
        openrouter_api_key="test-openrouter-key",
        jina_api_key="test-jina-key",
        tmdb_api_key="test-tmdb-key",
        retry_attempts=0,
    )


@pytest.fixture
def no_retry() -> RetryPolicy:
    return RetryPolicy(attempts=0)


@pytest.fixture
def mock_llm() -> MagicMock:
    """ILLMProvider whose async methods are AsyncMocks."""
    llm = MagicMock(spec=ILLMProvider)
    llm.complete = AsyncMock(return_value="")
    llm.chat = AsyncMock(return_value="")
    llm.generate_structured = AsyncMock()
    llm.get_provider_name.return_value = "mock-llm"
    llm.is_available.return_value = True
    return llm


@pytest.fixture
def mock_embedder() -> MagicMock:
    """IEmbeddingProvider returning one 3-d vector per input text."""
    embedder = MagicMock(spec=IEmbeddingProvider)

    async def _embed_batch(texts: list[str]) -> list[list[float]]:
        return [[float(len(text)), 0.0, 1.0] for text in texts]

    embedder.embed_batch = AsyncMock(side_effect=_embed_batch)
    embedder.get_provider_name.return_value = "mock-embedder"
    return embedder


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> SQLiteDatabase:
    """Initialized SQLite database in a temporary directory."""
    db = SQLiteDatabase(tmp_path / "bookmarks.db")
    await db.initialize()
    return db


@pytest_asyncio.fixture
async def repositories(database: SQLiteDatabase) -> AsyncIterator[Repositories]:
    """Repositories sharing one connection for the duration of a test."""
    async with database.session() as repos:
        yield repos
