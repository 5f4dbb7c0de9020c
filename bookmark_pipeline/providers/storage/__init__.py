"""Persistence adapters implementing the repository ABCs."""

from bookmark_pipeline.providers.storage.sqlite_repositories import (
    SQLiteBookmarkRepository,
    SQLiteChunkRepository,
    SQLiteDatabase,
    SQLiteEntityRepository,
)

__all__ = [
    "SQLiteBookmarkRepository",
    "SQLiteChunkRepository",
    "SQLiteDatabase",
    "SQLiteEntityRepository",
]
