"""SQLite-backed bookmark, chunk and entity repositories.

# ─── ARCHITECTURE ROLE ───────────────────────────────────────────────
#
# Layer: Providers (concrete adapters implementing the repository ABCs).
# Database: ``data/bookmarks.db`` by default (``DATABASE_PATH``).
#
# One ``aiosqlite`` connection is opened per queue batch through
# :meth:`SQLiteDatabase.session` and shared by every message in that
# batch.  Each repository method commits its own write; no transaction
# spans two calls.
#
# Status-advancing writes are compare-and-swap: ``UPDATE ... WHERE
# status = ?`` and ``cursor.rowcount`` tells the caller whether it won.
# Entity and link inserts use ``ON CONFLICT DO NOTHING`` so concurrent
# extractions converge on one row.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import datetime
import json
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite
import structlog

from bookmark_pipeline.interfaces.repositories import (
    IBookmarkRepository,
    IChunkRepository,
    IEntityRepository,
    Repositories,
)
from bookmark_pipeline.models.bookmark import Bookmark, BookmarkStatus, Chunk
from bookmark_pipeline.models.chunking import TextChunk
from bookmark_pipeline.models.entities import (
    Entity,
    EntityBookmarkLink,
    EntityMetadata,
    EntityStatus,
    EntityType,
    SearchCandidates,
)
from bookmark_pipeline.utils.errors import RepositoryError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/bookmarks.db")

# ── Schema DDL ────────────────────────────────────────────────────────

_CREATE_BOOKMARKS_TABLE = """\
CREATE TABLE IF NOT EXISTS bookmarks (
    id                 TEXT PRIMARY KEY,
    user_id            TEXT NOT NULL,
    url                TEXT NOT NULL,
    title              TEXT,
    markdown           TEXT,
    summary            TEXT,
    description        TEXT,
    favicon            TEXT,
    og_image           TEXT,
    status             TEXT NOT NULL DEFAULT 'PENDING',
    error_message      TEXT,
    entities_extracted INTEGER NOT NULL DEFAULT 0,
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL,
    UNIQUE(user_id, url)
);
"""

_CREATE_CHUNKS_TABLE = """\
CREATE TABLE IF NOT EXISTS chunks (
    id              TEXT PRIMARY KEY,
    bookmark_id     TEXT NOT NULL REFERENCES bookmarks(id) ON DELETE CASCADE,
    content         TEXT NOT NULL,
    position        INTEGER NOT NULL,
    token_count     INTEGER NOT NULL,
    breadcrumb_path TEXT NOT NULL DEFAULT '',
    embedding       TEXT,
    UNIQUE(bookmark_id, position)
);
"""

_CREATE_ENTITIES_TABLE = """\
CREATE TABLE IF NOT EXISTS entities (
    id                TEXT PRIMARY KEY,
    user_id           TEXT NOT NULL,
    type              TEXT NOT NULL,
    name              TEXT NOT NULL,
    normalized_name   TEXT NOT NULL,
    external_id       TEXT,
    status            TEXT NOT NULL DEFAULT 'PENDING',
    metadata          TEXT,
    search_candidates TEXT,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL,
    UNIQUE(user_id, type, normalized_name)
);
"""

_CREATE_ENTITY_BOOKMARKS_TABLE = """\
CREATE TABLE IF NOT EXISTS entity_bookmarks (
    entity_id        TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    bookmark_id      TEXT NOT NULL REFERENCES bookmarks(id) ON DELETE CASCADE,
    context_snippet  TEXT NOT NULL DEFAULT '',
    confidence       REAL NOT NULL DEFAULT 0,
    extraction_hints TEXT,
    created_at       TEXT NOT NULL,
    PRIMARY KEY (entity_id, bookmark_id)
);
"""

_CREATE_INDICES = [
    "CREATE INDEX IF NOT EXISTS idx_bookmarks_status ON bookmarks(status);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_bookmark ON chunks(bookmark_id, position);",
    "CREATE INDEX IF NOT EXISTS idx_entities_user_status ON entities(user_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_entity_bookmarks_bookmark ON entity_bookmarks(bookmark_id);",
]

# ── Bookmark DML ──────────────────────────────────────────────────────

_INSERT_BOOKMARK = """\
INSERT INTO bookmarks (id, user_id, url, title, status, created_at, updated_at)
VALUES (?, ?, ?, ?, 'PENDING', ?, ?)
ON CONFLICT(user_id, url) DO NOTHING;
"""

_SELECT_BOOKMARK = "SELECT * FROM bookmarks WHERE id = ?;"

_SELECT_BOOKMARK_BY_URL = "SELECT * FROM bookmarks WHERE user_id = ? AND url = ?;"

_SELECT_BOOKMARKS_BY_STATUS = """\
SELECT * FROM bookmarks WHERE status = ? ORDER BY created_at, rowid LIMIT ?;
"""

_MARK_BOOKMARK_FAILED = """\
UPDATE bookmarks SET status = 'FAILED', error_message = ?, updated_at = ?
WHERE id = ?;
"""

_MARK_ENTITIES_EXTRACTED = """\
UPDATE bookmarks SET entities_extracted = 1, updated_at = ?
WHERE id = ?;
"""

# Columns a stage transition may write besides status.
_BOOKMARK_UPDATE_COLUMNS = frozenset(
    {"title", "markdown", "summary", "description", "favicon", "og_image"}
)

# ── Chunk DML ─────────────────────────────────────────────────────────

_DELETE_CHUNKS = "DELETE FROM chunks WHERE bookmark_id = ?;"

_INSERT_CHUNK = """\
INSERT INTO chunks (id, bookmark_id, content, position, token_count, breadcrumb_path, embedding)
VALUES (?, ?, ?, ?, ?, ?, NULL);
"""

_SELECT_CHUNKS = "SELECT * FROM chunks WHERE bookmark_id = ? ORDER BY position;"

_SELECT_PENDING_CHUNKS = """\
SELECT * FROM chunks WHERE bookmark_id = ? AND embedding IS NULL ORDER BY position;
"""

_UPDATE_CHUNK_EMBEDDING = "UPDATE chunks SET embedding = ? WHERE id = ?;"

# ── Entity DML ────────────────────────────────────────────────────────

_INSERT_ENTITY = """\
INSERT INTO entities (id, user_id, type, name, normalized_name, status, created_at, updated_at)
VALUES (?, ?, ?, ?, ?, 'PENDING', ?, ?)
ON CONFLICT(user_id, type, normalized_name) DO NOTHING;
"""

_SELECT_ENTITY = "SELECT * FROM entities WHERE id = ?;"

_SELECT_ENTITY_BY_KEY = """\
SELECT * FROM entities WHERE user_id = ? AND type = ? AND normalized_name = ?;
"""

_SELECT_ENTITIES_BY_STATUS = """\
SELECT * FROM entities WHERE user_id = ? AND status = ? ORDER BY created_at, rowid;
"""

_STORE_CANDIDATES = """\
UPDATE entities SET search_candidates = ?, status = 'CANDIDATES_FOUND', updated_at = ?
WHERE id = ? AND status = 'PENDING';
"""

_UPDATE_ENTITY_METADATA = """\
UPDATE entities SET metadata = ?, status = ?, external_id = COALESCE(?, external_id), updated_at = ?
WHERE id = ?;
"""

_INSERT_LINK = """\
INSERT INTO entity_bookmarks (entity_id, bookmark_id, context_snippet, confidence, extraction_hints, created_at)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(entity_id, bookmark_id) DO NOTHING;
"""

_SELECT_LINK = "SELECT * FROM entity_bookmarks WHERE entity_id = ? AND bookmark_id = ?;"

_SELECT_LINKS = "SELECT * FROM entity_bookmarks WHERE entity_id = ? ORDER BY created_at, rowid;"


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def _loads(value: str | None) -> Any:
    return json.loads(value) if value else None


# ---------------------------------------------------------------------------
# Connection management
# ---------------------------------------------------------------------------


class SQLiteDatabase:
    """Owns the database file; hands out per-batch connections."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    @property
    def path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        """Create all tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("PRAGMA journal_mode=WAL;")
            await db.execute(_CREATE_BOOKMARKS_TABLE)
            await db.execute(_CREATE_CHUNKS_TABLE)
            await db.execute(_CREATE_ENTITIES_TABLE)
            await db.execute(_CREATE_ENTITY_BOOKMARKS_TABLE)
            for idx_sql in _CREATE_INDICES:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("bookmark_db_initialized", path=str(self._db_path))

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open one connection with row access by column name."""
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys=ON;")
            yield db

    @asynccontextmanager
    async def session(self) -> AsyncIterator[Repositories]:
        """Yield repositories sharing a single connection for one batch."""
        async with self.connect() as db:
            yield Repositories(
                bookmarks=SQLiteBookmarkRepository(db),
                chunks=SQLiteChunkRepository(db),
                entities=SQLiteEntityRepository(db),
            )


# ---------------------------------------------------------------------------
# Bookmarks
# ---------------------------------------------------------------------------


class SQLiteBookmarkRepository(IBookmarkRepository):
    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def create(self, user_id: str, url: str, title: str | None = None) -> Bookmark:
        now = _now()
        cursor = await self._db.execute(
            _INSERT_BOOKMARK, (_new_id(), user_id, url, title, now, now)
        )
        await self._db.commit()
        if cursor.rowcount == 0:
            logger.debug("bookmark_exists", user_id=user_id, url=url)

        cursor = await self._db.execute(_SELECT_BOOKMARK_BY_URL, (user_id, url))
        row = await cursor.fetchone()
        if row is None:
            raise RepositoryError(
                message=f"Bookmark for {url} vanished after insert",
                provider_name="sqlite",
            )
        return self._row_to_bookmark(row)

    async def find_by_id(self, bookmark_id: str) -> Bookmark | None:
        cursor = await self._db.execute(_SELECT_BOOKMARK, (bookmark_id,))
        row = await cursor.fetchone()
        return self._row_to_bookmark(row) if row is not None else None

    async def transition(
        self,
        bookmark_id: str,
        expected: BookmarkStatus,
        new_status: BookmarkStatus,
        updates: dict[str, Any] | None = None,
    ) -> bool:
        updates = updates or {}
        unknown = set(updates) - _BOOKMARK_UPDATE_COLUMNS
        if unknown:
            raise RepositoryError(
                message=f"Cannot update bookmark columns: {', '.join(sorted(unknown))}",
                provider_name="sqlite",
            )

        # Column names come from the whitelist above, never from input.
        assignments = ", ".join(f"{column} = ?" for column in updates)
        query = (
            "UPDATE bookmarks SET status = ?, error_message = NULL, updated_at = ?"
            + (f", {assignments}" if assignments else "")
            + " WHERE id = ? AND status = ?;"
        )
        params = [new_status.value, _now(), *updates.values(), bookmark_id, expected.value]
        cursor = await self._db.execute(query, params)
        await self._db.commit()
        return cursor.rowcount > 0

    async def find_by_status(self, status: BookmarkStatus, limit: int = 100) -> list[Bookmark]:
        cursor = await self._db.execute(_SELECT_BOOKMARKS_BY_STATUS, (status.value, limit))
        return [self._row_to_bookmark(row) for row in await cursor.fetchall()]

    async def mark_failed(self, bookmark_id: str, error_message: str) -> None:
        await self._db.execute(_MARK_BOOKMARK_FAILED, (error_message, _now(), bookmark_id))
        await self._db.commit()

    async def mark_entities_extracted(self, bookmark_id: str) -> None:
        await self._db.execute(_MARK_ENTITIES_EXTRACTED, (_now(), bookmark_id))
        await self._db.commit()

    @staticmethod
    def _row_to_bookmark(row: aiosqlite.Row) -> Bookmark:
        data = dict(row)
        data["entities_extracted"] = bool(data["entities_extracted"])
        return Bookmark(**data)


# ---------------------------------------------------------------------------
# Chunks
# ---------------------------------------------------------------------------


class SQLiteChunkRepository(IChunkRepository):
    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def delete_by_bookmark(self, bookmark_id: str) -> int:
        cursor = await self._db.execute(_DELETE_CHUNKS, (bookmark_id,))
        await self._db.commit()
        return cursor.rowcount

    async def create_many(self, bookmark_id: str, chunks: list[TextChunk]) -> list[Chunk]:
        stored = [
            Chunk(
                id=_new_id(),
                bookmark_id=bookmark_id,
                content=chunk.content,
                position=chunk.position,
                token_count=chunk.token_count,
                breadcrumb_path=chunk.breadcrumb_path,
            )
            for chunk in chunks
        ]
        await self._db.executemany(
            _INSERT_CHUNK,
            [
                (c.id, c.bookmark_id, c.content, c.position, c.token_count, c.breadcrumb_path)
                for c in stored
            ],
        )
        await self._db.commit()
        return stored

    async def find_by_bookmark(self, bookmark_id: str) -> list[Chunk]:
        cursor = await self._db.execute(_SELECT_CHUNKS, (bookmark_id,))
        return [self._row_to_chunk(row) for row in await cursor.fetchall()]

    async def find_pending_embedding(self, bookmark_id: str) -> list[Chunk]:
        cursor = await self._db.execute(_SELECT_PENDING_CHUNKS, (bookmark_id,))
        return [self._row_to_chunk(row) for row in await cursor.fetchall()]

    async def update_embedding(self, chunk_id: str, embedding: list[float]) -> None:
        await self._db.execute(_UPDATE_CHUNK_EMBEDDING, (json.dumps(embedding), chunk_id))
        await self._db.commit()

    @staticmethod
    def _row_to_chunk(row: aiosqlite.Row) -> Chunk:
        data = dict(row)
        data["embedding"] = _loads(data["embedding"])
        return Chunk(**data)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class SQLiteEntityRepository(IEntityRepository):
    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def find_by_id(self, entity_id: str) -> Entity | None:
        cursor = await self._db.execute(_SELECT_ENTITY, (entity_id,))
        row = await cursor.fetchone()
        return self._row_to_entity(row) if row is not None else None

    async def find_by_normalized_name(
        self,
        user_id: str,
        entity_type: EntityType,
        normalized_name: str,
    ) -> Entity | None:
        cursor = await self._db.execute(
            _SELECT_ENTITY_BY_KEY, (user_id, entity_type.value, normalized_name)
        )
        row = await cursor.fetchone()
        return self._row_to_entity(row) if row is not None else None

    async def get_or_create(
        self,
        user_id: str,
        entity_type: EntityType,
        name: str,
        normalized_name: str,
    ) -> tuple[Entity, bool]:
        now = _now()
        cursor = await self._db.execute(
            _INSERT_ENTITY,
            (_new_id(), user_id, entity_type.value, name, normalized_name, now, now),
        )
        await self._db.commit()
        created = cursor.rowcount > 0

        entity = await self.find_by_normalized_name(user_id, entity_type, normalized_name)
        if entity is None:
            raise RepositoryError(
                message=f"Entity {entity_type.value}:{normalized_name} vanished after insert",
                provider_name="sqlite",
            )
        return entity, created

    async def link_to_bookmark(self, link: EntityBookmarkLink) -> EntityBookmarkLink:
        hints = link.extraction_hints.model_dump_json() if link.extraction_hints else None
        cursor = await self._db.execute(
            _INSERT_LINK,
            (link.entity_id, link.bookmark_id, link.context_snippet, link.confidence, hints, _now()),
        )
        await self._db.commit()
        if cursor.rowcount > 0:
            return link

        logger.debug("entity_link_exists", entity_id=link.entity_id, bookmark_id=link.bookmark_id)
        cursor = await self._db.execute(_SELECT_LINK, (link.entity_id, link.bookmark_id))
        row = await cursor.fetchone()
        return self._row_to_link(row) if row is not None else link

    async def find_links(self, entity_id: str) -> list[EntityBookmarkLink]:
        cursor = await self._db.execute(_SELECT_LINKS, (entity_id,))
        return [self._row_to_link(row) for row in await cursor.fetchall()]

    async def find_by_status(self, user_id: str, status: EntityStatus) -> list[Entity]:
        cursor = await self._db.execute(_SELECT_ENTITIES_BY_STATUS, (user_id, status.value))
        return [self._row_to_entity(row) for row in await cursor.fetchall()]

    async def store_candidates(self, entity_id: str, candidates: SearchCandidates) -> bool:
        cursor = await self._db.execute(
            _STORE_CANDIDATES, (candidates.model_dump_json(), _now(), entity_id)
        )
        await self._db.commit()
        return cursor.rowcount > 0

    async def update_metadata(
        self,
        entity_id: str,
        metadata: EntityMetadata,
        status: EntityStatus,
        external_id: str | None = None,
    ) -> None:
        await self._db.execute(
            _UPDATE_ENTITY_METADATA,
            (metadata.model_dump_json(), status.value, external_id, _now(), entity_id),
        )
        await self._db.commit()

    async def update_metadata_many(
        self,
        entity_ids: list[str],
        metadata: EntityMetadata,
        status: EntityStatus,
    ) -> None:
        if not entity_ids:
            return
        payload = metadata.model_dump_json()
        now = _now()
        await self._db.executemany(
            _UPDATE_ENTITY_METADATA,
            [(payload, status.value, None, now, entity_id) for entity_id in entity_ids],
        )
        await self._db.commit()

    @staticmethod
    def _row_to_entity(row: aiosqlite.Row) -> Entity:
        data = dict(row)
        data["metadata"] = _loads(data["metadata"])
        data["search_candidates"] = _loads(data["search_candidates"])
        return Entity(**data)

    @staticmethod
    def _row_to_link(row: aiosqlite.Row) -> EntityBookmarkLink:
        data = dict(row)
        data.pop("created_at", None)
        data["extraction_hints"] = _loads(data["extraction_hints"])
        return EntityBookmarkLink(**data)
