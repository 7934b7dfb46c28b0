"""Database-backed vector store for document chunks.

SQLite database storing:
- Text chunks, grouped by the name of the document they came from
- One embedding vector per chunk, deleted together with its chunk

The store handle is opened once by its owner and passed to the components
that need it; nothing here keeps module-level connection state.
"""
from abc import ABC, abstractmethod
import asyncio
import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple
import aiosqlite
import structlog

from navi import config
from navi.errors import NotFoundError, PersistenceError

logger = structlog.get_logger()


@dataclass(frozen=True)
class Chunk:
    """A stored span of document text."""

    id: str
    source_name: str
    text: str
    created_at: datetime


@dataclass(frozen=True)
class Vector:
    """Embedding for exactly one chunk."""

    id: str
    chunk_id: str
    values: List[float]


@dataclass(frozen=True)
class SourceSummary:
    """Aggregate over all chunks sharing a source name."""

    name: str
    chunk_count: int
    earliest_timestamp: datetime

    @property
    def type(self) -> str:
        """Upper-cased file extension of the source name, e.g. 'PDF'."""
        return Path(self.name).suffix.lstrip(".").upper()


SCHEMA = """
    CREATE TABLE IF NOT EXISTS chunks (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        source_name TEXT NOT NULL,
        chunk_text TEXT NOT NULL,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS vectors (
        id TEXT PRIMARY KEY,
        chunk_id TEXT NOT NULL UNIQUE
            REFERENCES chunks(id) ON DELETE CASCADE,
        vector TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_chunks_source_name ON chunks(source_name);
    CREATE INDEX IF NOT EXISTS idx_vectors_chunk_id ON vectors(chunk_id);
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VectorStore(ABC):
    """Abstract chunk+vector store.

    Retrieval only depends on this interface, so an indexed implementation
    can replace the linear-scan SQLite store.
    """

    @abstractmethod
    async def insert(self, chunk: Chunk, vector: Vector) -> None:
        """Store a chunk and its vector; both rows or neither."""
        ...

    @abstractmethod
    async def list_by_source(self) -> List[SourceSummary]:
        """Chunk count and earliest timestamp per source name."""
        ...

    @abstractmethod
    async def get(self, chunk_id: str) -> Chunk:
        """Fetch one chunk. Raises NotFoundError if missing."""
        ...

    @abstractmethod
    async def delete_by_source(self, source_name: str) -> int:
        """Delete every chunk (and vector) of a source. Raises NotFoundError if none."""
        ...

    @abstractmethod
    async def all_with_vectors(self) -> List[Tuple[Chunk, Vector]]:
        """Every stored pair, in insertion order."""
        ...

    @abstractmethod
    async def count(self) -> int:
        """Total number of stored chunks."""
        ...


class SQLiteVectorStore(VectorStore):
    """Vector store persisted in a single SQLite file via aiosqlite.

    Each insert() is its own transaction. Writes from concurrent coroutines
    share one connection, so they are serialized with a lock to keep one
    pair's rows from landing in another pair's transaction.
    """

    def __init__(self, db_path: Path = None):
        """Initialize the store (does not connect).

        Args:
            db_path: SQLite file path (default from config), or ":memory:"
        """
        self.db_path = db_path or config.DB_PATH
        self._conn: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> "SQLiteVectorStore":
        """Connect and create the schema if needed."""
        if self._conn is not None:
            return self

        if str(self.db_path) != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = await aiosqlite.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
            await self._conn.execute("PRAGMA foreign_keys = ON")
            await self._conn.executescript(SCHEMA)
            await self._conn.commit()
        except sqlite3.Error as e:
            logger.error("database_init_failed", error=str(e), db_path=str(self.db_path))
            if self._conn is not None:
                await self._conn.close()
                self._conn = None
            raise PersistenceError(f"Failed to open database: {e}") from e

        logger.info("database_initialized", db_path=str(self.db_path))
        return self

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None
        logger.info("database_closed", db_path=str(self.db_path))

    async def __aenter__(self) -> "SQLiteVectorStore":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise PersistenceError("Vector store is not open")
        return self._conn

    async def insert(self, chunk: Chunk, vector: Vector) -> None:
        """Insert a chunk and its vector in one transaction.

        Raises:
            PersistenceError: If either row cannot be written (nothing is kept)
        """
        async with self._write_lock:
            try:
                await self.conn.execute(
                    """
                    INSERT INTO chunks (id, source_name, chunk_text, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (chunk.id, chunk.source_name, chunk.text, chunk.created_at.isoformat()),
                )
                await self.conn.execute(
                    "INSERT INTO vectors (id, chunk_id, vector) VALUES (?, ?, ?)",
                    (vector.id, vector.chunk_id, json.dumps(vector.values)),
                )
                await self.conn.commit()
            except sqlite3.Error as e:
                await self.conn.rollback()
                logger.error("chunk_insert_failed", error=str(e), chunk_id=chunk.id)
                raise PersistenceError(f"Failed to store chunk {chunk.id}: {e}") from e

    async def list_by_source(self) -> List[SourceSummary]:
        try:
            async with self.conn.execute(
                """
                SELECT source_name, COUNT(*) AS chunks, MIN(created_at) AS timestamp
                FROM chunks
                GROUP BY source_name
                ORDER BY MIN(seq)
                """
            ) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            logger.error("sources_list_failed", error=str(e))
            raise PersistenceError(f"Failed to list documents: {e}") from e

        return [
            SourceSummary(
                name=row["source_name"],
                chunk_count=row["chunks"],
                earliest_timestamp=datetime.fromisoformat(row["timestamp"]),
            )
            for row in rows
        ]

    async def get(self, chunk_id: str) -> Chunk:
        try:
            async with self.conn.execute(
                "SELECT id, source_name, chunk_text, created_at FROM chunks WHERE id = ?",
                (chunk_id,),
            ) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            logger.error("chunk_retrieval_failed", error=str(e), chunk_id=chunk_id)
            raise PersistenceError(f"Failed to read chunk {chunk_id}: {e}") from e

        if row is None:
            raise NotFoundError(f"Chunk not found: {chunk_id}")
        return _row_to_chunk(row)

    async def delete_by_source(self, source_name: str) -> int:
        async with self._write_lock:
            try:
                cursor = await self.conn.execute(
                    "DELETE FROM chunks WHERE source_name = ?",
                    (source_name,),
                )
                deleted = cursor.rowcount
                await cursor.close()
                await self.conn.commit()
            except sqlite3.Error as e:
                await self.conn.rollback()
                logger.error("source_delete_failed", error=str(e), source_name=source_name)
                raise PersistenceError(f"Failed to delete {source_name}: {e}") from e

        if deleted == 0:
            raise NotFoundError(f"Document not found: {source_name}")

        logger.info("source_deleted", source_name=source_name, chunks=deleted)
        return deleted

    async def all_with_vectors(self) -> List[Tuple[Chunk, Vector]]:
        try:
            async with self.conn.execute(
                """
                SELECT c.id, c.source_name, c.chunk_text, c.created_at,
                       v.id AS vector_id, v.vector
                FROM chunks c
                JOIN vectors v ON v.chunk_id = c.id
                ORDER BY c.seq
                """
            ) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            logger.error("vectors_scan_failed", error=str(e))
            raise PersistenceError(f"Failed to read vectors: {e}") from e

        pairs = []
        for row in rows:
            chunk = _row_to_chunk(row)
            vector = Vector(
                id=row["vector_id"],
                chunk_id=chunk.id,
                values=json.loads(row["vector"]),
            )
            pairs.append((chunk, vector))
        return pairs

    async def count(self) -> int:
        try:
            async with self.conn.execute("SELECT COUNT(*) FROM chunks") as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            logger.error("chunk_count_failed", error=str(e))
            raise PersistenceError(f"Failed to count chunks: {e}") from e
        return row[0]


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        source_name=row["source_name"],
        text=row["chunk_text"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )
