"""Tests for the SQLite vector store."""
from datetime import timedelta

import pytest

from navi.db import Chunk, SQLiteVectorStore, Vector, utcnow
from navi.errors import NotFoundError, PersistenceError


def make_pair(chunk_id, source_name="report.pdf", values=None, created_at=None):
    chunk = Chunk(
        id=chunk_id,
        source_name=source_name,
        text=f"text of {chunk_id}",
        created_at=created_at or utcnow(),
    )
    return chunk, Vector(id=chunk_id, chunk_id=chunk_id, values=values or [0.5, 1.5])


async def count_rows(store, table):
    async with store.conn.execute(f"SELECT COUNT(*) FROM {table}") as cursor:
        row = await cursor.fetchone()
    return row[0]


class TestSQLiteVectorStore:
    @pytest.mark.asyncio
    async def test_insert_and_get(self, store):
        chunk, vector = make_pair("abc-0")
        await store.insert(chunk, vector)

        fetched = await store.get("abc-0")

        assert fetched == chunk
        assert await count_rows(store, "vectors") == 1

    @pytest.mark.asyncio
    async def test_get_missing_chunk(self, store):
        with pytest.raises(NotFoundError):
            await store.get("nope-0")

    @pytest.mark.asyncio
    async def test_vectors_round_trip_in_insertion_order(self, store):
        for i in range(3):
            await store.insert(*make_pair(f"abc-{i}", values=[float(i), 1.0]))

        pairs = await store.all_with_vectors()

        assert [chunk.id for chunk, _ in pairs] == ["abc-0", "abc-1", "abc-2"]
        assert [vector.values for _, vector in pairs] == [[0.0, 1.0], [1.0, 1.0], [2.0, 1.0]]
        assert all(vector.chunk_id == chunk.id for chunk, vector in pairs)

    @pytest.mark.asyncio
    async def test_duplicate_chunk_leaves_no_partial_pair(self, store):
        await store.insert(*make_pair("abc-0"))

        chunk, _ = make_pair("abc-0")
        with pytest.raises(PersistenceError):
            await store.insert(chunk, Vector(id="other", chunk_id="abc-0", values=[1.0]))

        assert await count_rows(store, "chunks") == 1
        assert await count_rows(store, "vectors") == 1

    @pytest.mark.asyncio
    async def test_failed_vector_rolls_back_chunk(self, store):
        await store.insert(*make_pair("abc-0"))

        chunk, _ = make_pair("abc-1")
        # Vector id collides, so the chunk row must not survive either
        with pytest.raises(PersistenceError):
            await store.insert(chunk, Vector(id="abc-0", chunk_id="abc-1", values=[1.0]))

        with pytest.raises(NotFoundError):
            await store.get("abc-1")
        assert await count_rows(store, "chunks") == 1

    @pytest.mark.asyncio
    async def test_list_by_source_groups_chunks(self, store):
        start = utcnow()
        await store.insert(*make_pair("a-0", "a.pdf", created_at=start + timedelta(seconds=5)))
        await store.insert(*make_pair("a-1", "a.pdf", created_at=start))
        await store.insert(*make_pair("b-0", "b.docx", created_at=start + timedelta(seconds=9)))

        summaries = await store.list_by_source()

        assert [(s.name, s.chunk_count, s.type) for s in summaries] == [
            ("a.pdf", 2, "PDF"),
            ("b.docx", 1, "DOCX"),
        ]
        assert summaries[0].earliest_timestamp == start

    @pytest.mark.asyncio
    async def test_list_empty_store(self, store):
        assert await store.list_by_source() == []
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_delete_by_source_cascades(self, store):
        await store.insert(*make_pair("a-0", "a.pdf"))
        await store.insert(*make_pair("a-1", "a.pdf"))
        await store.insert(*make_pair("b-0", "b.pdf"))

        assert await store.delete_by_source("a.pdf") == 2

        assert [s.name for s in await store.list_by_source()] == ["b.pdf"]
        assert await count_rows(store, "vectors") == 1
        assert [chunk.id for chunk, _ in await store.all_with_vectors()] == ["b-0"]

    @pytest.mark.asyncio
    async def test_delete_unknown_source(self, store):
        with pytest.raises(NotFoundError):
            await store.delete_by_source("missing.pdf")

    @pytest.mark.asyncio
    async def test_persists_across_reopen(self, tmp_path):
        path = tmp_path / "nested" / "vectors.db"
        async with SQLiteVectorStore(path) as first:
            await first.insert(*make_pair("abc-0"))

        async with SQLiteVectorStore(path) as second:
            assert await second.count() == 1

    @pytest.mark.asyncio
    async def test_closed_store_raises(self, tmp_path):
        closed = SQLiteVectorStore(tmp_path / "vectors.db")

        assert not closed.is_open
        with pytest.raises(PersistenceError):
            await closed.count()
