"""Ingest pipeline for indexing uploaded documents.

Orchestrates:
- Text extraction
- Sentence chunking
- Embedding generation, one chunk at a time
- Chunk and vector storage

Each chunk+vector pair is committed on its own. A failure part way through a
document stops the loop and leaves the already stored chunks in place.
"""
import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict
import structlog

from navi import config
from navi.db import Chunk, Vector, VectorStore, utcnow
from navi.errors import EmbeddingError, EmptyContentError, IngestionError, PersistenceError
from navi.llm_client import OllamaClient
from navi.rag.chunker import TextChunker
from navi.rag.extractor import extract_async

logger = structlog.get_logger()


@dataclass
class IngestResult:
    """Outcome of a successful ingestion."""

    source_id: str
    source_name: str
    chunk_count: int


def chunk_id(source_id: str, index: int) -> str:
    return f"{source_id}-{index}"


class IngestPipeline:
    """Pipeline for ingesting documents into the RAG system."""

    def __init__(
        self,
        store: VectorStore,
        client: OllamaClient,
        max_chunk_size: int = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            store: Destination vector store
            client: Ollama client used for embeddings
            max_chunk_size: Default chunk size in characters (default from config)
        """
        self.store = store
        self.client = client
        self.max_chunk_size = max_chunk_size or config.CHUNK_SIZE

        # Re-ingesting one source name concurrently would interleave its chunks.
        # Entries live only while some ingestion holds or awaits the lock.
        self._source_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Counter = Counter()

        logger.info(
            "ingest_pipeline_initialized",
            embedding_model=client.embedding_model,
            max_chunk_size=self.max_chunk_size,
        )

    async def ingest_bytes(
        self,
        data: bytes,
        declared_type: str,
        source_id: str,
        source_name: str,
        max_chunk_size: int = None,
    ) -> IngestResult:
        """Extract, chunk, embed and store a document.

        Args:
            data: Raw document bytes
            declared_type: MIME type or filename used to pick the extractor
            source_id: Prefix for chunk ids ("<source_id>-<n>")
            source_name: Grouping key shown in document listings
            max_chunk_size: Override for the default chunk size

        Returns:
            IngestResult with the number of chunks stored

        Raises:
            ValidationError: On a bad type or chunk size (nothing stored)
            ExtractionError: If no text could be extracted (nothing stored)
            IngestionError: If a chunk fails to embed or store; earlier chunks remain
        """
        chunker = TextChunker(self.max_chunk_size if max_chunk_size is None else max_chunk_size)

        text = await extract_async(data, declared_type)
        return await self.ingest_text(text, source_id, source_name, chunker)

    async def ingest_text(
        self,
        text: str,
        source_id: str,
        source_name: str,
        chunker: TextChunker = None,
    ) -> IngestResult:
        """Chunk, embed and store already extracted text.

        Raises:
            EmptyContentError: If the text yields no chunks
            IngestionError: If a chunk fails to embed or store
        """
        chunker = chunker or TextChunker(self.max_chunk_size)
        chunks = chunker.chunk_text(text)

        if not chunks:
            logger.warning("no_chunks_created", source_name=source_name)
            raise EmptyContentError("No text content found in file")

        async with self._source_lock(source_name):
            await self._store_chunks(chunks, source_id, source_name)

        logger.info(
            "document_ingested",
            source_id=source_id,
            source_name=source_name,
            chunks_created=len(chunks),
        )

        return IngestResult(
            source_id=source_id,
            source_name=source_name,
            chunk_count=len(chunks),
        )

    @asynccontextmanager
    async def _source_lock(self, source_name: str):
        lock = self._source_locks.setdefault(source_name, asyncio.Lock())
        self._lock_users[source_name] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[source_name] -= 1
            if not self._lock_users[source_name]:
                del self._lock_users[source_name]
                del self._source_locks[source_name]

    async def _store_chunks(self, chunks, source_id: str, source_name: str) -> None:
        for index, content in enumerate(chunks):
            log = logger.bind(source_id=source_id, chunk_index=index, total=len(chunks))

            try:
                values = await self.client.embed(content)
                chunk = Chunk(
                    id=chunk_id(source_id, index),
                    source_name=source_name,
                    text=content,
                    created_at=utcnow(),
                )
                await self.store.insert(
                    chunk,
                    Vector(id=chunk.id, chunk_id=chunk.id, values=values),
                )
            except (EmbeddingError, PersistenceError) as e:
                log.error(
                    "chunk_ingestion_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    chunks_stored=index,
                )
                raise IngestionError(index, e) from e

            log.debug("chunk_stored", chunk_length=len(content), dimension=len(values))
