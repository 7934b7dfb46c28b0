"""Retriever for semantic search over stored chunks.

Handles:
- Cosine similarity between query and chunk vectors
- Full linear scan over the vector store
- Result ranking
"""
from dataclasses import dataclass
from typing import List, Sequence
import numpy as np
import structlog

from navi import config
from navi.db import Chunk, VectorStore
from navi.errors import ValidationError

logger = structlog.get_logger()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero norm.

    Raises:
        ValueError: If the vectors differ in length
    """
    a_arr, b_arr = np.asarray(a, dtype=float), np.asarray(b, dtype=float)
    if a_arr.shape != b_arr.shape:
        raise ValueError(f"Vector dimensions differ: {len(a_arr)} != {len(b_arr)}")

    norm_a, norm_b = np.linalg.norm(a_arr), np.linalg.norm(b_arr)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    # Clamp float rounding, e.g. 1.0000000000000002
    return float(np.clip(np.dot(a_arr, b_arr) / (norm_a * norm_b), -1.0, 1.0))


def similarity_scores(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of a query against every row of a matrix.

    Rows (or a query) with zero norm score 0.0.

    Raises:
        ValueError: If the row width differs from the query length
    """
    query_arr = np.asarray(query, dtype=float)
    if matrix.ndim != 2 or matrix.shape[1] != query_arr.shape[0]:
        raise ValueError(
            f"Vector dimensions differ: query has {query_arr.shape[0]}, stored has {matrix.shape[-1]}"
        )

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_arr)
    dots = matrix @ query_arr
    scores = np.divide(dots, norms, out=np.zeros_like(dots), where=norms != 0)
    return np.clip(scores, -1.0, 1.0)


@dataclass
class RetrievalResult:
    """A single ranked chunk."""

    chunk: Chunk
    similarity: float

    @property
    def content(self) -> str:
        return self.chunk.text

    @property
    def source(self) -> str:
        return self.chunk.source_name


class Retriever:
    """Linear-scan ranking over a vector store."""

    def __init__(self, store: VectorStore, top_k: int = None):
        """Initialize the retriever.

        Args:
            store: Vector store to scan
            top_k: Default number of results (default from config)
        """
        self.store = store
        self.top_k = top_k or config.RETRIEVAL_TOP_K

    async def rank(self, query_vector: Sequence[float], k: int = None) -> List[RetrievalResult]:
        """Rank every stored chunk against a query vector.

        Args:
            query_vector: Embedding of the query
            k: Maximum number of results (defaults to top_k)

        Returns:
            Up to k results, most similar first. Equal similarities keep
            insertion order. Empty when the store is empty.
        """
        k = self.top_k if k is None else k
        if k <= 0:
            raise ValidationError(f"k must be positive, got {k}")

        pairs = await self.store.all_with_vectors()

        if not pairs:
            logger.info("empty_store_no_results")
            return []

        matrix = np.asarray([vector.values for _, vector in pairs], dtype=float)
        scores = similarity_scores(query_vector, matrix)

        # Stable sort so ties stay in insertion order
        order = np.argsort(-scores, kind="stable")[:k]
        results = [
            RetrievalResult(chunk=pairs[i][0], similarity=float(scores[i]))
            for i in order
        ]

        logger.info(
            "retrieval_completed",
            scanned=len(pairs),
            results_returned=len(results),
            top_similarity=results[0].similarity,
        )

        return results
