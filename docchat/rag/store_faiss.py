"""FAISS vector store for semantic search.

Handles:
- Durable per-record persistence in SQLite
- An exact in-memory FAISS index rebuilt from SQLite on open
- Cosine similarity search (inner product over L2-normalised vectors)
"""
import asyncio
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Dict, Any
import numpy as np
import faiss
import structlog

from docchat import db
from docchat.errors import IngestionError, InvalidConfiguration, RetrievalError

logger = structlog.get_logger()

# Extra candidates fetched beyond top_k so ties at the cut-off resolve by text.
_TIE_CANDIDATES = 32


@dataclass(frozen=True)
class RecordInput:
    """A chunk ready to be stored."""

    text: str
    embedding: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StoredRecord:
    id: int
    text: str
    embedding: List[float]
    metadata: Dict[str, Any]


@dataclass(frozen=True)
class SimilarityResult:
    record: StoredRecord
    score: float


def _normalise(vector: List[float], dimension: Optional[int]) -> np.ndarray:
    """Return a unit-length float32 row vector.

    Raises:
        ValueError: On wrong dimension, non-finite values or a zero vector
    """
    if dimension is not None and len(vector) != dimension:
        raise ValueError(
            f"Embedding dimension mismatch: expected {dimension}, got {len(vector)}"
        )

    array = np.asarray(vector, dtype=np.float32).reshape(1, -1)

    if array.shape[1] == 0:
        raise ValueError("Embedding is empty")
    if not np.all(np.isfinite(array)):
        raise ValueError("Embedding contains non-finite values")

    norm = float(np.linalg.norm(array))
    if norm == 0.0 or not math.isfinite(norm):
        raise ValueError("Embedding has zero norm")

    return array / norm


class FAISSVectorStore:
    """SQLite-backed record store with an exact FAISS similarity index."""

    def __init__(
        self,
        db_path: Path,
        dimension: Optional[int] = None,
        max_content_chars: int = 8000,
    ):
        """Initialize the vector store.

        Args:
            db_path: SQLite database file
            dimension: Expected embedding dimension (fixed by the first record if None)
            max_content_chars: Records with longer text are rejected
        """
        self.db_path = Path(db_path)
        self.configured_dimension = dimension
        self.dimension = dimension
        self.max_content_chars = max_content_chars

        self.index: Optional[faiss.Index] = None
        self._opened = False
        self._lock = asyncio.Lock()

        logger.info(
            "faiss_store_initialized",
            db_path=str(self.db_path),
            dimension=dimension,
        )

    def _new_index(self, dimension: int) -> faiss.Index:
        self.dimension = dimension
        # Exact search; IDs map straight to SQLite row ids
        return faiss.IndexIDMap2(faiss.IndexFlatIP(dimension))

    async def open(self) -> None:
        """Create the schema and load stored vectors into the index.

        Raises:
            InvalidConfiguration: If stored vectors don't match the configured dimension
        """
        db.init_database(self.db_path)
        rows = db.iter_documents(self.db_path)

        self.dimension = self.configured_dimension
        self.index = None

        if rows:
            stored_dim = len(rows[0]["embedding"])
            if self.configured_dimension is not None and stored_dim != self.configured_dimension:
                raise InvalidConfiguration(
                    f"Dimension mismatch: stored vectors have dim={stored_dim}, "
                    f"configured dim={self.configured_dimension}. Rebuild the store."
                )
            self.index = self._new_index(stored_dim)

            vectors, ids = [], []
            for row in rows:
                try:
                    vectors.append(_normalise(row["embedding"], stored_dim)[0])
                    ids.append(row["id"])
                except ValueError as e:
                    logger.warning("stored_vector_skipped", id=row["id"], error=str(e))

            if vectors:
                self.index.add_with_ids(
                    np.vstack(vectors).astype(np.float32),
                    np.asarray(ids, dtype=np.int64),
                )
        elif self.configured_dimension is not None:
            self.index = self._new_index(self.configured_dimension)

        self._opened = True

        logger.info(
            "faiss_index_loaded",
            dimension=self.dimension,
            vector_count=self.vector_count,
        )

    async def _ensure_open(self) -> None:
        if not self._opened:
            await self.open()

    @property
    def vector_count(self) -> int:
        return self.index.ntotal if self.index is not None else 0

    def _validate(self, record: RecordInput) -> np.ndarray:
        if not isinstance(record.text, str) or not record.text.strip():
            raise ValueError("Record text is empty")
        if len(record.text) > self.max_content_chars:
            raise ValueError(
                f"Record text too long: {len(record.text)} chars "
                f"(max {self.max_content_chars})"
            )
        return _normalise(list(record.embedding), self.dimension)

    def _insert(self, record: RecordInput) -> int:
        vector = self._validate(record)

        row_id = db.insert_document(
            self.db_path, record.text, [float(v) for v in record.embedding], dict(record.metadata)
        )

        if self.index is None:
            self.index = self._new_index(vector.shape[1])

        try:
            self.index.add_with_ids(vector, np.asarray([row_id], dtype=np.int64))
        except Exception:
            db.delete_document(self.db_path, row_id)
            raise

        return row_id

    async def ingest(self, records: List[RecordInput]) -> List[IngestionError]:
        """Store records one by one.

        A failing record doesn't abort the batch; its error is returned.

        Args:
            records: Records to append

        Returns:
            One IngestionError per record that wasn't stored (empty on full success)
        """
        await self._ensure_open()

        errors: List[IngestionError] = []
        stored = 0

        async with self._lock:
            for record in records:
                try:
                    self._insert(record)
                    stored += 1
                except Exception as e:
                    logger.warning(
                        "record_ingestion_failed",
                        error=str(e),
                        error_type=type(e).__name__,
                        text_preview=str(record.text)[:100],
                    )
                    errors.append(IngestionError(record, e))

        logger.info(
            "records_ingested",
            stored=stored,
            failed=len(errors),
            total_vectors=self.vector_count,
        )

        return errors

    async def query(self, query_embedding: List[float], top_k: int) -> List[SimilarityResult]:
        """Find the stored records most similar to a query vector.

        Args:
            query_embedding: Query vector
            top_k: Maximum number of results

        Returns:
            Results ordered by descending cosine similarity (empty for an empty store)

        Raises:
            RetrievalError: On invalid input or a backend failure
        """
        if top_k < 1:
            raise RetrievalError(f"top_k must be >= 1, got {top_k}")

        try:
            await self._ensure_open()
        except Exception as e:
            logger.error("vector_store_open_failed", error=str(e), error_type=type(e).__name__)
            raise RetrievalError(f"Vector store unavailable: {e}") from e

        if self.vector_count == 0:
            logger.info("empty_index_no_results")
            return []

        try:
            query_vector = _normalise(list(query_embedding), self.dimension)
        except (ValueError, TypeError) as e:
            raise RetrievalError(f"Invalid query embedding: {e}") from e

        total = self.vector_count
        k = min(total, top_k + _TIE_CANDIDATES)

        try:
            scores, ids = self.index.search(query_vector, k)
            # A tie group reaching past the fetched window needs every candidate
            if k < total and scores[0][k - 1] >= scores[0][min(top_k, k) - 1]:
                logger.debug("tie_group_exceeds_window", window=k, total=total)
                scores, ids = self.index.search(query_vector, total)
            cutoff = float(scores[0][min(top_k, len(scores[0])) - 1])
            hits = [
                (int(i), float(s))
                for i, s in zip(ids[0].tolist(), scores[0].tolist())
                if i != -1 and s >= cutoff
            ]
            rows = db.get_documents_by_ids(self.db_path, [i for i, _ in hits])
        except Exception as e:
            logger.error("vector_search_failed", error=str(e))
            raise RetrievalError(f"Similarity search failed: {e}") from e

        results = [
            SimilarityResult(
                record=StoredRecord(
                    id=row_id,
                    text=rows[row_id]["content"],
                    embedding=rows[row_id]["embedding"],
                    metadata=rows[row_id]["metadata"],
                ),
                score=score,
            )
            for row_id, score in hits
            if row_id in rows
        ]
        results.sort(key=lambda r: (-r.score, r.record.text))
        results = results[:top_k]

        logger.info(
            "vector_search_completed",
            top_k=top_k,
            results_found=len(results),
            top_score=results[0].score if results else None,
        )

        return results

    async def clear(self) -> None:
        """Delete all stored records and reset the index (for rebuilds)."""
        logger.warning("clearing_vector_store", db_path=str(self.db_path))
        async with self._lock:
            db.init_database(self.db_path)
            db.clear_all_documents(self.db_path)
            self.dimension = self.configured_dimension
            self.index = (
                self._new_index(self.configured_dimension)
                if self.configured_dimension is not None
                else None
            )
            self._opened = True

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the vector store."""
        return {
            "initialized": self.index is not None,
            "vector_count": self.vector_count,
            "dimension": self.dimension,
            "db_path": str(self.db_path),
        }
