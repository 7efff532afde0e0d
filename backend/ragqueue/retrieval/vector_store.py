"""Durable vector store backed by the SQLite ``embeddings`` table."""

from __future__ import annotations

import heapq
import math
import sqlite3
from array import array
from typing import Any, Sequence

import orjson

from ragqueue.core.errors import AlignmentError, EmbeddingBackendMismatch, StoreUnavailable
from ragqueue.core.logging import get_logger
from ragqueue.core.metrics import INDEX_SIZE
from ragqueue.db.sqlite import SQLiteDatabase
from ragqueue.ingest.types import Chunk
from ragqueue.models.entities import CollectionStats, SimilarityMatch, StoredEmbedding
from ragqueue.retrieval.hybrid import bm25_rank
from ragqueue.utils.ids import new_id
from ragqueue.utils.time import now_ms

logger = get_logger(__name__)

DEFAULT_MODEL = "unspecified"


class VectorStore:
    """Persist chunk vectors and answer cosine-similarity queries per collection.

    Every row records the model that produced it. A collection only ever holds
    vectors of one model, and searches only score rows of the query's model.
    """

    def __init__(self, database: SQLiteDatabase, model: str | None = None) -> None:
        self.db = database
        self.model = model or DEFAULT_MODEL

    def store(
        self,
        collection_id: str,
        source_document_id: str,
        chunks: Sequence[Chunk],
        vectors: Sequence[Sequence[float]],
        metadata: dict[str, Any] | None = None,
        model: str | None = None,
    ) -> int:
        """Write one row per chunk, replacing the document's previous rows.

        Either every row is written or none is.
        """
        if len(chunks) != len(vectors):
            logger.error(
                "Refusing to store %s chunks with %s vectors for document %s",
                len(chunks),
                len(vectors),
                source_document_id,
                stack_info=True,
            )
            raise AlignmentError(f"{len(chunks)} chunks but {len(vectors)} vectors")
        if not chunks:
            return 0
        dims = {len(vector) for vector in vectors}
        if len(dims) != 1:
            raise AlignmentError(f"vectors of mixed dimensions {sorted(dims)}")
        dim = dims.pop()
        model_id = model or self.model
        now = now_ms()
        meta_json = orjson.dumps(metadata or {}).decode("utf-8")
        rows = [
            (
                new_id("emb"),
                collection_id,
                source_document_id,
                chunk.text,
                chunk.index,
                chunk.start_char,
                chunk.end_char,
                pack_vector(vector),
                dim,
                model_id,
                meta_json,
                now,
            )
            for chunk, vector in zip(chunks, vectors)
        ]
        try:
            with self.db.transaction(immediate=True) as cursor:
                existing = cursor.execute(
                    """
                    SELECT model, dim FROM embeddings
                    WHERE collection_id = ? AND source_document_id != ?
                    LIMIT 1
                    """,
                    [collection_id, source_document_id],
                ).fetchone()
                if existing and (existing["model"] != model_id or existing["dim"] != dim):
                    raise EmbeddingBackendMismatch(
                        f"Collection {collection_id} holds {existing['model']} vectors (dim {existing['dim']}); "
                        f"refusing to add {model_id} vectors (dim {dim})"
                    )
                cursor.execute("DELETE FROM embeddings WHERE source_document_id = ?", [source_document_id])
                cursor.executemany(
                    """
                    INSERT INTO embeddings (
                      id, collection_id, source_document_id, chunk_text, chunk_index,
                      start_char, end_char, vector, dim, model, metadata_json, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Failed to store embeddings: {exc}") from exc
        self._update_index_metric()
        logger.info("Stored %s embeddings for document %s", len(rows), source_document_id)
        return len(rows)

    def search(
        self,
        query_vector: Sequence[float],
        collection_id: str,
        top_k: int = 5,
        similarity_threshold: float = 0.0,
        model: str | None = None,
    ) -> list[SimilarityMatch]:
        """Return up to ``top_k`` matches at or above the threshold, best first."""
        if top_k <= 0 or not query_vector:
            return []
        query_norm = _norm(query_vector)
        if query_norm == 0:
            return []
        try:
            rows = self.db.query(
                """
                SELECT id, source_document_id, chunk_text, chunk_index, vector, metadata_json
                FROM embeddings
                WHERE collection_id = ? AND model = ? AND dim = ?
                ORDER BY source_document_id, chunk_index
                """,
                [collection_id, model or self.model, len(query_vector)],
            )
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Failed to search embeddings: {exc}") from exc

        scored: list[tuple[float, sqlite3.Row]] = []
        for row in rows:
            similarity = _cosine(query_vector, query_norm, unpack_vector(row["vector"]))
            if similarity >= similarity_threshold:
                scored.append((similarity, row))
        best = heapq.nlargest(top_k, scored, key=lambda item: item[0])
        return [_to_match(row, similarity) for similarity, row in best]

    def keyword_search(
        self,
        query: str,
        collection_id: str,
        limit: int = 10,
        model: str | None = None,
    ) -> list[SimilarityMatch]:
        """Rank the collection's chunks by BM25 against ``query``, best first.

        ``similarity`` carries the raw BM25 score of each match.
        """
        if limit <= 0 or not query.strip():
            return []
        try:
            rows = self.db.query(
                """
                SELECT id, source_document_id, chunk_text, chunk_index, metadata_json
                FROM embeddings
                WHERE collection_id = ? AND model = ?
                ORDER BY source_document_id, chunk_index
                """,
                [collection_id, model or self.model],
            )
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Failed to read chunks for keyword search: {exc}") from exc
        by_id = {row["id"]: row for row in rows}
        ranked = bm25_rank(query, [(row["id"], row["chunk_text"]) for row in rows])[:limit]
        return [_to_match(by_id[chunk_id], score) for chunk_id, score in ranked]

    def list_by_document(self, source_document_id: str) -> list[StoredEmbedding]:
        try:
            rows = self.db.query(
                "SELECT * FROM embeddings WHERE source_document_id = ? ORDER BY chunk_index",
                [source_document_id],
            )
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Failed to read embeddings: {exc}") from exc
        return [
            StoredEmbedding(
                id=row["id"],
                collection_id=row["collection_id"],
                source_document_id=row["source_document_id"],
                chunk_text=row["chunk_text"],
                chunk_index=row["chunk_index"],
                start_char=row["start_char"],
                end_char=row["end_char"],
                vector=unpack_vector(row["vector"]),
                model=row["model"],
                created_at=row["created_at"],
                metadata=orjson.loads(row["metadata_json"]) if row["metadata_json"] else {},
            )
            for row in rows
        ]

    def delete_by_document(self, source_document_id: str) -> int:
        return self._delete("source_document_id", source_document_id)

    def delete_by_collection(self, collection_id: str) -> int:
        return self._delete("collection_id", collection_id)

    def stats(self, collection_id: str) -> CollectionStats:
        try:
            row = self.db.execute(
                """
                SELECT COUNT(*) AS total_chunks, COUNT(DISTINCT source_document_id) AS total_documents
                FROM embeddings WHERE collection_id = ?
                """,
                [collection_id],
            ).fetchone()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Failed to read collection stats: {exc}") from exc
        total_chunks = int(row["total_chunks"]) if row else 0
        total_documents = int(row["total_documents"]) if row else 0
        average = round(total_chunks / total_documents, 2) if total_documents else 0.0
        return CollectionStats(
            total_chunks=total_chunks,
            total_documents=total_documents,
            avg_chunks_per_document=average,
        )

    def _delete(self, column: str, value: str) -> int:
        try:
            with self.db.transaction() as cursor:
                cursor.execute(f"DELETE FROM embeddings WHERE {column} = ?", [value])
                deleted = cursor.rowcount
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Failed to delete embeddings: {exc}") from exc
        self._update_index_metric()
        logger.info("Deleted %s embeddings where %s=%s", deleted, column, value)
        return deleted

    def _update_index_metric(self) -> None:
        try:
            row = self.db.execute("SELECT COUNT(*) AS count FROM embeddings").fetchone()
        except sqlite3.Error as exc:  # pragma: no cover - metrics must not fail writes
            logger.warning("Could not refresh index size metric: %s", exc)
            return
        INDEX_SIZE.set(int(row["count"]) if row else 0)


def pack_vector(vector: Sequence[float]) -> bytes:
    return array("f", vector).tobytes()


def unpack_vector(blob: bytes) -> list[float]:
    floats = array("f")
    floats.frombytes(blob)
    return list(floats)


def _to_match(row: sqlite3.Row, similarity: float) -> SimilarityMatch:
    return SimilarityMatch(
        id=row["id"],
        source_document_id=row["source_document_id"],
        chunk_text=row["chunk_text"],
        chunk_index=row["chunk_index"],
        similarity=similarity,
        metadata=orjson.loads(row["metadata_json"]) if row["metadata_json"] else {},
    )


def _norm(vector: Sequence[float]) -> float:
    return math.sqrt(sum(value * value for value in vector))


def _cosine(query: Sequence[float], query_norm: float, vector: Sequence[float]) -> float:
    norm = _norm(vector)
    if norm == 0:
        return 0.0
    return sum(x * y for x, y in zip(query, vector)) / (query_norm * norm)


__all__ = ["VectorStore", "pack_vector", "unpack_vector"]
