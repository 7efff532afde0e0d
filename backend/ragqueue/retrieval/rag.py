"""Request-time retrieval of context for the chat layer."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Sequence

from ragqueue.core.config import Settings
from ragqueue.core.errors import EmbeddingBackendUnavailable, RagQueueError
from ragqueue.core.logging import get_logger
from ragqueue.core.metrics import RETRIEVALS
from ragqueue.ingest.embeddings import EmbeddingProvider
from ragqueue.models.entities import CollectionStats, SimilarityMatch
from ragqueue.retrieval.hybrid import merge_hybrid
from ragqueue.retrieval.vector_store import VectorStore

logger = get_logger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"
NO_DOCUMENTS_ISSUE = "No documents have been processed yet"


@dataclass(slots=True)
class RetrievalResult:
    context_text: str = ""
    matches: list[SimilarityMatch] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "context_text": self.context_text,
            "matches": [match.to_dict() for match in self.matches],
        }


@dataclass(slots=True)
class CollectionStatus:
    """Whether a collection can answer retrieval requests, and why not."""

    ready: bool
    stats: CollectionStats | None
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ready": self.ready,
            "stats": self.stats.to_dict() if self.stats else None,
            "issues": list(self.issues),
        }


class RagOrchestrator:
    """Embed a query, search one collection and render the matches as context.

    Every "no context" condition (backend down, slow, store unavailable, no
    match above the threshold) yields an empty :class:`RetrievalResult`.
    Only caller mistakes raise.
    """

    def __init__(
        self,
        embedding_provider: EmbeddingProvider,
        vector_store: VectorStore,
        top_k: int = 5,
        similarity_threshold: float = 0.25,
        timeout_seconds: float = 10.0,
        hybrid: bool = False,
        keyword_weight: float = 0.3,
        max_workers: int = 4,
    ) -> None:
        self.embedding_provider = embedding_provider
        self.vector_store = vector_store
        self.top_k = top_k
        self.similarity_threshold = similarity_threshold
        self.timeout_seconds = timeout_seconds
        self.hybrid = hybrid
        self.keyword_weight = keyword_weight
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ragq-retrieve")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        embedding_provider: EmbeddingProvider,
        vector_store: VectorStore,
    ) -> "RagOrchestrator":
        return cls(
            embedding_provider,
            vector_store,
            top_k=settings.top_k,
            similarity_threshold=settings.similarity_threshold,
            timeout_seconds=settings.retrieve_timeout_seconds,
            hybrid=settings.hybrid_search,
            keyword_weight=settings.keyword_weight,
        )

    def retrieve(
        self,
        query: str,
        collection_id: str,
        top_k: int | None = None,
        similarity_threshold: float | None = None,
        hybrid: bool | None = None,
        keyword_weight: float | None = None,
    ) -> RetrievalResult:
        """Return formatted context for ``query`` from one collection.

        With ``hybrid`` set, twice ``top_k`` semantic and BM25 keyword
        candidates are blended by :func:`merge_hybrid` using ``keyword_weight``.
        """
        if not collection_id:
            raise ValueError("collection_id is required")
        if not query or not query.strip():
            raise ValueError("query must not be empty")
        limit = top_k if top_k is not None else self.top_k
        threshold = similarity_threshold if similarity_threshold is not None else self.similarity_threshold
        use_hybrid = self.hybrid if hybrid is None else hybrid
        weight = self.keyword_weight if keyword_weight is None else keyword_weight
        if not 0.0 <= weight <= 1.0:
            raise ValueError("keyword_weight must be between 0 and 1")

        future = self._executor.submit(self._embed_query, query)
        try:
            query_vector = future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            logger.warning("Query embedding timed out after %ss; continuing without context", self.timeout_seconds)
            RETRIEVALS.labels(outcome="timeout").inc()
            return RetrievalResult()
        except RagQueueError as exc:
            logger.warning("Query embedding failed (%s); continuing without context", exc)
            RETRIEVALS.labels(outcome="unavailable").inc()
            return RetrievalResult()
        if query_vector is None:
            RETRIEVALS.labels(outcome="unavailable").inc()
            return RetrievalResult()

        model = self.embedding_provider.model_id
        try:
            if use_hybrid:
                semantic = self.vector_store.search(
                    query_vector,
                    collection_id,
                    top_k=limit * 2,
                    similarity_threshold=threshold,
                    model=model,
                )
                keyword = self.vector_store.keyword_search(query, collection_id, limit=limit * 2, model=model)
                matches = merge_hybrid(semantic, keyword, weight, limit)
            else:
                matches = self.vector_store.search(
                    query_vector,
                    collection_id,
                    top_k=limit,
                    similarity_threshold=threshold,
                    model=model,
                )
        except RagQueueError as exc:
            logger.warning("Vector search failed (%s); continuing without context", exc)
            RETRIEVALS.labels(outcome="error").inc()
            return RetrievalResult()

        if not matches:
            RETRIEVALS.labels(outcome="empty").inc()
            return RetrievalResult()
        RETRIEVALS.labels(outcome="matched").inc()
        logger.info(
            "Retrieved %s context chunks from collection %s%s",
            len(matches),
            collection_id,
            " (hybrid)" if use_hybrid else "",
        )
        return RetrievalResult(context_text=format_context(matches), matches=matches)

    def collection_status(self, collection_id: str) -> CollectionStatus:
        """Report whether ``collection_id`` is ready to serve retrieval.

        A collection is ready when the embedding backend answers and at least
        one chunk is stored; every problem found is listed in ``issues``.
        """
        if not collection_id:
            raise ValueError("collection_id is required")
        issues: list[str] = []
        try:
            self.embedding_provider.check()
        except EmbeddingBackendUnavailable as exc:
            issues.append(f"Embedding backend {self.embedding_provider.model_id} is not reachable: {exc}")
        except RagQueueError as exc:
            issues.append(str(exc))

        stats: CollectionStats | None = None
        try:
            stats = self.vector_store.stats(collection_id)
        except RagQueueError as exc:
            issues.append(f"Could not read collection stats: {exc}")
        else:
            if stats.total_chunks == 0:
                issues.append(NO_DOCUMENTS_ISSUE)
        return CollectionStatus(ready=not issues, stats=stats, issues=issues)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _embed_query(self, query: str) -> list[float] | None:
        if not self.embedding_provider.is_available():
            return None
        return self.embedding_provider.embed(query)


def format_context(matches: Sequence[SimilarityMatch]) -> str:
    """Render matches as numbered blocks with their similarity percentage."""
    parts = [
        f"[Context {rank}] (Similarity: {match.similarity * 100:.1f}%)\n{match.chunk_text}"
        for rank, match in enumerate(matches, start=1)
    ]
    return CONTEXT_SEPARATOR.join(parts)


__all__ = ["RagOrchestrator", "RetrievalResult", "CollectionStatus", "format_context"]
