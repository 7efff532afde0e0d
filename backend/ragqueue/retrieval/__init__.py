"""Retrieval components."""

from .hybrid import bm25_rank, merge_hybrid
from .rag import CollectionStatus, RagOrchestrator, RetrievalResult, format_context
from .vector_store import VectorStore

__all__ = [
    "VectorStore",
    "RagOrchestrator",
    "RetrievalResult",
    "CollectionStatus",
    "format_context",
    "bm25_rank",
    "merge_hybrid",
]
