"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from ragqueue.core.config import Settings, get_settings
from ragqueue.db.sqlite import SQLiteDatabase
from ragqueue.ingest.documents import DocumentRepository
from ragqueue.ingest.embeddings import EmbeddingProvider, create_embedding_provider
from ragqueue.queue.jobs import JobQueue
from ragqueue.retrieval import RagOrchestrator, VectorStore

_DB: SQLiteDatabase | None = None
_EMBEDDING_PROVIDER: EmbeddingProvider | None = None
_VECTOR_STORE: VectorStore | None = None
_JOB_QUEUE: JobQueue | None = None
_ORCHESTRATOR: RagOrchestrator | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        settings = get_app_settings()
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_embedding_provider() -> EmbeddingProvider:
    global _EMBEDDING_PROVIDER
    if _EMBEDDING_PROVIDER is None:
        _EMBEDDING_PROVIDER = create_embedding_provider(get_app_settings())
    return _EMBEDDING_PROVIDER


def get_vector_store() -> VectorStore:
    global _VECTOR_STORE
    if _VECTOR_STORE is None:
        _VECTOR_STORE = VectorStore(get_database(), model=get_embedding_provider().model_id)
    return _VECTOR_STORE


def get_job_queue() -> JobQueue:
    global _JOB_QUEUE
    if _JOB_QUEUE is None:
        _JOB_QUEUE = JobQueue.from_settings(get_database(), get_app_settings())
    return _JOB_QUEUE


def get_document_repository() -> DocumentRepository:
    return DocumentRepository(get_database())


def get_orchestrator() -> RagOrchestrator:
    global _ORCHESTRATOR
    if _ORCHESTRATOR is None:
        _ORCHESTRATOR = RagOrchestrator.from_settings(
            get_app_settings(),
            embedding_provider=get_embedding_provider(),
            vector_store=get_vector_store(),
        )
    return _ORCHESTRATOR


def reset_dependencies() -> None:
    """Drop cached singletons so the next request rebuilds them from settings."""
    global _DB, _EMBEDDING_PROVIDER, _VECTOR_STORE, _JOB_QUEUE, _ORCHESTRATOR
    if _ORCHESTRATOR is not None:
        _ORCHESTRATOR.close()
    if _EMBEDDING_PROVIDER is not None:
        _EMBEDDING_PROVIDER.close()
    if _DB is not None:
        _DB.close()
    _DB = _EMBEDDING_PROVIDER = _VECTOR_STORE = _JOB_QUEUE = _ORCHESTRATOR = None
    get_app_settings.cache_clear()
    get_settings.cache_clear()


__all__ = [
    "get_app_settings",
    "get_database",
    "get_embedding_provider",
    "get_vector_store",
    "get_job_queue",
    "get_document_repository",
    "get_orchestrator",
    "reset_dependencies",
]
