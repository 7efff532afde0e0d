"""Test fixtures for RAG Queue."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from ragqueue.core.config import Settings  # noqa: E402
from ragqueue.db.sqlite import SQLiteDatabase  # noqa: E402
from ragqueue.ingest.documents import DocumentRepository  # noqa: E402
from ragqueue.ingest.embeddings import HashedEmbeddingProvider  # noqa: E402
from ragqueue.queue.jobs import JobQueue  # noqa: E402
from ragqueue.retrieval.vector_store import VectorStore  # noqa: E402


class ManualClock:
    """Millisecond clock advanced explicitly by tests."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("RAGQ_DB_PATH", str(tmp_path / "rq.db"))
    monkeypatch.setenv("RAGQ_EMBEDDING_BACKEND", "hashed")
    monkeypatch.delenv("RAGQ_CONFIG", raising=False)

    from ragqueue.api import dependencies as deps

    deps.reset_dependencies()
    yield
    deps.reset_dependencies()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def db(db_path: Path) -> SQLiteDatabase:
    database = SQLiteDatabase(db_path)
    database.ensure_schema()
    yield database
    database.close()


@pytest.fixture
def settings(db_path: Path) -> Settings:
    return Settings(
        db_path=db_path,
        embedding_backend="hashed",
        chunk_size=200,
        chunk_overlap=40,
        chunk_min_size=10,
        poll_interval_seconds=0.01,
        reap_interval_seconds=0,
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def queue(db: SQLiteDatabase, clock: ManualClock) -> JobQueue:
    return JobQueue(db, max_attempts=3, seed=7, clock=clock)


@pytest.fixture
def documents(db: SQLiteDatabase) -> DocumentRepository:
    return DocumentRepository(db)


@pytest.fixture
def provider() -> HashedEmbeddingProvider:
    return HashedEmbeddingProvider(dim=64)


@pytest.fixture
def store(db: SQLiteDatabase, provider: HashedEmbeddingProvider) -> VectorStore:
    return VectorStore(db, model=provider.model_id)


@pytest.fixture(scope="session")
def sample_text() -> str:
    return "Title\n\nParagraph one.\n\nParagraph two is here."
