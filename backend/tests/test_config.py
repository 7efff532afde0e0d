"""Tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from ragqueue.core.config import Settings


def test_yaml_sections_map_to_fields(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("RAGQ_EMBEDDING_BACKEND", raising=False)
    monkeypatch.delenv("RAGQ_DB_PATH", raising=False)
    config = tmp_path / "config.yaml"
    config.write_text(
        "storage:\n"
        f"  db_path: {tmp_path / 'queue.db'}\n"
        "embeddings:\n"
        "  backend: cloud\n"
        "  openai:\n"
        "    model: text-embedding-3-large\n"
        "chunking:\n"
        "  chunk_size: 800\n"
        "  overlap: 100\n"
        "queue:\n"
        "  max_attempts: 5\n"
        "retrieval:\n"
        "  similarity_threshold: 0.4\n"
        "  hybrid: true\n"
        "  keyword_weight: 0.5\n",
        encoding="utf-8",
    )
    settings = Settings.from_yaml(config)
    assert settings.db_path == tmp_path / "queue.db"
    assert settings.embedding_backend == "cloud"
    assert settings.openai_embedding_model == "text-embedding-3-large"
    assert settings.chunk_size == 800
    assert settings.chunk_overlap == 100
    assert settings.job_max_attempts == 5
    assert settings.similarity_threshold == 0.4
    assert settings.hybrid_search is True
    assert settings.keyword_weight == 0.5
    assert settings.top_k == 5


def test_environment_overrides_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("queue:\n  max_attempts: 5\nembeddings:\n  backend: local\n", encoding="utf-8")
    monkeypatch.setenv("RAGQ_CONFIG", str(config))
    monkeypatch.setenv("RAGQ_JOB_MAX_ATTEMPTS", "9")
    settings = Settings.from_yaml()
    assert settings.job_max_attempts == 9
    # RAGQ_EMBEDDING_BACKEND is set by the autouse fixture
    assert settings.embedding_backend == "hashed"


def test_missing_file_uses_defaults(tmp_path: Path) -> None:
    settings = Settings.from_yaml(tmp_path / "absent.yaml")
    assert settings.backoff_base_seconds == 5.0
    assert settings.backoff_cap_seconds == 300.0
    assert settings.stale_after_seconds == 120.0


def test_overlap_must_be_smaller_than_chunk_size(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        Settings(db_path=tmp_path / "x.db", chunk_size=100, chunk_overlap=100)
    with pytest.raises(ValidationError):
        Settings(db_path=tmp_path / "x.db", embedding_backend="remote")
    with pytest.raises(ValidationError):
        Settings(db_path=tmp_path / "x.db", keyword_weight=1.5)
