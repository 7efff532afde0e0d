"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

ENV_PREFIX = "RAGQ_"
DEFAULT_CONFIG_PATH = Path("~/.config/rag-queue/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("storage", "fetch_timeout_seconds"): "fetch_timeout_seconds",
    ("embeddings", "backend"): "embedding_backend",
    ("embeddings", "batch_size"): "embedding_batch_size",
    ("embeddings", "concurrency"): "embedding_concurrency",
    ("embeddings", "timeout_seconds"): "embedding_timeout_seconds",
    ("embeddings", "openai", "api_key"): "openai_api_key",
    ("embeddings", "openai", "base_url"): "openai_base_url",
    ("embeddings", "openai", "model"): "openai_embedding_model",
    ("embeddings", "openai", "max_retries"): "openai_max_retries",
    ("embeddings", "ollama", "base_url"): "ollama_base_url",
    ("embeddings", "ollama", "model"): "ollama_embedding_model",
    ("chunking", "chunk_size"): "chunk_size",
    ("chunking", "overlap"): "chunk_overlap",
    ("chunking", "min_chunk_size"): "chunk_min_size",
    ("chunking", "preserve_paragraphs"): "preserve_paragraphs",
    ("queue", "max_attempts"): "job_max_attempts",
    ("queue", "backoff_base_seconds"): "backoff_base_seconds",
    ("queue", "backoff_cap_seconds"): "backoff_cap_seconds",
    ("queue", "backoff_jitter"): "backoff_jitter",
    ("queue", "stale_after_seconds"): "stale_after_seconds",
    ("queue", "retention_days"): "job_retention_days",
    ("worker", "poll_interval_seconds"): "poll_interval_seconds",
    ("worker", "reap_interval_seconds"): "reap_interval_seconds",
    ("worker", "max_error_backoff_seconds"): "max_error_backoff_seconds",
    ("retrieval", "top_k"): "top_k",
    ("retrieval", "similarity_threshold"): "similarity_threshold",
    ("retrieval", "timeout_seconds"): "retrieve_timeout_seconds",
    ("retrieval", "hybrid"): "hybrid_search",
    ("retrieval", "keyword_weight"): "keyword_weight",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".rag-queue" / "rq.db")
    fetch_timeout_seconds: float = 60.0

    embedding_backend: Literal["cloud", "local", "hashed"] = "local"
    embedding_batch_size: int = Field(default=100, ge=1)
    embedding_concurrency: int = Field(default=4, ge=1)
    embedding_timeout_seconds: float = 30.0
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    openai_embedding_model: str = "text-embedding-3-small"
    openai_max_retries: int = Field(default=2, ge=0)
    ollama_base_url: str = "http://localhost:11434"
    ollama_embedding_model: str = "nomic-embed-text"

    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    chunk_min_size: int = Field(default=100, ge=0)
    preserve_paragraphs: bool = True

    job_max_attempts: int = Field(default=3, ge=1)
    backoff_base_seconds: float = 5.0
    backoff_cap_seconds: float = 300.0
    backoff_jitter: float = Field(default=0.1, ge=0.0, lt=1.0)
    stale_after_seconds: float = 120.0
    job_retention_days: int = 7

    poll_interval_seconds: float = 5.0
    reap_interval_seconds: float = 60.0
    max_error_backoff_seconds: float = 60.0

    top_k: int = Field(default=5, ge=1)
    similarity_threshold: float = 0.25
    retrieve_timeout_seconds: float = 10.0
    hybrid_search: bool = False
    keyword_weight: float = Field(default=0.3, ge=0.0, le=1.0)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("db_path must be a path or string")

    @model_validator(mode="after")
    def _check_chunking(self) -> "Settings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with RAGQ_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
