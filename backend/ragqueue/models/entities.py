"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import orjson


class JobType(str, Enum):
    INGEST_FILE = "ingest-file"
    INGEST_MODEL_FILES = "ingest-model-files"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class DocumentStatus(str, Enum):
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


@dataclass(slots=True)
class Job:
    id: str
    job_type: JobType
    status: JobStatus
    priority: int
    payload: dict[str, Any]
    attempts: int
    max_attempts: int
    created_at: int
    updated_at: int
    result: dict[str, Any] | None = None
    error: str | None = None
    owner_id: str | None = None
    locked_by: str | None = None
    started_at: int | None = None
    completed_at: int | None = None
    failed_at: int | None = None
    next_retry_at: int | None = None
    heartbeat_at: int | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Job":
        return cls(
            id=row["id"],
            job_type=JobType(row["job_type"]),
            status=JobStatus(row["status"]),
            priority=row["priority"],
            payload=orjson.loads(row["payload_json"]) if row["payload_json"] else {},
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            result=orjson.loads(row["result_json"]) if row["result_json"] else None,
            error=row["error"],
            owner_id=row["owner_id"],
            locked_by=row["locked_by"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            failed_at=row["failed_at"],
            next_retry_at=row["next_retry_at"],
            heartbeat_at=row["heartbeat_at"],
        )


@dataclass(slots=True)
class JobStats:
    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "pending": self.pending,
            "processing": self.processing,
            "completed": self.completed,
            "failed": self.failed,
            "cancelled": self.cancelled,
        }


@dataclass(slots=True)
class SourceDocument:
    id: str
    collection_id: str
    name: str
    status: DocumentStatus
    created_at: int
    updated_at: int
    owner_id: str | None = None
    content_type: str | None = None
    file_url: str | None = None
    error: str | None = None
    size_bytes: int | None = None
    processed_at: int | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SourceDocument":
        return cls(
            id=row["id"],
            collection_id=row["collection_id"],
            name=row["name"],
            status=DocumentStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            owner_id=row["owner_id"],
            content_type=row["content_type"],
            file_url=row["file_url"],
            error=row["error"],
            size_bytes=row["size_bytes"],
            processed_at=row["processed_at"],
        )


@dataclass(slots=True)
class StoredEmbedding:
    id: str
    collection_id: str
    source_document_id: str
    chunk_text: str
    chunk_index: int
    start_char: int
    end_char: int
    vector: list[float]
    model: str
    created_at: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SimilarityMatch:
    id: str
    source_document_id: str
    chunk_text: str
    chunk_index: int
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)
    hybrid_score: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_document_id": self.source_document_id,
            "chunk_text": self.chunk_text,
            "chunk_index": self.chunk_index,
            "similarity": self.similarity,
            "metadata": self.metadata,
            "hybrid_score": self.hybrid_score,
        }


@dataclass(slots=True)
class CollectionStats:
    total_chunks: int
    total_documents: int
    avg_chunks_per_document: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_chunks": self.total_chunks,
            "total_documents": self.total_documents,
            "avg_chunks_per_document": self.avg_chunks_per_document,
        }
