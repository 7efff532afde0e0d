"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from ragqueue.models.entities import Job, SourceDocument


class IngestFileRequest(BaseModel):
    document_id: str
    collection_id: str
    file_url: str
    file_name: str
    file_type: str | None = Field(default=None, description="Declared content type")
    owner_id: str | None = None
    size_bytes: int | None = Field(default=None, ge=0)


class IngestCollectionRequest(BaseModel):
    collection_id: str
    owner_id: str | None = None


class EnqueueResponse(BaseModel):
    job_id: str


class JobResponse(BaseModel):
    id: str
    job_type: str
    status: Literal["pending", "processing", "completed", "failed", "cancelled"]
    priority: int
    payload: dict[str, Any]
    result: dict[str, Any] | None = None
    error: str | None = None
    attempts: int
    max_attempts: int
    owner_id: str | None = None
    locked_by: str | None = None
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    next_retry_at: datetime | None = None
    heartbeat_at: datetime | None = None

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls(
            id=job.id,
            job_type=job.job_type.value,
            status=job.status.value,
            priority=job.priority,
            payload=job.payload,
            result=job.result,
            error=job.error,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            owner_id=job.owner_id,
            locked_by=job.locked_by,
            created_at=ms_to_datetime(job.created_at),
            updated_at=ms_to_datetime(job.updated_at),
            started_at=ms_to_datetime(job.started_at),
            completed_at=ms_to_datetime(job.completed_at),
            failed_at=ms_to_datetime(job.failed_at),
            next_retry_at=ms_to_datetime(job.next_retry_at),
            heartbeat_at=ms_to_datetime(job.heartbeat_at),
        )


class QueueStatsResponse(BaseModel):
    total: int
    pending: int
    processing: int
    completed: int
    failed: int
    cancelled: int


class DocumentResponse(BaseModel):
    id: str
    collection_id: str
    name: str
    status: Literal["uploaded", "processing", "processed", "failed"]
    owner_id: str | None = None
    content_type: str | None = None
    file_url: str | None = None
    error: str | None = None
    size_bytes: int | None = None
    created_at: datetime
    updated_at: datetime
    processed_at: datetime | None = None

    @classmethod
    def from_document(cls, document: SourceDocument) -> "DocumentResponse":
        return cls(
            id=document.id,
            collection_id=document.collection_id,
            name=document.name,
            status=document.status.value,
            owner_id=document.owner_id,
            content_type=document.content_type,
            file_url=document.file_url,
            error=document.error,
            size_bytes=document.size_bytes,
            created_at=ms_to_datetime(document.created_at),
            updated_at=ms_to_datetime(document.updated_at),
            processed_at=ms_to_datetime(document.processed_at),
        )


class RetrieveRequest(BaseModel):
    query: str = Field(min_length=1)
    collection_id: str = Field(min_length=1)
    top_k: int | None = Field(default=None, ge=1, le=50)
    similarity_threshold: float | None = Field(default=None, ge=-1.0, le=1.0)
    hybrid: bool | None = Field(default=None, description="Blend BM25 keyword ranking into the results")
    keyword_weight: float | None = Field(default=None, ge=0.0, le=1.0)


class MatchResult(BaseModel):
    id: str
    source_document_id: str
    chunk_text: str
    chunk_index: int
    similarity: float
    metadata: dict[str, Any]
    hybrid_score: float | None = None


class RetrieveResponse(BaseModel):
    context_text: str
    matches: list[MatchResult]


class CollectionStatsResponse(BaseModel):
    collection_id: str
    total_chunks: int
    total_documents: int
    avg_chunks_per_document: float


class CollectionStatusResponse(BaseModel):
    collection_id: str
    ready: bool
    stats: CollectionStatsResponse | None = None
    issues: list[str]


class DeleteResponse(BaseModel):
    status: Literal["ok", "noop"]
    deleted: int


def ms_to_datetime(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


__all__ = [
    "IngestFileRequest",
    "IngestCollectionRequest",
    "EnqueueResponse",
    "JobResponse",
    "QueueStatsResponse",
    "DocumentResponse",
    "RetrieveRequest",
    "RetrieveResponse",
    "MatchResult",
    "CollectionStatsResponse",
    "CollectionStatusResponse",
    "DeleteResponse",
]
