"""Job queue API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ragqueue.api.dependencies import get_document_repository, get_job_queue
from ragqueue.api.errors import http_error
from ragqueue.core.errors import RagQueueError
from ragqueue.ingest.documents import DocumentRepository
from ragqueue.models.dto import (
    EnqueueResponse,
    IngestCollectionRequest,
    IngestFileRequest,
    JobResponse,
    QueueStatsResponse,
)
from ragqueue.queue.jobs import JobQueue

router = APIRouter()


@router.post("/jobs/ingest", response_model=EnqueueResponse, status_code=202, summary="Enqueue a document for ingestion")
async def enqueue_ingest(
    request: IngestFileRequest,
    queue: JobQueue = Depends(get_job_queue),
    documents: DocumentRepository = Depends(get_document_repository),
) -> EnqueueResponse:
    try:
        documents.upsert(
            document_id=request.document_id,
            collection_id=request.collection_id,
            name=request.file_name,
            content_type=request.file_type,
            file_url=request.file_url,
            owner_id=request.owner_id,
            size_bytes=request.size_bytes,
        )
        job_id = queue.enqueue_ingest_file(
            document_id=request.document_id,
            collection_id=request.collection_id,
            file_url=request.file_url,
            file_name=request.file_name,
            file_type=request.file_type,
            owner_id=request.owner_id,
        )
    except RagQueueError as exc:
        raise http_error(exc) from exc
    return EnqueueResponse(job_id=job_id)


@router.post(
    "/jobs/ingest-collection",
    response_model=EnqueueResponse,
    status_code=202,
    summary="Enqueue ingestion of every uploaded document of a collection",
)
async def enqueue_collection(
    request: IngestCollectionRequest,
    queue: JobQueue = Depends(get_job_queue),
) -> EnqueueResponse:
    try:
        job_id = queue.enqueue_ingest_model_files(request.collection_id, owner_id=request.owner_id)
    except RagQueueError as exc:
        raise http_error(exc) from exc
    return EnqueueResponse(job_id=job_id)


@router.get("/jobs", response_model=list[JobResponse], summary="List recent jobs of an owner")
async def list_jobs(
    owner_id: str = Query(..., min_length=1),
    limit: int = Query(default=10, ge=1, le=100),
    queue: JobQueue = Depends(get_job_queue),
) -> list[JobResponse]:
    try:
        jobs = queue.list_by_owner(owner_id, limit=limit)
    except RagQueueError as exc:
        raise http_error(exc) from exc
    return [JobResponse.from_job(job) for job in jobs]


@router.get("/jobs/{job_id}", response_model=JobResponse, summary="Fetch one job")
async def get_job(job_id: str, queue: JobQueue = Depends(get_job_queue)) -> JobResponse:
    try:
        job = queue.get(job_id)
    except RagQueueError as exc:
        raise http_error(exc) from exc
    return JobResponse.from_job(job)


@router.post("/jobs/{job_id}/cancel", response_model=JobResponse, summary="Cancel a pending job")
async def cancel_job(job_id: str, queue: JobQueue = Depends(get_job_queue)) -> JobResponse:
    try:
        job = queue.cancel(job_id)
    except RagQueueError as exc:
        raise http_error(exc) from exc
    return JobResponse.from_job(job)


@router.get("/queue/stats", response_model=QueueStatsResponse, summary="Job counts per status")
async def queue_stats(queue: JobQueue = Depends(get_job_queue)) -> QueueStatsResponse:
    try:
        stats = queue.stats()
    except RagQueueError as exc:
        raise http_error(exc) from exc
    return QueueStatsResponse(**stats.to_dict())


__all__ = ["router"]
