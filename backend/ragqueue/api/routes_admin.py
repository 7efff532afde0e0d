"""Administrative routes for documents, collections and metrics."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ragqueue.api.dependencies import get_document_repository, get_orchestrator, get_vector_store
from ragqueue.api.errors import http_error
from ragqueue.core.errors import RagQueueError
from ragqueue.core.metrics import metrics_response
from ragqueue.ingest.documents import DocumentRepository
from ragqueue.models.dto import CollectionStatsResponse, CollectionStatusResponse, DeleteResponse, DocumentResponse
from ragqueue.retrieval import RagOrchestrator, VectorStore

router = APIRouter()


@router.get("/documents/{document_id}", response_model=DocumentResponse, summary="Document processing status")
async def get_document(
    document_id: str,
    documents: DocumentRepository = Depends(get_document_repository),
) -> DocumentResponse:
    try:
        document = documents.get(document_id)
    except RagQueueError as exc:
        raise http_error(exc) from exc
    return DocumentResponse.from_document(document)


@router.delete(
    "/documents/{document_id}/embeddings",
    response_model=DeleteResponse,
    summary="Delete the stored embeddings of one document",
)
async def delete_document_embeddings(
    document_id: str,
    store: VectorStore = Depends(get_vector_store),
) -> DeleteResponse:
    try:
        deleted = store.delete_by_document(document_id)
    except RagQueueError as exc:
        raise http_error(exc) from exc
    return DeleteResponse(status="ok" if deleted else "noop", deleted=deleted)


@router.delete(
    "/collections/{collection_id}/embeddings",
    response_model=DeleteResponse,
    summary="Delete every stored embedding of a collection",
)
async def delete_collection_embeddings(
    collection_id: str,
    store: VectorStore = Depends(get_vector_store),
) -> DeleteResponse:
    try:
        deleted = store.delete_by_collection(collection_id)
    except RagQueueError as exc:
        raise http_error(exc) from exc
    return DeleteResponse(status="ok" if deleted else "noop", deleted=deleted)


@router.get("/collections/{collection_id}/stats", response_model=CollectionStatsResponse, summary="Collection index size")
async def collection_stats(
    collection_id: str,
    store: VectorStore = Depends(get_vector_store),
) -> CollectionStatsResponse:
    try:
        stats = store.stats(collection_id)
    except RagQueueError as exc:
        raise http_error(exc) from exc
    return CollectionStatsResponse(collection_id=collection_id, **stats.to_dict())


@router.get(
    "/collections/{collection_id}/status",
    response_model=CollectionStatusResponse,
    summary="Whether a collection is ready for retrieval",
)
async def collection_status(
    collection_id: str,
    orchestrator: RagOrchestrator = Depends(get_orchestrator),
) -> CollectionStatusResponse:
    status = orchestrator.collection_status(collection_id)
    stats = (
        CollectionStatsResponse(collection_id=collection_id, **status.stats.to_dict()) if status.stats else None
    )
    return CollectionStatusResponse(collection_id=collection_id, ready=status.ready, stats=stats, issues=status.issues)


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


__all__ = ["router"]
