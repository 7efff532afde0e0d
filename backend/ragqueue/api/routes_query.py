"""Retrieval API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ragqueue.api.dependencies import get_orchestrator
from ragqueue.models.dto import RetrieveRequest, RetrieveResponse
from ragqueue.retrieval import RagOrchestrator

router = APIRouter()


@router.post("/retrieve", response_model=RetrieveResponse, summary="Retrieve context for a chat message")
async def retrieve(
    request: RetrieveRequest,
    orchestrator: RagOrchestrator = Depends(get_orchestrator),
) -> RetrieveResponse:
    try:
        result = orchestrator.retrieve(
            request.query,
            request.collection_id,
            top_k=request.top_k,
            similarity_threshold=request.similarity_threshold,
            hybrid=request.hybrid,
            keyword_weight=request.keyword_weight,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return RetrieveResponse(**result.to_dict())


__all__ = ["router"]
