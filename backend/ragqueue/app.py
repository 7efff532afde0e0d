"""FastAPI application setup for RAG Queue."""

from __future__ import annotations

import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from ragqueue.api.dependencies import (
    get_app_settings,
    get_database,
    get_embedding_provider,
    get_job_queue,
    get_orchestrator,
    get_vector_store,
)
from ragqueue.api.routes_admin import router as admin_router
from ragqueue.api.routes_jobs import router as jobs_router
from ragqueue.api.routes_query import router as query_router
from ragqueue.core.logging import configure_logging
from ragqueue.core.metrics import REQUEST_COUNT, REQUEST_LATENCY

configure_logging()

app = FastAPI(
    title="RAG Queue",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:3000",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(jobs_router, prefix="", tags=["jobs"])
app.include_router(query_router, prefix="", tags=["retrieval"])
app.include_router(admin_router, prefix="", tags=["admin"])


@app.middleware("http")
async def record_request_metrics(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", "unmatched")
    REQUEST_LATENCY.labels(endpoint=endpoint, method=request.method).observe(time.perf_counter() - started)
    REQUEST_COUNT.labels(endpoint=endpoint, method=request.method, status=str(response.status_code)).inc()
    return response


@app.on_event("startup")
async def startup() -> None:
    """Warm up core singletons on startup."""
    get_app_settings()
    get_database()
    get_embedding_provider()
    get_vector_store()
    get_job_queue()
    get_orchestrator()


@app.get("/health", tags=["admin"])
def health() -> dict[str, object]:
    """Liveness check including the embedding backend."""
    provider = get_embedding_provider()
    return {
        "ok": True,
        "embedding_backend": provider.name,
        "embedding_model": provider.model_id,
        "embedding_available": provider.is_available(),
    }
