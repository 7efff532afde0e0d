"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "ragq_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

REQUEST_LATENCY = Histogram(
    "ragq_request_latency_seconds",
    "Latency of HTTP requests",
    labelnames=("endpoint", "method"),
    registry=REGISTRY,
)

JOBS_FINISHED = Counter(
    "ragq_jobs_finished_total",
    "Jobs leaving the processing state",
    labelnames=("job_type", "outcome"),
    registry=REGISTRY,
)

JOB_DURATION = Histogram(
    "ragq_job_duration_seconds",
    "Wall time spent processing a claimed job",
    labelnames=("job_type",),
    registry=REGISTRY,
)

JOBS_REAPED = Counter(
    "ragq_jobs_reaped_total",
    "Stale processing jobs requeued by the reaper",
    registry=REGISTRY,
)

EMBEDDING_LATENCY = Histogram(
    "ragq_embedding_latency_seconds",
    "Latency of embedding backend calls",
    labelnames=("backend",),
    registry=REGISTRY,
)

RETRIEVALS = Counter(
    "ragq_retrievals_total",
    "Context retrievals by outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "ragq_index_chunks",
    "Number of chunk embeddings stored",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "JOBS_FINISHED",
    "JOB_DURATION",
    "JOBS_REAPED",
    "EMBEDDING_LATENCY",
    "RETRIEVALS",
    "INDEX_SIZE",
    "metrics_response",
]
