"""Translate core errors into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException

from ragqueue.core.errors import (
    DocumentNotFound,
    JobNotFound,
    JobStateError,
    QueueUnavailable,
    RagQueueError,
    StoreUnavailable,
)

_STATUS_BY_ERROR: tuple[tuple[type[RagQueueError], int], ...] = (
    (JobNotFound, 404),
    (DocumentNotFound, 404),
    (JobStateError, 409),
    (QueueUnavailable, 503),
    (StoreUnavailable, 503),
)


def http_error(exc: RagQueueError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail={"code": exc.code, "message": exc.message})
    return HTTPException(status_code=500, detail={"code": exc.code, "message": exc.message})


__all__ = ["http_error"]
