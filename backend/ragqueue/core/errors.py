"""Exception hierarchy for RAG Queue.

Every error raised by the ingestion and retrieval core derives from
:class:`RagQueueError`. Each class declares whether a job failing with it may
be retried; the worker loop reads :attr:`RagQueueError.retryable` when it
records the failure on the job.

    RagQueueError
    +-- UnsupportedType              (not retryable)
    +-- ExtractionFailed
    +-- NoChunksGenerated
    +-- DocumentFetchError
    +-- EmbeddingBackendUnavailable
    +-- EmbeddingBackendMisconfigured (not retryable)
    |   +-- EmbeddingModelNotInstalled
    +-- EmbeddingBackendMismatch     (not retryable)
    +-- AlignmentError               (not retryable, internal defect)
    +-- QueueUnavailable
    +-- StoreUnavailable
    +-- JobStateError                (not retryable)
    |   +-- LeaseLost
    +-- JobNotFound                  (not retryable)
    +-- DocumentNotFound             (not retryable)
"""

from __future__ import annotations


class RagQueueError(Exception):
    """Base exception carrying a message and a retry hint."""

    code = "error"
    retryable = True

    def __init__(self, message: str = "Unexpected error", retryable: bool | None = None) -> None:
        self._message = message
        if retryable is not None:
            self.retryable = retryable
        super().__init__(message)

    @property
    def message(self) -> str:
        return self._message

    def __str__(self) -> str:
        return self._message


class UnsupportedType(RagQueueError):
    """The document type cannot be extracted."""

    code = "unsupported_type"
    retryable = False


class ExtractionFailed(RagQueueError):
    """Decoding or parsing the document bytes raised."""

    code = "extraction_failed"


class NoChunksGenerated(RagQueueError):
    code = "no_chunks_generated"

    def __init__(self, message: str = "no chunks generated", retryable: bool | None = None) -> None:
        super().__init__(message, retryable)


class DocumentFetchError(RagQueueError):
    """Reading the document bytes from file storage failed."""

    code = "fetch_failed"


class EmbeddingBackendUnavailable(RagQueueError):
    """The embedding service could not be reached or timed out."""

    code = "embedding_unavailable"


class EmbeddingBackendMisconfigured(RagQueueError):
    """Credentials or model configuration are missing or rejected."""

    code = "embedding_misconfigured"
    retryable = False


class EmbeddingModelNotInstalled(EmbeddingBackendMisconfigured):
    """The local embedding service is up but does not have the model."""

    code = "embedding_model_missing"


class EmbeddingBackendMismatch(RagQueueError):
    """A collection already holds vectors produced by a different model."""

    code = "embedding_mismatch"
    retryable = False


class AlignmentError(RagQueueError):
    """Chunk and vector counts differ; indicates a programming error."""

    code = "alignment_error"
    retryable = False


class QueueUnavailable(RagQueueError):
    code = "queue_unavailable"


class StoreUnavailable(RagQueueError):
    code = "store_unavailable"


class JobStateError(RagQueueError):
    """Requested transition is not legal from the job's current status."""

    code = "job_state"
    retryable = False


class LeaseLost(JobStateError):
    """The worker no longer holds the job it is trying to update."""

    code = "lease_lost"


class JobNotFound(RagQueueError):
    code = "job_not_found"
    retryable = False


class DocumentNotFound(RagQueueError):
    code = "document_not_found"
    retryable = False


__all__ = [
    "RagQueueError",
    "UnsupportedType",
    "ExtractionFailed",
    "NoChunksGenerated",
    "DocumentFetchError",
    "EmbeddingBackendUnavailable",
    "EmbeddingBackendMisconfigured",
    "EmbeddingModelNotInstalled",
    "EmbeddingBackendMismatch",
    "AlignmentError",
    "QueueUnavailable",
    "StoreUnavailable",
    "JobStateError",
    "LeaseLost",
    "JobNotFound",
    "DocumentNotFound",
]
