"""Background worker draining the job queue."""

from __future__ import annotations

import os
import signal
import socket
import threading
import time
from typing import Any, Callable

from ragqueue.core.config import Settings
from ragqueue.core.errors import AlignmentError, DocumentNotFound, LeaseLost, RagQueueError
from ragqueue.core.logging import get_logger, job_context
from ragqueue.core.metrics import JOB_DURATION, JOBS_FINISHED
from ragqueue.ingest.documents import DocumentRepository
from ragqueue.ingest.pipeline import IngestFailure, IngestPipeline
from ragqueue.ingest.types import IngestStage
from ragqueue.models.entities import DocumentStatus, Job, JobStatus, JobType
from ragqueue.queue.jobs import JobQueue, payload_field

logger = get_logger(__name__)


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class Worker:
    """Claim one job at a time and run it to a terminal or retry state.

    Errors raised while processing a job are recorded on the job and never
    leave :meth:`run_once`. Errors talking to the queue itself are loop-level:
    :meth:`run` sleeps ``min(2**n, max_error_backoff)`` seconds after the n-th
    consecutive one.

    The worker heartbeats its job between ingest stages. Once the reaper has
    handed the job to someone else, every later update from this worker is
    rejected with :class:`LeaseLost` and the job is dropped, leaving the
    document to its new holder.
    """

    def __init__(
        self,
        queue: JobQueue,
        documents: DocumentRepository,
        pipeline: IngestPipeline,
        worker_id: str | None = None,
        poll_interval: float = 5.0,
        reap_interval: float = 60.0,
        stale_after: float = 120.0,
        max_error_backoff: float = 60.0,
        stop_event: threading.Event | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.queue = queue
        self.documents = documents
        self.pipeline = pipeline
        self.worker_id = worker_id or default_worker_id()
        self.poll_interval = poll_interval
        self.reap_interval = reap_interval
        self.stale_after = stale_after
        self.max_error_backoff = max_error_backoff
        self._stop = stop_event or threading.Event()
        self._monotonic = monotonic

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        queue: JobQueue,
        documents: DocumentRepository,
        pipeline: IngestPipeline,
        **kwargs: Any,
    ) -> "Worker":
        return cls(
            queue,
            documents,
            pipeline,
            poll_interval=settings.poll_interval_seconds,
            reap_interval=settings.reap_interval_seconds,
            stale_after=settings.stale_after_seconds,
            max_error_backoff=settings.max_error_backoff_seconds,
            **kwargs,
        )

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Stop claiming new jobs; a job already claimed still finishes."""
        self._stop.set()

    def install_signal_handlers(self) -> None:
        def _handler(signum: int, _frame: Any) -> None:
            logger.info("Received %s, stopping worker %s", signal.Signals(signum).name, self.worker_id)
            self.stop()

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)

    def run(self, max_jobs: int | None = None, exit_when_idle: bool = False) -> int:
        """Loop until stopped; returns the number of jobs processed."""
        processed = 0
        consecutive_errors = 0
        next_reap = self._monotonic()
        logger.info("Worker %s started", self.worker_id)
        while not self._stop.is_set():
            try:
                if self.reap_interval > 0 and self._monotonic() >= next_reap:
                    self.queue.reap_stale(self.stale_after)
                    next_reap = self._monotonic() + self.reap_interval
                job = self.run_once()
            except Exception as exc:
                consecutive_errors += 1
                delay = min(2**consecutive_errors, self.max_error_backoff)
                logger.error(
                    "Worker loop error (%s consecutive), sleeping %ss: %s",
                    consecutive_errors,
                    delay,
                    exc,
                    exc_info=not isinstance(exc, RagQueueError),
                )
                self._stop.wait(delay)
                continue
            consecutive_errors = 0
            if job is None:
                if exit_when_idle:
                    break
                self._stop.wait(self.poll_interval)
                continue
            processed += 1
            if max_jobs is not None and processed >= max_jobs:
                break
        logger.info("Worker %s stopped after %s jobs", self.worker_id, processed)
        return processed

    def run_once(self) -> Job | None:
        """Claim and process at most one job; returns it in its final state.

        A job this worker lost to the reaper is returned as the queue now
        holds it, without touching its document.
        """
        job = self.queue.claim_next(self.worker_id)
        if job is None:
            return None
        logger.info(
            "Processing %s job",
            job.job_type.value,
            extra=job_context(job.id, IngestStage.CLAIMED.value, job.payload.get("document_id")),
        )
        started = time.perf_counter()
        try:
            try:
                if job.job_type is JobType.INGEST_FILE:
                    result = self._ingest_file(job)
                elif job.job_type is JobType.INGEST_MODEL_FILES:
                    result = self._ingest_model_files(job)
                else:  # pragma: no cover - JobType is closed
                    raise RagQueueError(f"Unknown job type: {job.job_type}", retryable=False)
            except Exception as exc:
                finished = self._fail(job, exc)
            else:
                finished = self._complete(job, result)
        except LeaseLost as exc:
            finished = self._abandon(job, exc)
        JOB_DURATION.labels(job_type=job.job_type.value).observe(time.perf_counter() - started)
        return finished

    def _ingest_file(self, job: Job) -> dict[str, Any]:
        document_id = payload_field(job, "document_id")
        if not document_id:
            raise DocumentNotFound("Job payload has no document_id")
        document = self.documents.get(document_id)
        if not document.file_url:
            document.file_url = payload_field(job, "file_url")
        self.documents.set_status(document.id, DocumentStatus.PROCESSING)
        outcome = self.pipeline.run(
            document,
            job_id=job.id,
            on_progress=lambda _stage: self.queue.heartbeat(job.id, self.worker_id),
        )
        return outcome.to_dict()

    def _ingest_model_files(self, job: Job) -> dict[str, Any]:
        collection_id = payload_field(job, "collection_id")
        if not collection_id:
            raise RagQueueError("Job payload has no collection_id", retryable=False)
        active = self.queue.active_document_ids(collection_id)
        job_ids: list[str] = []
        skipped = 0
        for document in self.documents.list_by_collection(collection_id, DocumentStatus.UPLOADED):
            if document.id in active or not document.file_url:
                skipped += 1
                continue
            job_ids.append(
                self.queue.enqueue_ingest_file(
                    document_id=document.id,
                    collection_id=document.collection_id,
                    file_url=document.file_url,
                    file_name=document.name,
                    file_type=document.content_type,
                    owner_id=document.owner_id or job.owner_id,
                )
            )
        logger.info(
            "Enqueued %s ingest jobs for collection %s (%s skipped)",
            len(job_ids),
            collection_id,
            skipped,
            extra=job_context(job.id),
        )
        return {"collection_id": collection_id, "enqueued": len(job_ids), "skipped": skipped, "job_ids": job_ids}

    def _complete(self, job: Job, result: dict[str, Any]) -> Job:
        finished = self.queue.complete(job.id, result, worker_id=self.worker_id)
        JOBS_FINISHED.labels(job_type=job.job_type.value, outcome="completed").inc()
        document_id = job.payload.get("document_id")
        if job.job_type is JobType.INGEST_FILE and document_id:
            self._settle_document(document_id, finished, None)
        return finished

    def _fail(self, job: Job, exc: Exception) -> Job:
        stage = exc.stage.value if isinstance(exc, IngestFailure) else None
        cause = exc.error if isinstance(exc, IngestFailure) else exc
        if isinstance(cause, LeaseLost):
            raise cause
        retryable = exc.retryable if isinstance(exc, RagQueueError) else True
        document_id = job.payload.get("document_id")
        log_extra = job_context(job.id, stage, document_id)
        if isinstance(cause, AlignmentError):
            logger.error("Alignment defect while processing job: %s", cause, exc_info=cause, extra=log_extra)
        elif isinstance(cause, RagQueueError):
            logger.warning("Job failed (%s): %s", cause.code, cause, extra=log_extra)
        else:
            logger.error("Job failed with unexpected error: %s", cause, exc_info=cause, extra=log_extra)

        message = f"{stage}: {exc}" if stage else str(exc) or type(exc).__name__
        failed = self.queue.fail(job.id, message, retry=retryable, worker_id=self.worker_id)
        outcome = "failed" if failed.status is JobStatus.FAILED else "retried"
        JOBS_FINISHED.labels(job_type=job.job_type.value, outcome=outcome).inc()

        if job.job_type is JobType.INGEST_FILE and document_id:
            self._settle_document(document_id, failed, str(exc))
        return failed

    def _abandon(self, job: Job, exc: LeaseLost) -> Job:
        logger.warning(
            "Abandoning job no longer held by %s: %s",
            self.worker_id,
            exc,
            extra=job_context(job.id, document_id=job.payload.get("document_id")),
        )
        JOBS_FINISHED.labels(job_type=job.job_type.value, outcome="abandoned").inc()
        return self.queue.find(job.id) or job

    def _settle_document(self, document_id: str, job: Job, error: str | None) -> None:
        if job.status is JobStatus.COMPLETED:
            status, detail = DocumentStatus.PROCESSED, None
        elif job.status is JobStatus.FAILED:
            status, detail = DocumentStatus.FAILED, error
        else:
            status, detail = DocumentStatus.UPLOADED, None
        try:
            self.documents.set_status(document_id, status, detail)
        except DocumentNotFound:
            logger.warning("Document %s vanished before its status could be recorded", document_id)


__all__ = ["Worker", "default_worker_id"]
