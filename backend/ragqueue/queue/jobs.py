"""Durable priority job queue stored in SQLite.

Every state transition is a conditional ``UPDATE`` executed inside a
``BEGIN IMMEDIATE`` transaction, so the database write lock is the only
serialisation point between concurrent workers (threads or processes).
"""

from __future__ import annotations

import random
import sqlite3
import threading
from typing import Any, Callable

import orjson

from ragqueue.core.config import Settings
from ragqueue.core.errors import JobNotFound, JobStateError, LeaseLost, QueueUnavailable
from ragqueue.core.logging import get_logger
from ragqueue.core.metrics import JOBS_REAPED
from ragqueue.db.sqlite import SQLiteDatabase
from ragqueue.models.entities import Job, JobStats, JobStatus, JobType
from ragqueue.utils.ids import new_id
from ragqueue.utils.time import now_ms

logger = get_logger(__name__)

INGEST_FILE_PRIORITY = 10
INGEST_MODEL_FILES_PRIORITY = 5

_CLAIM_SQL = """
UPDATE jobs
SET status = 'processing', started_at = :now, heartbeat_at = :now, updated_at = :now, locked_by = :worker
WHERE id = (
  SELECT id FROM jobs
  WHERE status = 'pending' AND (next_retry_at IS NULL OR next_retry_at <= :now)
  ORDER BY priority DESC, created_at ASC, rowid ASC
  LIMIT 1
)
AND status = 'pending'
RETURNING *
"""


class JobQueue:
    """Enqueue, claim and settle background jobs."""

    def __init__(
        self,
        database: SQLiteDatabase,
        max_attempts: int = 3,
        backoff_base_seconds: float = 5.0,
        backoff_cap_seconds: float = 300.0,
        backoff_jitter: float = 0.1,
        retention_days: int = 7,
        seed: int | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.db = database
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_cap_seconds = backoff_cap_seconds
        self.backoff_jitter = backoff_jitter
        self.retention_days = retention_days
        self._clock = clock
        self._rng = random.Random(seed)
        self._rng_lock = threading.Lock()

    @classmethod
    def from_settings(cls, database: SQLiteDatabase, settings: Settings, **kwargs: Any) -> "JobQueue":
        return cls(
            database,
            max_attempts=settings.job_max_attempts,
            backoff_base_seconds=settings.backoff_base_seconds,
            backoff_cap_seconds=settings.backoff_cap_seconds,
            backoff_jitter=settings.backoff_jitter,
            retention_days=settings.job_retention_days,
            **kwargs,
        )

    # Producers --------------------------------------------------------

    def enqueue(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        priority: int = 0,
        owner_id: str | None = None,
        max_attempts: int | None = None,
    ) -> str:
        job_id = new_id("job")
        now = self._clock()
        try:
            with self.db.transaction() as cursor:
                cursor.execute(
                    """
                    INSERT INTO jobs (
                      id, job_type, status, priority, payload_json, attempts, max_attempts,
                      owner_id, created_at, updated_at
                    ) VALUES (?, ?, 'pending', ?, ?, 0, ?, ?, ?, ?)
                    """,
                    [
                        job_id,
                        JobType(job_type).value,
                        priority,
                        orjson.dumps(payload).decode("utf-8"),
                        max_attempts or self.max_attempts,
                        owner_id,
                        now,
                        now,
                    ],
                )
        except sqlite3.Error as exc:
            raise QueueUnavailable(f"Failed to enqueue {job_type} job: {exc}") from exc
        logger.info("Enqueued %s job %s (priority %s)", JobType(job_type).value, job_id, priority)
        return job_id

    def enqueue_ingest_file(
        self,
        document_id: str,
        collection_id: str,
        file_url: str,
        file_name: str,
        file_type: str | None = None,
        owner_id: str | None = None,
    ) -> str:
        payload = {
            "document_id": document_id,
            "collection_id": collection_id,
            "file_url": file_url,
            "file_name": file_name,
            "file_type": file_type,
            "owner_id": owner_id,
        }
        return self.enqueue(JobType.INGEST_FILE, payload, priority=INGEST_FILE_PRIORITY, owner_id=owner_id)

    def enqueue_ingest_model_files(self, collection_id: str, owner_id: str | None = None) -> str:
        payload = {"collection_id": collection_id, "owner_id": owner_id}
        return self.enqueue(
            JobType.INGEST_MODEL_FILES, payload, priority=INGEST_MODEL_FILES_PRIORITY, owner_id=owner_id
        )

    # Consumers --------------------------------------------------------

    def claim_next(self, worker_id: str | None = None) -> Job | None:
        """Move the best eligible pending job to ``processing`` and return it.

        Returns ``None`` when nothing is eligible. Two callers can never
        receive the same job.
        """
        now = self._clock()
        try:
            with self.db.transaction(immediate=True) as cursor:
                rows = cursor.execute(_CLAIM_SQL, {"now": now, "worker": worker_id}).fetchall()
        except sqlite3.Error as exc:
            raise QueueUnavailable(f"Failed to claim job: {exc}") from exc
        if not rows:
            return None
        job = Job.from_row(rows[0])
        logger.info("Worker %s claimed job %s (%s)", worker_id, job.id, job.job_type.value)
        return job

    def complete(self, job_id: str, result: dict[str, Any] | None = None, worker_id: str | None = None) -> Job:
        """Mark a processing job completed.

        With ``worker_id`` the update only applies while that worker still
        holds the job; otherwise :class:`LeaseLost` is raised.
        """
        now = self._clock()
        try:
            with self.db.transaction(immediate=True) as cursor:
                rows = cursor.execute(
                    """
                    UPDATE jobs
                    SET status = 'completed', result_json = ?, error = NULL,
                        completed_at = ?, updated_at = ?, locked_by = NULL
                    WHERE id = ? AND status = 'processing' AND (? IS NULL OR locked_by = ?)
                    RETURNING *
                    """,
                    [
                        orjson.dumps(result).decode("utf-8") if result is not None else None,
                        now,
                        now,
                        job_id,
                        worker_id,
                        worker_id,
                    ],
                ).fetchall()
                if not rows:
                    self._raise_for_state(cursor, job_id, "complete", worker_id)
        except sqlite3.Error as exc:
            raise QueueUnavailable(f"Failed to complete job {job_id}: {exc}") from exc
        logger.info("Completed job %s", job_id)
        return Job.from_row(rows[0])

    def fail(self, job_id: str, error: str, retry: bool = True, worker_id: str | None = None) -> Job:
        """Record a failed attempt.

        The attempt always counts. The job goes back to ``pending`` behind a
        backoff delay while ``retry`` holds and attempts remain; otherwise it
        becomes ``failed``. ``worker_id`` is checked like in :meth:`complete`.
        """
        try:
            with self.db.transaction(immediate=True) as cursor:
                row = cursor.execute("SELECT * FROM jobs WHERE id = ?", [job_id]).fetchone()
                if row is None:
                    raise JobNotFound(f"Job {job_id} not found")
                if worker_id is not None and (
                    row["status"] != JobStatus.PROCESSING.value or row["locked_by"] != worker_id
                ):
                    raise LeaseLost(f"Job {job_id} is no longer held by {worker_id}")
                if row["status"] != JobStatus.PROCESSING.value:
                    raise JobStateError(f"Cannot fail job {job_id} in status {row['status']}")
                updated = self._record_failure(cursor, row, error, retry, self._clock())
        except sqlite3.Error as exc:
            raise QueueUnavailable(f"Failed to record failure of job {job_id}: {exc}") from exc
        return updated

    def heartbeat(self, job_id: str, worker_id: str) -> None:
        """Record progress on a held job so the reaper leaves it alone.

        Raises :class:`LeaseLost` when the job was reaped or reassigned.
        """
        now = self._clock()
        try:
            with self.db.transaction() as cursor:
                cursor.execute(
                    """
                    UPDATE jobs SET heartbeat_at = ?, updated_at = ?
                    WHERE id = ? AND status = 'processing' AND locked_by = ?
                    """,
                    [now, now, job_id, worker_id],
                )
                updated = cursor.rowcount
        except sqlite3.Error as exc:
            raise QueueUnavailable(f"Failed to record heartbeat of job {job_id}: {exc}") from exc
        if not updated:
            raise LeaseLost(f"Job {job_id} is no longer held by {worker_id}")

    def cancel(self, job_id: str) -> Job:
        now = self._clock()
        try:
            with self.db.transaction(immediate=True) as cursor:
                rows = cursor.execute(
                    """
                    UPDATE jobs SET status = 'cancelled', updated_at = ?
                    WHERE id = ? AND status = 'pending'
                    RETURNING *
                    """,
                    [now, job_id],
                ).fetchall()
                if not rows:
                    self._raise_for_state(cursor, job_id, "cancel")
        except sqlite3.Error as exc:
            raise QueueUnavailable(f"Failed to cancel job {job_id}: {exc}") from exc
        logger.info("Cancelled job %s", job_id)
        return Job.from_row(rows[0])

    def reap_stale(self, stale_after_seconds: float) -> list[str]:
        """Treat ``processing`` jobs without a recent heartbeat as a retryable failure.

        Returns the ids of the reaped jobs.
        """
        now = self._clock()
        cutoff = now - int(stale_after_seconds * 1000)
        reaped: list[str] = []
        try:
            with self.db.transaction(immediate=True) as cursor:
                rows = cursor.execute(
                    "SELECT * FROM jobs WHERE status = 'processing' AND COALESCE(heartbeat_at, started_at) < ?",
                    [cutoff],
                ).fetchall()
                for row in rows:
                    message = f"Abandoned by worker {row['locked_by'] or 'unknown'} (no progress for {stale_after_seconds:g}s)"
                    self._record_failure(cursor, row, message, True, now)
                    reaped.append(row["id"])
        except sqlite3.Error as exc:
            raise QueueUnavailable(f"Failed to reap stale jobs: {exc}") from exc
        if reaped:
            JOBS_REAPED.inc(len(reaped))
            logger.warning("Reaped %s stale jobs: %s", len(reaped), ", ".join(reaped))
        return reaped

    # Readers ----------------------------------------------------------

    def find(self, job_id: str) -> Job | None:
        try:
            row = self.db.execute("SELECT * FROM jobs WHERE id = ?", [job_id]).fetchone()
        except sqlite3.Error as exc:
            raise QueueUnavailable(f"Failed to read job {job_id}: {exc}") from exc
        return Job.from_row(row) if row else None

    def get(self, job_id: str) -> Job:
        job = self.find(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        return job

    def list_by_owner(self, owner_id: str, limit: int = 10) -> list[Job]:
        try:
            rows = self.db.query(
                "SELECT * FROM jobs WHERE owner_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
                [owner_id, limit],
            )
        except sqlite3.Error as exc:
            raise QueueUnavailable(f"Failed to list jobs of {owner_id}: {exc}") from exc
        return [Job.from_row(row) for row in rows]

    def active_document_ids(self, collection_id: str) -> set[str]:
        """Documents of a collection with an ingest job still pending or processing."""
        try:
            rows = self.db.query(
                """
                SELECT DISTINCT json_extract(payload_json, '$.document_id') AS document_id
                FROM jobs
                WHERE job_type = ? AND status IN ('pending', 'processing')
                  AND json_extract(payload_json, '$.collection_id') = ?
                """,
                [JobType.INGEST_FILE.value, collection_id],
            )
        except sqlite3.Error as exc:
            raise QueueUnavailable(f"Failed to read active jobs of {collection_id}: {exc}") from exc
        return {row["document_id"] for row in rows if row["document_id"]}

    def stats(self) -> JobStats:
        try:
            rows = self.db.query("SELECT status, COUNT(*) AS count FROM jobs GROUP BY status")
        except sqlite3.Error as exc:
            raise QueueUnavailable(f"Failed to read queue stats: {exc}") from exc
        stats = JobStats()
        for row in rows:
            setattr(stats, row["status"], int(row["count"]))
            stats.total += int(row["count"])
        return stats

    def cleanup(self, older_than_seconds: float | None = None) -> int:
        """Delete terminal jobs that finished before the retention window."""
        if older_than_seconds is None:
            older_than_seconds = self.retention_days * 86400
        cutoff = self._clock() - int(older_than_seconds * 1000)
        try:
            with self.db.transaction() as cursor:
                cursor.execute(
                    """
                    DELETE FROM jobs
                    WHERE status IN ('completed', 'failed', 'cancelled')
                      AND COALESCE(completed_at, failed_at, updated_at) < ?
                    """,
                    [cutoff],
                )
                deleted = cursor.rowcount
        except sqlite3.Error as exc:
            raise QueueUnavailable(f"Failed to clean up jobs: {exc}") from exc
        logger.info("Cleaned up %s old jobs", deleted)
        return deleted

    # Backoff ----------------------------------------------------------

    def backoff_delay(self, attempts: int) -> float:
        """Seconds to wait before the retry following ``attempts`` failed attempts.

        ``min(base * 2**attempts, cap)`` scaled by a jitter factor drawn from
        the queue's seeded generator; never above the cap.
        """
        exponent = min(max(attempts, 0), 32)
        delay = min(self.backoff_base_seconds * (2**exponent), self.backoff_cap_seconds)
        if self.backoff_jitter:
            with self._rng_lock:
                factor = 1.0 + self._rng.uniform(-self.backoff_jitter, self.backoff_jitter)
            delay *= factor
        return max(0.0, min(delay, self.backoff_cap_seconds))

    # Internal helpers -------------------------------------------------

    def _record_failure(
        self,
        cursor: sqlite3.Cursor,
        row: sqlite3.Row,
        error: str,
        retry: bool,
        now: int,
    ) -> Job:
        prior_attempts = int(row["attempts"])
        attempts = prior_attempts + 1
        if retry and attempts < int(row["max_attempts"]):
            next_retry_at = now + int(self.backoff_delay(prior_attempts) * 1000)
            rows = cursor.execute(
                """
                UPDATE jobs
                SET status = 'pending', attempts = ?, error = ?, next_retry_at = ?,
                    started_at = NULL, heartbeat_at = NULL, locked_by = NULL, updated_at = ?
                WHERE id = ? AND status = 'processing'
                RETURNING *
                """,
                [attempts, error, next_retry_at, now, row["id"]],
            ).fetchall()
            logger.info(
                "Job %s failed attempt %s/%s; retrying in %.1fs: %s",
                row["id"],
                attempts,
                row["max_attempts"],
                (next_retry_at - now) / 1000,
                error,
            )
        else:
            rows = cursor.execute(
                """
                UPDATE jobs
                SET status = 'failed', attempts = ?, error = ?, failed_at = ?,
                    next_retry_at = NULL, locked_by = NULL, updated_at = ?
                WHERE id = ? AND status = 'processing'
                RETURNING *
                """,
                [attempts, error, now, now, row["id"]],
            ).fetchall()
            logger.warning("Job %s failed permanently after %s attempts: %s", row["id"], attempts, error)
        return Job.from_row(rows[0])

    @staticmethod
    def _raise_for_state(cursor: sqlite3.Cursor, job_id: str, action: str, worker_id: str | None = None) -> None:
        row = cursor.execute("SELECT status, locked_by FROM jobs WHERE id = ?", [job_id]).fetchone()
        if row is None:
            raise JobNotFound(f"Job {job_id} not found")
        if worker_id is not None:
            holder = row["locked_by"] or row["status"]
            raise LeaseLost(f"Cannot {action} job {job_id}: held by {holder}, not {worker_id}")
        raise JobStateError(f"Cannot {action} job {job_id} in status {row['status']}")


def payload_field(job: Job, *names: str) -> Any:
    """First non-empty payload value among ``names``."""
    for name in names:
        value = job.payload.get(name)
        if value not in (None, ""):
            return value
    return None


__all__ = [
    "JobQueue",
    "INGEST_FILE_PRIORITY",
    "INGEST_MODEL_FILES_PRIORITY",
    "payload_field",
]
