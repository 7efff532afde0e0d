"""Tests for the durable job queue."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from ragqueue.core.errors import JobNotFound, JobStateError, LeaseLost
from ragqueue.db.sqlite import SQLiteDatabase
from ragqueue.models.entities import JobStatus, JobType
from ragqueue.queue.jobs import JobQueue


def _enqueue(queue: JobQueue, priority: int = 0, owner_id: str | None = None) -> str:
    return queue.enqueue(JobType.INGEST_FILE, {"document_id": "doc"}, priority=priority, owner_id=owner_id)


def test_enqueue_and_get(queue: JobQueue, clock) -> None:
    job_id = queue.enqueue_ingest_file("doc-1", "col-1", "file:///tmp/a.txt", "a.txt", "text/plain", owner_id="u1")
    job = queue.get(job_id)
    assert job.status is JobStatus.PENDING
    assert job.job_type is JobType.INGEST_FILE
    assert job.priority == 10
    assert job.payload["document_id"] == "doc-1"
    assert job.attempts == 0
    assert job.max_attempts == 3
    assert job.created_at == clock.now
    assert queue.find("missing") is None
    with pytest.raises(JobNotFound):
        queue.get("missing")


def test_claim_order_is_priority_then_fifo(queue: JobQueue, clock) -> None:
    low = _enqueue(queue, priority=1)
    clock.advance(1)
    first_high = _enqueue(queue, priority=5)
    clock.advance(1)
    second_high = _enqueue(queue, priority=5)

    claimed = [queue.claim_next("w1").id for _ in range(3)]
    assert claimed == [first_high, second_high, low]
    assert queue.claim_next("w1") is None


def test_claim_marks_processing(queue: JobQueue, clock) -> None:
    job_id = _enqueue(queue)
    job = queue.claim_next("worker-a")
    assert job.id == job_id
    assert job.status is JobStatus.PROCESSING
    assert job.started_at == clock.now
    assert job.locked_by == "worker-a"


def test_two_connections_race_for_one_job(db_path: Path, db: SQLiteDatabase) -> None:
    JobQueue(db).enqueue(JobType.INGEST_FILE, {"document_id": "doc"})
    barrier = threading.Barrier(2)
    results: list[object] = []
    lock = threading.Lock()

    def claim(worker_id: str) -> None:
        own_db = SQLiteDatabase(db_path)
        try:
            barrier.wait()
            job = JobQueue(own_db).claim_next(worker_id)
            with lock:
                results.append(job)
        finally:
            own_db.close()

    threads = [threading.Thread(target=claim, args=(f"w{idx}",)) for idx in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    claimed = [job for job in results if job is not None]
    assert len(results) == 2
    assert len(claimed) == 1


def test_many_concurrent_claimers_get_distinct_jobs(db_path: Path, db: SQLiteDatabase) -> None:
    producer = JobQueue(db)
    job_ids = {producer.enqueue(JobType.INGEST_FILE, {"n": idx}) for idx in range(5)}
    barrier = threading.Barrier(8)
    claimed: list[str] = []
    lock = threading.Lock()

    def claim(worker_id: str) -> None:
        own_db = SQLiteDatabase(db_path)
        try:
            barrier.wait()
            job = JobQueue(own_db).claim_next(worker_id)
            if job is not None:
                with lock:
                    claimed.append(job.id)
        finally:
            own_db.close()

    threads = [threading.Thread(target=claim, args=(f"w{idx}",)) for idx in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(claimed) == sorted(job_ids)


def test_complete_stores_result(queue: JobQueue) -> None:
    job_id = _enqueue(queue)
    queue.claim_next("w")
    job = queue.complete(job_id, {"chunks": 4})
    assert job.status is JobStatus.COMPLETED
    assert job.result == {"chunks": 4}
    assert job.completed_at is not None
    with pytest.raises(JobStateError):
        queue.complete(job_id, {})
    with pytest.raises(JobNotFound):
        queue.complete("missing")


def test_retryable_failure_waits_for_backoff(queue: JobQueue, clock) -> None:
    job_id = _enqueue(queue)
    queue.claim_next("w")
    job = queue.fail(job_id, "boom", retry=True)
    assert job.status is JobStatus.PENDING
    assert job.attempts == 1
    assert job.error == "boom"
    assert job.next_retry_at > clock.now
    assert queue.claim_next("w") is None

    clock.now = job.next_retry_at
    again = queue.claim_next("w")
    assert again is not None and again.id == job_id


def test_always_failing_job_fails_after_max_attempts(queue: JobQueue, clock) -> None:
    job_id = _enqueue(queue)
    for _ in range(3):
        clock.advance(1000)
        claimed = queue.claim_next("w")
        assert claimed is not None and claimed.id == job_id
        job = queue.fail(job_id, "x", retry=True)
    assert job.status is JobStatus.FAILED
    assert job.attempts == 3
    assert job.failed_at is not None
    clock.advance(1000)
    assert queue.claim_next("w") is None


def test_non_retryable_failure_is_terminal(queue: JobQueue) -> None:
    job_id = _enqueue(queue)
    queue.claim_next("w")
    job = queue.fail(job_id, "unsupported", retry=False)
    assert job.status is JobStatus.FAILED
    assert job.attempts == 1


def test_fail_requires_processing(queue: JobQueue) -> None:
    job_id = _enqueue(queue)
    with pytest.raises(JobStateError):
        queue.fail(job_id, "not claimed")


def test_backoff_is_exponential_capped_and_seeded(db: SQLiteDatabase) -> None:
    exact = JobQueue(db, backoff_base_seconds=5, backoff_cap_seconds=300, backoff_jitter=0)
    assert [exact.backoff_delay(n) for n in range(8)] == [5, 10, 20, 40, 80, 160, 300, 300]

    jittered_a = JobQueue(db, backoff_jitter=0.1, seed=42)
    jittered_b = JobQueue(db, backoff_jitter=0.1, seed=42)
    delays_a = [jittered_a.backoff_delay(n) for n in range(10)]
    assert delays_a == [jittered_b.backoff_delay(n) for n in range(10)]
    for attempts, delay in enumerate(delays_a):
        nominal = min(5 * 2**attempts, 300)
        assert nominal * 0.9 <= delay <= min(nominal * 1.1, 300)


def test_cancel_only_pending(queue: JobQueue) -> None:
    pending = _enqueue(queue)
    assert queue.cancel(pending).status is JobStatus.CANCELLED
    running = _enqueue(queue)
    queue.claim_next("w")
    with pytest.raises(JobStateError):
        queue.cancel(running)


def test_reaper_requeues_abandoned_jobs(queue: JobQueue, clock) -> None:
    job_id = _enqueue(queue)
    queue.claim_next("crashed-worker")
    clock.advance(60)
    assert queue.reap_stale(120) == []

    clock.advance(90)
    assert queue.reap_stale(120) == [job_id]
    job = queue.get(job_id)
    assert job.status is JobStatus.PENDING
    assert job.attempts == 1
    assert "crashed-worker" in job.error


def _reassign(queue: JobQueue, clock, job_id: str) -> None:
    queue.claim_next("worker-a")
    clock.advance(130)
    assert queue.reap_stale(120) == [job_id]
    clock.advance(10)
    assert queue.claim_next("worker-b").id == job_id


def test_complete_from_reaped_worker_is_rejected(queue: JobQueue, clock) -> None:
    job_id = _enqueue(queue)
    _reassign(queue, clock, job_id)

    with pytest.raises(LeaseLost):
        queue.complete(job_id, {"chunks": 1}, worker_id="worker-a")
    job = queue.get(job_id)
    assert job.status is JobStatus.PROCESSING
    assert job.locked_by == "worker-b"
    assert job.result is None

    done = queue.complete(job_id, {"chunks": 2}, worker_id="worker-b")
    assert done.status is JobStatus.COMPLETED
    assert done.result == {"chunks": 2}


def test_fail_from_reaped_worker_is_rejected(queue: JobQueue, clock) -> None:
    job_id = _enqueue(queue)
    _reassign(queue, clock, job_id)

    with pytest.raises(LeaseLost):
        queue.fail(job_id, "late failure", worker_id="worker-a")
    job = queue.get(job_id)
    assert job.status is JobStatus.PROCESSING
    assert job.locked_by == "worker-b"
    assert job.attempts == 1


def test_heartbeat_keeps_long_job_alive(queue: JobQueue, clock) -> None:
    job_id = _enqueue(queue)
    queue.claim_next("w")
    for _ in range(5):
        clock.advance(100)
        queue.heartbeat(job_id, "w")
        assert queue.reap_stale(120) == []
    assert queue.get(job_id).heartbeat_at == clock.now

    clock.advance(121)
    assert queue.reap_stale(120) == [job_id]


def test_heartbeat_after_reap_raises(queue: JobQueue, clock) -> None:
    job_id = _enqueue(queue)
    queue.claim_next("w")
    clock.advance(130)
    queue.reap_stale(120)
    with pytest.raises(LeaseLost):
        queue.heartbeat(job_id, "w")


def test_reaper_fails_job_without_attempts_left(db: SQLiteDatabase, clock) -> None:
    queue = JobQueue(db, max_attempts=1, clock=clock)
    job_id = _enqueue(queue)
    queue.claim_next("w")
    clock.advance(600)
    queue.reap_stale(120)
    assert queue.get(job_id).status is JobStatus.FAILED


def test_stats_and_listing(queue: JobQueue, clock) -> None:
    first = _enqueue(queue, owner_id="alice")
    clock.advance(1)
    second = _enqueue(queue, owner_id="alice")
    clock.advance(1)
    _enqueue(queue, owner_id="bob")
    queue.claim_next("w")

    stats = queue.stats()
    assert stats.total == 3
    assert stats.pending == 2
    assert stats.processing == 1
    assert stats.completed == 0

    assert [job.id for job in queue.list_by_owner("alice")] == [second, first]
    assert [job.id for job in queue.list_by_owner("alice", limit=1)] == [second]


def test_cleanup_purges_only_old_terminal_jobs(queue: JobQueue, clock) -> None:
    done = _enqueue(queue)
    queue.claim_next("w")
    queue.complete(done)
    waiting = _enqueue(queue)

    assert queue.cleanup() == 0
    clock.advance(8 * 86400)
    assert queue.cleanup() == 1
    assert queue.find(done) is None
    assert queue.find(waiting) is not None


def test_active_document_ids(queue: JobQueue) -> None:
    queue.enqueue_ingest_file("doc-1", "col", "file:///a", "a.txt")
    queue.enqueue_ingest_file("doc-2", "other", "file:///b", "b.txt")
    assert queue.active_document_ids("col") == {"doc-1"}
