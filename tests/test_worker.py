from __future__ import annotations

import threading
from datetime import timedelta
from pathlib import Path

import allure
import pytest
from sqlalchemy.exc import OperationalError

from daily_briefing.config import JobSettings
from daily_briefing.errors import InvalidJobPayload, TransientProviderError, UserNotFound
from daily_briefing.jobs.models import JobCreate, JobOutcome, JobStatus, JobType, JobView
from daily_briefing.jobs.repository import JobRepository
from daily_briefing.jobs.scheduler import DAILY_CYCLE, schedule_daily_cycle
from daily_briefing.jobs.worker import JobWorker, WorkerPool, is_retryable
from daily_briefing.storage.common import utc_now

pytestmark = [
    allure.epic("Background Jobs"),
    allure.feature("Workers & Retries"),
]


class _Handlers:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.seen: list[str] = []
        self._lock = threading.Lock()

    def handle(self, job: JobView) -> JobOutcome:
        with self._lock:
            self.seen.append(job.job_id)
        if self.error is not None:
            raise self.error
        return JobOutcome(processed=2, succeeded=2)


def _worker(
    repository: JobRepository,
    handlers: _Handlers,
    job_type: JobType = JobType.FETCH_ARTICLES,
) -> JobWorker:
    return JobWorker(
        repository=repository,
        handlers=handlers,  # type: ignore[arg-type]
        job_type=job_type,
        worker_id="test-worker",
        poll_interval_seconds=0,
    )


@pytest.mark.parametrize(
    ("error", "retryable"),
    [
        (TransientProviderError("503"), True),
        (RuntimeError("boom"), True),
        (InvalidJobPayload("bad"), False),
        (UserNotFound("gone"), False),
    ],
)
def test_retryable_classification(error: Exception, retryable: bool) -> None:
    assert is_retryable(error) is retryable


def test_successful_job_is_completed_with_outcome(job_repository: JobRepository) -> None:
    job = job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES))

    summary = _worker(job_repository, _Handlers()).run_once()

    assert (summary.processed, summary.succeeded) == (1, 1)
    details = job_repository.get_job(job.job_id)
    assert details.job.status is JobStatus.SUCCEEDED
    assert details.job.result == {
        "processed": 2,
        "succeeded": 2,
        "skipped": 0,
        "failed": 0,
        "errors": [],
    }


def test_transient_failure_schedules_retry(job_repository: JobRepository) -> None:
    job = job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES))

    summary = _worker(job_repository, _Handlers(TransientProviderError("503"))).run_once()

    assert summary.retried == 1
    view = job_repository.get_job(job.job_id).job
    assert view.status is JobStatus.QUEUED
    assert view.error_summary == "TransientProviderError: 503"
    assert view.run_after > view.updated_at


def test_validation_failure_is_not_retried(job_repository: JobRepository) -> None:
    job = job_repository.enqueue(JobCreate(job_type=JobType.GENERATE_EPISODES))

    summary = _worker(
        job_repository,
        _Handlers(InvalidJobPayload("user_ids must be a list of strings")),
        JobType.GENERATE_EPISODES,
    ).run_once()

    assert summary.failed == 1
    assert job_repository.get_job(job.job_id).job.status is JobStatus.FAILED


def test_last_attempt_failure_is_terminal(job_repository: JobRepository) -> None:
    job = job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES, max_attempts=1))

    summary = _worker(job_repository, _Handlers(RuntimeError("still broken"))).run_once()

    assert (summary.failed, summary.retried) == (1, 0)
    assert job_repository.get_job(job.job_id).job.error_summary == "RuntimeError: still broken"


def test_run_loop_respects_max_jobs(job_repository: JobRepository) -> None:
    for _ in range(3):
        job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES))
    handlers = _Handlers()

    summary = _worker(job_repository, handlers).run_loop(max_jobs=2)

    assert summary.processed == 2
    assert len(handlers.seen) == 2
    assert len(job_repository.list_jobs(status=JobStatus.QUEUED)) == 1


def test_run_loop_stops_when_idle(job_repository: JobRepository) -> None:
    job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES))

    summary = _worker(job_repository, _Handlers()).run_loop(max_idle_polls=2)

    assert summary.processed == 1
    assert summary.idle_polls == 2


def test_run_loop_keeps_polling_after_queue_error(
    job_repository: JobRepository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES))
    real_claim = job_repository.claim_next
    calls: list[int] = []

    def _flaky_claim(*args: object, **kwargs: object) -> JobView | None:
        calls.append(1)
        if len(calls) == 1:
            raise OperationalError("UPDATE jobs", {}, Exception("database is locked"))
        return real_claim(*args, **kwargs)  # type: ignore[arg-type]

    monkeypatch.setattr(job_repository, "claim_next", _flaky_claim)

    summary = _worker(job_repository, _Handlers()).run_loop(max_idle_polls=2)

    assert (summary.processed, summary.succeeded) == (1, 1)
    assert len(job_repository.list_jobs(status=JobStatus.SUCCEEDED)) == 1


def test_stopped_worker_claims_nothing(job_repository: JobRepository) -> None:
    job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES))
    worker = _worker(job_repository, _Handlers())
    worker.stop_event.set()

    assert worker.run_once().processed == 0
    assert len(job_repository.list_jobs(status=JobStatus.QUEUED)) == 1


def test_schedule_daily_cycle_enqueues_every_stage(job_repository: JobRepository) -> None:
    jobs = schedule_daily_cycle(job_repository, batch_size=4)

    assert [job.job_type for job in jobs] == list(DAILY_CYCLE)
    assert jobs[1].payload == {"batch_size": 4}
    assert jobs[0].payload == {}


def test_schedule_daily_cycle_prunes_expired_finished_jobs(
    job_repository: JobRepository,
) -> None:
    done = job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES))
    job_repository.claim_next(JobType.FETCH_ARTICLES, worker_id="w1")
    job_repository.complete(done.job_id)
    broken = job_repository.enqueue(JobCreate(job_type=JobType.GENERATE_EPISODES))
    job_repository.claim_next(JobType.GENERATE_EPISODES, worker_id="w1")
    job_repository.fail(broken.job_id, error_summary="bad payload")

    schedule_daily_cycle(
        job_repository,
        retention=JobSettings(completed_retention_hours=24, failed_retention_days=7),
        now=utc_now() + timedelta(days=2),
    )

    remaining = {job.job_id for job in job_repository.list_jobs()}
    assert done.job_id not in remaining
    assert broken.job_id in remaining
    assert len(remaining) == len(DAILY_CYCLE) + 1


class _Resources:
    def __init__(self, db_path: Path, handlers: _Handlers, closed: list[str]) -> None:
        self._jobs = JobRepository(db_path)
        self._handlers = handlers
        self._closed = closed

    @property
    def jobs(self) -> JobRepository:
        return self._jobs

    @property
    def handlers(self) -> _Handlers:
        return self._handlers

    def close(self) -> None:
        self._jobs.close()
        self._closed.append("closed")


def test_worker_pool_drains_queue_and_closes_resources(
    db_path: Path,
    job_repository: JobRepository,
) -> None:
    schedule_daily_cycle(job_repository)
    handlers = _Handlers()
    closed: list[str] = []
    pool = WorkerPool(
        resources_factory=lambda: _Resources(db_path, handlers, closed),
        poll_interval_seconds=0,
        worker_prefix="pool",
    )

    summary = pool.run(max_idle_polls=1)

    assert summary.processed == 4
    assert summary.succeeded == 4
    assert len(handlers.seen) == 4
    # One thread per unit of concurrency: 1 + 2 + 2 + 1.
    assert len(closed) == 6
    assert len(job_repository.list_jobs(status=JobStatus.SUCCEEDED)) == 4
