from __future__ import annotations

from datetime import datetime, timedelta

import allure
import pytest
from sqlalchemy import update as sa_update
from sqlmodel import Session, col

from daily_briefing.errors import InvalidJobPayload, JobNotFound
from daily_briefing.jobs.models import (
    JOB_SPECS,
    ArticleBatchPayload,
    FetchArticlesPayload,
    JobCreate,
    JobStatus,
    JobType,
    parse_payload,
)
from daily_briefing.jobs.repository import JobRepository
from daily_briefing.storage.common import utc_now
from daily_briefing.storage.sqlmodel_models import Job

pytestmark = [
    allure.epic("Background Jobs"),
    allure.feature("Durable Queue"),
]


def _age_heartbeat(repository: JobRepository, job_id: str) -> None:
    with Session(repository.engine) as session:
        session.exec(
            sa_update(Job)
            .where(col(Job.job_id) == job_id)
            .values(heartbeat_at=datetime(2000, 1, 1)),
        )
        session.commit()


def test_payload_parsing_validates_fields() -> None:
    assert parse_payload(JobType.FETCH_ARTICLES, {}) == FetchArticlesPayload()
    assert parse_payload(
        JobType.SUMMARIZE_ARTICLES,
        {"article_ids": ["a"], "batch_size": 3},
    ) == ArticleBatchPayload(article_ids=["a"], batch_size=3)

    with pytest.raises(InvalidJobPayload, match="Unknown"):
        parse_payload(JobType.GENERATE_EPISODES, {"users": []})
    with pytest.raises(InvalidJobPayload, match="batch_size"):
        parse_payload(JobType.GENERATE_EMBEDDINGS, {"batch_size": 0})
    with pytest.raises(InvalidJobPayload, match="feed_ids"):
        parse_payload(JobType.FETCH_ARTICLES, {"feed_ids": "one"})


def test_retry_delay_doubles_per_attempt() -> None:
    spec = JOB_SPECS[JobType.GENERATE_EPISODES]

    assert [spec.retry_delay_seconds(attempt) for attempt in (1, 2, 3)] == [5.0, 10.0, 20.0]


def test_enqueue_uses_type_defaults(job_repository: JobRepository) -> None:
    job = job_repository.enqueue(JobCreate(job_type=JobType.SUMMARIZE_ARTICLES))

    assert job.status is JobStatus.QUEUED
    assert job.attempt == 0
    assert job.max_attempts == 3
    assert job.backoff_base_seconds == 2.0
    assert job.payload == {}


def test_enqueue_rejects_invalid_payload(job_repository: JobRepository) -> None:
    with pytest.raises(InvalidJobPayload):
        job_repository.enqueue(
            JobCreate(job_type=JobType.FETCH_ARTICLES, payload={"unexpected": 1}),
        )
    assert job_repository.list_jobs() == []


def test_claim_takes_oldest_ready_job_of_type(job_repository: JobRepository) -> None:
    first = job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES))
    job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES))
    job_repository.enqueue(JobCreate(job_type=JobType.GENERATE_EPISODES))

    claimed = job_repository.claim_next(JobType.FETCH_ARTICLES, worker_id="w1")

    assert claimed is not None
    assert claimed.job_id == first.job_id
    assert claimed.status is JobStatus.RUNNING
    assert claimed.attempt == 1
    assert claimed.worker_id == "w1"


def test_future_jobs_are_not_claimed(job_repository: JobRepository) -> None:
    job_repository.enqueue(
        JobCreate(
            job_type=JobType.FETCH_ARTICLES,
            run_after=utc_now() + timedelta(hours=1),
        ),
    )

    assert job_repository.claim_next(JobType.FETCH_ARTICLES, worker_id="w1") is None


def test_job_is_claimed_only_once(job_repository: JobRepository) -> None:
    job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES))

    assert job_repository.claim_next(JobType.FETCH_ARTICLES, worker_id="w1") is not None
    assert job_repository.claim_next(JobType.FETCH_ARTICLES, worker_id="w2") is None


def test_complete_records_result_and_events(job_repository: JobRepository) -> None:
    job = job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES))
    job_repository.claim_next(JobType.FETCH_ARTICLES, worker_id="w1")

    assert job_repository.complete(job.job_id, result={"processed": 2}) is True
    assert job_repository.complete(job.job_id) is False

    details = job_repository.get_job(job.job_id)
    assert details.job.status is JobStatus.SUCCEEDED
    assert details.job.result == {"processed": 2}
    assert details.job.finished_at is not None
    assert [event.event_type for event in details.events] == ["enqueued", "claimed", "succeeded"]


def test_schedule_retry_requeues_with_delay(job_repository: JobRepository) -> None:
    job = job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES))
    job_repository.claim_next(JobType.FETCH_ARTICLES, worker_id="w1")
    run_after = utc_now() + timedelta(seconds=30)

    assert job_repository.schedule_retry(job.job_id, run_after=run_after, error_summary="503")

    details = job_repository.get_job(job.job_id)
    assert details.job.status is JobStatus.QUEUED
    assert details.job.attempt == 1
    assert details.job.error_summary == "503"
    assert details.job.worker_id is None
    assert details.events[-1].event_type == "retry_scheduled"
    assert job_repository.claim_next(JobType.FETCH_ARTICLES, worker_id="w1") is None


def test_fail_is_terminal(job_repository: JobRepository) -> None:
    job = job_repository.enqueue(JobCreate(job_type=JobType.GENERATE_EPISODES))
    job_repository.claim_next(JobType.GENERATE_EPISODES, worker_id="w1")

    assert job_repository.fail(job.job_id, error_summary="bad payload") is True

    assert job_repository.get_job(job.job_id).job.status is JobStatus.FAILED
    assert job_repository.schedule_retry(
        job.job_id,
        run_after=utc_now(),
        error_summary="late",
    ) is False


def test_stale_running_job_is_requeued_then_failed_when_exhausted(
    job_repository: JobRepository,
) -> None:
    job = job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES, max_attempts=2))

    job_repository.claim_next(JobType.FETCH_ARTICLES, worker_id="crashed")
    _age_heartbeat(job_repository, job.job_id)
    reclaimed = job_repository.claim_next(
        JobType.FETCH_ARTICLES,
        worker_id="w2",
        stale_after_seconds=60,
    )
    assert reclaimed is not None
    assert reclaimed.attempt == 2

    _age_heartbeat(job_repository, job.job_id)
    assert job_repository.recover_stale(stale_after_seconds=60) == 1

    details = job_repository.get_job(job.job_id)
    assert details.job.status is JobStatus.FAILED
    assert details.job.error_summary == "Worker heartbeat lost"


def test_list_jobs_filters_by_status_and_type(job_repository: JobRepository) -> None:
    job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES))
    episode_job = job_repository.enqueue(JobCreate(job_type=JobType.GENERATE_EPISODES))

    episode_jobs = job_repository.list_jobs(job_type=JobType.GENERATE_EPISODES)
    assert [job.job_id for job in episode_jobs] == [episode_job.job_id]
    assert job_repository.list_jobs(status=JobStatus.SUCCEEDED) == []
    assert len(job_repository.list_jobs(limit=1)) == 1


def test_get_unknown_job_fails(job_repository: JobRepository) -> None:
    with pytest.raises(JobNotFound):
        job_repository.get_job("missing")


def test_prune_removes_old_and_overflow_finished_jobs(job_repository: JobRepository) -> None:
    finished = []
    for _ in range(3):
        job = job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES))
        job_repository.claim_next(JobType.FETCH_ARTICLES, worker_id="w1")
        job_repository.complete(job.job_id)
        finished.append(job.job_id)
    queued = job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES))

    removed = job_repository.prune(
        completed_retention=timedelta(days=1),
        completed_keep=1,
        failed_retention=timedelta(days=7),
        failed_keep=10,
    )

    assert removed == 2
    remaining = {job.job_id for job in job_repository.list_jobs()}
    assert queued.job_id in remaining
    assert len(remaining & set(finished)) == 1

    assert (
        job_repository.prune(
            completed_retention=timedelta(days=1),
            completed_keep=10,
            failed_retention=timedelta(days=7),
            failed_keep=10,
            now=utc_now() + timedelta(days=2),
        )
        == 1
    )


def test_heartbeat_keeps_running_job_alive(job_repository: JobRepository) -> None:
    job = job_repository.enqueue(JobCreate(job_type=JobType.FETCH_ARTICLES))
    job_repository.claim_next(JobType.FETCH_ARTICLES, worker_id="w1")
    _age_heartbeat(job_repository, job.job_id)

    job_repository.touch(job.job_id)

    assert job_repository.recover_stale(stale_after_seconds=60) == 0
    assert job_repository.get_job(job.job_id).job.status is JobStatus.RUNNING


def test_repository_opens_connections_only_through_its_engine(
    job_repository: JobRepository,
) -> None:
    assert not hasattr(job_repository, "_connection")
    assert job_repository.list_jobs() == []
