"""Daily cycle scheduling; the cron trigger that calls it lives outside the app."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from daily_briefing.config import JobSettings
from daily_briefing.jobs.models import DEFAULT_BATCH_SIZE, JobCreate, JobType, JobView
from daily_briefing.jobs.repository import JobRepository

logger = logging.getLogger(__name__)

DAILY_CYCLE = (
    JobType.FETCH_ARTICLES,
    JobType.SUMMARIZE_ARTICLES,
    JobType.GENERATE_EMBEDDINGS,
    JobType.GENERATE_EPISODES,
)


def schedule_daily_cycle(
    repository: JobRepository,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    retention: JobSettings | None = None,
    now: datetime | None = None,
) -> list[JobView]:
    """Prune expired finished jobs, then enqueue fetch, summarize, embed and episode jobs."""

    prune_finished_jobs(repository, retention or JobSettings(), now=now)
    jobs = []
    for job_type in DAILY_CYCLE:
        payload: dict[str, object] = {}
        if job_type in (JobType.SUMMARIZE_ARTICLES, JobType.GENERATE_EMBEDDINGS):
            payload["batch_size"] = batch_size
        jobs.append(repository.enqueue(JobCreate(job_type=job_type, payload=payload)))
    logger.info(
        "Daily cycle scheduled job_ids=%s",
        ",".join(job.job_id for job in jobs),
    )
    return jobs


def prune_finished_jobs(
    repository: JobRepository,
    retention: JobSettings,
    *,
    now: datetime | None = None,
) -> int:
    """Apply the completed/failed retention windows from ``retention``."""

    return repository.prune(
        completed_retention=timedelta(hours=retention.completed_retention_hours),
        completed_keep=retention.completed_keep,
        failed_retention=timedelta(days=retention.failed_retention_days),
        failed_keep=retention.failed_keep,
        now=now,
    )
