"""Controllers for job queue and worker CLI commands."""

from __future__ import annotations

import json
import os
import socket
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from daily_briefing.config import Settings
from daily_briefing.jobs.models import JobCreate, JobStatus, JobType, JobView
from daily_briefing.jobs.repository import JobRepository
from daily_briefing.jobs.scheduler import prune_finished_jobs, schedule_daily_cycle
from daily_briefing.jobs.worker import JobWorker, WorkerPool, WorkerRunSummary
from daily_briefing.services import BriefingServices, open_services


@dataclass(slots=True)
class EnqueueJobCommand:
    """CLI input for manual job enqueue."""

    db_path: Path | None
    job_type: str
    feed_ids: tuple[str, ...]
    article_ids: tuple[str, ...]
    user_ids: tuple[str, ...]
    batch_size: int | None


@dataclass(slots=True)
class ScheduleCycleCommand:
    db_path: Path | None


@dataclass(slots=True)
class WorkCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    job_types: tuple[str, ...]
    once: bool
    max_jobs: int | None
    drain: bool


@dataclass(slots=True)
class ListJobsCommand:
    db_path: Path | None
    status: str | None
    job_type: str | None
    limit: int


@dataclass(slots=True)
class InspectJobCommand:
    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class PruneJobsCommand:
    db_path: Path | None


class JobsCliController:
    """Coordinates queue, worker, and inspection CLI operations."""

    def enqueue(self, command: EnqueueJobCommand) -> list[str]:
        job_type = JobType(command.job_type)
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            job = repository.enqueue(
                JobCreate(job_type=job_type, payload=_build_payload(job_type, command)),
            )
        return [
            "Job enqueued: "
            f"job_id={job.job_id} type={job.job_type.value} status={job.status.value} "
            f"max_attempts={job.max_attempts}",
        ]

    def schedule(self, command: ScheduleCycleCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            jobs = schedule_daily_cycle(
                repository,
                batch_size=settings.jobs.batch_size,
                retention=settings.jobs,
            )
        return [
            f"Daily cycle scheduled: jobs={len(jobs)}",
            *(f"- job_id={job.job_id} type={job.job_type.value}" for job in jobs),
        ]

    def work(self, command: WorkCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        # Summarize and episode handlers call the chat/TTS providers.
        settings.require_api_key()
        job_types = [JobType(value) for value in command.job_types] or list(JobType)
        if command.once or command.max_jobs is not None:
            summary = self._run_inline(settings, job_types, command)
        else:
            pool = WorkerPool(
                resources_factory=lambda: BriefingServices.open(settings),
                job_types=job_types,
                poll_interval_seconds=settings.jobs.poll_interval_seconds,
                stale_after_seconds=settings.jobs.stale_after_seconds,
                worker_prefix=_worker_prefix(),
            )
            summary = pool.run(max_idle_polls=1 if command.drain else None)

        return [
            "Worker summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} retried={summary.retried} "
            f"idle_polls={summary.idle_polls}",
        ]

    def list_jobs(self, command: ListJobsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            jobs = repository.list_jobs(
                status=JobStatus(command.status) if command.status else None,
                job_type=JobType(command.job_type) if command.job_type else None,
                limit=command.limit,
            )
        if not jobs:
            return ["No jobs found."]
        return [_job_line(job) for job in jobs]

    def inspect(self, command: InspectJobCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_job(command.job_id)

        job = details.job
        lines = [
            _job_line(job),
            f"payload={json.dumps(job.payload, sort_keys=True)}",
            f"run_after={job.run_after.isoformat()} worker_id={job.worker_id or '-'}",
        ]
        if job.error_summary:
            lines.append(f"error={job.error_summary}")
        if job.result is not None:
            lines.append(f"result={json.dumps(job.result, sort_keys=True)}")
        lines.append("Events:")
        for event in details.events:
            transition = (
                f"{event.status_from.value if event.status_from else '-'}"
                f" -> {event.status_to.value if event.status_to else '-'}"
            )
            detail = f" {json.dumps(event.details, sort_keys=True)}" if event.details else ""
            lines.append(
                f"- {event.created_at.isoformat()} {event.event_type} {transition}{detail}",
            )
        return lines

    def prune(self, command: PruneJobsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            removed = prune_finished_jobs(repository, settings.jobs)
        return [f"Jobs pruned: removed={removed}"]

    def _run_inline(
        self,
        settings: Settings,
        job_types: list[JobType],
        command: WorkCommand,
    ) -> WorkerRunSummary:
        aggregate = WorkerRunSummary()
        with open_services(settings) as services:
            for job_type in job_types:
                worker = JobWorker(
                    repository=services.jobs,
                    handlers=services.handlers,
                    job_type=job_type,
                    worker_id=f"{_worker_prefix()}-{job_type.value}",
                    poll_interval_seconds=settings.jobs.poll_interval_seconds,
                    stale_after_seconds=settings.jobs.stale_after_seconds,
                )
                aggregate.add(
                    worker.run_once()
                    if command.once
                    else worker.run_loop(max_jobs=command.max_jobs, max_idle_polls=1),
                )
        return aggregate


def _build_payload(job_type: JobType, command: EnqueueJobCommand) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if job_type is JobType.FETCH_ARTICLES and command.feed_ids:
        payload["feed_ids"] = list(command.feed_ids)
    if job_type in (JobType.SUMMARIZE_ARTICLES, JobType.GENERATE_EMBEDDINGS):
        if command.article_ids:
            payload["article_ids"] = list(command.article_ids)
        if command.batch_size is not None:
            payload["batch_size"] = command.batch_size
    if job_type is JobType.GENERATE_EPISODES and command.user_ids:
        payload["user_ids"] = list(command.user_ids)
    return payload


def _job_line(job: JobView) -> str:
    return (
        f"{job.job_id} type={job.job_type.value} status={job.status.value} "
        f"attempt={job.attempt}/{job.max_attempts} created_at={job.created_at.isoformat()}"
    )


def _worker_prefix() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


@contextmanager
def _repository(settings: Settings) -> Iterator[JobRepository]:
    repository = JobRepository(settings.db_path, busy_timeout_ms=settings.sqlite_busy_timeout_ms)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
