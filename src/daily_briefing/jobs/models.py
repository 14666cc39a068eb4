"""Job types, retry specs and payloads for the background queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from daily_briefing.errors import InvalidJobPayload

DEFAULT_BATCH_SIZE = 10


class JobType(str, Enum):
    FETCH_ARTICLES = "fetch_articles"
    SUMMARIZE_ARTICLES = "summarize_articles"
    GENERATE_EMBEDDINGS = "generate_embeddings"
    GENERATE_EPISODES = "generate_episodes"


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class JobSpec:
    """Per-type worker concurrency and retry budget."""

    concurrency: int
    max_attempts: int
    backoff_base_seconds: float

    def retry_delay_seconds(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1 based)."""

        return self.backoff_base_seconds * 2 ** (max(attempt, 1) - 1)


JOB_SPECS: dict[JobType, JobSpec] = {
    JobType.FETCH_ARTICLES: JobSpec(concurrency=1, max_attempts=5, backoff_base_seconds=5.0),
    JobType.SUMMARIZE_ARTICLES: JobSpec(concurrency=2, max_attempts=3, backoff_base_seconds=2.0),
    JobType.GENERATE_EMBEDDINGS: JobSpec(concurrency=2, max_attempts=3, backoff_base_seconds=2.0),
    JobType.GENERATE_EPISODES: JobSpec(concurrency=1, max_attempts=3, backoff_base_seconds=5.0),
}


@dataclass(slots=True)
class FetchArticlesPayload:
    feed_ids: list[str] | None = None


@dataclass(slots=True)
class ArticleBatchPayload:
    """Payload for summarize and embed jobs."""

    article_ids: list[str] | None = None
    batch_size: int = DEFAULT_BATCH_SIZE


@dataclass(slots=True)
class GenerateEpisodesPayload:
    user_ids: list[str] | None = None


JobPayload = FetchArticlesPayload | ArticleBatchPayload | GenerateEpisodesPayload


@dataclass(slots=True)
class JobCreate:
    """Input payload for enqueuing a job."""

    job_type: JobType
    payload: dict[str, Any] = field(default_factory=dict)
    job_id: str | None = None
    run_after: datetime | None = None
    max_attempts: int | None = None


@dataclass(slots=True)
class JobView:
    job_id: str
    job_type: JobType
    payload: dict[str, Any]
    status: JobStatus
    attempt: int
    max_attempts: int
    backoff_base_seconds: float
    run_after: datetime
    worker_id: str | None
    started_at: datetime | None
    heartbeat_at: datetime | None
    finished_at: datetime | None
    error_summary: str | None
    result: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class JobEventView:
    event_id: int
    job_id: str
    event_type: str
    status_from: JobStatus | None
    status_to: JobStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class JobDetails:
    job: JobView
    events: list[JobEventView]


@dataclass(slots=True)
class JobOutcome:
    """Handler summary; ``errors`` are per-item failures that did not abort the job."""

    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": list(self.errors),
        }


def parse_payload(job_type: JobType, raw: dict[str, Any]) -> JobPayload:
    """Validate a raw JSON payload for ``job_type``."""

    if job_type is JobType.FETCH_ARTICLES:
        return fetch_payload(raw)
    if job_type is JobType.GENERATE_EPISODES:
        return episodes_payload(raw)
    return article_batch_payload(job_type, raw)


def fetch_payload(raw: dict[str, Any]) -> FetchArticlesPayload:
    _check_fields(JobType.FETCH_ARTICLES, raw, {"feed_ids"})
    return FetchArticlesPayload(feed_ids=_optional_ids(raw, "feed_ids"))


def episodes_payload(raw: dict[str, Any]) -> GenerateEpisodesPayload:
    _check_fields(JobType.GENERATE_EPISODES, raw, {"user_ids"})
    return GenerateEpisodesPayload(user_ids=_optional_ids(raw, "user_ids"))


def article_batch_payload(job_type: JobType, raw: dict[str, Any]) -> ArticleBatchPayload:
    _check_fields(job_type, raw, {"article_ids", "batch_size"})
    batch_size = raw.get("batch_size", DEFAULT_BATCH_SIZE)
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
        raise InvalidJobPayload(f"batch_size must be a positive integer, got {batch_size!r}")
    return ArticleBatchPayload(
        article_ids=_optional_ids(raw, "article_ids"),
        batch_size=batch_size,
    )


def _optional_ids(raw: dict[str, Any], key: str) -> list[str] | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise InvalidJobPayload(f"{key} must be a list of strings")
    return list(value)


def _check_fields(job_type: JobType, raw: dict[str, Any], allowed: set[str]) -> None:
    if not isinstance(raw, dict):
        raise InvalidJobPayload(f"Payload for {job_type.value} must be an object")
    unknown = sorted(set(raw) - allowed)
    if unknown:
        raise InvalidJobPayload(f"Unknown {job_type.value} payload fields: {', '.join(unknown)}")
