"""Persistent job queue backed by SQLModel + SQLite."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlmodel import Session, col, delete, select

from daily_briefing.errors import JobNotFound
from daily_briefing.jobs.models import (
    JOB_SPECS,
    JobCreate,
    JobDetails,
    JobEventView,
    JobStatus,
    JobType,
    JobView,
    parse_payload,
)
from daily_briefing.storage.alembic_runner import upgrade_head
from daily_briefing.storage.common import (
    DEFAULT_BUSY_TIMEOUT_MS,
    build_sqlite_engine,
    optional_utc_aware,
    to_db_datetime,
    to_utc_aware,
    utc_now,
)
from daily_briefing.storage.sqlmodel_models import Job, JobEvent

logger = logging.getLogger(__name__)


class JobRepository:
    """Queue persistence facade; one instance per worker thread."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def enqueue(self, payload: JobCreate) -> JobView:
        """Validate the payload and create a queued job."""

        job_type = JobType(payload.job_type)
        parse_payload(job_type, payload.payload)
        spec = JOB_SPECS[job_type]
        now = utc_now()
        job_id = payload.job_id or str(uuid4())
        with Session(self.engine) as session:
            row = Job(
                job_id=job_id,
                job_type=job_type.value,
                payload_json=json.dumps(payload.payload, ensure_ascii=False, sort_keys=True),
                status=JobStatus.QUEUED.value,
                attempt=0,
                max_attempts=payload.max_attempts or spec.max_attempts,
                backoff_base_seconds=spec.backoff_base_seconds,
                run_after=to_db_datetime(payload.run_after or now),
                created_at=to_db_datetime(now),
                updated_at=to_db_datetime(now),
            )
            session.add(row)
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="enqueued",
                status_from=None,
                status_to=JobStatus.QUEUED,
                details={"job_type": job_type.value, "max_attempts": row.max_attempts},
            )
            session.commit()
            session.refresh(row)
            logger.info("Job enqueued job_id=%s job_type=%s", job_id, job_type.value)
            return _to_job_view(row)

    def claim_next(
        self,
        job_type: JobType,
        *,
        worker_id: str,
        stale_after_seconds: int | None = None,
    ) -> JobView | None:
        """Atomically claim the oldest ready job of ``job_type``."""

        if stale_after_seconds is not None:
            self.recover_stale(stale_after_seconds=stale_after_seconds, job_type=job_type)

        while True:
            now = utc_now()
            with Session(self.engine) as session:
                candidate = session.exec(
                    select(Job)
                    .where(
                        Job.job_type == job_type.value,
                        Job.status == JobStatus.QUEUED.value,
                        col(Job.run_after) <= to_db_datetime(now),
                    )
                    .order_by(col(Job.run_after).asc(), col(Job.created_at).asc())
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                result = session.exec(
                    sa_update(Job)
                    .where(
                        col(Job.job_id) == candidate.job_id,
                        col(Job.status) == JobStatus.QUEUED.value,
                    )
                    .values(
                        status=JobStatus.RUNNING.value,
                        attempt=candidate.attempt + 1,
                        started_at=to_db_datetime(now),
                        heartbeat_at=to_db_datetime(now),
                        finished_at=None,
                        worker_id=worker_id,
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                claimed = session.exec(select(Job).where(Job.job_id == candidate.job_id)).one()
                self._add_event(
                    session=session,
                    job_id=claimed.job_id,
                    event_type="claimed",
                    status_from=JobStatus.QUEUED,
                    status_to=JobStatus.RUNNING,
                    details={"worker_id": worker_id, "attempt": claimed.attempt},
                )
                session.commit()
                return _to_job_view(claimed)

    def touch(self, job_id: str) -> None:
        """Update heartbeat for a running job."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == JobStatus.RUNNING.value,
                )
                .values(heartbeat_at=now, updated_at=now),
            )
            session.commit()

    def complete(self, job_id: str, *, result: dict[str, Any] | None = None) -> bool:
        """Mark a running job as succeeded."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            update = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == JobStatus.RUNNING.value,
                )
                .values(
                    status=JobStatus.SUCCEEDED.value,
                    result_json=json.dumps(result, ensure_ascii=False) if result else None,
                    finished_at=now,
                    heartbeat_at=now,
                    updated_at=now,
                ),
            )
            if update.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="succeeded",
                status_from=JobStatus.RUNNING,
                status_to=JobStatus.SUCCEEDED,
                details={},
            )
            session.commit()
            return True

    def fail(self, job_id: str, *, error_summary: str) -> bool:
        """Mark a running job as permanently failed."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            update = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == JobStatus.RUNNING.value,
                )
                .values(
                    status=JobStatus.FAILED.value,
                    error_summary=error_summary,
                    finished_at=now,
                    heartbeat_at=now,
                    updated_at=now,
                ),
            )
            if update.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="failed",
                status_from=JobStatus.RUNNING,
                status_to=JobStatus.FAILED,
                details={"error_summary": error_summary},
            )
            session.commit()
            return True

    def schedule_retry(self, job_id: str, *, run_after: datetime, error_summary: str) -> bool:
        """Requeue a running job for automatic retry."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            update = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == JobStatus.RUNNING.value,
                )
                .values(
                    status=JobStatus.QUEUED.value,
                    run_after=to_db_datetime(run_after),
                    error_summary=error_summary,
                    started_at=None,
                    heartbeat_at=None,
                    finished_at=None,
                    worker_id=None,
                    updated_at=now,
                ),
            )
            if update.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                job_id=job_id,
                event_type="retry_scheduled",
                status_from=JobStatus.RUNNING,
                status_to=JobStatus.QUEUED,
                details={
                    "run_after": to_utc_aware(run_after).isoformat(),
                    "error_summary": error_summary,
                },
            )
            session.commit()
            return True

    def recover_stale(
        self,
        *,
        stale_after_seconds: int,
        job_type: JobType | None = None,
    ) -> int:
        """Requeue running jobs whose heartbeat is older than ``stale_after_seconds``.

        Jobs that already used their last attempt are failed instead.
        """

        now = utc_now()
        cutoff = to_db_datetime(now - timedelta(seconds=stale_after_seconds))
        recovered = 0
        with Session(self.engine) as session:
            statement = select(Job).where(
                Job.status == JobStatus.RUNNING.value,
                col(Job.heartbeat_at) < cutoff,
            )
            if job_type is not None:
                statement = statement.where(Job.job_type == job_type.value)
            stale_rows = session.exec(statement).all()

            for row in stale_rows:
                exhausted = row.attempt >= row.max_attempts
                target = JobStatus.FAILED if exhausted else JobStatus.QUEUED
                values: dict[str, Any] = {
                    "status": target.value,
                    "worker_id": None,
                    "error_summary": "Worker heartbeat lost",
                    "updated_at": to_db_datetime(now),
                }
                if exhausted:
                    values["finished_at"] = to_db_datetime(now)
                else:
                    values["run_after"] = to_db_datetime(now)
                    values["started_at"] = None
                    values["heartbeat_at"] = None
                update = session.exec(
                    sa_update(Job)
                    .where(
                        col(Job.job_id) == row.job_id,
                        col(Job.status) == JobStatus.RUNNING.value,
                    )
                    .values(**values),
                )
                if update.rowcount != 1:
                    continue
                self._add_event(
                    session=session,
                    job_id=row.job_id,
                    event_type="stale_recovered",
                    status_from=JobStatus.RUNNING,
                    status_to=target,
                    details={"worker_id": row.worker_id, "attempt": row.attempt},
                )
                recovered += 1
            session.commit()

        if recovered:
            logger.warning("Recovered %d stale running jobs", recovered)
        return recovered

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        job_type: JobType | None = None,
        limit: int = 50,
    ) -> list[JobView]:
        """List recent jobs, optionally filtered by status and type."""

        with Session(self.engine) as session:
            statement = select(Job).order_by(col(Job.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(Job.status == status.value)
            if job_type is not None:
                statement = statement.where(Job.job_type == job_type.value)
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]

    def get_job(self, job_id: str) -> JobDetails:
        """Return job details with its event stream."""

        with Session(self.engine) as session:
            row = session.get(Job, job_id)
            if row is None:
                raise JobNotFound(f"Job not found: {job_id}")
            event_rows = session.exec(
                select(JobEvent)
                .where(JobEvent.job_id == job_id)
                .order_by(col(JobEvent.created_at).asc(), col(JobEvent.id).asc()),
            ).all()
            job = _to_job_view(row)

        events = [
            JobEventView(
                event_id=event.id or 0,
                job_id=event.job_id,
                event_type=event.event_type,
                status_from=JobStatus(event.status_from) if event.status_from else None,
                status_to=JobStatus(event.status_to) if event.status_to else None,
                created_at=to_utc_aware(event.created_at),
                details=_load_json_object(event.details_json),
            )
            for event in event_rows
        ]
        return JobDetails(job=job, events=events)

    def prune(  # noqa: PLR0913
        self,
        *,
        completed_retention: timedelta,
        completed_keep: int,
        failed_retention: timedelta,
        failed_keep: int,
        now: datetime | None = None,
    ) -> int:
        """Delete finished jobs past their age or count retention; returns rows removed."""

        now = now or utc_now()
        removed = self._prune_status(
            status=JobStatus.SUCCEEDED,
            older_than=now - completed_retention,
            keep=completed_keep,
        )
        removed += self._prune_status(
            status=JobStatus.FAILED,
            older_than=now - failed_retention,
            keep=failed_keep,
        )
        if removed:
            logger.info("Pruned %d finished jobs", removed)
        return removed

    def _prune_status(self, *, status: JobStatus, older_than: datetime, keep: int) -> int:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Job.job_id, Job.finished_at)
                .where(Job.status == status.value)
                .order_by(col(Job.finished_at).desc(), col(Job.created_at).desc()),
            ).all()
            cutoff = to_db_datetime(older_than)
            doomed = [
                job_id
                for index, (job_id, finished_at) in enumerate(rows)
                if index >= keep or (finished_at is not None and finished_at < cutoff)
            ]
            if not doomed:
                return 0
            session.exec(delete(JobEvent).where(col(JobEvent.job_id).in_(doomed)))
            session.exec(delete(Job).where(col(Job.job_id).in_(doomed)))
            session.commit()
            return len(doomed)

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        job_id: str,
        event_type: str,
        status_from: JobStatus | None,
        status_to: JobStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            JobEvent(
                job_id=job_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _load_json_object(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    parsed = json.loads(raw)
    return parsed if isinstance(parsed, dict) else {}


def _to_job_view(row: Job) -> JobView:
    return JobView(
        job_id=row.job_id,
        job_type=JobType(row.job_type),
        payload=_load_json_object(row.payload_json),
        status=JobStatus(row.status),
        attempt=row.attempt,
        max_attempts=row.max_attempts,
        backoff_base_seconds=row.backoff_base_seconds,
        run_after=to_utc_aware(row.run_after),
        worker_id=row.worker_id,
        started_at=optional_utc_aware(row.started_at),
        heartbeat_at=optional_utc_aware(row.heartbeat_at),
        finished_at=optional_utc_aware(row.finished_at),
        error_summary=row.error_summary,
        result=_load_json_object(row.result_json) if row.result_json else None,
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
    )
