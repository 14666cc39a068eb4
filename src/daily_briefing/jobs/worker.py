"""Queue workers: claim, handle, then complete, retry or fail."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from daily_briefing.errors import BriefingError, ErrorKind
from daily_briefing.jobs.handlers import JobHandlers
from daily_briefing.jobs.models import JOB_SPECS, JobSpec, JobType, JobView
from daily_briefing.jobs.repository import JobRepository
from daily_briefing.storage.common import utc_now

logger = logging.getLogger(__name__)

NON_RETRYABLE_KINDS = frozenset({ErrorKind.VALIDATION, ErrorKind.NOT_FOUND, ErrorKind.OWNERSHIP})


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.retried += other.retried
        self.idle_polls += other.idle_polls


def is_retryable(error: Exception) -> bool:
    """Validation, not-found and ownership errors never succeed on retry."""

    if isinstance(error, BriefingError):
        return error.kind not in NON_RETRYABLE_KINDS
    return True


class JobWorker:
    """Consumes queued jobs of one type."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: JobRepository,
        handlers: JobHandlers,
        job_type: JobType,
        worker_id: str,
        poll_interval_seconds: float = 2.0,
        stale_after_seconds: int | None = 1_800,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.repository = repository
        self.handlers = handlers
        self.job_type = job_type
        self.worker_id = worker_id
        self.poll_interval_seconds = poll_interval_seconds
        self.stale_after_seconds = stale_after_seconds
        self.stop_event = stop_event or threading.Event()

    @property
    def spec(self) -> JobSpec:
        return JOB_SPECS[self.job_type]

    def run_once(self) -> WorkerRunSummary:
        """Process at most one job from the queue."""

        summary = WorkerRunSummary()
        if self.stop_event.is_set():
            summary.idle_polls = 1
            return summary

        job = self.repository.claim_next(
            self.job_type,
            worker_id=self.worker_id,
            stale_after_seconds=self.stale_after_seconds,
        )
        if job is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        logger.info(
            "Job claimed job_id=%s job_type=%s attempt=%d/%d worker_id=%s",
            job.job_id,
            job.job_type.value,
            job.attempt,
            job.max_attempts,
            self.worker_id,
        )
        try:
            outcome = self.handlers.handle(job)
        except Exception as error:  # noqa: BLE001
            self._handle_failure(job, error, summary)
            return summary

        if self.repository.complete(job.job_id, result=outcome.to_dict()):
            summary.succeeded = 1
        return summary

    def run_loop(
        self,
        *,
        max_jobs: int | None = None,
        max_idle_polls: int | None = 1,
    ) -> WorkerRunSummary:
        """Run until stopped, idle for ``max_idle_polls`` polls, or ``max_jobs`` processed.

        ``max_idle_polls=None`` keeps polling until the stop event is set.
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        while not self.stop_event.is_set():
            if max_jobs is not None and aggregate.processed >= max_jobs:
                break
            try:
                summary = self.run_once()
            except SQLAlchemyError as error:
                # A claimed job left running is requeued by stale recovery.
                logger.error(
                    "Queue access failed worker_id=%s job_type=%s: %s",
                    self.worker_id,
                    self.job_type.value,
                    error,
                )
                summary = WorkerRunSummary(idle_polls=1)
            aggregate.add(summary)
            if summary.processed:
                consecutive_idle = 0
                continue
            consecutive_idle += 1
            if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                break
            self.stop_event.wait(self.poll_interval_seconds)
        return aggregate

    def _handle_failure(self, job: JobView, error: Exception, summary: WorkerRunSummary) -> None:
        error_summary = f"{error.__class__.__name__}: {error}"
        if is_retryable(error) and job.attempt < job.max_attempts:
            delay = self.spec.retry_delay_seconds(job.attempt)
            logger.warning(
                "Job failed, retrying in %.1fs job_id=%s job_type=%s attempt=%d/%d: %s",
                delay,
                job.job_id,
                job.job_type.value,
                job.attempt,
                job.max_attempts,
                error_summary,
            )
            if self.repository.schedule_retry(
                job.job_id,
                run_after=utc_now() + timedelta(seconds=delay),
                error_summary=error_summary,
            ):
                summary.retried = 1
            return

        logger.error(
            "Job failed job_id=%s job_type=%s attempt=%d/%d: %s",
            job.job_id,
            job.job_type.value,
            job.attempt,
            job.max_attempts,
            error_summary,
        )
        if self.repository.fail(job.job_id, error_summary=error_summary):
            summary.failed = 1


class WorkerResources(Protocol):
    """Per-thread repositories and handlers; closed when the thread exits."""

    @property
    def jobs(self) -> JobRepository: ...

    @property
    def handlers(self) -> JobHandlers: ...

    def close(self) -> None: ...


class WorkerPool:
    """Runs ``JobSpec.concurrency`` worker threads per job type."""

    def __init__(
        self,
        *,
        resources_factory: Callable[[], WorkerResources],
        job_types: list[JobType] | None = None,
        poll_interval_seconds: float = 2.0,
        stale_after_seconds: int | None = 1_800,
        worker_prefix: str = "worker",
    ) -> None:
        self.resources_factory = resources_factory
        self.job_types = job_types or list(JobType)
        self.poll_interval_seconds = poll_interval_seconds
        self.stale_after_seconds = stale_after_seconds
        self.worker_prefix = worker_prefix
        self.stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._summaries: dict[str, WorkerRunSummary] = {}
        self._lock = threading.Lock()

    def start(self, *, max_idle_polls: int | None = None) -> None:
        for job_type in self.job_types:
            for index in range(JOB_SPECS[job_type].concurrency):
                worker_id = f"{self.worker_prefix}-{job_type.value}-{index + 1}"
                thread = threading.Thread(
                    target=self._run_worker,
                    args=(job_type, worker_id, max_idle_polls),
                    name=worker_id,
                    daemon=True,
                )
                self._threads.append(thread)
                thread.start()
        logger.info("Worker pool started threads=%d", len(self._threads))

    def stop(self) -> None:
        """Stop claiming new jobs; in-flight jobs run to completion."""

        self.stop_event.set()

    def join(self, timeout: float | None = None) -> None:
        for thread in self._threads:
            thread.join(timeout)

    def run(self, *, max_idle_polls: int | None = None) -> WorkerRunSummary:
        """Start all workers and block until they finish or a signal arrives."""

        with self._signal_handlers():
            self.start(max_idle_polls=max_idle_polls)
            while any(thread.is_alive() for thread in self._threads):
                self.join(timeout=0.5)
        return self.summary()

    def summary(self) -> WorkerRunSummary:
        aggregate = WorkerRunSummary()
        with self._lock:
            for summary in self._summaries.values():
                aggregate.add(summary)
        return aggregate

    def _run_worker(self, job_type: JobType, worker_id: str, max_idle_polls: int | None) -> None:
        resources = self.resources_factory()
        try:
            worker = JobWorker(
                repository=resources.jobs,
                handlers=resources.handlers,
                job_type=job_type,
                worker_id=worker_id,
                poll_interval_seconds=self.poll_interval_seconds,
                stale_after_seconds=self.stale_after_seconds,
                stop_event=self.stop_event,
            )
            summary = worker.run_loop(max_idle_polls=max_idle_polls)
        finally:
            resources.close()
        with self._lock:
            self._summaries[worker_id] = summary
        logger.info(
            "Worker stopped worker_id=%s processed=%d succeeded=%d retried=%d failed=%d",
            worker_id,
            summary.processed,
            summary.succeeded,
            summary.retried,
            summary.failed,
        )

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Received %s, waiting for in-flight jobs", name)
            self.stop()

        installed = True
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            installed = False
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
