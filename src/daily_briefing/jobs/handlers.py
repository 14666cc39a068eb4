"""Job handlers: one per job type, each accumulating per-item errors."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from daily_briefing.episodes.service import EpisodeGenerationService
from daily_briefing.errors import BriefingError
from daily_briefing.ingestion.dedup import Deduplicator
from daily_briefing.ingestion.embedding import EmbeddingStore, embed_pending
from daily_briefing.ingestion.models import BatchResult, FeedFetchResult
from daily_briefing.ingestion.summarization import (
    ArticleSummarizer,
    SummaryStore,
    summarize_pending,
)
from daily_briefing.jobs.models import (
    JobOutcome,
    JobType,
    JobView,
    article_batch_payload,
    episodes_payload,
    fetch_payload,
)
from daily_briefing.models import FeedView
from daily_briefing.providers.base import EmbeddingService

logger = logging.getLogger(__name__)


class FeedSource(Protocol):
    def fetch(self, url: str) -> FeedFetchResult: ...


class HandlerStore(SummaryStore, EmbeddingStore, Protocol):
    def list_feeds(self, feed_ids: list[str] | None = None) -> list[FeedView]: ...

    def list_user_ids(self, user_ids: list[str] | None = None) -> list[str]: ...


JobHandler = Callable[[JobView], JobOutcome]


class JobHandlers:
    """Dispatches claimed jobs to the pipeline stage for their type."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: HandlerStore,
        fetcher: FeedSource,
        deduplicator: Deduplicator,
        summarizer: ArticleSummarizer,
        embedder: EmbeddingService,
        episodes: EpisodeGenerationService,
        heartbeat: Callable[[str], None] | None = None,
    ) -> None:
        self.repository = repository
        self.fetcher = fetcher
        self.deduplicator = deduplicator
        self.summarizer = summarizer
        self.embedder = embedder
        self.episodes = episodes
        self.heartbeat = heartbeat

    def handler_for(self, job_type: JobType) -> JobHandler:
        return {
            JobType.FETCH_ARTICLES: self.fetch_articles,
            JobType.SUMMARIZE_ARTICLES: self.summarize_articles,
            JobType.GENERATE_EMBEDDINGS: self.generate_embeddings,
            JobType.GENERATE_EPISODES: self.generate_episodes,
        }[job_type]

    def handle(self, job: JobView) -> JobOutcome:
        return self.handler_for(job.job_type)(job)

    def fetch_articles(self, job: JobView) -> JobOutcome:
        payload = fetch_payload(job.payload)
        feeds = self.repository.list_feeds(payload.feed_ids)
        logger.info(
            "Fetching %d feeds job_id=%s job_type=%s",
            len(feeds),
            job.job_id,
            job.job_type.value,
        )

        outcome = JobOutcome()
        for feed in feeds:
            outcome.processed += 1
            self._touch(job)
            fetched = self.fetcher.fetch(feed.url)
            if not fetched.success:
                outcome.failed += 1
                outcome.errors.append(f"Failed to parse feed {feed.url}: {fetched.error}")
                continue
            stored = self.deduplicator.store_new(feed.feed_id, fetched.articles)
            outcome.succeeded += stored.stored
            outcome.skipped += stored.skipped
            outcome.errors.extend(stored.errors)
            logger.info(
                "Feed %s stored=%d skipped=%d job_id=%s",
                feed.url,
                stored.stored,
                stored.skipped,
                job.job_id,
            )
        _log_summary(job, outcome)
        return outcome

    def summarize_articles(self, job: JobView) -> JobOutcome:
        payload = article_batch_payload(job.job_type, job.payload)
        batch = summarize_pending(
            repository=self.repository,
            summarizer=self.summarizer,
            article_ids=payload.article_ids,
            batch_size=payload.batch_size,
            on_batch=lambda: self._touch(job),
        )
        outcome = _from_batch(batch)
        _log_summary(job, outcome)
        return outcome

    def generate_embeddings(self, job: JobView) -> JobOutcome:
        payload = article_batch_payload(job.job_type, job.payload)
        batch = embed_pending(
            repository=self.repository,
            embedder=self.embedder,
            article_ids=payload.article_ids,
            batch_size=payload.batch_size,
            on_batch=lambda: self._touch(job),
        )
        outcome = _from_batch(batch)
        _log_summary(job, outcome)
        return outcome

    def generate_episodes(self, job: JobView) -> JobOutcome:
        payload = episodes_payload(job.payload)
        user_ids = self.repository.list_user_ids(payload.user_ids)
        logger.info(
            "Generating episodes for %d users job_id=%s job_type=%s",
            len(user_ids),
            job.job_id,
            job.job_type.value,
        )

        outcome = JobOutcome()
        for user_id in user_ids:
            outcome.processed += 1
            self._touch(job)
            try:
                result = self.episodes.generate_daily(user_id)
            except (BriefingError, SQLAlchemyError) as error:
                outcome.failed += 1
                outcome.errors.append(f"Failed to generate episode for user {user_id}: {error}")
                continue
            if result.skipped:
                outcome.skipped += 1
            else:
                outcome.succeeded += 1
        _log_summary(job, outcome)
        return outcome

    def _touch(self, job: JobView) -> None:
        if self.heartbeat is not None:
            self.heartbeat(job.job_id)


def _from_batch(batch: BatchResult) -> JobOutcome:
    return JobOutcome(
        processed=batch.processed,
        succeeded=batch.succeeded,
        failed=batch.failed,
        errors=list(batch.errors),
    )


def _log_summary(job: JobView, outcome: JobOutcome) -> None:
    logger.info(
        "Job finished job_id=%s job_type=%s processed=%d succeeded=%d skipped=%d failed=%d",
        job.job_id,
        job.job_type.value,
        outcome.processed,
        outcome.succeeded,
        outcome.skipped,
        outcome.failed,
    )
    if outcome.errors:
        logger.error(
            "Job item errors job_id=%s job_type=%s errors=%s",
            job.job_id,
            job.job_type.value,
            outcome.errors,
        )
