from __future__ import annotations

from datetime import UTC, datetime

import allure
import pytest
from sqlalchemy.exc import OperationalError

from daily_briefing.config import Settings
from daily_briefing.episodes.service import EpisodeOutcome
from daily_briefing.errors import InvalidJobPayload
from daily_briefing.ingestion.models import FeedFetchResult, ParsedArticle
from daily_briefing.jobs.handlers import JobHandlers
from daily_briefing.jobs.models import JobCreate, JobType, JobView
from daily_briefing.jobs.repository import JobRepository
from daily_briefing.services import BriefingServices
from daily_briefing.storage.repository import BriefingRepository
from fakes import FakeChat, FakeTts, KeywordEmbedder, MemoryStorage, axis_vector

pytestmark = [
    allure.epic("Background Jobs"),
    allure.feature("Job Handlers"),
]

GOOD_FEED = "https://feeds.test/good"
BROKEN_FEED = "https://feeds.test/broken"


class _Source:
    def __init__(self) -> None:
        self.urls: list[str] = []

    def fetch(self, url: str) -> FeedFetchResult:
        self.urls.append(url)
        if url == BROKEN_FEED:
            return FeedFetchResult(success=False, error="Failed to parse RSS feed: HTTP 404")
        return FeedFetchResult(
            success=True,
            articles=[
                ParsedArticle(
                    title=title,
                    content=f"{title} in detail.",
                    url=f"{url}/{index}",
                    published_at=datetime(2026, 10, 18, 5, index, tzinfo=UTC),
                )
                for index, title in enumerate(("AI funding round", "Harbor reopens"))
            ],
        )


@pytest.fixture()
def services(
    repository: BriefingRepository,
    job_repository: JobRepository,
) -> BriefingServices:
    return BriefingServices(
        Settings(db_path=repository.db_path),
        repository=repository,
        jobs=job_repository,
        embedder=KeywordEmbedder({"AI": axis_vector((0, 1.0))}),
        chat=FakeChat("Concise summary."),
        tts=FakeTts(),
        storage=MemoryStorage(),
        fetcher=_Source(),  # type: ignore[arg-type]
    )


def _job(services: BriefingServices, job_type: JobType, payload: dict | None = None) -> JobView:
    return services.jobs.enqueue(JobCreate(job_type=job_type, payload=payload or {}))


def _user_with_feeds(services: BriefingServices, *urls: str) -> str:
    user = services.repository.create_user(email="jobs@example.com")
    for url in urls:
        services.repository.add_feed(user_id=user.user_id, url=url)
    return user.user_id


def test_fetch_job_stores_articles_and_reports_broken_feeds(services: BriefingServices) -> None:
    _user_with_feeds(services, GOOD_FEED, BROKEN_FEED)

    outcome = services.handlers.handle(_job(services, JobType.FETCH_ARTICLES))

    assert outcome.processed == 2
    assert outcome.succeeded == 2
    assert outcome.failed == 1
    assert outcome.errors == [
        f"Failed to parse feed {BROKEN_FEED}: Failed to parse RSS feed: HTTP 404",
    ]
    assert len(services.repository.list_articles_missing_summary()) == 2


def test_fetch_job_can_target_specific_feeds(services: BriefingServices) -> None:
    user_id = _user_with_feeds(services, GOOD_FEED, BROKEN_FEED)
    good = next(
        feed for feed in services.repository.list_feeds_for_user(user_id) if feed.url == GOOD_FEED
    )

    outcome = services.handlers.handle(
        _job(services, JobType.FETCH_ARTICLES, {"feed_ids": [good.feed_id]}),
    )

    assert outcome.failed == 0
    assert services.fetcher.urls == [GOOD_FEED]  # type: ignore[attr-defined]


def test_second_fetch_skips_known_titles(services: BriefingServices) -> None:
    _user_with_feeds(services, GOOD_FEED)
    services.handlers.handle(_job(services, JobType.FETCH_ARTICLES))

    outcome = services.handlers.handle(_job(services, JobType.FETCH_ARTICLES))

    assert (outcome.succeeded, outcome.skipped) == (0, 2)


def test_summarize_then_embed_jobs_fill_pending_articles(services: BriefingServices) -> None:
    _user_with_feeds(services, GOOD_FEED)
    services.handlers.handle(_job(services, JobType.FETCH_ARTICLES))

    summarized = services.handlers.handle(
        _job(services, JobType.SUMMARIZE_ARTICLES, {"batch_size": 1}),
    )
    embedded = services.handlers.handle(_job(services, JobType.GENERATE_EMBEDDINGS))

    assert (summarized.processed, summarized.succeeded) == (2, 2)
    assert (embedded.processed, embedded.succeeded) == (2, 2)
    assert services.repository.list_articles_missing_summary() == []
    assert services.repository.list_articles_missing_embedding() == []


def test_episode_job_generates_once_per_day(services: BriefingServices) -> None:
    _user_with_feeds(services, GOOD_FEED)
    services.handlers.handle(_job(services, JobType.FETCH_ARTICLES))
    services.handlers.handle(_job(services, JobType.SUMMARIZE_ARTICLES))

    first = services.handlers.handle(_job(services, JobType.GENERATE_EPISODES))
    second = services.handlers.handle(_job(services, JobType.GENERATE_EPISODES))

    assert (first.processed, first.succeeded) == (1, 1)
    assert (second.processed, second.skipped) == (1, 1)


def test_episode_job_collects_per_user_failures(services: BriefingServices) -> None:
    user_id = _user_with_feeds(services)

    outcome = services.handlers.handle(
        _job(services, JobType.GENERATE_EPISODES, {"user_ids": [user_id, "ghost"]}),
    )

    assert outcome.processed == 1
    assert outcome.failed == 1
    assert outcome.errors == [
        f"Failed to generate episode for user {user_id}: No recent articles found for user",
    ]


def test_handlers_revalidate_payloads(services: BriefingServices) -> None:
    job = _job(services, JobType.SUMMARIZE_ARTICLES)
    job.payload = {"batch_size": "ten"}

    with pytest.raises(InvalidJobPayload):
        services.handlers.handle(job)


def test_handlers_report_heartbeat_per_feed(services: BriefingServices) -> None:
    _user_with_feeds(services, GOOD_FEED, BROKEN_FEED)
    beats: list[str] = []
    handlers = JobHandlers(
        repository=services.repository,
        fetcher=services.fetcher,
        deduplicator=services.deduplicator,
        summarizer=services.summarizer,
        embedder=services.embedder,
        episodes=services.episodes,
        heartbeat=beats.append,
    )
    job = _job(services, JobType.FETCH_ARTICLES)

    handlers.handle(job)

    assert beats == [job.job_id, job.job_id]


class _LockedEpisodes:
    def __init__(self, locked_user: str) -> None:
        self.locked_user = locked_user

    def generate_daily(self, user_id: str) -> EpisodeOutcome:
        if user_id == self.locked_user:
            raise OperationalError("INSERT INTO episodes", {}, Exception("database is locked"))
        return EpisodeOutcome(episode=None, skipped=True)


def test_episode_job_survives_storage_errors_per_user(services: BriefingServices) -> None:
    locked = services.repository.create_user(email="locked@example.com").user_id
    other = services.repository.create_user(email="other@example.com").user_id
    handlers = JobHandlers(
        repository=services.repository,
        fetcher=services.fetcher,
        deduplicator=services.deduplicator,
        summarizer=services.summarizer,
        embedder=services.embedder,
        episodes=_LockedEpisodes(locked),  # type: ignore[arg-type]
    )

    outcome = handlers.handle(
        _job(services, JobType.GENERATE_EPISODES, {"user_ids": [locked, other]}),
    )

    assert (outcome.processed, outcome.failed, outcome.skipped) == (2, 1, 1)
    assert outcome.errors[0].startswith(f"Failed to generate episode for user {locked}:")
    assert "database is locked" in outcome.errors[0]
