"""Per-user ingestion: fetch feeds, embed, relevance-filter and store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from daily_briefing.errors import BriefingError
from daily_briefing.filtering.profile import InterestProfileManager, Profiled
from daily_briefing.filtering.relevance import RelevanceStats, filter_with_profile
from daily_briefing.filtering.statistics import FilteringStatistics
from daily_briefing.ingestion.dedup import Deduplicator
from daily_briefing.ingestion.models import FeedFetchResult, ParsedArticle, PipelineResult
from daily_briefing.models import FeedView, NewArticle, Vector
from daily_briefing.providers.base import EmbeddingService

logger = logging.getLogger(__name__)


class FeedSource(Protocol):
    def fetch(self, url: str) -> FeedFetchResult: ...


class UserFeedStore(Protocol):
    def list_feeds_for_user(self, user_id: str) -> list[FeedView]: ...


@dataclass(slots=True)
class _Candidate:
    article_id: str
    feed_id: str
    article: ParsedArticle
    embedding: Vector | None


def embedding_text(article: ParsedArticle) -> str:
    return f"{article.title}. {article.content}"


class ArticleProcessingPipeline:
    """Runs the full fetch → embed → filter → store flow for one user."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: UserFeedStore,
        fetcher: FeedSource,
        embedder: EmbeddingService,
        profiles: InterestProfileManager,
        deduplicator: Deduplicator,
        statistics: FilteringStatistics,
    ) -> None:
        self.repository = repository
        self.fetcher = fetcher
        self.embedder = embedder
        self.profiles = profiles
        self.deduplicator = deduplicator
        self.statistics = statistics

    def process_user(self, user_id: str) -> PipelineResult:
        """Never raises; unexpected failures end up in ``errors``."""

        result = PipelineResult()
        try:
            self._run(user_id, result)
        except Exception as error:  # noqa: BLE001
            logger.exception("Article processing pipeline failed user_id=%s", user_id)
            result.errors.append(f"Pipeline failed: {error}")
        result.success = not result.errors
        return result

    def _run(self, user_id: str, result: PipelineResult) -> None:
        feeds = self.repository.list_feeds_for_user(user_id)
        if not feeds:
            logger.warning("No feeds found for user user_id=%s", user_id)
            return
        logger.info("Processing articles user_id=%s feeds=%d", user_id, len(feeds))

        candidates: list[_Candidate] = []
        for feed in feeds:
            candidates.extend(self._collect_feed(feed, result))
        if not candidates:
            logger.warning("No articles with embeddings to filter user_id=%s", user_id)
            return

        admitted_ids, stats = self._filter(user_id, candidates)
        result.total_filtered = stats.filtered_out_articles

        by_feed: dict[str, list[NewArticle]] = {}
        for candidate in candidates:
            if candidate.article_id not in admitted_ids:
                continue
            by_feed.setdefault(candidate.feed_id, []).append(
                NewArticle(
                    title=candidate.article.title,
                    url=candidate.article.url,
                    content=candidate.article.content,
                    published_at=candidate.article.published_at,
                    embedding=candidate.embedding,
                ),
            )

        for feed_id, articles in by_feed.items():
            dedup = self.deduplicator.store_new(feed_id, articles)
            result.total_stored += dedup.stored
            result.total_skipped += dedup.skipped
            result.errors.extend(dedup.errors)

        self.statistics.record(user_id, stats.included_articles, stats.filtered_out_articles)
        logger.info(
            "Article processing complete user_id=%s fetched=%d filtered=%d stored=%d "
            "skipped=%d errors=%d",
            user_id,
            result.total_fetched,
            result.total_filtered,
            result.total_stored,
            result.total_skipped,
            len(result.errors),
        )

    def _collect_feed(self, feed: FeedView, result: PipelineResult) -> list[_Candidate]:
        fetched = self.fetcher.fetch(feed.url)
        if not fetched.success:
            result.errors.append(f"Failed to parse feed {feed.url}: {fetched.error}")
            return []

        candidates: list[_Candidate] = []
        for index, article in enumerate(fetched.articles):
            try:
                embedding = self.embedder.embed(embedding_text(article))
            except BriefingError as error:
                result.errors.append(
                    f'Failed to generate embedding for article "{article.title}": {error}',
                )
                continue
            candidates.append(
                _Candidate(
                    article_id=f"{feed.feed_id}:{index}",
                    feed_id=feed.feed_id,
                    article=article,
                    embedding=embedding,
                ),
            )
            result.total_fetched += 1
        return candidates

    def _filter(
        self,
        user_id: str,
        candidates: list[_Candidate],
    ) -> tuple[set[str], RelevanceStats]:
        resolution = self.profiles.resolve(user_id)
        if isinstance(resolution, Profiled):
            relevance = filter_with_profile(resolution, candidates)
            logger.info(
                "Content filtering user_id=%s total=%d included=%d filtered_out=%d",
                user_id,
                relevance.stats.total_articles,
                relevance.stats.included_articles,
                relevance.stats.filtered_out_articles,
            )
            return {item.article_id for item in relevance.admitted}, relevance.stats

        logger.info(
            "No interest profile user_id=%s (%s), admitting all %d articles",
            user_id,
            resolution.reason,
            len(candidates),
        )
        return (
            {candidate.article_id for candidate in candidates},
            RelevanceStats(
                total_articles=len(candidates),
                included_articles=len(candidates),
                filtered_out_articles=0,
            ),
        )
