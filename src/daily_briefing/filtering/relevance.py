"""Admit or reject articles by similarity to the user's interest profile."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from daily_briefing.errors import ProfileNotFound, VectorError
from daily_briefing.filtering.profile import InterestProfileManager, Profiled
from daily_briefing.filtering.similarity import cosine_similarity
from daily_briefing.models import Vector

logger = logging.getLogger(__name__)


class EmbeddedArticle(Protocol):
    article_id: str
    embedding: Vector | None


@dataclass(slots=True)
class ScoredArticle:
    article_id: str
    similarity: float


@dataclass(slots=True)
class RelevanceStats:
    """Counts for one filtering pass; ``included + filtered_out == total``."""

    total_articles: int = 0
    included_articles: int = 0
    filtered_out_articles: int = 0


@dataclass(slots=True)
class RelevanceResult:
    admitted: list[ScoredArticle] = field(default_factory=list)
    stats: RelevanceStats = field(default_factory=RelevanceStats)


def filter_with_profile(
    profile: Profiled,
    articles: Iterable[EmbeddedArticle],
) -> RelevanceResult:
    """Admit articles whose similarity is at least ``threshold / 100``.

    Articles without a usable embedding are never admitted but still count
    toward the total.
    """

    cutoff = profile.threshold / 100
    result = RelevanceResult()
    for article in articles:
        result.stats.total_articles += 1
        if not article.embedding:
            continue
        try:
            similarity = cosine_similarity(article.embedding, profile.embedding)
        except VectorError as error:
            logger.warning(
                "Skipping article %s in relevance filter: %s",
                article.article_id,
                error,
            )
            continue
        if similarity >= cutoff:
            result.admitted.append(
                ScoredArticle(article_id=article.article_id, similarity=similarity),
            )

    result.stats.included_articles = len(result.admitted)
    result.stats.filtered_out_articles = (
        result.stats.total_articles - result.stats.included_articles
    )
    return result


class RelevanceFilter:
    """Relevance filter bound to stored interest profiles."""

    def __init__(self, *, profiles: InterestProfileManager) -> None:
        self.profiles = profiles

    def filter_by_relevance(
        self,
        user_id: str,
        articles: Iterable[EmbeddedArticle],
    ) -> RelevanceResult:
        """Raises ``ProfileNotFound`` when the user has no interest profile."""

        profile = self.profiles.get_profile(user_id)
        if not profile.embedding:
            raise ProfileNotFound(f"Interest profile for user {user_id} has no embedding")
        result = filter_with_profile(
            Profiled(embedding=profile.embedding, threshold=profile.relevance_threshold),
            articles,
        )
        logger.info(
            "Relevance filter user_id=%s threshold=%d total=%d included=%d filtered_out=%d",
            user_id,
            profile.relevance_threshold,
            result.stats.total_articles,
            result.stats.included_articles,
            result.stats.filtered_out_articles,
        )
        return result
