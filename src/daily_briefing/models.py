"""Domain models shared by storage, pipeline and episode generation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

EMBEDDING_DIMENSIONS = 1536

Vector = list[float]


class UserTier(str, Enum):
    """Subscription tier; determines the episode duration cap."""

    FREE = "free"
    PRO = "pro"


class StatsTimeRange(str, Enum):
    LAST_7_DAYS = "last_7_days"
    LAST_30_DAYS = "last_30_days"
    ALL_TIME = "all_time"


@dataclass(slots=True)
class UserView:
    user_id: str
    email: str
    tier: UserTier
    created_at: datetime


@dataclass(slots=True)
class FeedView:
    feed_id: str
    user_id: str
    url: str
    name: str | None
    description: str | None
    category: str | None
    is_popular: bool
    created_at: datetime


@dataclass(slots=True)
class NewArticle:
    """Article candidate about to be persisted under a feed."""

    title: str
    url: str
    content: str
    published_at: datetime | None
    embedding: Vector | None = None


@dataclass(slots=True)
class StoredArticle:
    article_id: str
    feed_id: str
    title: str
    url: str
    content: str
    published_at: datetime | None
    summary: str | None
    embedding: Vector | None
    created_at: datetime


@dataclass(slots=True)
class ArticleMatch:
    """Nearest-neighbour hit, similarity is 1 - cosine distance."""

    article: StoredArticle
    similarity: float


@dataclass(slots=True)
class SearchScope:
    """Optional narrowing for nearest-neighbour queries."""

    user_id: str | None = None
    episode_id: str | None = None
    exclude_article_id: str | None = None


@dataclass(slots=True)
class PreferencesView:
    user_id: str
    selected_topics: list[str]
    custom_keywords: list[str]
    relevance_threshold: int
    interest_profile_embedding: Vector | None
    onboarding_completed: bool
    updated_at: datetime


@dataclass(slots=True)
class EpisodeCreate:
    user_id: str
    script_text: str
    script_hash: str
    audio_url: str
    duration_minutes: int
    article_ids: list[str] = field(default_factory=list)
    created_at: datetime | None = None


@dataclass(slots=True)
class EpisodeView:
    episode_id: str
    user_id: str
    script_text: str
    script_hash: str
    audio_url: str
    duration_minutes: int
    created_at: datetime
    article_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class FilteringStatsSummary:
    """Aggregated relevance filter counters over a time range."""

    time_range: StatsTimeRange
    total_articles: int = 0
    included_articles: int = 0
    filtered_out_articles: int = 0
    inclusion_percentage: float = 0.0
    runs: int = 0
