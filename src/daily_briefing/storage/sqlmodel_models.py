"""SQLModel ORM tables for briefing storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    LargeBinary,
    PrimaryKeyConstraint,
    Text,
    UniqueConstraint,
    text,
)
from sqlmodel import Field, SQLModel


class AppUser(SQLModel, table=True):
    __tablename__ = "users"  # type: ignore[bad-override]

    user_id: str = Field(primary_key=True)
    email: str = Field(sa_column=Column(Text, nullable=False, unique=True))
    tier: str = Field(default="free", index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Feed(SQLModel, table=True):
    __tablename__ = "feeds"  # type: ignore[bad-override]
    __table_args__ = (UniqueConstraint("user_id", "url", name="uq_feeds_user_url"),)

    feed_id: str = Field(primary_key=True)
    user_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    url: str
    name: str | None = None
    description: str | None = None
    category: str | None = Field(default=None, index=True)
    is_popular: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=text("0")),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Article(SQLModel, table=True):
    __tablename__ = "articles"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("feed_id", "title", name="uq_articles_feed_title"),
        Index("idx_articles_created_at", "created_at"),
    )

    article_id: str = Field(primary_key=True)
    feed_id: str = Field(
        sa_column=Column(
            ForeignKey("feeds.feed_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    title: str
    url: str
    content: str = Field(default="", sa_column=Column(Text, nullable=False))
    published_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    summary: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    embedding_dim: int | None = None
    embedding_blob: bytes | None = Field(
        default=None,
        sa_column=Column(LargeBinary, nullable=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class UserPreferences(SQLModel, table=True):
    __tablename__ = "user_preferences"  # type: ignore[bad-override]

    user_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    selected_topics_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    custom_keywords_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    relevance_threshold: int = Field(default=80)
    profile_embedding_dim: int | None = None
    profile_embedding_blob: bytes | None = Field(
        default=None,
        sa_column=Column(LargeBinary, nullable=True),
    )
    onboarding_completed: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default=text("0")),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Episode(SQLModel, table=True):
    __tablename__ = "episodes"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_episodes_user_created", "user_id", "created_at"),)

    episode_id: str = Field(primary_key=True)
    user_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    script_text: str = Field(sa_column=Column(Text, nullable=False))
    script_hash: str = Field(index=True)
    audio_url: str
    duration_minutes: int
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class EpisodeArticle(SQLModel, table=True):
    __tablename__ = "episode_articles"  # type: ignore[bad-override]
    __table_args__ = (
        PrimaryKeyConstraint("episode_id", "article_id", name="pk_episode_articles"),
    )

    episode_id: str = Field(
        sa_column=Column(
            ForeignKey("episodes.episode_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    article_id: str = Field(
        sa_column=Column(
            ForeignKey("articles.article_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )


class AudioCacheEntry(SQLModel, table=True):
    __tablename__ = "audio_cache"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    script_hash: str = Field(sa_column=Column(Text, nullable=False, unique=True))
    audio_url: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class FilteringStatistic(SQLModel, table=True):
    __tablename__ = "filtering_statistics"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_filtering_statistics_user_date", "user_id", "recorded_at"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    recorded_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    included_articles: int = 0
    filtered_out_articles: int = 0


class Job(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_jobs_type_status_run_after", "job_type", "status", "run_after"),)

    job_id: str = Field(primary_key=True)
    job_type: str = Field(index=True)
    payload_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    status: str = Field(index=True)
    attempt: int = 0
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    run_after: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    worker_id: str | None = None
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    heartbeat_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    error_summary: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    result_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class JobEvent(SQLModel, table=True):
    __tablename__ = "job_events"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(
        sa_column=Column(
            ForeignKey("jobs.job_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    event_type: str
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
