"""SQLModel-backed storage facade for users, feeds, articles, episodes and cache."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, delete, select

from daily_briefing.errors import (
    DimensionMismatch,
    ProfileNotFound,
    UserNotFound,
    ValidationError,
    VectorError,
)
from daily_briefing.filtering.similarity import cosine_similarity
from daily_briefing.models import (
    EMBEDDING_DIMENSIONS,
    ArticleMatch,
    EpisodeCreate,
    EpisodeView,
    FeedView,
    NewArticle,
    PreferencesView,
    SearchScope,
    StoredArticle,
    UserTier,
    UserView,
    Vector,
)
from daily_briefing.storage.alembic_runner import upgrade_head
from daily_briefing.storage.common import (
    DEFAULT_BUSY_TIMEOUT_MS,
    build_sqlite_engine,
    connect_sqlite_with_policy,
    optional_utc_aware,
    pack_vector,
    to_db_datetime,
    to_utc_aware,
    unpack_vector,
    utc_now,
)
from daily_briefing.storage.sqlmodel_models import (
    AppUser,
    Article,
    AudioCacheEntry,
    Episode,
    EpisodeArticle,
    Feed,
    FilteringStatistic,
    UserPreferences,
)

logger = logging.getLogger(__name__)


class BriefingRepository:
    """Facade that persists briefing entities using SQLModel and Alembic."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

        # Keep low-level connection for tests and ad-hoc debugging queries.
        self._connection = connect_sqlite_with_policy(
            db_path=db_path,
            busy_timeout_ms=busy_timeout_ms,
        )

    def close(self) -> None:
        self._connection.close()
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    # -- users -----------------------------------------------------------------

    def create_user(
        self,
        *,
        email: str,
        tier: UserTier = UserTier.FREE,
        user_id: str | None = None,
    ) -> UserView:
        row = AppUser(
            user_id=user_id or str(uuid4()),
            email=email.strip().lower(),
            tier=tier.value,
            created_at=to_db_datetime(utc_now()),
        )
        with Session(self.engine) as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise ValidationError(f"User already exists: {email}") from error
            session.refresh(row)
            return _to_user_view(row)

    def get_user(self, user_id: str) -> UserView | None:
        with Session(self.engine) as session:
            row = session.get(AppUser, user_id)
            return _to_user_view(row) if row is not None else None

    def list_user_ids(self, user_ids: list[str] | None = None) -> list[str]:
        """Return all user ids, or the subset of ``user_ids`` that exist."""

        with Session(self.engine) as session:
            statement = select(AppUser.user_id).order_by(col(AppUser.created_at).asc())
            if user_ids is not None:
                statement = statement.where(col(AppUser.user_id).in_(user_ids))
            return list(session.exec(statement).all())

    # -- feeds -----------------------------------------------------------------

    def add_feed(  # noqa: PLR0913
        self,
        *,
        user_id: str,
        url: str,
        name: str | None = None,
        description: str | None = None,
        category: str | None = None,
        is_popular: bool = False,
    ) -> FeedView:
        with Session(self.engine) as session:
            if session.get(AppUser, user_id) is None:
                raise UserNotFound(f"User not found: {user_id}")
            row = Feed(
                feed_id=str(uuid4()),
                user_id=user_id,
                url=url,
                name=name,
                description=description,
                category=category,
                is_popular=is_popular,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                raise ValidationError(f"Feed already added for this user: {url}") from error
            session.refresh(row)
            return _to_feed_view(row)

    def get_feed(self, feed_id: str) -> FeedView | None:
        with Session(self.engine) as session:
            row = session.get(Feed, feed_id)
            return _to_feed_view(row) if row is not None else None

    def list_feeds_for_user(self, user_id: str) -> list[FeedView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Feed)
                .where(Feed.user_id == user_id)
                .order_by(col(Feed.created_at).asc(), col(Feed.url).asc()),
            ).all()
        return [_to_feed_view(row) for row in rows]

    def list_feeds(self, feed_ids: list[str] | None = None) -> list[FeedView]:
        """Return all feeds, or only ``feed_ids`` when given."""

        with Session(self.engine) as session:
            statement = select(Feed).order_by(col(Feed.created_at).asc())
            if feed_ids is not None:
                statement = statement.where(col(Feed.feed_id).in_(feed_ids))
            rows = session.exec(statement).all()
        return [_to_feed_view(row) for row in rows]

    def delete_feed(self, feed_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(Feed, feed_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    # -- articles --------------------------------------------------------------

    def article_exists(self, *, feed_id: str, title: str) -> bool:
        with Session(self.engine) as session:
            found = session.exec(
                select(Article.article_id)
                .where(Article.feed_id == feed_id, Article.title == title)
                .limit(1),
            ).first()
        return found is not None

    def insert_article(self, *, feed_id: str, article: NewArticle) -> str | None:
        """Insert article, returning its id or ``None`` if ``(feed_id, title)`` exists."""

        embedding = article.embedding
        if embedding is not None:
            _check_dimensions(embedding)
        now = utc_now()
        row = Article(
            article_id=str(uuid4()),
            feed_id=feed_id,
            title=article.title,
            url=article.url,
            content=article.content,
            published_at=(
                to_db_datetime(article.published_at) if article.published_at is not None else None
            ),
            embedding_dim=len(embedding) if embedding is not None else None,
            embedding_blob=pack_vector(embedding) if embedding is not None else None,
            created_at=to_db_datetime(now),
        )
        with Session(self.engine) as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as error:
                session.rollback()
                if self.article_exists(feed_id=feed_id, title=article.title):
                    return None
                raise ValidationError(
                    f"Feed {feed_id} does not exist or article is invalid",
                ) from error
            return row.article_id

    def get_article(self, article_id: str) -> StoredArticle | None:
        with Session(self.engine) as session:
            row = session.get(Article, article_id)
            return _to_stored_article(row) if row is not None else None

    def list_articles_missing_summary(
        self,
        *,
        article_ids: list[str] | None = None,
        limit: int | None = None,
    ) -> list[StoredArticle]:
        with Session(self.engine) as session:
            statement = (
                select(Article)
                .where(col(Article.summary).is_(None))
                .order_by(col(Article.created_at).asc())
            )
            if article_ids is not None:
                statement = statement.where(col(Article.article_id).in_(article_ids))
            if limit is not None:
                statement = statement.limit(limit)
            rows = session.exec(statement).all()
        return [_to_stored_article(row) for row in rows]

    def list_articles_missing_embedding(
        self,
        *,
        article_ids: list[str] | None = None,
        limit: int | None = None,
    ) -> list[StoredArticle]:
        """Summarized articles that still have no embedding."""

        with Session(self.engine) as session:
            statement = (
                select(Article)
                .where(
                    col(Article.embedding_blob).is_(None),
                    col(Article.summary).is_not(None),
                )
                .order_by(col(Article.created_at).asc())
            )
            if article_ids is not None:
                statement = statement.where(col(Article.article_id).in_(article_ids))
            if limit is not None:
                statement = statement.limit(limit)
            rows = session.exec(statement).all()
        return [_to_stored_article(row) for row in rows]

    def set_article_summary(self, *, article_id: str, summary: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(Article, article_id)
            if row is None:
                return False
            row.summary = summary
            session.add(row)
            session.commit()
            return True

    def set_article_embedding(self, *, article_id: str, embedding: Vector) -> bool:
        _check_dimensions(embedding)
        with Session(self.engine) as session:
            row = session.get(Article, article_id)
            if row is None:
                return False
            row.embedding_dim = len(embedding)
            row.embedding_blob = pack_vector(embedding)
            session.add(row)
            session.commit()
            return True

    def list_recent_summarized_articles(
        self,
        *,
        user_id: str,
        since: datetime,
    ) -> list[StoredArticle]:
        """Summarized articles from the user's feeds created since ``since``, newest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(Article)
                .join(Feed, col(Feed.feed_id) == col(Article.feed_id))
                .where(
                    Feed.user_id == user_id,
                    col(Article.summary).is_not(None),
                    col(Article.created_at) >= to_db_datetime(since),
                )
                .order_by(
                    col(Article.published_at).desc(),
                    col(Article.created_at).desc(),
                ),
            ).all()
        return [_to_stored_article(row) for row in rows]

    def nearest_by_embedding(
        self,
        vector: Vector,
        *,
        limit: int,
        scope: SearchScope | None = None,
    ) -> list[ArticleMatch]:
        """Return up to ``limit`` articles ordered by descending similarity to ``vector``."""

        scope = scope or SearchScope()
        with Session(self.engine) as session:
            statement = select(Article).where(col(Article.embedding_blob).is_not(None))
            if scope.user_id is not None:
                statement = statement.join(
                    Feed,
                    col(Feed.feed_id) == col(Article.feed_id),
                ).where(Feed.user_id == scope.user_id)
            if scope.episode_id is not None:
                statement = statement.join(
                    EpisodeArticle,
                    col(EpisodeArticle.article_id) == col(Article.article_id),
                ).where(EpisodeArticle.episode_id == scope.episode_id)
            if scope.exclude_article_id is not None:
                statement = statement.where(Article.article_id != scope.exclude_article_id)
            rows = session.exec(statement).all()

        matches: list[ArticleMatch] = []
        for row in rows:
            article = _to_stored_article(row)
            if not article.embedding:
                continue
            try:
                similarity = cosine_similarity(vector, article.embedding)
            except VectorError as error:
                logger.debug("Skipping article %s in nearest search: %s", row.article_id, error)
                continue
            matches.append(ArticleMatch(article=article, similarity=similarity))
        matches.sort(key=lambda match: match.similarity, reverse=True)
        return matches[:limit]

    # -- preferences -----------------------------------------------------------

    def get_preferences(self, user_id: str) -> PreferencesView | None:
        with Session(self.engine) as session:
            row = session.get(UserPreferences, user_id)
            return _to_preferences_view(row) if row is not None else None

    def upsert_preferences(  # noqa: PLR0913
        self,
        *,
        user_id: str,
        topics: list[str],
        keywords: list[str],
        embedding: Vector,
        relevance_threshold: int | None = None,
        onboarding_completed: bool | None = None,
    ) -> PreferencesView:
        _check_dimensions(embedding)
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            if session.get(AppUser, user_id) is None:
                raise UserNotFound(f"User not found: {user_id}")
            row = session.get(UserPreferences, user_id)
            if row is None:
                row = UserPreferences(user_id=user_id, created_at=now, updated_at=now)
            row.selected_topics_json = json.dumps(topics, ensure_ascii=False)
            row.custom_keywords_json = json.dumps(keywords, ensure_ascii=False)
            row.profile_embedding_dim = len(embedding)
            row.profile_embedding_blob = pack_vector(embedding)
            if relevance_threshold is not None:
                row.relevance_threshold = relevance_threshold
            if onboarding_completed is not None:
                row.onboarding_completed = onboarding_completed
            row.updated_at = now
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_preferences_view(row)

    def set_relevance_threshold(self, *, user_id: str, threshold: int) -> PreferencesView:
        with Session(self.engine) as session:
            row = session.get(UserPreferences, user_id)
            if row is None:
                raise ProfileNotFound(f"Interest profile not found for user {user_id}")
            row.relevance_threshold = threshold
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_preferences_view(row)

    # -- episodes --------------------------------------------------------------

    def exists_episode_for_user_between(
        self,
        *,
        user_id: str,
        start: datetime,
        end: datetime,
    ) -> bool:
        """True if the user has an episode created in ``[start, end)``."""

        with Session(self.engine) as session:
            found = session.exec(
                select(Episode.episode_id)
                .where(
                    Episode.user_id == user_id,
                    col(Episode.created_at) >= to_db_datetime(start),
                    col(Episode.created_at) < to_db_datetime(end),
                )
                .limit(1),
            ).first()
        return found is not None

    def create_episode(self, payload: EpisodeCreate) -> EpisodeView:
        created_at = payload.created_at or utc_now()
        row = Episode(
            episode_id=str(uuid4()),
            user_id=payload.user_id,
            script_text=payload.script_text,
            script_hash=payload.script_hash,
            audio_url=payload.audio_url,
            duration_minutes=payload.duration_minutes,
            created_at=to_db_datetime(created_at),
        )
        article_ids = list(dict.fromkeys(payload.article_ids))
        with Session(self.engine) as session:
            session.add(row)
            session.flush()
            for article_id in article_ids:
                session.add(EpisodeArticle(episode_id=row.episode_id, article_id=article_id))
            session.commit()
            session.refresh(row)
            return _to_episode_view(row, article_ids=article_ids)

    def get_episode(self, episode_id: str) -> EpisodeView | None:
        with Session(self.engine) as session:
            row = session.get(Episode, episode_id)
            if row is None:
                return None
            article_ids = self._episode_article_ids(session=session, episode_id=episode_id)
            return _to_episode_view(row, article_ids=article_ids)

    def list_episodes_for_user(self, user_id: str, *, limit: int = 20) -> list[EpisodeView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(Episode)
                .where(Episode.user_id == user_id)
                .order_by(col(Episode.created_at).desc())
                .limit(limit),
            ).all()
            return [
                _to_episode_view(
                    row,
                    article_ids=self._episode_article_ids(
                        session=session,
                        episode_id=row.episode_id,
                    ),
                )
                for row in rows
            ]

    def delete_episode(self, episode_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(Episode, episode_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def _episode_article_ids(self, *, session: Session, episode_id: str) -> list[str]:
        return list(
            session.exec(
                select(EpisodeArticle.article_id).where(EpisodeArticle.episode_id == episode_id),
            ).all(),
        )

    # -- audio cache -----------------------------------------------------------

    def get_cached_audio(self, script_hash: str) -> str | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(AudioCacheEntry).where(AudioCacheEntry.script_hash == script_hash),
            ).one_or_none()
            return row.audio_url if row is not None else None

    def upsert_cached_audio(self, *, script_hash: str, audio_url: str) -> None:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.exec(
                select(AudioCacheEntry).where(AudioCacheEntry.script_hash == script_hash),
            ).one_or_none()
            if row is None:
                row = AudioCacheEntry(
                    script_hash=script_hash,
                    audio_url=audio_url,
                    created_at=now,
                    updated_at=now,
                )
            else:
                row.audio_url = audio_url
                row.updated_at = now
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                # Concurrent insert for the same hash, last writer wins.
                session.rollback()
                existing = session.exec(
                    select(AudioCacheEntry).where(AudioCacheEntry.script_hash == script_hash),
                ).one()
                existing.audio_url = audio_url
                existing.updated_at = now
                session.add(existing)
                session.commit()

    def delete_cached_audio(self, script_hash: str) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                delete(AudioCacheEntry).where(col(AudioCacheEntry.script_hash) == script_hash),
            )
            session.commit()
            return bool(result.rowcount)

    def clear_audio_cache(self) -> int:
        with Session(self.engine) as session:
            result = session.exec(delete(AudioCacheEntry))
            session.commit()
            return int(result.rowcount or 0)

    # -- filtering statistics --------------------------------------------------

    def add_filtering_statistics(
        self,
        *,
        user_id: str,
        included: int,
        filtered_out: int,
        recorded_at: datetime | None = None,
    ) -> None:
        with Session(self.engine) as session:
            session.add(
                FilteringStatistic(
                    user_id=user_id,
                    recorded_at=to_db_datetime(recorded_at or utc_now()),
                    included_articles=included,
                    filtered_out_articles=filtered_out,
                ),
            )
            session.commit()

    def summarize_filtering_statistics(
        self,
        *,
        user_id: str,
        since: datetime | None = None,
    ) -> tuple[int, int, int]:
        """Return ``(included, filtered_out, runs)`` for the user since ``since``."""

        with Session(self.engine) as session:
            statement = select(
                func.coalesce(func.sum(FilteringStatistic.included_articles), 0),
                func.coalesce(func.sum(FilteringStatistic.filtered_out_articles), 0),
                func.count(col(FilteringStatistic.id)),
            ).where(FilteringStatistic.user_id == user_id)
            if since is not None:
                statement = statement.where(
                    col(FilteringStatistic.recorded_at) >= to_db_datetime(since),
                )
            included, filtered_out, runs = session.exec(statement).one()
        return int(included), int(filtered_out), int(runs)


def _check_dimensions(vector: Vector) -> None:
    if len(vector) != EMBEDDING_DIMENSIONS:
        raise DimensionMismatch(
            f"Embedding dimensions must match: {len(vector)} vs {EMBEDDING_DIMENSIONS}",
        )


def _to_user_view(row: AppUser) -> UserView:
    return UserView(
        user_id=row.user_id,
        email=row.email,
        tier=UserTier(row.tier),
        created_at=to_utc_aware(row.created_at),
    )


def _to_feed_view(row: Feed) -> FeedView:
    return FeedView(
        feed_id=row.feed_id,
        user_id=row.user_id,
        url=row.url,
        name=row.name,
        description=row.description,
        category=row.category,
        is_popular=bool(row.is_popular),
        created_at=to_utc_aware(row.created_at),
    )


def _to_stored_article(row: Article) -> StoredArticle:
    embedding = None
    if row.embedding_blob is not None and row.embedding_dim:
        embedding = unpack_vector(row.embedding_blob, row.embedding_dim)
    return StoredArticle(
        article_id=row.article_id,
        feed_id=row.feed_id,
        title=row.title,
        url=row.url,
        content=row.content,
        published_at=optional_utc_aware(row.published_at),
        summary=row.summary,
        embedding=embedding,
        created_at=to_utc_aware(row.created_at),
    )


def _to_preferences_view(row: UserPreferences) -> PreferencesView:
    embedding = None
    if row.profile_embedding_blob is not None and row.profile_embedding_dim:
        embedding = unpack_vector(row.profile_embedding_blob, row.profile_embedding_dim)
    return PreferencesView(
        user_id=row.user_id,
        selected_topics=_load_string_list(row.selected_topics_json),
        custom_keywords=_load_string_list(row.custom_keywords_json),
        relevance_threshold=row.relevance_threshold,
        interest_profile_embedding=embedding,
        onboarding_completed=bool(row.onboarding_completed),
        updated_at=to_utc_aware(row.updated_at),
    )


def _to_episode_view(row: Episode, *, article_ids: list[str]) -> EpisodeView:
    return EpisodeView(
        episode_id=row.episode_id,
        user_id=row.user_id,
        script_text=row.script_text,
        script_hash=row.script_hash,
        audio_url=row.audio_url,
        duration_minutes=row.duration_minutes,
        created_at=to_utc_aware(row.created_at),
        article_ids=article_ids,
    )


def _load_string_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    parsed = json.loads(raw)
    if not isinstance(parsed, list):
        return []
    return [str(item) for item in parsed]
