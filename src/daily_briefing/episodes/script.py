"""Episode script assembly from recent article summaries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from daily_briefing.errors import NoRecentArticles, OwnershipError, UserNotFound, VectorError
from daily_briefing.filtering.profile import InterestProfileManager, Profiled
from daily_briefing.filtering.similarity import cosine_similarity
from daily_briefing.models import FeedView, StoredArticle, UserTier, UserView
from daily_briefing.providers.base import ChatService
from daily_briefing.storage.common import utc_now

logger = logging.getLogger(__name__)

TIER_LIMITS: dict[UserTier, int] = {
    UserTier.FREE: 12,
    UserTier.PRO: 30,
}
WORDS_PER_MINUTE = 150
DEFAULT_LOOKBACK_HOURS = 48

SCRIPT_PROMPT = """You are a professional radio news host. Generate a cohesive, engaging \
news briefing script based on the following article summaries. The script should:

1. Start with a warm, professional introduction
2. Present each news item in a natural, conversational tone
3. Include smooth transitions between topics
4. End with a brief outro

Target duration: {duration} minutes (approximately {word_count} words)

Article Summaries:
{summaries}

Generate the complete script:"""


class ScriptSourceStore(Protocol):
    def get_user(self, user_id: str) -> UserView | None: ...

    def get_feed(self, feed_id: str) -> FeedView | None: ...

    def list_recent_summarized_articles(
        self,
        *,
        user_id: str,
        since: datetime,
    ) -> list[StoredArticle]: ...


@dataclass(slots=True)
class AssembledScript:
    script_text: str
    duration_minutes: int
    article_ids: list[str] = field(default_factory=list)


def duration_limit_for(tier: UserTier) -> int:
    return TIER_LIMITS[UserTier(tier)]


def build_script_prompt(articles: list[StoredArticle], duration_minutes: int) -> tuple[str, int]:
    """Return the chat prompt and its token budget."""

    word_count = duration_minutes * WORDS_PER_MINUTE
    summaries = "\n\n".join(
        f"{index}. {article.title}\n{article.summary}"
        for index, article in enumerate(articles, start=1)
    )
    prompt = SCRIPT_PROMPT.format(
        duration=duration_minutes,
        word_count=word_count,
        summaries=summaries,
    )
    return prompt, word_count * 2


class EpisodeScriptAssembler:
    """Turns a user's recent summarized articles into a radio-style script."""

    def __init__(
        self,
        *,
        repository: ScriptSourceStore,
        chat: ChatService,
        profiles: InterestProfileManager,
        lookback_hours: int = DEFAULT_LOOKBACK_HOURS,
    ) -> None:
        self.repository = repository
        self.chat = chat
        self.profiles = profiles
        self.lookback_hours = lookback_hours

    def assemble(self, user_id: str, *, now: datetime | None = None) -> AssembledScript:
        user = self.repository.get_user(user_id)
        if user is None:
            raise UserNotFound(f"User not found: {user_id}")
        duration = duration_limit_for(user.tier)

        articles = self.recent_articles(user_id, now=now)
        if not articles:
            raise NoRecentArticles("No recent articles found for user")

        prompt, max_tokens = build_script_prompt(articles, duration)
        script_text = self.chat.complete(prompt, max_tokens=max_tokens).strip()
        logger.info(
            "Script assembled user_id=%s articles=%d chars=%d duration_cap=%d",
            user_id,
            len(articles),
            len(script_text),
            duration,
        )
        return AssembledScript(
            script_text=script_text,
            duration_minutes=duration,
            article_ids=[article.article_id for article in articles],
        )

    def recent_articles(self, user_id: str, *, now: datetime | None = None) -> list[StoredArticle]:
        """Summarized articles inside the lookback window, newest first."""

        since = (now or utc_now()) - timedelta(hours=self.lookback_hours)
        articles = self.repository.list_recent_summarized_articles(user_id=user_id, since=since)
        self._check_ownership(user_id, articles)

        resolution = self.profiles.resolve(user_id)
        if not isinstance(resolution, Profiled):
            logger.info(
                "Using all %d recent articles user_id=%s (%s)",
                len(articles),
                user_id,
                resolution.reason,
            )
            return articles
        return [article for article in articles if _passes(resolution, article)]

    def _check_ownership(self, user_id: str, articles: list[StoredArticle]) -> None:
        owners: dict[str, str | None] = {}
        for article in articles:
            if article.feed_id not in owners:
                feed = self.repository.get_feed(article.feed_id)
                owners[article.feed_id] = feed.user_id if feed is not None else None
            if owners[article.feed_id] != user_id:
                raise OwnershipError(
                    f"Article {article.article_id} does not belong to user {user_id}",
                )


def _passes(profile: Profiled, article: StoredArticle) -> bool:
    # Unembedded rows were admitted by the pipeline before storage.
    if not article.embedding:
        return True
    try:
        similarity = cosine_similarity(article.embedding, profile.embedding)
    except VectorError:
        return False
    return similarity >= profile.threshold / 100
