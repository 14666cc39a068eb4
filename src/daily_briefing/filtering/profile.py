"""User interest profiles embedded into the article vector space."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from daily_briefing.errors import EmptyInterests, InvalidThreshold, ProfileNotFound
from daily_briefing.models import PreferencesView, Vector
from daily_briefing.providers.base import EmbeddingService

logger = logging.getLogger(__name__)

GENERAL_INTEREST_TEXT = "General interest"
DEFAULT_RELEVANCE_THRESHOLD = 80


class PreferencesStore(Protocol):
    def get_preferences(self, user_id: str) -> PreferencesView | None: ...

    def upsert_preferences(  # noqa: PLR0913
        self,
        *,
        user_id: str,
        topics: list[str],
        keywords: list[str],
        embedding: Vector,
        relevance_threshold: int | None = None,
        onboarding_completed: bool | None = None,
    ) -> PreferencesView: ...

    def set_relevance_threshold(self, *, user_id: str, threshold: int) -> PreferencesView: ...


@dataclass(slots=True, frozen=True)
class Profiled:
    """User has completed onboarding and owns an interest embedding."""

    embedding: Vector
    threshold: int


@dataclass(slots=True, frozen=True)
class Unprofiled:
    """No usable profile; callers decide whether to fail open."""

    reason: str


ProfileResolution = Profiled | Unprofiled


@dataclass(slots=True)
class InterestProfile:
    user_id: str
    topics: list[str]
    keywords: list[str]
    relevance_threshold: int
    embedding: Vector | None
    onboarding_completed: bool


def profile_text(topics: Iterable[str], keywords: Iterable[str]) -> str:
    """Deterministic text encoding of a user's interests."""

    topic_list = _normalize_terms(topics)
    keyword_list = _normalize_terms(keywords)
    parts: list[str] = []
    if topic_list:
        parts.append(f"Topics: {', '.join(topic_list)}")
    if keyword_list:
        parts.append(f"Keywords: {', '.join(keyword_list)}")
    if not parts:
        return GENERAL_INTEREST_TEXT
    return ". ".join(parts)


def validate_threshold(threshold: int) -> int:
    if isinstance(threshold, bool) or not isinstance(threshold, int):
        raise InvalidThreshold(f"Relevance threshold must be an integer, got {threshold!r}")
    if not 0 <= threshold <= 100:  # noqa: PLR2004
        raise InvalidThreshold(f"Relevance threshold must be between 0 and 100, got {threshold}")
    return threshold


class InterestProfileManager:
    """Maintains topic/keyword profiles and their embeddings."""

    def __init__(self, *, repository: PreferencesStore, embedder: EmbeddingService) -> None:
        self.repository = repository
        self.embedder = embedder

    def embed_profile(self, topics: Iterable[str], keywords: Iterable[str]) -> Vector:
        return self.embedder.embed(profile_text(topics, keywords))

    def update_profile(
        self,
        user_id: str,
        topics: Iterable[str],
        keywords: Iterable[str],
    ) -> InterestProfile:
        """Re-embed and upsert the profile; the embedding is recomputed on every call."""

        topic_list = _normalize_terms(topics)
        keyword_list = _normalize_terms(keywords)
        embedding = self.embed_profile(topic_list, keyword_list)
        view = self.repository.upsert_preferences(
            user_id=user_id,
            topics=topic_list,
            keywords=keyword_list,
            embedding=embedding,
        )
        logger.info(
            "Interest profile updated user_id=%s topics=%d keywords=%d",
            user_id,
            len(topic_list),
            len(keyword_list),
        )
        return _to_profile(view)

    def complete_onboarding(
        self,
        user_id: str,
        topics: Iterable[str],
        keywords: Iterable[str],
        *,
        threshold: int | None = None,
    ) -> InterestProfile:
        topic_list = _normalize_terms(topics)
        keyword_list = _normalize_terms(keywords)
        if not topic_list and not keyword_list:
            raise EmptyInterests("Select at least one topic or keyword")
        if threshold is not None:
            validate_threshold(threshold)
        embedding = self.embed_profile(topic_list, keyword_list)
        view = self.repository.upsert_preferences(
            user_id=user_id,
            topics=topic_list,
            keywords=keyword_list,
            embedding=embedding,
            relevance_threshold=threshold,
            onboarding_completed=True,
        )
        logger.info("Onboarding completed user_id=%s", user_id)
        return _to_profile(view)

    def get_profile(self, user_id: str) -> InterestProfile:
        view = self.repository.get_preferences(user_id)
        if view is None:
            raise ProfileNotFound(f"Interest profile not found for user {user_id}")
        return _to_profile(view)

    def set_threshold(self, user_id: str, threshold: int) -> InterestProfile:
        validate_threshold(threshold)
        view = self.repository.set_relevance_threshold(user_id=user_id, threshold=threshold)
        return _to_profile(view)

    def resolve(self, user_id: str) -> ProfileResolution:
        view = self.repository.get_preferences(user_id)
        if view is None:
            return Unprofiled(reason="no preferences")
        if not view.onboarding_completed:
            return Unprofiled(reason="onboarding not completed")
        if not view.interest_profile_embedding:
            return Unprofiled(reason="no interest embedding")
        return Profiled(
            embedding=view.interest_profile_embedding,
            threshold=view.relevance_threshold,
        )


def _normalize_terms(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        term = value.strip()
        if not term or term in seen:
            continue
        seen.add(term)
        result.append(term)
    return result


def _to_profile(view: PreferencesView) -> InterestProfile:
    return InterestProfile(
        user_id=view.user_id,
        topics=list(view.selected_topics),
        keywords=list(view.custom_keywords),
        relevance_threshold=view.relevance_threshold,
        embedding=view.interest_profile_embedding,
        onboarding_completed=view.onboarding_completed,
    )
