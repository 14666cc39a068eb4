"""Daily episode generation: script, audio, persisted episode."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from daily_briefing.episodes.audio import (
    AudioCache,
    AudioGenerator,
    estimate_duration_minutes,
    remove_episode_audio,
)
from daily_briefing.episodes.script import EpisodeScriptAssembler
from daily_briefing.errors import EpisodeNotFound
from daily_briefing.models import EpisodeCreate, EpisodeView
from daily_briefing.providers.base import BlobStorage
from daily_briefing.storage.common import utc_now

logger = logging.getLogger(__name__)


class EpisodeStore(Protocol):
    def exists_episode_for_user_between(
        self,
        *,
        user_id: str,
        start: datetime,
        end: datetime,
    ) -> bool: ...

    def create_episode(self, payload: EpisodeCreate) -> EpisodeView: ...

    def get_episode(self, episode_id: str) -> EpisodeView | None: ...

    def delete_episode(self, episode_id: str) -> bool: ...


@dataclass(slots=True)
class EpisodeOutcome:
    episode: EpisodeView | None
    skipped: bool = False
    from_cache: bool = False


def day_bounds(now: datetime) -> tuple[datetime, datetime]:
    """``[today 00:00, tomorrow 00:00)`` in the timezone of ``now``."""

    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


class EpisodeGenerationService:
    def __init__(
        self,
        *,
        repository: EpisodeStore,
        assembler: EpisodeScriptAssembler,
        audio: AudioGenerator,
        words_per_minute: int = 150,
    ) -> None:
        self.repository = repository
        self.assembler = assembler
        self.audio = audio
        self.words_per_minute = words_per_minute

    def has_episode_today(self, user_id: str, *, now: datetime | None = None) -> bool:
        start, end = day_bounds(now or utc_now())
        return self.repository.exists_episode_for_user_between(
            user_id=user_id,
            start=start,
            end=end,
        )

    def generate_daily(self, user_id: str, *, now: datetime | None = None) -> EpisodeOutcome:
        """Generate today's episode unless one already exists for the user."""

        now = now or utc_now()
        if self.has_episode_today(user_id, now=now):
            logger.info("Episode already exists today user_id=%s, skipping", user_id)
            return EpisodeOutcome(episode=None, skipped=True)
        return self.generate(user_id, now=now)

    def generate(self, user_id: str, *, now: datetime | None = None) -> EpisodeOutcome:
        script = self.assembler.assemble(user_id, now=now)
        audio = self.audio.generate(script.script_text)
        estimated = estimate_duration_minutes(
            script.script_text,
            words_per_minute=self.words_per_minute,
        )
        episode = self.repository.create_episode(
            EpisodeCreate(
                user_id=user_id,
                script_text=script.script_text,
                script_hash=audio.script_hash,
                audio_url=audio.audio_url,
                duration_minutes=min(estimated, script.duration_minutes),
                article_ids=script.article_ids,
                created_at=now,
            ),
        )
        logger.info(
            "Episode created episode_id=%s user_id=%s articles=%d from_cache=%s",
            episode.episode_id,
            user_id,
            len(script.article_ids),
            audio.from_cache,
        )
        return EpisodeOutcome(episode=episode, from_cache=audio.from_cache)

    def delete(self, episode_id: str) -> None:
        delete_episode(
            episode_id,
            repository=self.repository,
            storage=self.audio.storage,
            cache=self.audio.cache,
        )


def delete_episode(
    episode_id: str,
    *,
    repository: EpisodeStore,
    storage: BlobStorage,
    cache: AudioCache,
) -> None:
    """Delete an episode with its audio blob and cache entry."""

    episode = repository.get_episode(episode_id)
    if episode is None:
        raise EpisodeNotFound(f"Episode not found: {episode_id}")
    remove_episode_audio(
        storage=storage,
        cache=cache,
        audio_url=episode.audio_url,
        script_text=episode.script_text,
    )
    repository.delete_episode(episode_id)
    logger.info("Episode deleted episode_id=%s", episode_id)
