"""Controllers for episode CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from daily_briefing.config import Settings
from daily_briefing.episodes.service import delete_episode
from daily_briefing.services import open_services


@dataclass(slots=True)
class GenerateEpisodeCommand:
    """CLI inputs for episode generation."""

    db_path: Path | None
    user_id: str
    force: bool


@dataclass(slots=True)
class ListEpisodesCommand:
    db_path: Path | None
    user_id: str
    limit: int


@dataclass(slots=True)
class DeleteEpisodeCommand:
    db_path: Path | None
    episode_id: str


@dataclass(slots=True)
class ClearAudioCacheCommand:
    db_path: Path | None


class EpisodesCliController:
    """Coordinates episode generation and maintenance commands."""

    def generate(self, command: GenerateEpisodeCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_services(settings) as services:
            episodes = services.episodes
            outcome = (
                episodes.generate(command.user_id)
                if command.force
                else episodes.generate_daily(command.user_id)
            )

        if outcome.skipped or outcome.episode is None:
            return [f"Episode already generated today for user {command.user_id}, skipped."]
        episode = outcome.episode
        return [
            "Episode generated: "
            f"episode_id={episode.episode_id} duration_minutes={episode.duration_minutes} "
            f"articles={len(episode.article_ids)} cached_audio={outcome.from_cache}",
            f"Audio: {episode.audio_url}",
        ]

    def list_episodes(self, command: ListEpisodesCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_services(settings) as services:
            episodes = services.repository.list_episodes_for_user(
                command.user_id,
                limit=command.limit,
            )

        if not episodes:
            return [f"No episodes for user {command.user_id}."]
        return [
            f"- {episode.created_at.isoformat()} episode_id={episode.episode_id} "
            f"duration_minutes={episode.duration_minutes} articles={len(episode.article_ids)} "
            f"audio={episode.audio_url}"
            for episode in episodes
        ]

    def delete(self, command: DeleteEpisodeCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_services(settings) as services:
            delete_episode(
                command.episode_id,
                repository=services.repository,
                storage=services.storage,
                cache=services.audio_cache,
            )
        return [f"Episode deleted: episode_id={command.episode_id}"]

    def clear_cache(self, command: ClearAudioCacheCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_services(settings) as services:
            removed = services.audio_cache.clear()
        return [f"Audio cache cleared: entries={removed}"]
