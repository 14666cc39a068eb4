"""Controllers for interest profile, statistics and search CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from daily_briefing.config import Settings
from daily_briefing.filtering.profile import InterestProfile
from daily_briefing.filtering.search import SearchHit
from daily_briefing.models import StatsTimeRange
from daily_briefing.services import open_services


@dataclass(slots=True)
class ProfileSetCommand:
    """CLI inputs for onboarding / interest update."""

    db_path: Path | None
    user_id: str
    topics: tuple[str, ...]
    keywords: tuple[str, ...]
    threshold: int | None


@dataclass(slots=True)
class ProfileShowCommand:
    db_path: Path | None
    user_id: str


@dataclass(slots=True)
class ProfileThresholdCommand:
    db_path: Path | None
    user_id: str
    threshold: int


@dataclass(slots=True)
class FilteringStatsCommand:
    db_path: Path | None
    user_id: str
    time_range: str


@dataclass(slots=True)
class SearchCommand:
    """CLI inputs for semantic search; ``article_id`` switches to similar-article lookup."""

    db_path: Path | None
    query: str | None
    article_id: str | None
    user_id: str | None
    episode_id: str | None
    top_k: int


class FilteringCliController:
    """Coordinates interest profile and search commands."""

    def set_profile(self, command: ProfileSetCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_services(settings) as services:
            profile = services.profiles.complete_onboarding(
                command.user_id,
                command.topics,
                command.keywords,
                threshold=command.threshold,
            )
        return ["Interest profile saved.", *_profile_lines(profile)]

    def show_profile(self, command: ProfileShowCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_services(settings) as services:
            profile = services.profiles.get_profile(command.user_id)
        return _profile_lines(profile)

    def set_threshold(self, command: ProfileThresholdCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_services(settings) as services:
            profile = services.profiles.set_threshold(command.user_id, command.threshold)
        return [
            f"Relevance threshold updated: user_id={profile.user_id} "
            f"threshold={profile.relevance_threshold}",
        ]

    def stats(self, command: FilteringStatsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        time_range = StatsTimeRange(command.time_range)
        with open_services(settings) as services:
            summary = services.statistics.summary(command.user_id, time_range)
        return [
            f"Filtering statistics ({time_range.value}): "
            f"runs={summary.runs} total={summary.total_articles} "
            f"included={summary.included_articles} "
            f"filtered_out={summary.filtered_out_articles} "
            f"inclusion={summary.inclusion_percentage:.2f}%",
        ]

    def search(self, command: SearchCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_services(settings) as services:
            if command.article_id:
                hits = services.search.find_similar(command.article_id, top_k=command.top_k)
            else:
                hits = services.search.search(
                    command.query or "",
                    top_k=command.top_k,
                    user_id=command.user_id,
                    episode_id=command.episode_id,
                )

        if not hits:
            return ["No matching articles."]
        return [_hit_line(index, hit) for index, hit in enumerate(hits, start=1)]


def _profile_lines(profile: InterestProfile) -> list[str]:
    return [
        f"user_id={profile.user_id}",
        f"topics={', '.join(profile.topics) or '-'}",
        f"keywords={', '.join(profile.keywords) or '-'}",
        f"threshold={profile.relevance_threshold}",
        f"onboarding_completed={profile.onboarding_completed}",
        f"embedding={'yes' if profile.embedding else 'no'}",
    ]


def _hit_line(index: int, hit: SearchHit) -> str:
    return f"{index}. [{hit.similarity:.3f}] {hit.title} ({hit.url}) article_id={hit.article_id}"
