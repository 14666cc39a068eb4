"""Controllers for user, feed and ingestion CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from daily_briefing.config import Settings
from daily_briefing.errors import FeedNotFound, OwnershipError, UserNotFound
from daily_briefing.ingestion.sources.rss import validate_feed_url
from daily_briefing.models import UserTier
from daily_briefing.services import open_services


@dataclass(slots=True)
class AddUserCommand:
    """CLI inputs for user creation."""

    db_path: Path | None
    email: str
    tier: str


@dataclass(slots=True)
class AddFeedCommand:
    """CLI inputs for feed subscription."""

    db_path: Path | None
    user_id: str
    url: str
    name: str | None
    category: str | None


@dataclass(slots=True)
class ListFeedsCommand:
    db_path: Path | None
    user_id: str


@dataclass(slots=True)
class RemoveFeedCommand:
    db_path: Path | None
    user_id: str
    feed_id: str


@dataclass(slots=True)
class PipelineRunCommand:
    """CLI inputs for a one-off per-user pipeline run."""

    db_path: Path | None
    user_id: str


class IngestionCliController:
    """Coordinates subscription and ingestion command execution."""

    def add_user(self, command: AddUserCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_services(settings) as services:
            user = services.repository.create_user(
                email=command.email,
                tier=UserTier(command.tier),
            )
        return [f"User created: user_id={user.user_id} email={user.email} tier={user.tier.value}"]

    def add_feed(self, command: AddFeedCommand) -> list[str]:
        url = validate_feed_url(command.url)
        settings = Settings.from_env(db_path=command.db_path)
        with open_services(settings) as services:
            feed = services.repository.add_feed(
                user_id=command.user_id,
                url=url,
                name=command.name,
                category=command.category,
            )
        return [f"Feed added: feed_id={feed.feed_id} url={feed.url}"]

    def list_feeds(self, command: ListFeedsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_services(settings) as services:
            if services.repository.get_user(command.user_id) is None:
                raise UserNotFound(f"User not found: {command.user_id}")
            feeds = services.repository.list_feeds_for_user(command.user_id)

        if not feeds:
            return [f"No feeds for user {command.user_id}."]
        lines = [f"Feeds for user {command.user_id}: {len(feeds)}"]
        for feed in feeds:
            label = f" name={feed.name}" if feed.name else ""
            category = f" category={feed.category}" if feed.category else ""
            lines.append(f"- feed_id={feed.feed_id} url={feed.url}{label}{category}")
        return lines

    def remove_feed(self, command: RemoveFeedCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_services(settings) as services:
            feed = services.repository.get_feed(command.feed_id)
            if feed is None:
                raise FeedNotFound(f"Feed not found: {command.feed_id}")
            if feed.user_id != command.user_id:
                raise OwnershipError(
                    f"Feed {command.feed_id} does not belong to user {command.user_id}",
                )
            services.repository.delete_feed(command.feed_id)
        return [f"Feed removed: feed_id={command.feed_id} url={feed.url}"]

    def run_pipeline(self, command: PipelineRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with open_services(settings) as services:
            if services.repository.get_user(command.user_id) is None:
                raise UserNotFound(f"User not found: {command.user_id}")
            result = services.pipeline.process_user(command.user_id)

        lines = [
            "Pipeline run completed: "
            f"user_id={command.user_id} success={result.success} "
            f"fetched={result.total_fetched} filtered={result.total_filtered} "
            f"stored={result.total_stored} skipped={result.total_skipped} "
            f"errors={len(result.errors)}",
        ]
        lines.extend(f"- {error}" for error in result.errors)
        return lines
