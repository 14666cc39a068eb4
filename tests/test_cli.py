from __future__ import annotations

import re
from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner, Result

from daily_briefing.ingestion.models import FeedFetchResult, ParsedArticle
from daily_briefing.ingestion.sources.rss import FeedFetcher
from daily_briefing.main import daily_briefing

pytestmark = [
    allure.epic("Command Line"),
    allure.feature("daily-briefing CLI"),
]


@pytest.fixture()
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    # Offline: deterministic local embeddings, no provider key.
    monkeypatch.setenv("DAILY_BRIEFING_EMBEDDING_BACKEND", "hashing")
    monkeypatch.setenv("DAILY_BRIEFING_AUDIO_DIR", str(tmp_path / "audio"))
    monkeypatch.delenv("DAILY_BRIEFING_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    return tmp_path / "cli.db"


def _invoke(db_path: Path, *args: str) -> Result:
    group, command, *rest = args
    return CliRunner().invoke(daily_briefing, [group, command, "--db-path", str(db_path), *rest])


def _create_user(db_path: Path) -> str:
    result = _invoke(db_path, "users", "add", "--email", "CLI@Example.com", "--tier", "pro")
    assert result.exit_code == 0, result.output
    assert "email=cli@example.com tier=pro" in result.output
    match = re.search(r"user_id=(\S+)", result.output)
    assert match is not None
    return match.group(1)


def test_feed_subscription_commands(cli_env: Path) -> None:
    user_id = _create_user(cli_env)

    added = _invoke(cli_env, "feeds", "add", "--user", user_id, "--url", "https://feeds.test/rss")
    duplicate = _invoke(
        cli_env,
        "feeds",
        "add",
        "--user",
        user_id,
        "--url",
        "https://feeds.test/rss",
    )
    invalid = _invoke(cli_env, "feeds", "add", "--user", user_id, "--url", "ftp://feeds.test")
    listed = _invoke(cli_env, "feeds", "list", "--user", user_id)

    assert added.exit_code == 0, added.output
    assert duplicate.exit_code == 1
    assert "Feed already added" in duplicate.output
    assert invalid.exit_code == 1
    assert "Invalid feed URL" in invalid.output
    assert "Feeds for user" in listed.output
    assert "url=https://feeds.test/rss" in listed.output


def test_feed_removal_checks_ownership(cli_env: Path) -> None:
    user_id = _create_user(cli_env)
    added = _invoke(cli_env, "feeds", "add", "--user", user_id, "--url", "https://feeds.test/rss")
    feed_id = re.search(r"feed_id=(\S+)", added.output)
    assert feed_id is not None

    missing = _invoke(cli_env, "feeds", "remove", "--user", user_id, "--feed-id", "missing")
    foreign = _invoke(cli_env, "feeds", "remove", "--user", "other", "--feed-id", feed_id.group(1))
    removed = _invoke(cli_env, "feeds", "remove", "--user", user_id, "--feed-id", feed_id.group(1))
    listed = _invoke(cli_env, "feeds", "list", "--user", user_id)

    assert missing.exit_code == 1
    assert "Feed not found" in missing.output
    assert foreign.exit_code == 1
    assert "does not belong to user other" in foreign.output
    assert removed.exit_code == 0, removed.output
    assert f"Feed removed: feed_id={feed_id.group(1)}" in removed.output
    assert f"No feeds for user {user_id}." in listed.output


def test_profile_commands_validate_threshold(cli_env: Path) -> None:
    user_id = _create_user(cli_env)

    saved = _invoke(
        cli_env,
        "profile",
        "set",
        "--user",
        user_id,
        "--topic",
        "Technology",
        "--keyword",
        "AI",
        "--threshold",
        "70",
    )
    rejected = _invoke(cli_env, "profile", "threshold", "--user", user_id, "--value", "150")
    empty = _invoke(cli_env, "profile", "set", "--user", user_id)
    shown = _invoke(cli_env, "profile", "show", "--user", user_id)

    assert saved.exit_code == 0, saved.output
    assert "onboarding_completed=True" in saved.output
    assert rejected.exit_code == 1
    assert "between 0 and 100" in rejected.output
    assert empty.exit_code == 1
    assert "threshold=70" in shown.output
    assert "keywords=AI" in shown.output


def test_pipeline_run_stats_and_search(cli_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _fetch(_self: FeedFetcher, url: str) -> FeedFetchResult:
        return FeedFetchResult(
            success=True,
            articles=[
                ParsedArticle(
                    title="Solar storage breakthrough",
                    content="Battery costs fell sharply this year.",
                    url=f"{url}/solar",
                    published_at=datetime(2026, 10, 18, 4, 0, tzinfo=UTC),
                ),
            ],
        )

    monkeypatch.setattr(FeedFetcher, "fetch", _fetch)
    user_id = _create_user(cli_env)
    _invoke(cli_env, "feeds", "add", "--user", user_id, "--url", "https://feeds.test/rss")

    run = _invoke(cli_env, "pipeline", "run", "--user", user_id)
    stats = _invoke(cli_env, "profile", "stats", "--user", user_id, "--range", "all_time")
    found = CliRunner().invoke(
        daily_briefing,
        ["search", "--db-path", str(cli_env), "Solar storage breakthrough"],
    )
    usage = CliRunner().invoke(daily_briefing, ["search", "--db-path", str(cli_env)])

    assert run.exit_code == 0, run.output
    assert "success=True fetched=1 filtered=0 stored=1" in run.output
    assert "runs=1 total=1 included=1 filtered_out=0 inclusion=100.00%" in stats.output
    assert found.exit_code == 0, found.output
    assert "1. [" in found.output
    assert "Solar storage breakthrough" in found.output
    assert usage.exit_code == 2


def test_job_queue_commands(cli_env: Path) -> None:
    enqueued = _invoke(
        cli_env,
        "jobs",
        "enqueue",
        "--type",
        "summarize_articles",
        "--batch-size",
        "5",
    )
    scheduled = _invoke(cli_env, "jobs", "schedule")
    listed = _invoke(cli_env, "jobs", "list", "--type", "summarize_articles")
    job_id = re.search(r"job_id=(\S+)", enqueued.output)
    assert job_id is not None
    inspected = _invoke(cli_env, "jobs", "inspect", "--job-id", job_id.group(1))
    missing = _invoke(cli_env, "jobs", "inspect", "--job-id", "missing")
    pruned = _invoke(cli_env, "jobs", "prune")
    work = _invoke(cli_env, "jobs", "work", "--once")

    assert enqueued.exit_code == 0, enqueued.output
    assert "status=queued max_attempts=3" in enqueued.output
    assert "Daily cycle scheduled: jobs=4" in scheduled.output
    summarize_lines = [line for line in listed.output.splitlines() if "summarize_articles" in line]
    assert len(summarize_lines) == 2
    assert 'payload={"batch_size": 5}' in inspected.output
    assert "enqueued - -> queued" in inspected.output
    assert missing.exit_code == 1
    assert "Job not found" in missing.output
    assert "Jobs pruned: removed=0" in pruned.output
    assert work.exit_code == 1
    assert "OPENAI_API_KEY" in work.output


def test_episode_maintenance_commands(cli_env: Path) -> None:
    user_id = _create_user(cli_env)

    listed = _invoke(cli_env, "episodes", "list", "--user", user_id)
    deleted = _invoke(cli_env, "episodes", "delete", "--episode-id", "missing")
    cleared = _invoke(cli_env, "episodes", "clear-cache")

    assert f"No episodes for user {user_id}." in listed.output
    assert deleted.exit_code == 1
    assert "Episode not found" in deleted.output
    assert "Audio cache cleared: entries=0" in cleared.output
