"""CLI entrypoint for daily-briefing."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from daily_briefing import __version__
from daily_briefing.episodes.controllers import (
    ClearAudioCacheCommand,
    DeleteEpisodeCommand,
    EpisodesCliController,
    GenerateEpisodeCommand,
    ListEpisodesCommand,
)
from daily_briefing.errors import BriefingError
from daily_briefing.filtering.controllers import (
    FilteringCliController,
    FilteringStatsCommand,
    ProfileSetCommand,
    ProfileShowCommand,
    ProfileThresholdCommand,
    SearchCommand,
)
from daily_briefing.ingestion.controllers import (
    AddFeedCommand,
    AddUserCommand,
    IngestionCliController,
    ListFeedsCommand,
    PipelineRunCommand,
    RemoveFeedCommand,
)
from daily_briefing.jobs.controllers import (
    EnqueueJobCommand,
    InspectJobCommand,
    JobsCliController,
    ListJobsCommand,
    PruneJobsCommand,
    ScheduleCycleCommand,
    WorkCommand,
)
from daily_briefing.jobs.models import JobStatus, JobType
from daily_briefing.models import StatsTimeRange, UserTier

click.rich_click.USE_MARKDOWN = True
INGESTION_CONTROLLER = IngestionCliController()
FILTERING_CONTROLLER = FilteringCliController()
EPISODES_CONTROLLER = EpisodesCliController()
JOBS_CONTROLLER = JobsCliController()

LOG_LEVELS = ["debug", "info", "warning", "error"]
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

CommandT = TypeVar("CommandT")

db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="daily-briefing")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="warning",
    show_default=True,
    help="Logging verbosity.",
)
def daily_briefing(log_level: str) -> None:
    """Personalized daily audio news briefing."""

    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)


@daily_briefing.group()
def users() -> None:
    """User commands."""


@users.command("add")
@db_path_option
@click.option("--email", required=True, help="User email, stored lowercased.")
@click.option(
    "--tier",
    type=click.Choice([tier.value for tier in UserTier], case_sensitive=False),
    default=UserTier.FREE.value,
    show_default=True,
    help="Subscription tier; caps episode length.",
)
def users_add(db_path: Path | None, email: str, tier: str) -> None:
    """Create a user."""

    _emit(
        INGESTION_CONTROLLER.add_user,
        AddUserCommand(db_path=db_path, email=email, tier=tier.lower()),
    )


@daily_briefing.group()
def feeds() -> None:
    """Feed subscription commands."""


@feeds.command("add")
@db_path_option
@click.option("--user", "user_id", required=True, help="User id.")
@click.option("--url", required=True, help="RSS/Atom feed URL (http or https).")
@click.option("--name", default=None, help="Optional display name.")
@click.option("--category", default=None, help="Optional category label.")
def feeds_add(
    db_path: Path | None,
    user_id: str,
    url: str,
    name: str | None,
    category: str | None,
) -> None:
    """Subscribe a user to a feed."""

    _emit(
        INGESTION_CONTROLLER.add_feed,
        AddFeedCommand(
            db_path=db_path,
            user_id=user_id,
            url=url,
            name=name,
            category=category,
        ),
    )


@feeds.command("list")
@db_path_option
@click.option("--user", "user_id", required=True, help="User id.")
def feeds_list(db_path: Path | None, user_id: str) -> None:
    """List a user's feeds."""

    _emit(INGESTION_CONTROLLER.list_feeds, ListFeedsCommand(db_path=db_path, user_id=user_id))


@feeds.command("remove")
@db_path_option
@click.option("--user", "user_id", required=True, help="User id.")
@click.option("--feed-id", required=True, help="Feed id to unsubscribe.")
def feeds_remove(db_path: Path | None, user_id: str, feed_id: str) -> None:
    """Unsubscribe a user from a feed and drop its articles."""

    _emit(
        INGESTION_CONTROLLER.remove_feed,
        RemoveFeedCommand(db_path=db_path, user_id=user_id, feed_id=feed_id),
    )


@daily_briefing.group()
def profile() -> None:
    """Interest profile commands."""


@profile.command("set")
@db_path_option
@click.option("--user", "user_id", required=True, help="User id.")
@click.option("--topic", "topics", multiple=True, help="Selected topic. Can be repeated.")
@click.option("--keyword", "keywords", multiple=True, help="Custom keyword. Can be repeated.")
@click.option(
    "--threshold",
    type=int,
    default=None,
    help="Relevance threshold 0..100; unchanged when omitted.",
)
def profile_set(
    db_path: Path | None,
    user_id: str,
    topics: tuple[str, ...],
    keywords: tuple[str, ...],
    threshold: int | None,
) -> None:
    """Save interests and complete onboarding."""

    _emit(
        FILTERING_CONTROLLER.set_profile,
        ProfileSetCommand(
            db_path=db_path,
            user_id=user_id,
            topics=topics,
            keywords=keywords,
            threshold=threshold,
        ),
    )


@profile.command("show")
@db_path_option
@click.option("--user", "user_id", required=True, help="User id.")
def profile_show(db_path: Path | None, user_id: str) -> None:
    """Show a user's interest profile."""

    _emit(FILTERING_CONTROLLER.show_profile, ProfileShowCommand(db_path=db_path, user_id=user_id))


@profile.command("threshold")
@db_path_option
@click.option("--user", "user_id", required=True, help="User id.")
@click.option("--value", "threshold", type=int, required=True, help="Threshold 0..100.")
def profile_threshold(db_path: Path | None, user_id: str, threshold: int) -> None:
    """Change the relevance threshold."""

    _emit(
        FILTERING_CONTROLLER.set_threshold,
        ProfileThresholdCommand(db_path=db_path, user_id=user_id, threshold=threshold),
    )


@profile.command("stats")
@db_path_option
@click.option("--user", "user_id", required=True, help="User id.")
@click.option(
    "--range",
    "time_range",
    type=click.Choice([item.value for item in StatsTimeRange], case_sensitive=False),
    default=StatsTimeRange.LAST_7_DAYS.value,
    show_default=True,
    help="Aggregation window.",
)
def profile_stats(db_path: Path | None, user_id: str, time_range: str) -> None:
    """Show relevance filtering statistics."""

    _emit(
        FILTERING_CONTROLLER.stats,
        FilteringStatsCommand(db_path=db_path, user_id=user_id, time_range=time_range.lower()),
    )


@daily_briefing.group()
def pipeline() -> None:
    """Article processing commands."""


@pipeline.command("run")
@db_path_option
@click.option("--user", "user_id", required=True, help="User id.")
def pipeline_run(db_path: Path | None, user_id: str) -> None:
    """Fetch, embed, filter and store articles for one user."""

    _emit(INGESTION_CONTROLLER.run_pipeline, PipelineRunCommand(db_path=db_path, user_id=user_id))


@daily_briefing.group()
def jobs() -> None:
    """Background job queue and worker commands."""


@jobs.command("enqueue")
@db_path_option
@click.option(
    "--type",
    "job_type",
    type=click.Choice([item.value for item in JobType], case_sensitive=False),
    required=True,
    help="Job type.",
)
@click.option("--feed-id", "feed_ids", multiple=True, help="Scope fetch jobs. Can be repeated.")
@click.option(
    "--article-id",
    "article_ids",
    multiple=True,
    help="Scope summarize/embed jobs. Can be repeated.",
)
@click.option("--user-id", "user_ids", multiple=True, help="Scope episode jobs. Can be repeated.")
@click.option(
    "--batch-size",
    type=click.IntRange(min=1, max=1000),
    default=None,
    help="Batch size for summarize/embed jobs.",
)
def jobs_enqueue(  # noqa: PLR0913
    db_path: Path | None,
    job_type: str,
    feed_ids: tuple[str, ...],
    article_ids: tuple[str, ...],
    user_ids: tuple[str, ...],
    batch_size: int | None,
) -> None:
    """Enqueue one job."""

    _emit(
        JOBS_CONTROLLER.enqueue,
        EnqueueJobCommand(
            db_path=db_path,
            job_type=job_type.lower(),
            feed_ids=feed_ids,
            article_ids=article_ids,
            user_ids=user_ids,
            batch_size=batch_size,
        ),
    )


@jobs.command("schedule")
@db_path_option
def jobs_schedule(db_path: Path | None) -> None:
    """Enqueue the daily fetch, summarize, embed and episode jobs."""

    _emit(JOBS_CONTROLLER.schedule, ScheduleCycleCommand(db_path=db_path))


@jobs.command("work")
@db_path_option
@click.option(
    "--type",
    "job_types",
    multiple=True,
    type=click.Choice([item.value for item in JobType], case_sensitive=False),
    help="Job type to consume. Repeat for several; defaults to all.",
)
@click.option(
    "--once/--pool",
    default=False,
    show_default=True,
    help="Claim at most one job per type inline, or run the threaded worker pool.",
)
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Process up to this many jobs per type inline, then exit.",
)
@click.option(
    "--drain/--forever",
    default=False,
    show_default=True,
    help="Stop pool workers once the queue is empty, or poll until SIGINT/SIGTERM.",
)
def jobs_work(
    db_path: Path | None,
    job_types: tuple[str, ...],
    once: bool,
    max_jobs: int | None,
    drain: bool,
) -> None:
    """Run job workers."""

    _emit(
        JOBS_CONTROLLER.work,
        WorkCommand(
            db_path=db_path,
            job_types=tuple(value.lower() for value in job_types),
            once=once,
            max_jobs=max_jobs,
            drain=drain,
        ),
    )


@jobs.command("list")
@db_path_option
@click.option(
    "--status",
    type=click.Choice([item.value for item in JobStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--type",
    "job_type",
    type=click.Choice([item.value for item in JobType], case_sensitive=False),
    default=None,
    help="Optional job type filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
def jobs_list(
    db_path: Path | None,
    status: str | None,
    job_type: str | None,
    limit: int,
) -> None:
    """List jobs."""

    _emit(
        JOBS_CONTROLLER.list_jobs,
        ListJobsCommand(
            db_path=db_path,
            status=status.lower() if status else None,
            job_type=job_type.lower() if job_type else None,
            limit=limit,
        ),
    )


@jobs.command("inspect")
@db_path_option
@click.option("--job-id", required=True, help="Job id.")
def jobs_inspect(db_path: Path | None, job_id: str) -> None:
    """Inspect one job with event history."""

    _emit(JOBS_CONTROLLER.inspect, InspectJobCommand(db_path=db_path, job_id=job_id))


@jobs.command("prune")
@db_path_option
def jobs_prune(db_path: Path | None) -> None:
    """Delete finished jobs past their retention window."""

    _emit(JOBS_CONTROLLER.prune, PruneJobsCommand(db_path=db_path))


@daily_briefing.group()
def episodes() -> None:
    """Episode commands."""


@episodes.command("generate")
@db_path_option
@click.option("--user", "user_id", required=True, help="User id.")
@click.option(
    "--force/--daily",
    default=False,
    show_default=True,
    help="Generate even if today's episode already exists.",
)
def episodes_generate(db_path: Path | None, user_id: str, force: bool) -> None:
    """Generate an audio episode for one user."""

    _emit(
        EPISODES_CONTROLLER.generate,
        GenerateEpisodeCommand(db_path=db_path, user_id=user_id, force=force),
    )


@episodes.command("list")
@db_path_option
@click.option("--user", "user_id", required=True, help="User id.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=200),
    default=20,
    show_default=True,
    help="Max episodes to print.",
)
def episodes_list(db_path: Path | None, user_id: str, limit: int) -> None:
    """List a user's episodes, newest first."""

    _emit(
        EPISODES_CONTROLLER.list_episodes,
        ListEpisodesCommand(db_path=db_path, user_id=user_id, limit=limit),
    )


@episodes.command("delete")
@db_path_option
@click.option("--episode-id", required=True, help="Episode id.")
def episodes_delete(db_path: Path | None, episode_id: str) -> None:
    """Delete an episode with its audio and cache entry."""

    _emit(EPISODES_CONTROLLER.delete, DeleteEpisodeCommand(db_path=db_path, episode_id=episode_id))


@episodes.command("clear-cache")
@db_path_option
def episodes_clear_cache(db_path: Path | None) -> None:
    """Drop every audio cache entry."""

    _emit(EPISODES_CONTROLLER.clear_cache, ClearAudioCacheCommand(db_path=db_path))


@daily_briefing.command("search")
@db_path_option
@click.argument("query", required=False)
@click.option("--similar-to", "article_id", default=None, help="Find articles like this one.")
@click.option("--user", "user_id", default=None, help="Limit to one user's feeds.")
@click.option("--episode-id", default=None, help="Limit to articles of one episode.")
@click.option(
    "--top-k",
    type=click.IntRange(min=1, max=100),
    default=5,
    show_default=True,
    help="Number of results.",
)
def search(  # noqa: PLR0913
    db_path: Path | None,
    query: str | None,
    article_id: str | None,
    user_id: str | None,
    episode_id: str | None,
    top_k: int,
) -> None:
    """Semantic search over stored articles."""

    if not query and not article_id:
        raise click.UsageError("Provide QUERY or --similar-to.")
    _emit(
        FILTERING_CONTROLLER.search,
        SearchCommand(
            db_path=db_path,
            query=query,
            article_id=article_id,
            user_id=user_id,
            episode_id=episode_id,
            top_k=top_k,
        ),
    )


def _emit(action: Callable[[CommandT], list[str]], command: CommandT) -> None:
    try:
        lines = action(command)
    except (BriefingError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    daily_briefing()
