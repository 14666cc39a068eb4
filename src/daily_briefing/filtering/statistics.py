"""Relevance filter counters per user and run."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Protocol

from daily_briefing.models import FilteringStatsSummary, StatsTimeRange
from daily_briefing.storage.common import utc_now

logger = logging.getLogger(__name__)

_RANGE_DAYS = {
    StatsTimeRange.LAST_7_DAYS: 7,
    StatsTimeRange.LAST_30_DAYS: 30,
}


class StatisticsStore(Protocol):
    def add_filtering_statistics(
        self,
        *,
        user_id: str,
        included: int,
        filtered_out: int,
        recorded_at: datetime | None = None,
    ) -> None: ...

    def summarize_filtering_statistics(
        self,
        *,
        user_id: str,
        since: datetime | None = None,
    ) -> tuple[int, int, int]: ...


class FilteringStatistics:
    def __init__(self, *, repository: StatisticsStore) -> None:
        self.repository = repository

    def record(self, user_id: str, included: int, filtered_out: int) -> None:
        """Append one filtering run; failures are logged and never raised."""

        try:
            self.repository.add_filtering_statistics(
                user_id=user_id,
                included=included,
                filtered_out=filtered_out,
            )
        except Exception:  # noqa: BLE001
            logger.exception("Failed to record filtering statistics user_id=%s", user_id)

    def summary(
        self,
        user_id: str,
        time_range: StatsTimeRange = StatsTimeRange.LAST_7_DAYS,
        *,
        now: datetime | None = None,
    ) -> FilteringStatsSummary:
        since = _range_start(time_range, now=now or utc_now())
        included, filtered_out, runs = self.repository.summarize_filtering_statistics(
            user_id=user_id,
            since=since,
        )
        total = included + filtered_out
        percentage = round(included / total * 100, 2) if total else 0.0
        return FilteringStatsSummary(
            time_range=time_range,
            total_articles=total,
            included_articles=included,
            filtered_out_articles=filtered_out,
            inclusion_percentage=percentage,
            runs=runs,
        )


def _range_start(time_range: StatsTimeRange, *, now: datetime) -> datetime | None:
    days = _RANGE_DAYS.get(time_range)
    if days is None:
        return None
    return now - timedelta(days=days)
