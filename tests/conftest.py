"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from daily_briefing.jobs.repository import JobRepository
from daily_briefing.storage.repository import BriefingRepository


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "briefing.db"


@pytest.fixture()
def repository(db_path: Path) -> Iterator[BriefingRepository]:
    repo = BriefingRepository(db_path)
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def job_repository(db_path: Path) -> Iterator[JobRepository]:
    repo = JobRepository(db_path)
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()
