"""Result types for feed fetching, deduplication and the processing pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True)
class ParsedArticle:
    """Normalized item from an RSS or Atom feed."""

    title: str
    content: str
    url: str
    published_at: datetime | None


@dataclass(slots=True)
class FeedFetchResult:
    success: bool
    articles: list[ParsedArticle] = field(default_factory=list)
    error: str | None = None


@dataclass(slots=True)
class DeduplicationResult:
    """Outcome of storing one feed's articles; errors never abort the batch."""

    stored: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    stored_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class PipelineResult:
    success: bool = True
    total_fetched: int = 0
    total_filtered: int = 0
    total_stored: int = 0
    total_skipped: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class BatchResult:
    """Counters for summarize/embed batches over stored articles."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
