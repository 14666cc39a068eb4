"""Article summaries via the chat service, with an excerpt fallback."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Protocol

from daily_briefing.errors import BriefingError
from daily_briefing.ingestion.cleaning import content_excerpt
from daily_briefing.ingestion.models import BatchResult
from daily_briefing.models import StoredArticle
from daily_briefing.providers.base import ChatService

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY_MAX_TOKENS = 150
DEFAULT_EXCERPT_CHARS = 200

SUMMARY_PROMPT = """Summarize the following news article concisely, \
capturing the key information in 2-3 sentences.

Title: {title}

Content: {content}

Summary:"""


class SummaryStore(Protocol):
    def list_articles_missing_summary(
        self,
        *,
        article_ids: list[str] | None = None,
        limit: int | None = None,
    ) -> list[StoredArticle]: ...

    def set_article_summary(self, *, article_id: str, summary: str) -> bool: ...


class ArticleSummarizer:
    def __init__(
        self,
        *,
        chat: ChatService,
        max_tokens: int = DEFAULT_SUMMARY_MAX_TOKENS,
        excerpt_chars: int = DEFAULT_EXCERPT_CHARS,
    ) -> None:
        self.chat = chat
        self.max_tokens = max_tokens
        self.excerpt_chars = excerpt_chars

    def summarize(self, title: str, content: str) -> str:
        """Summary text; a content excerpt when the chat service fails."""

        prompt = SUMMARY_PROMPT.format(title=title, content=content)
        try:
            summary = self.chat.complete(prompt, max_tokens=self.max_tokens).strip()
        except BriefingError as error:
            logger.warning(
                'Failed to summarize article "%s", using content excerpt: %s',
                title,
                error,
            )
            return content_excerpt(content, self.excerpt_chars)
        if not summary:
            return content_excerpt(content, self.excerpt_chars)
        return summary


def summarize_pending(
    *,
    repository: SummaryStore,
    summarizer: ArticleSummarizer,
    article_ids: list[str] | None = None,
    batch_size: int = 10,
    on_batch: Callable[[], None] | None = None,
) -> BatchResult:
    """Summarize stored articles that have no summary yet, ``batch_size`` at a time."""

    articles = repository.list_articles_missing_summary(article_ids=article_ids)
    result = BatchResult()
    for batch_number, batch in enumerate(batched(articles, batch_size), start=1):
        if on_batch is not None:
            on_batch()
        logger.info(
            "Summarizing batch %d (%d articles, %d pending)",
            batch_number,
            len(batch),
            len(articles),
        )
        for article in batch:
            result.processed += 1
            try:
                summary = summarizer.summarize(article.title, article.content)
                repository.set_article_summary(article_id=article.article_id, summary=summary)
            except BriefingError as error:
                result.failed += 1
                result.errors.append(f'Failed to summarize article "{article.title}": {error}')
                continue
            result.succeeded += 1
    return result


def batched(items: Sequence[StoredArticle], size: int) -> list[Sequence[StoredArticle]]:
    if size <= 0:
        raise ValueError("batch_size must be > 0")
    return [items[start : start + size] for start in range(0, len(items), size)]
