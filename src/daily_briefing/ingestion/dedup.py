"""Store feed articles once per ``(feed_id, title)``."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from daily_briefing.errors import BriefingError
from daily_briefing.ingestion.models import DeduplicationResult, ParsedArticle
from daily_briefing.models import NewArticle

logger = logging.getLogger(__name__)


class ArticleStore(Protocol):
    def article_exists(self, *, feed_id: str, title: str) -> bool: ...

    def insert_article(self, *, feed_id: str, article: NewArticle) -> str | None: ...


class Deduplicator:
    def __init__(self, *, repository: ArticleStore) -> None:
        self.repository = repository

    def exists(self, feed_id: str, title: str) -> bool:
        return self.repository.article_exists(feed_id=feed_id, title=title)

    def store_new(
        self,
        feed_id: str,
        articles: Iterable[ParsedArticle | NewArticle],
    ) -> DeduplicationResult:
        """Insert unseen articles; each article succeeds or fails on its own."""

        result = DeduplicationResult()
        for article in articles:
            candidate = _to_new_article(article)
            try:
                if self.exists(feed_id, candidate.title):
                    result.skipped += 1
                    continue
                article_id = self.repository.insert_article(feed_id=feed_id, article=candidate)
            except (BriefingError, SQLAlchemyError) as error:
                result.errors.append(f'Failed to store article "{candidate.title}": {error}')
                continue
            if article_id is None:
                # Lost a race with a concurrent insert of the same title.
                result.skipped += 1
                continue
            result.stored += 1
            result.stored_ids.append(article_id)

        logger.debug(
            "Dedup feed_id=%s stored=%d skipped=%d errors=%d",
            feed_id,
            result.stored,
            result.skipped,
            len(result.errors),
        )
        return result


def _to_new_article(article: ParsedArticle | NewArticle) -> NewArticle:
    if isinstance(article, NewArticle):
        return article
    return NewArticle(
        title=article.title,
        url=article.url,
        content=article.content,
        published_at=article.published_at,
    )
