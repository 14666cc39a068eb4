"""Embeddings for stored article summaries."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from daily_briefing.errors import BriefingError
from daily_briefing.ingestion.models import BatchResult
from daily_briefing.ingestion.summarization import batched
from daily_briefing.models import StoredArticle, Vector
from daily_briefing.providers.base import EmbeddingService

logger = logging.getLogger(__name__)


class EmbeddingStore(Protocol):
    def list_articles_missing_embedding(
        self,
        *,
        article_ids: list[str] | None = None,
        limit: int | None = None,
    ) -> list[StoredArticle]: ...

    def set_article_embedding(self, *, article_id: str, embedding: Vector) -> bool: ...


def embed_pending(
    *,
    repository: EmbeddingStore,
    embedder: EmbeddingService,
    article_ids: list[str] | None = None,
    batch_size: int = 10,
    on_batch: Callable[[], None] | None = None,
) -> BatchResult:
    """Embed the summary of every summarized article that has no embedding."""

    articles = repository.list_articles_missing_embedding(article_ids=article_ids)
    result = BatchResult()
    for batch in batched(articles, batch_size):
        if on_batch is not None:
            on_batch()
        for article in batch:
            result.processed += 1
            try:
                vector = embedder.embed(article.summary or "")
                repository.set_article_embedding(article_id=article.article_id, embedding=vector)
            except BriefingError as error:
                result.failed += 1
                result.errors.append(
                    f"Failed to generate embedding for article {article.article_id}: {error}",
                )
                continue
            result.succeeded += 1
    logger.info(
        "Embedded articles processed=%d succeeded=%d failed=%d",
        result.processed,
        result.succeeded,
        result.failed,
    )
    return result
