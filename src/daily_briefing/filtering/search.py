"""Semantic search over stored article embeddings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from daily_briefing.errors import ArticleNotFound, ValidationError
from daily_briefing.models import ArticleMatch, SearchScope, StoredArticle, Vector
from daily_briefing.providers.base import EmbeddingService

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5


class ArticleSearchStore(Protocol):
    def get_article(self, article_id: str) -> StoredArticle | None: ...

    def nearest_by_embedding(
        self,
        vector: Vector,
        *,
        limit: int,
        scope: SearchScope | None = None,
    ) -> list[ArticleMatch]: ...


@dataclass(slots=True)
class SearchHit:
    article_id: str
    title: str
    summary: str
    url: str
    similarity: float


class SemanticSearch:
    def __init__(self, *, repository: ArticleSearchStore, embedder: EmbeddingService) -> None:
        self.repository = repository
        self.embedder = embedder

    def search(
        self,
        query_text: str,
        *,
        top_k: int = DEFAULT_TOP_K,
        user_id: str | None = None,
        episode_id: str | None = None,
    ) -> list[SearchHit]:
        """Articles most similar to ``query_text``, optionally within one episode."""

        query = query_text.strip()
        if not query:
            raise ValidationError("Search query must not be empty")
        _validate_top_k(top_k)
        vector = self.embedder.embed(query)
        matches = self.repository.nearest_by_embedding(
            vector,
            limit=top_k,
            scope=SearchScope(user_id=user_id, episode_id=episode_id),
        )
        logger.debug("Semantic search query=%r hits=%d", query, len(matches))
        return [_to_hit(match) for match in matches]

    def find_similar(self, article_id: str, *, top_k: int = DEFAULT_TOP_K) -> list[SearchHit]:
        """Nearest neighbours of a stored article, excluding the article itself."""

        _validate_top_k(top_k)
        article = self.repository.get_article(article_id)
        if article is None:
            raise ArticleNotFound(f"Article not found: {article_id}")
        if not article.embedding:
            raise ArticleNotFound(f"Article {article_id} has no embedding")
        matches = self.repository.nearest_by_embedding(
            article.embedding,
            limit=top_k,
            scope=SearchScope(exclude_article_id=article_id),
        )
        return [_to_hit(match) for match in matches]


def _validate_top_k(top_k: int) -> None:
    if top_k <= 0:
        raise ValidationError(f"top_k must be > 0, got {top_k}")


def _to_hit(match: ArticleMatch) -> SearchHit:
    return SearchHit(
        article_id=match.article.article_id,
        title=match.article.title,
        summary=match.article.summary or "",
        url=match.article.url,
        similarity=match.similarity,
    )
