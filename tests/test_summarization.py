from __future__ import annotations

import allure
import pytest

from daily_briefing.errors import DimensionMismatch
from daily_briefing.ingestion.embedding import embed_pending
from daily_briefing.ingestion.summarization import ArticleSummarizer, batched, summarize_pending
from daily_briefing.models import NewArticle, Vector
from daily_briefing.storage.repository import BriefingRepository
from fakes import FakeChat, KeywordEmbedder, axis_vector

pytestmark = [
    allure.epic("Daily Ingestion"),
    allure.feature("Summaries & Embeddings"),
]


def _store(repository: BriefingRepository, *titles: str) -> list[str]:
    user = repository.create_user(email="summaries@example.com")
    feed = repository.add_feed(user_id=user.user_id, url="https://feeds.test/rss")
    ids = []
    for title in titles:
        article_id = repository.insert_article(
            feed_id=feed.feed_id,
            article=NewArticle(
                title=title,
                url="",
                content=f"{title} happened today. More details follow later in the day.",
                published_at=None,
            ),
        )
        assert article_id is not None
        ids.append(article_id)
    return ids


def test_summarize_uses_chat_with_token_budget() -> None:
    chat = FakeChat("  Two sentence summary.  ")

    summary = ArticleSummarizer(chat=chat).summarize("Title", "Body text")

    assert summary == "Two sentence summary."
    assert chat.max_tokens == [150]
    assert "Title: Title" in chat.prompts[0]
    assert "Content: Body text" in chat.prompts[0]


def test_summarize_falls_back_to_excerpt_on_provider_failure() -> None:
    summarizer = ArticleSummarizer(chat=FakeChat(fail=True), excerpt_chars=30)

    summary = summarizer.summarize("Title", "First sentence. " + "filler " * 20)

    assert summary == "First sentence."


def test_summarize_falls_back_to_excerpt_on_empty_reply() -> None:
    assert ArticleSummarizer(chat=FakeChat("   ")).summarize("T", "Body.") == "Body."


def test_summarize_pending_fills_only_missing_summaries(repository: BriefingRepository) -> None:
    first, second = _store(repository, "Alpha", "Beta")
    repository.set_article_summary(article_id=first, summary="Existing.")
    chat = FakeChat("Generated.")

    result = summarize_pending(
        repository=repository,
        summarizer=ArticleSummarizer(chat=chat),
        batch_size=1,
    )

    assert (result.processed, result.succeeded, result.failed) == (1, 1, 0)
    assert repository.get_article(first).summary == "Existing."  # type: ignore[union-attr]
    assert repository.get_article(second).summary == "Generated."  # type: ignore[union-attr]
    assert len(chat.prompts) == 1


def test_summarize_pending_can_target_article_ids(repository: BriefingRepository) -> None:
    first, _ = _store(repository, "Alpha", "Beta")

    result = summarize_pending(
        repository=repository,
        summarizer=ArticleSummarizer(chat=FakeChat()),
        article_ids=[first],
    )

    assert result.processed == 1
    assert len(repository.list_articles_missing_summary()) == 1


def test_embed_pending_embeds_summaries_and_reports_failures(
    repository: BriefingRepository,
) -> None:
    good, bad, unsummarized = _store(repository, "Good", "Bad", "Raw")
    repository.set_article_summary(article_id=good, summary="AI summary")
    repository.set_article_summary(article_id=bad, summary="broken summary")

    class _Embedder(KeywordEmbedder):
        def embed(self, text: str) -> Vector:
            if "broken" in text:
                raise DimensionMismatch("Embedding dimensions must match: 2 vs 1536")
            return super().embed(text)

    embedder = _Embedder({"AI": axis_vector((0, 1.0))})

    result = embed_pending(repository=repository, embedder=embedder)

    assert (result.processed, result.succeeded, result.failed) == (2, 1, 1)
    assert result.errors[0].startswith(f"Failed to generate embedding for article {bad}")
    assert embedder.calls == ["AI summary"]
    assert repository.get_article(good).embedding is not None  # type: ignore[union-attr]
    assert repository.get_article(unsummarized).embedding is None  # type: ignore[union-attr]


def test_batched_rejects_non_positive_size() -> None:
    assert batched([], 3) == []
    with pytest.raises(ValueError, match="batch_size"):
        batched([], 0)
