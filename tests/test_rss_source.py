from __future__ import annotations

from datetime import UTC, datetime

import allure
import httpx
import pytest

from daily_briefing.errors import InvalidFeedUrl
from daily_briefing.ingestion.sources.rss import (
    FeedFetcher,
    FeedParseError,
    parse_feed,
    validate_feed_url,
)

pytestmark = [
    allure.epic("Daily Ingestion"),
    allure.feature("Feed Intake & Cleaning"),
]

RSS_BODY = """<?xml version="1.0"?>
<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/">
  <channel>
    <title>Tech</title>
    <item>
      <title>AI beats benchmark</title>
      <link>https://news.test/ai</link>
      <description>&lt;p&gt;Short &lt;b&gt;teaser&lt;/b&gt;&lt;/p&gt;</description>
      <content:encoded><![CDATA[<p>Full <em>story</em> text.</p>]]></content:encoded>
      <pubDate>Tue, 10 Jun 2025 08:30:00 GMT</pubDate>
    </item>
    <item>
      <description>No title here</description>
    </item>
  </channel>
</rss>
"""

ATOM_BODY = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Science</title>
  <entry>
    <title>New exoplanet found</title>
    <link rel="self" href="https://science.test/api/1"/>
    <link rel="alternate" href="https://science.test/exoplanet"/>
    <summary>Astronomers report a discovery.</summary>
    <updated>2025-06-10T09:00:00Z</updated>
  </entry>
</feed>
"""


def _fetcher(handler) -> FeedFetcher:
    return FeedFetcher(transport=httpx.MockTransport(handler))


def test_parse_rss_prefers_full_content_and_cleans_html() -> None:
    articles = parse_feed(RSS_BODY)

    assert len(articles) == 2
    first = articles[0]
    assert first.title == "AI beats benchmark"
    assert first.url == "https://news.test/ai"
    assert first.content == "Full story text."
    assert first.published_at == datetime(2025, 6, 10, 8, 30, tzinfo=UTC)
    assert articles[1].title == "Untitled"
    assert articles[1].url == ""
    assert articles[1].published_at is None


def test_parse_atom_uses_alternate_link_and_iso_dates() -> None:
    articles = parse_feed(ATOM_BODY)

    assert len(articles) == 1
    entry = articles[0]
    assert entry.title == "New exoplanet found"
    assert entry.url == "https://science.test/exoplanet"
    assert entry.content == "Astronomers report a discovery."
    assert entry.published_at == datetime(2025, 6, 10, 9, 0, tzinfo=UTC)


@pytest.mark.parametrize("body", ["<rss><channel>", "not xml at all", "<html><body/></html>"])
def test_parse_feed_rejects_malformed_or_unknown_documents(body: str) -> None:
    with pytest.raises(FeedParseError):
        parse_feed(body)


@pytest.mark.parametrize("url", ["ftp://feeds.test/rss", "feeds.test/rss", "https://", ""])
def test_validate_feed_url_rejects_non_http_urls(url: str) -> None:
    with pytest.raises(InvalidFeedUrl):
        validate_feed_url(url)


def test_validate_feed_url_strips_whitespace() -> None:
    assert validate_feed_url("  https://feeds.test/rss  ") == "https://feeds.test/rss"


def test_fetch_returns_parsed_articles() -> None:
    seen: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["agent"] = request.headers["User-Agent"]
        return httpx.Response(200, text=RSS_BODY)

    with _fetcher(handler) as fetcher:
        result = fetcher.fetch("https://feeds.test/rss")

    assert result.success is True
    assert result.error is None
    assert [article.title for article in result.articles] == ["AI beats benchmark", "Untitled"]
    assert seen["agent"] == "DailyBriefingBot/1.0"


def test_fetch_reports_http_errors_without_raising() -> None:
    with _fetcher(lambda _: httpx.Response(500, text="boom")) as fetcher:
        result = fetcher.fetch("https://feeds.test/rss")

    assert result.success is False
    assert result.articles == []
    assert result.error == "Failed to parse RSS feed: HTTP 500"


def test_fetch_reports_timeouts() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("too slow", request=request)

    with _fetcher(handler) as fetcher:
        result = fetcher.fetch("https://feeds.test/rss")

    assert result.success is False
    assert result.error == "Failed to parse RSS feed: timeout"


def test_fetch_reports_invalid_xml() -> None:
    with _fetcher(lambda _: httpx.Response(200, text="<rss><channel>")) as fetcher:
        result = fetcher.fetch("https://feeds.test/rss")

    assert result.success is False
    assert result.error is not None
    assert result.error.startswith("Failed to parse RSS feed: Invalid RSS/Atom XML")


def test_fetch_rejects_invalid_url_without_network() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, text=RSS_BODY)

    with _fetcher(handler) as fetcher:
        result = fetcher.fetch("file:///etc/passwd")

    assert result.success is False
    assert calls == []
