"""RSS 2.0 and Atom feed fetcher."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from urllib.parse import urlparse

import httpx
from defusedxml import DefusedXmlException, ElementTree

from daily_briefing.errors import InvalidFeedUrl
from daily_briefing.ingestion.cleaning import html_to_text
from daily_briefing.ingestion.models import FeedFetchResult, ParsedArticle

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_USER_AGENT = "DailyBriefingBot/1.0"
ALLOWED_SCHEMES = frozenset({"http", "https"})
UNTITLED = "Untitled"


class FeedParseError(Exception):
    """Feed body is not RSS or Atom."""


class FeedFetcher:
    """Download and parse one feed per call; failures are reported, never raised."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        max_retries: int = 0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            headers={
                "User-Agent": user_agent,
                "Accept": "application/rss+xml, application/atom+xml, application/xml",
            },
            transport=transport or httpx.HTTPTransport(retries=max_retries),
            follow_redirects=True,
        )

    def fetch(self, url: str) -> FeedFetchResult:
        try:
            validate_feed_url(url)
            response = self._client.get(url)
            response.raise_for_status()
            articles = parse_feed(response.text)
        except (InvalidFeedUrl, FeedParseError, httpx.HTTPError) as error:
            logger.warning("Feed fetch failed url=%s: %s", url, error)
            return FeedFetchResult(
                success=False,
                error=f"Failed to parse RSS feed: {_describe(error)}",
            )
        logger.debug("Fetched feed url=%s articles=%d", url, len(articles))
        return FeedFetchResult(success=True, articles=articles)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> FeedFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def validate_feed_url(url: str) -> str:
    parsed = urlparse(url.strip())
    if parsed.scheme.lower() not in ALLOWED_SCHEMES or not parsed.netloc:
        raise InvalidFeedUrl(f"Invalid feed URL: {url!r}, only http and https are supported")
    return url.strip()


def parse_feed(raw_xml: str) -> list[ParsedArticle]:
    try:
        root = ElementTree.fromstring(raw_xml)
    except (ElementTree.ParseError, DefusedXmlException) as error:
        raise FeedParseError(f"Invalid RSS/Atom XML: {error}") from error

    root_name = _local_name(root.tag)
    if root_name == "rss":
        return _parse_rss(root)
    if root_name == "feed":
        return _parse_atom(root)

    # Some feeds omit top-level conventions.
    if root.findall(".//item"):
        channel = root.find(".//channel")
        return _parse_rss(channel if channel is not None else root)
    if any(_local_name(element.tag) == "entry" for element in root.iter()):
        return _parse_atom(root)

    raise FeedParseError(f"Unsupported feed format: <{root_name}>")


def _parse_rss(root: ElementTree.Element) -> list[ParsedArticle]:
    channel = root.find("channel")
    container = channel if channel is not None else root

    results: list[ParsedArticle] = []
    for item in container:
        if _local_name(item.tag) != "item":
            continue
        content = (
            _child_text(item, "content")
            or _child_text(item, "encoded")
            or _child_text(item, "summary")
            or _child_text(item, "description")
            or ""
        )
        results.append(
            ParsedArticle(
                title=_child_text(item, "title") or UNTITLED,
                content=html_to_text(content),
                url=_child_text(item, "link") or "",
                published_at=_parse_datetime(
                    _child_text(item, "pubDate") or _child_text(item, "date"),
                ),
            ),
        )
    return results


def _parse_atom(root: ElementTree.Element) -> list[ParsedArticle]:
    results: list[ParsedArticle] = []
    for entry in root.iter():
        if _local_name(entry.tag) != "entry":
            continue
        content = _child_text(entry, "content") or _child_text(entry, "summary") or ""
        results.append(
            ParsedArticle(
                title=_child_text(entry, "title") or UNTITLED,
                content=html_to_text(content),
                url=_atom_link(entry) or "",
                published_at=_parse_datetime(
                    _child_text(entry, "published") or _child_text(entry, "updated"),
                ),
            ),
        )
    return results


def _atom_link(entry: ElementTree.Element) -> str | None:
    for child in entry:
        if _local_name(child.tag) != "link":
            continue
        rel = child.attrib.get("rel", "").strip().lower()
        href = child.attrib.get("href", "").strip()
        if href and (not rel or rel == "alternate"):
            return href
    for child in entry:
        if _local_name(child.tag) == "link":
            href = child.attrib.get("href", "").strip()
            if href:
                return href
    return None


def _child_text(element: ElementTree.Element, name: str) -> str | None:
    target = name.lower()
    for child in element:
        if _local_name(child.tag) != target:
            continue
        if child.text and child.text.strip():
            return child.text.strip()
        full_text = "".join(child.itertext()).strip()
        if full_text:
            return full_text
    return None


def _local_name(tag: str) -> str:
    if "}" in tag:
        return tag.rsplit("}", 1)[1].lower()
    return tag.lower()


def _parse_datetime(raw_value: str | None) -> datetime | None:
    """Parse RFC 822 or ISO 8601 dates; anything else is ``None``."""

    if not raw_value:
        return None

    try:
        parsed = parsedate_to_datetime(raw_value)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    except (TypeError, ValueError):
        pass

    try:
        iso = datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if iso.tzinfo is None:
        return iso.replace(tzinfo=UTC)
    return iso.astimezone(UTC)


def _describe(error: Exception) -> str:
    if isinstance(error, httpx.HTTPStatusError):
        return f"HTTP {error.response.status_code}"
    if isinstance(error, httpx.TimeoutException):
        return "timeout"
    return str(error) or error.__class__.__name__
