"""HTML to text cleaning and excerpt helpers."""

from __future__ import annotations

import html
import re

_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")

ELLIPSIS = "..."


def html_to_text(raw_html: str) -> str:
    """Convert HTML markup into normalized plain text."""

    if not raw_html:
        return ""
    no_scripts = _SCRIPT_STYLE_RE.sub(" ", raw_html)
    stripped = _TAG_RE.sub(" ", no_scripts)
    unescaped = html.unescape(stripped)
    normalized = _WHITESPACE_RE.sub(" ", unescaped)
    return normalized.strip()


def content_excerpt(content: str, max_chars: int = 200) -> str:
    """Leading part of ``content`` used when no summary can be generated.

    Cuts after the last complete sentence within ``max_chars``; without one,
    cuts at the last word boundary and appends ``...``.
    """

    text = (content or "").strip()
    if len(text) <= max_chars:
        return text

    window = text[:max_chars]
    sentence_end = max(window.rfind("."), window.rfind("!"), window.rfind("?"))
    if sentence_end > 0:
        return text[: sentence_end + 1]

    space = window.rfind(" ")
    if space > 0:
        return text[:space] + ELLIPSIS
    return window + ELLIPSIS
