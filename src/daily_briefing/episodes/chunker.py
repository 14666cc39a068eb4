"""Split long scripts into TTS-sized chunks and join the rendered audio back."""

from __future__ import annotations

import re
from collections.abc import Iterable

DEFAULT_CHUNK_CHARS = 4_000

# Terminal punctuation counts only before whitespace, so "3.5" and "U.S" stay whole.
_SENTENCE_RE = re.compile(r"\s*\S.*?(?:[.!?]+(?=\s|$)|$)", re.S)
_WORD_RE = re.compile(r"\s*\S+")


def split_text(text: str, *, max_chars: int = DEFAULT_CHUNK_CHARS) -> list[str]:
    """Split ``text`` into chunks of at most ``max_chars`` characters.

    Sentence boundaries are preferred, then word boundaries. Only a single word
    longer than ``max_chars`` is hard cut into ``max_chars`` pieces, so no text
    is ever dropped. Whitespace inside a chunk is kept as written; only the
    whitespace at a chunk boundary is removed.
    """

    if max_chars <= 0:
        raise ValueError("max_chars must be > 0")
    stripped = text.strip()
    if not stripped:
        return []
    if len(stripped) <= max_chars:
        return [stripped]

    chunks: list[str] = []
    current = ""
    for sentence in _SENTENCE_RE.findall(stripped):
        candidate = current + sentence if current else sentence.lstrip()
        if len(candidate) <= max_chars:
            current = candidate
            continue
        if current:
            chunks.append(current)
        current = sentence.strip()
        if len(current) > max_chars:
            chunks.extend(_split_words(current, max_chars=max_chars))
            current = ""
    if current:
        chunks.append(current)
    return chunks


def join_audio(parts: Iterable[bytes]) -> bytes:
    """Concatenate audio chunks in order; mp3 frames are concatenation safe."""

    return b"".join(parts)


def _split_words(sentence: str, *, max_chars: int) -> list[str]:
    chunks: list[str] = []
    current = ""
    for word in _WORD_RE.findall(sentence):
        candidate = current + word if current else word.lstrip()
        if len(candidate) <= max_chars:
            current = candidate
            continue
        if current:
            chunks.append(current)
        current = word.strip()
        if len(current) > max_chars:
            pieces = [
                current[start : start + max_chars]
                for start in range(0, len(current), max_chars)
            ]
            chunks.extend(pieces[:-1])
            current = pieces[-1]
    if current:
        chunks.append(current)
    return chunks
