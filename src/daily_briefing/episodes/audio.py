"""Content-addressed episode audio: cache lookup, TTS, upload."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from daily_briefing.episodes.chunker import DEFAULT_CHUNK_CHARS, join_audio, split_text
from daily_briefing.episodes.hashing import script_hash
from daily_briefing.errors import ValidationError
from daily_briefing.providers.base import BlobStorage, TtsService

logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = 150
DEFAULT_VOICE = "alloy"
DEFAULT_TTS_MODEL = "tts-1"


class AudioCacheStore(Protocol):
    def get_cached_audio(self, script_hash: str) -> str | None: ...

    def upsert_cached_audio(self, *, script_hash: str, audio_url: str) -> None: ...

    def delete_cached_audio(self, script_hash: str) -> bool: ...

    def clear_audio_cache(self) -> int: ...


@dataclass(slots=True)
class AudioResult:
    audio_url: str
    script_hash: str
    from_cache: bool


def estimate_duration_minutes(
    script_text: str,
    *,
    words_per_minute: int = WORDS_PER_MINUTE,
) -> int:
    return math.ceil(len(script_text.split()) / words_per_minute)


def audio_path(digest: str, *, timestamp_ms: int) -> str:
    return f"episodes/{digest}-{timestamp_ms}.mp3"


class AudioCache:
    """Maps script hashes to uploaded audio URLs."""

    def __init__(self, *, repository: AudioCacheStore) -> None:
        self.repository = repository

    def get(self, digest: str) -> str | None:
        return self.repository.get_cached_audio(digest)

    def put(self, digest: str, audio_url: str) -> None:
        self.repository.upsert_cached_audio(script_hash=digest, audio_url=audio_url)

    def remove(self, digest: str) -> bool:
        return self.repository.delete_cached_audio(digest)

    def clear(self) -> int:
        removed = self.repository.clear_audio_cache()
        logger.info("Audio cache cleared entries=%d", removed)
        return removed


class AudioGenerator:
    """Renders scripts to audio once per distinct script text."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        tts: TtsService,
        storage: BlobStorage,
        cache: AudioCache,
        voice: str = DEFAULT_VOICE,
        model: str = DEFAULT_TTS_MODEL,
        chunk_chars: int = DEFAULT_CHUNK_CHARS,
        clock_ms: Callable[[], int] | None = None,
    ) -> None:
        self.tts = tts
        self.storage = storage
        self.cache = cache
        self.voice = voice
        self.model = model
        self.chunk_chars = chunk_chars
        self._clock_ms = clock_ms or (lambda: time.time_ns() // 1_000_000)

    def generate(self, script_text: str) -> AudioResult:
        """Return cached audio for identical text, otherwise synthesize and upload.

        The cache row is written only after the upload succeeded, so a failed
        run leaves no entry pointing at missing audio.
        """

        digest = script_hash(script_text)
        cached_url = self.cache.get(digest)
        if cached_url:
            logger.info("Using cached audio script_hash=%s", digest)
            return AudioResult(audio_url=cached_url, script_hash=digest, from_cache=True)

        chunks = split_text(script_text, max_chars=self.chunk_chars)
        if not chunks:
            raise ValidationError("Cannot generate audio for an empty script")
        logger.info("Generating audio script_hash=%s chunks=%d", digest, len(chunks))

        parts = [
            self._synthesize(chunk, index, len(chunks)) for index, chunk in enumerate(chunks)
        ]
        audio_url = self.storage.upload(
            join_audio(parts),
            audio_path(digest, timestamp_ms=self._clock_ms()),
        )
        self.cache.put(digest, audio_url)
        return AudioResult(audio_url=audio_url, script_hash=digest, from_cache=False)

    def _synthesize(self, chunk: str, index: int, total: int) -> bytes:
        logger.debug("Synthesizing chunk %d/%d chars=%d", index + 1, total, len(chunk))
        return self.tts.synthesize(chunk, voice=self.voice, model=self.model)


def remove_episode_audio(
    *,
    storage: BlobStorage,
    cache: AudioCache,
    audio_url: str,
    script_text: str,
) -> None:
    """Remove the stored blob and its cache entry."""

    if not storage.delete(audio_url):
        logger.warning("Audio blob not found url=%s", audio_url)
    cache.remove(script_hash(script_text))
