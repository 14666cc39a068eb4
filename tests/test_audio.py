from __future__ import annotations

import allure
import pytest

from daily_briefing.episodes.audio import (
    AudioCache,
    AudioGenerator,
    audio_path,
    estimate_duration_minutes,
    remove_episode_audio,
)
from daily_briefing.episodes.hashing import script_hash
from daily_briefing.errors import ProviderError, ValidationError
from daily_briefing.storage.repository import BriefingRepository
from fakes import FakeTts, MemoryStorage

pytestmark = [
    allure.epic("Episode Generation"),
    allure.feature("Audio Rendering & Cache"),
]

SCRIPT = "Good morning. Markets opened higher today. That is all for now."


class _BrokenTts:
    def synthesize(self, text: str, *, voice: str, model: str) -> bytes:
        raise ProviderError("TTS quota exceeded")


def _generator(
    repository: BriefingRepository,
    *,
    tts: object | None = None,
    storage: MemoryStorage | None = None,
    chunk_chars: int = 4000,
) -> AudioGenerator:
    return AudioGenerator(
        tts=tts or FakeTts(),  # type: ignore[arg-type]
        storage=storage or MemoryStorage(),
        cache=AudioCache(repository=repository),
        chunk_chars=chunk_chars,
        clock_ms=lambda: 1_700_000_000_000,
    )


@pytest.mark.parametrize(
    ("words", "minutes"),
    [(0, 0), (1, 1), (150, 1), (151, 2), (1800, 12)],
)
def test_duration_estimate_rounds_up(words: int, minutes: int) -> None:
    assert estimate_duration_minutes(" ".join(["word"] * words)) == minutes


def test_audio_path_embeds_hash_and_timestamp() -> None:
    assert audio_path("abc", timestamp_ms=42) == "episodes/abc-42.mp3"


def test_generate_synthesizes_chunks_in_order_and_caches(repository: BriefingRepository) -> None:
    tts = FakeTts()
    storage = MemoryStorage()
    generator = _generator(repository, tts=tts, storage=storage, chunk_chars=30)

    result = generator.generate(SCRIPT)

    digest = script_hash(SCRIPT)
    assert result.from_cache is False
    assert result.script_hash == digest
    assert result.audio_url == f"https://cdn.test/audio/episodes/{digest}-1700000000000.mp3"
    assert [call[0] for call in tts.calls] == [
        "Good morning.",
        "Markets opened higher today.",
        "That is all for now.",
    ]
    assert all(call[1:] == ("alloy", "tts-1") for call in tts.calls)
    assert storage.blobs[result.audio_url] == b"<1><2><3>"
    assert repository.get_cached_audio(digest) == result.audio_url


def test_identical_script_reuses_cached_audio(repository: BriefingRepository) -> None:
    tts = FakeTts()
    generator = _generator(repository, tts=tts)

    first = generator.generate(SCRIPT)
    second = generator.generate(SCRIPT)

    assert second.from_cache is True
    assert second.audio_url == first.audio_url
    assert len(tts.calls) == 1


def test_different_script_gets_new_audio(repository: BriefingRepository) -> None:
    generator = _generator(repository)

    first = generator.generate(SCRIPT)
    second = generator.generate(SCRIPT + " ")

    assert second.from_cache is False
    assert second.script_hash != first.script_hash


def test_failed_synthesis_leaves_no_cache_or_blob(repository: BriefingRepository) -> None:
    storage = MemoryStorage()
    generator = _generator(repository, tts=_BrokenTts(), storage=storage)

    with pytest.raises(ProviderError):
        generator.generate(SCRIPT)

    assert storage.blobs == {}
    assert repository.get_cached_audio(script_hash(SCRIPT)) is None


def test_empty_script_is_rejected(repository: BriefingRepository) -> None:
    with pytest.raises(ValidationError):
        _generator(repository).generate("   ")


def test_remove_episode_audio_drops_blob_and_cache(repository: BriefingRepository) -> None:
    storage = MemoryStorage()
    generator = _generator(repository, storage=storage)
    result = generator.generate(SCRIPT)

    remove_episode_audio(
        storage=storage,
        cache=generator.cache,
        audio_url=result.audio_url,
        script_text=SCRIPT,
    )

    assert storage.blobs == {}
    assert repository.get_cached_audio(result.script_hash) is None
    # A second delete finds nothing and does not raise.
    remove_episode_audio(
        storage=storage,
        cache=generator.cache,
        audio_url=result.audio_url,
        script_text=SCRIPT,
    )


def test_cache_upsert_overwrites_and_clear_empties(repository: BriefingRepository) -> None:
    cache = AudioCache(repository=repository)

    cache.put("hash-1", "https://cdn.test/one.mp3")
    cache.put("hash-1", "https://cdn.test/two.mp3")
    cache.put("hash-2", "https://cdn.test/three.mp3")

    assert cache.get("hash-1") == "https://cdn.test/two.mp3"
    assert cache.clear() == 2
    assert cache.get("hash-2") is None
