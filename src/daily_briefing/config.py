"""Runtime configuration for the briefing pipeline, providers and workers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

EMBEDDING_BACKENDS = frozenset({"openai", "hashing"})


@dataclass(slots=True)
class FeedSettings:
    """Feed fetching settings."""

    request_timeout_seconds: float = 10.0
    max_retries: int = 2
    user_agent: str = "DailyBriefingBot/1.0"


@dataclass(slots=True)
class RetrySettings:
    """Exponential backoff for outbound provider calls."""

    max_retries: int = 3
    initial_delay_ms: int = 1_000
    backoff_multiplier: float = 2.0
    max_delay_ms: int = 10_000


@dataclass(slots=True)
class ProviderSettings:
    """Embedding, chat and TTS provider settings."""

    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    embedding_backend: str = "openai"
    embedding_model: str = "text-embedding-3-small"
    chat_model: str = "gpt-4o"
    chat_temperature: float = 0.7
    tts_model: str = "tts-1"
    tts_voice: str = "alloy"
    request_timeout_seconds: float = 60.0
    retry: RetrySettings = field(default_factory=RetrySettings)


@dataclass(slots=True)
class EpisodeSettings:
    """Script assembly and audio generation settings."""

    lookback_hours: int = 48
    words_per_minute: int = 150
    tts_chunk_chars: int = 4_000
    summary_max_tokens: int = 150
    excerpt_chars: int = 200


@dataclass(slots=True)
class StorageSettings:
    """Local blob storage for generated audio."""

    audio_dir: Path = Path("audio")
    public_base_url: str = "http://localhost:8000/audio"


@dataclass(slots=True)
class JobSettings:
    """Background job queue settings."""

    poll_interval_seconds: float = 2.0
    stale_after_seconds: int = 1_800
    batch_size: int = 10
    completed_retention_hours: int = 24
    completed_keep: int = 100
    failed_retention_days: int = 7
    failed_keep: int = 500


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".daily_briefing.db")
    sqlite_busy_timeout_ms: int = 5_000
    feeds: FeedSettings = field(default_factory=FeedSettings)
    providers: ProviderSettings = field(default_factory=ProviderSettings)
    episodes: EpisodeSettings = field(default_factory=EpisodeSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    jobs: JobSettings = field(default_factory=JobSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        settings = cls(
            db_path=db_path or Path(os.getenv("DAILY_BRIEFING_DB_PATH", ".daily_briefing.db")),
            sqlite_busy_timeout_ms=_env_int("DAILY_BRIEFING_SQLITE_BUSY_TIMEOUT_MS", 5_000),
            feeds=FeedSettings(
                request_timeout_seconds=_env_float("DAILY_BRIEFING_FEED_TIMEOUT_SECONDS", 10.0),
                max_retries=_env_int("DAILY_BRIEFING_FEED_MAX_RETRIES", 2),
                user_agent=os.getenv("DAILY_BRIEFING_FEED_USER_AGENT", "DailyBriefingBot/1.0"),
            ),
            providers=ProviderSettings(
                api_key=os.getenv("DAILY_BRIEFING_API_KEY", os.getenv("OPENAI_API_KEY", "")),
                base_url=os.getenv("DAILY_BRIEFING_API_BASE_URL", "https://api.openai.com/v1"),
                embedding_backend=os.getenv("DAILY_BRIEFING_EMBEDDING_BACKEND", "openai")
                .strip()
                .lower(),
                embedding_model=os.getenv(
                    "DAILY_BRIEFING_EMBEDDING_MODEL",
                    "text-embedding-3-small",
                ),
                chat_model=os.getenv("DAILY_BRIEFING_CHAT_MODEL", "gpt-4o"),
                chat_temperature=_env_float("DAILY_BRIEFING_CHAT_TEMPERATURE", 0.7),
                tts_model=os.getenv("DAILY_BRIEFING_TTS_MODEL", "tts-1"),
                tts_voice=os.getenv("DAILY_BRIEFING_TTS_VOICE", "alloy"),
                request_timeout_seconds=_env_float(
                    "DAILY_BRIEFING_PROVIDER_TIMEOUT_SECONDS",
                    60.0,
                ),
                retry=RetrySettings(
                    max_retries=_env_int("DAILY_BRIEFING_RETRY_MAX_RETRIES", 3),
                    initial_delay_ms=_env_int("DAILY_BRIEFING_RETRY_INITIAL_DELAY_MS", 1000),
                    backoff_multiplier=_env_float("DAILY_BRIEFING_RETRY_MULTIPLIER", 2.0),
                    max_delay_ms=_env_int("DAILY_BRIEFING_RETRY_MAX_DELAY_MS", 10000),
                ),
            ),
            episodes=EpisodeSettings(
                lookback_hours=_env_int("DAILY_BRIEFING_LOOKBACK_HOURS", 48),
                words_per_minute=_env_int("DAILY_BRIEFING_WORDS_PER_MINUTE", 150),
                tts_chunk_chars=_env_int("DAILY_BRIEFING_TTS_CHUNK_CHARS", 4000),
                summary_max_tokens=_env_int("DAILY_BRIEFING_SUMMARY_MAX_TOKENS", 150),
                excerpt_chars=_env_int("DAILY_BRIEFING_EXCERPT_CHARS", 200),
            ),
            storage=StorageSettings(
                audio_dir=Path(os.getenv("DAILY_BRIEFING_AUDIO_DIR", "audio")),
                public_base_url=os.getenv(
                    "DAILY_BRIEFING_PUBLIC_BASE_URL",
                    "http://localhost:8000/audio",
                ),
            ),
            jobs=JobSettings(
                poll_interval_seconds=_env_float("DAILY_BRIEFING_POLL_INTERVAL_SECONDS", 2.0),
                stale_after_seconds=_env_int("DAILY_BRIEFING_STALE_JOB_SECONDS", 1800),
                batch_size=_env_int("DAILY_BRIEFING_BATCH_SIZE", 10),
                completed_retention_hours=_env_int(
                    "DAILY_BRIEFING_COMPLETED_RETENTION_HOURS",
                    24,
                ),
                completed_keep=_env_int("DAILY_BRIEFING_COMPLETED_KEEP", 100),
                failed_retention_days=_env_int("DAILY_BRIEFING_FAILED_RETENTION_DAYS", 7),
                failed_keep=_env_int("DAILY_BRIEFING_FAILED_KEEP", 500),
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise configuration error if a value is out of its supported range."""

        if self.feeds.request_timeout_seconds <= 0:
            raise ValueError("DAILY_BRIEFING_FEED_TIMEOUT_SECONDS must be > 0.")
        if self.providers.embedding_backend not in EMBEDDING_BACKENDS:
            raise ValueError(
                "DAILY_BRIEFING_EMBEDDING_BACKEND must be one of "
                f"{sorted(EMBEDDING_BACKENDS)}, got {self.providers.embedding_backend!r}.",
            )
        retry = self.providers.retry
        if retry.max_retries < 0:
            raise ValueError("DAILY_BRIEFING_RETRY_MAX_RETRIES must be >= 0.")
        if retry.initial_delay_ms < 0 or retry.max_delay_ms < retry.initial_delay_ms:
            raise ValueError(
                "DAILY_BRIEFING_RETRY_MAX_DELAY_MS must be >= "
                "DAILY_BRIEFING_RETRY_INITIAL_DELAY_MS.",
            )
        if self.episodes.lookback_hours <= 0:
            raise ValueError("DAILY_BRIEFING_LOOKBACK_HOURS must be > 0.")
        if self.episodes.words_per_minute <= 0:
            raise ValueError("DAILY_BRIEFING_WORDS_PER_MINUTE must be > 0.")
        if self.episodes.tts_chunk_chars <= 0:
            raise ValueError("DAILY_BRIEFING_TTS_CHUNK_CHARS must be > 0.")
        if self.jobs.batch_size <= 0:
            raise ValueError("DAILY_BRIEFING_BATCH_SIZE must be > 0.")
        if self.jobs.poll_interval_seconds < 0:
            raise ValueError("DAILY_BRIEFING_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.sqlite_busy_timeout_ms < 0:
            raise ValueError("DAILY_BRIEFING_SQLITE_BUSY_TIMEOUT_MS must be >= 0.")

    def require_api_key(self) -> str:
        """Return the provider API key or fail with a configuration error."""

        if not self.providers.api_key:
            raise ValueError(
                "Provider API key is required. Set DAILY_BRIEFING_API_KEY or OPENAI_API_KEY.",
            )
        return self.providers.api_key


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid float value for {name}: {value!r}") from error
