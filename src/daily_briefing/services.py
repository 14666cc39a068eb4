"""Composition root: wires repositories, providers and services from settings."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from daily_briefing.config import Settings
from daily_briefing.episodes.audio import AudioCache, AudioGenerator
from daily_briefing.episodes.script import EpisodeScriptAssembler
from daily_briefing.episodes.service import EpisodeGenerationService
from daily_briefing.filtering.profile import InterestProfileManager
from daily_briefing.filtering.relevance import RelevanceFilter
from daily_briefing.filtering.search import SemanticSearch
from daily_briefing.filtering.statistics import FilteringStatistics
from daily_briefing.ingestion.dedup import Deduplicator
from daily_briefing.ingestion.pipeline import ArticleProcessingPipeline
from daily_briefing.ingestion.sources.rss import FeedFetcher
from daily_briefing.ingestion.summarization import ArticleSummarizer
from daily_briefing.jobs.handlers import JobHandlers
from daily_briefing.jobs.repository import JobRepository
from daily_briefing.providers.base import BlobStorage, ChatService, EmbeddingService, TtsService
from daily_briefing.providers.embedding import build_embedding_service
from daily_briefing.providers.openai_http import (
    OpenAIChatService,
    OpenAIHttpClient,
    OpenAITtsService,
)
from daily_briefing.providers.retry import RetryPolicy
from daily_briefing.providers.storage import LocalBlobStorage
from daily_briefing.storage.repository import BriefingRepository

logger = logging.getLogger(__name__)


class BriefingServices:
    """Owns one repository pair and builds services on first use.

    Provider adapters are created lazily, so commands that never call the
    chat or TTS service run without an API key. Tests pass fakes instead.
    """

    def __init__(  # noqa: PLR0913
        self,
        settings: Settings,
        *,
        repository: BriefingRepository,
        jobs: JobRepository,
        embedder: EmbeddingService | None = None,
        chat: ChatService | None = None,
        tts: TtsService | None = None,
        storage: BlobStorage | None = None,
        fetcher: FeedFetcher | None = None,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.jobs = jobs
        self._embedder = embedder
        self._chat = chat
        self._tts = tts
        self._storage = storage
        self._fetcher = fetcher
        self._http_client: OpenAIHttpClient | None = None

    @classmethod
    def open(cls, settings: Settings) -> BriefingServices:
        repository = BriefingRepository(
            settings.db_path,
            busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
        repository.init_schema()
        jobs = JobRepository(settings.db_path, busy_timeout_ms=settings.sqlite_busy_timeout_ms)
        return cls(settings, repository=repository, jobs=jobs)

    def close(self) -> None:
        if self._fetcher is not None:
            self._fetcher.close()
        if self._http_client is not None:
            self._http_client.close()
        self.jobs.close()
        self.repository.close()

    # -- providers -------------------------------------------------------------

    @property
    def http_client(self) -> OpenAIHttpClient:
        if self._http_client is None:
            providers = self.settings.providers
            self._http_client = OpenAIHttpClient(
                api_key=self.settings.require_api_key(),
                base_url=providers.base_url,
                timeout_seconds=providers.request_timeout_seconds,
            )
        return self._http_client

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy.from_settings(self.settings.providers.retry)

    @property
    def embedder(self) -> EmbeddingService:
        if self._embedder is None:
            client = (
                self.http_client if self.settings.providers.embedding_backend == "openai" else None
            )
            self._embedder = build_embedding_service(self.settings, client=client)
        return self._embedder

    @property
    def chat(self) -> ChatService:
        if self._chat is None:
            self._chat = OpenAIChatService(
                self.http_client,
                model=self.settings.providers.chat_model,
                temperature=self.settings.providers.chat_temperature,
                retry_policy=self.retry_policy,
            )
        return self._chat

    @property
    def tts(self) -> TtsService:
        if self._tts is None:
            self._tts = OpenAITtsService(self.http_client, retry_policy=self.retry_policy)
        return self._tts

    @property
    def storage(self) -> BlobStorage:
        if self._storage is None:
            self._storage = LocalBlobStorage(
                root_dir=self.settings.storage.audio_dir,
                base_url=self.settings.storage.public_base_url,
            )
        return self._storage

    @property
    def fetcher(self) -> FeedFetcher:
        if self._fetcher is None:
            feeds = self.settings.feeds
            self._fetcher = FeedFetcher(
                timeout_seconds=feeds.request_timeout_seconds,
                user_agent=feeds.user_agent,
                max_retries=feeds.max_retries,
            )
        return self._fetcher

    # -- services --------------------------------------------------------------

    @property
    def profiles(self) -> InterestProfileManager:
        return InterestProfileManager(repository=self.repository, embedder=self.embedder)

    @property
    def relevance(self) -> RelevanceFilter:
        return RelevanceFilter(profiles=self.profiles)

    @property
    def statistics(self) -> FilteringStatistics:
        return FilteringStatistics(repository=self.repository)

    @property
    def deduplicator(self) -> Deduplicator:
        return Deduplicator(repository=self.repository)

    @property
    def search(self) -> SemanticSearch:
        return SemanticSearch(repository=self.repository, embedder=self.embedder)

    @property
    def pipeline(self) -> ArticleProcessingPipeline:
        return ArticleProcessingPipeline(
            repository=self.repository,
            fetcher=self.fetcher,
            embedder=self.embedder,
            profiles=self.profiles,
            deduplicator=self.deduplicator,
            statistics=self.statistics,
        )

    @property
    def summarizer(self) -> ArticleSummarizer:
        return ArticleSummarizer(
            chat=self.chat,
            max_tokens=self.settings.episodes.summary_max_tokens,
            excerpt_chars=self.settings.episodes.excerpt_chars,
        )

    @property
    def audio_cache(self) -> AudioCache:
        return AudioCache(repository=self.repository)

    @property
    def audio(self) -> AudioGenerator:
        return AudioGenerator(
            tts=self.tts,
            storage=self.storage,
            cache=self.audio_cache,
            voice=self.settings.providers.tts_voice,
            model=self.settings.providers.tts_model,
            chunk_chars=self.settings.episodes.tts_chunk_chars,
        )

    @property
    def episodes(self) -> EpisodeGenerationService:
        assembler = EpisodeScriptAssembler(
            repository=self.repository,
            chat=self.chat,
            profiles=self.profiles,
            lookback_hours=self.settings.episodes.lookback_hours,
        )
        return EpisodeGenerationService(
            repository=self.repository,
            assembler=assembler,
            audio=self.audio,
            words_per_minute=self.settings.episodes.words_per_minute,
        )

    @property
    def handlers(self) -> JobHandlers:
        return JobHandlers(
            repository=self.repository,
            fetcher=self.fetcher,
            deduplicator=self.deduplicator,
            summarizer=self.summarizer,
            embedder=self.embedder,
            episodes=self.episodes,
            heartbeat=self.jobs.touch,
        )


@contextmanager
def open_services(settings: Settings) -> Iterator[BriefingServices]:
    services = BriefingServices.open(settings)
    try:
        yield services
    finally:
        services.close()
