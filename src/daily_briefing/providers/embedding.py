"""Embedding backends and factory."""

from __future__ import annotations

import hashlib
import math
from array import array
from dataclasses import dataclass

from daily_briefing.config import Settings
from daily_briefing.models import EMBEDDING_DIMENSIONS, Vector
from daily_briefing.providers.base import EmbeddingService
from daily_briefing.providers.openai_http import OpenAIEmbeddingService, OpenAIHttpClient
from daily_briefing.providers.retry import RetryPolicy


@dataclass(slots=True)
class HashingEmbeddingService:
    """Offline embedder based on hashed character n-grams.

    Deterministic and dependency free; used for local development and tests.
    Vectors are non-negative and L2 normalized, so cosine similarity lands in
    ``[0, 1]`` like provider embeddings do.
    """

    dimensions: int = EMBEDDING_DIMENSIONS
    ngram_size: int = 3

    def embed(self, text: str) -> Vector:
        normalized = (text or "").lower().strip()
        vector = array("f", [0.0]) * self.dimensions
        if not normalized:
            return list(vector)

        if len(normalized) < self.ngram_size:
            normalized = normalized + " " * (self.ngram_size - len(normalized))

        for index in range(len(normalized) - self.ngram_size + 1):
            ngram = normalized[index : index + self.ngram_size]
            digest = hashlib.sha1(  # noqa: S324
                ngram.encode("utf-8"),
                usedforsecurity=False,
            ).digest()
            bucket = int.from_bytes(digest[:4], byteorder="little") % self.dimensions
            vector[bucket] += 1.0

        norm = math.sqrt(sum(value * value for value in vector))
        if norm > 0:
            vector = array("f", (value / norm for value in vector))
        return list(vector)


def build_embedding_service(
    settings: Settings,
    *,
    client: OpenAIHttpClient | None = None,
) -> EmbeddingService:
    """Build the configured embedding backend.

    Articles and interest profiles must share one backend instance so both
    live in the same vector space.
    """

    providers = settings.providers
    if providers.embedding_backend == "hashing":
        return HashingEmbeddingService()
    http_client = client or OpenAIHttpClient(
        api_key=settings.require_api_key(),
        base_url=providers.base_url,
        timeout_seconds=providers.request_timeout_seconds,
    )
    return OpenAIEmbeddingService(
        http_client,
        model=providers.embedding_model,
        retry_policy=RetryPolicy.from_settings(providers.retry),
    )
