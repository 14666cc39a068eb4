"""Contracts for external embedding, chat, speech and blob storage services."""

from __future__ import annotations

from typing import Protocol

from daily_briefing.models import Vector


class EmbeddingService(Protocol):
    """Turns text into a fixed-length vector."""

    def embed(self, text: str) -> Vector:
        """Return an embedding of exactly ``EMBEDDING_DIMENSIONS`` floats."""
        raise NotImplementedError


class ChatService(Protocol):
    """Single-turn text completion."""

    def complete(self, prompt: str, *, max_tokens: int) -> str:
        raise NotImplementedError


class TtsService(Protocol):
    """Text to speech; input is capped by the provider's per-call character limit."""

    def synthesize(self, text: str, *, voice: str, model: str) -> bytes:
        raise NotImplementedError


class BlobStorage(Protocol):
    """Public blob storage for generated audio."""

    def upload(self, data: bytes, path: str) -> str:
        """Store ``data`` under ``path`` and return its public URL."""
        raise NotImplementedError

    def delete(self, url: str) -> bool:
        """Delete the blob behind a public URL; ``False`` if it was not found."""
        raise NotImplementedError
