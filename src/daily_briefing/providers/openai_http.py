"""OpenAI-compatible HTTP clients for embeddings, chat completions and speech."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from daily_briefing.errors import DimensionMismatch, ProviderError, TransientProviderError
from daily_briefing.models import EMBEDDING_DIMENSIONS, Vector
from daily_briefing.providers.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
RETRYABLE_HTTP_STATUS_CODES = frozenset({408, 409, 429, 500, 502, 503, 504})
TTS_MODELS = frozenset({"tts-1", "tts-1-hd"})
TTS_VOICES = frozenset({"alloy", "echo", "fable", "onyx", "nova", "shimmer"})


class OpenAIHttpClient:
    """Thin httpx wrapper that maps transport and status failures onto briefing errors."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    def post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = self._post(path, payload)
        try:
            body = response.json()
        except ValueError as error:
            raise ProviderError(f"Invalid JSON response from {path}") from error
        if not isinstance(body, dict):
            raise ProviderError(f"Unexpected response shape from {path}")
        return body

    def post_bytes(self, path: str, payload: dict[str, Any]) -> bytes:
        return self._post(path, payload).content

    def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        try:
            response = self._client.post(path, json=payload)
        except httpx.TimeoutException as error:
            logger.warning("Timeout calling %s", path)
            raise TransientProviderError(f"Request to {path} timed out") from error
        except httpx.HTTPError as error:
            logger.warning("HTTP error calling %s: %s", path, error)
            raise TransientProviderError(f"Request to {path} failed: {error}") from error

        if response.is_success:
            return response
        message = f"{path} returned HTTP {response.status_code}: {_error_detail(response)}"
        if response.status_code in RETRYABLE_HTTP_STATUS_CODES:
            raise TransientProviderError(message)
        raise ProviderError(message)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OpenAIHttpClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class OpenAIEmbeddingService:
    """Embedding adapter that enforces the stored vector dimensionality."""

    def __init__(
        self,
        client: OpenAIHttpClient,
        *,
        model: str = "text-embedding-3-small",
        dimensions: int = EMBEDDING_DIMENSIONS,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.client = client
        self.model = model
        self.dimensions = dimensions
        self.retry_policy = retry_policy or RetryPolicy()

    def embed(self, text: str) -> Vector:
        body = call_with_retry(
            "Embedding generation",
            lambda: self.client.post_json(
                "/embeddings",
                {"model": self.model, "input": text, "dimensions": self.dimensions},
            ),
            policy=self.retry_policy,
        )
        try:
            vector = [float(value) for value in body["data"][0]["embedding"]]
        except (KeyError, IndexError, TypeError, ValueError) as error:
            raise ProviderError("No embedding returned from provider") from error
        if len(vector) != self.dimensions:
            raise DimensionMismatch(
                f"Embedding dimensions must match: {len(vector)} vs {self.dimensions}",
            )
        return vector


class OpenAIChatService:
    def __init__(
        self,
        client: OpenAIHttpClient,
        *,
        model: str = "gpt-4o",
        temperature: float = 0.7,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.client = client
        self.model = model
        self.temperature = temperature
        self.retry_policy = retry_policy or RetryPolicy()

    def complete(self, prompt: str, *, max_tokens: int) -> str:
        body = call_with_retry(
            "Chat completion",
            lambda: self.client.post_json(
                "/chat/completions",
                {
                    "model": self.model,
                    "messages": [{"role": "user", "content": prompt}],
                    "temperature": self.temperature,
                    "max_tokens": max_tokens,
                },
            ),
            policy=self.retry_policy,
        )
        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as error:
            raise ProviderError("No completion returned from provider") from error
        if not isinstance(content, str) or not content.strip():
            raise ProviderError("No completion returned from provider")
        return content.strip()


class OpenAITtsService:
    def __init__(
        self,
        client: OpenAIHttpClient,
        *,
        response_format: str = "mp3",
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.client = client
        self.response_format = response_format
        self.retry_policy = retry_policy or RetryPolicy()

    def synthesize(self, text: str, *, voice: str, model: str) -> bytes:
        if model not in TTS_MODELS:
            raise ProviderError(f"Unsupported TTS model: {model}")
        if voice not in TTS_VOICES:
            raise ProviderError(f"Unsupported TTS voice: {voice}")
        audio = call_with_retry(
            "Speech synthesis",
            lambda: self._request_speech(text, voice=voice, model=model),
            policy=self.retry_policy,
        )
        return audio

    def _request_speech(self, text: str, *, voice: str, model: str) -> bytes:
        audio = self.client.post_bytes(
            "/audio/speech",
            {
                "model": model,
                "voice": voice,
                "input": text,
                "response_format": self.response_format,
            },
        )
        if not audio:
            raise TransientProviderError("Empty audio response from provider")
        return audio


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return response.text[:200]
