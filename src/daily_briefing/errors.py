"""Error taxonomy shared by pipeline stages, providers and job handlers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar


class ErrorKind(str, Enum):
    """Coarse error classes that drive retry and user-facing mapping."""

    VALIDATION = "validation"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    NOT_FOUND = "not_found"
    OWNERSHIP = "ownership"


@dataclass(slots=True, eq=False)
class BriefingError(Exception):
    """Base error for the briefing domain."""

    message: str

    kind: ClassVar[ErrorKind] = ErrorKind.PERMANENT

    def __str__(self) -> str:
        return self.message

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT


class ValidationError(BriefingError):
    """Bad input that must be surfaced immediately and never retried."""

    kind = ErrorKind.VALIDATION


class InvalidFeedUrl(ValidationError):
    pass


class InvalidThreshold(ValidationError):
    pass


class EmptyInterests(ValidationError):
    pass


class InvalidJobPayload(ValidationError):
    pass


class VectorError(ValidationError):
    """Invalid embedding vector input."""


class EmptyVector(VectorError):
    pass


class ZeroMagnitudeVector(VectorError):
    pass


class DimensionMismatch(VectorError):
    pass


class TransientProviderError(BriefingError):
    """Network, timeout, rate limit or 5xx failure from an external service."""

    kind = ErrorKind.TRANSIENT


class ProviderError(BriefingError):
    """Non-retryable failure reported by an external service."""


@dataclass(slots=True, eq=False)
class RetryExhausted(ProviderError):
    """All retry attempts for one provider operation failed."""

    operation: str = ""
    attempts: int = 0
    last_error: str = ""


class NotFoundError(BriefingError):
    kind = ErrorKind.NOT_FOUND


class UserNotFound(NotFoundError):
    pass


class FeedNotFound(NotFoundError):
    pass


class ProfileNotFound(NotFoundError):
    """User has no preferences row, onboarding must be completed first."""


class EpisodeNotFound(NotFoundError):
    pass


class ArticleNotFound(NotFoundError):
    pass


class JobNotFound(NotFoundError):
    pass


class NoRecentArticles(NotFoundError):
    """Nothing to build a script from in the lookback window."""


class OwnershipError(BriefingError):
    """Entity belongs to another user."""

    kind = ErrorKind.OWNERSHIP
