"""Cosine similarity over fixed-length embedding vectors."""

from __future__ import annotations

import math
from collections.abc import Sequence

from daily_briefing.errors import DimensionMismatch, EmptyVector, ZeroMagnitudeVector


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    """Return cosine similarity clamped to ``[0, 1]``.

    Raises:
        EmptyVector: Either vector has no components.
        DimensionMismatch: Vectors differ in length.
        ZeroMagnitudeVector: Either vector has zero L2 norm.
    """

    if not left or not right:
        raise EmptyVector("Embeddings must be non-empty")
    if len(left) != len(right):
        raise DimensionMismatch(
            f"Embedding dimensions must match: {len(left)} vs {len(right)}",
        )

    dot = 0.0
    for l_value, r_value in zip(left, right, strict=True):
        dot += l_value * r_value

    left_sq = 0.0
    right_sq = 0.0
    for l_value, r_value in zip(left, right, strict=True):
        left_sq += l_value * l_value
        right_sq += r_value * r_value

    magnitude = math.sqrt(left_sq) * math.sqrt(right_sq)
    if magnitude == 0:
        raise ZeroMagnitudeVector("Cannot compute similarity for zero-magnitude vectors")

    return max(0.0, min(1.0, dot / magnitude))
