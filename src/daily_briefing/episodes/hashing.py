"""Content hashing for the audio cache."""

from __future__ import annotations

import hashlib


def script_hash(script_text: str) -> str:
    """SHA-256 hex digest of the exact script text."""

    return hashlib.sha256(script_text.encode("utf-8")).hexdigest()
