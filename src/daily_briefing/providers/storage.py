"""Local filesystem blob storage exposed under a public base URL."""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath

from daily_briefing.errors import ValidationError

logger = logging.getLogger(__name__)


class LocalBlobStorage:
    """Writes blobs below ``root_dir`` and serves them as ``{base_url}/{path}``."""

    def __init__(self, *, root_dir: Path, base_url: str) -> None:
        self.root_dir = root_dir
        self.base_url = base_url.rstrip("/")

    def upload(self, data: bytes, path: str) -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info("Stored blob path=%s bytes=%d", path, len(data))
        return f"{self.base_url}/{path}"

    def delete(self, url: str) -> bool:
        prefix = f"{self.base_url}/"
        if not url.startswith(prefix):
            logger.warning("Refusing to delete blob outside storage: %s", url)
            return False
        target = self._resolve(url[len(prefix) :])
        if not target.exists():
            return False
        target.unlink()
        logger.info("Deleted blob %s", url)
        return True

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise ValidationError(f"Invalid blob path: {path!r}")
        return self.root_dir.joinpath(*relative.parts)
