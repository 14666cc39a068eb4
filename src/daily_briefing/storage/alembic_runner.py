"""Utilities to run Alembic migrations programmatically."""

from __future__ import annotations

import threading
from pathlib import Path

from alembic import command
from alembic.config import Config

_UPGRADE_LOCK = threading.Lock()


def upgrade_head(db_path: Path) -> None:
    """Apply Alembic migrations up to head for the given SQLite database."""

    root_dir = Path(__file__).resolve().parents[3]
    alembic_ini = root_dir / "alembic.ini"
    alembic_dir = root_dir / "alembic"

    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(alembic_dir))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    # Application logging is configured by the CLI.
    config.attributes["configure_logger"] = False
    with _UPGRADE_LOCK:
        command.upgrade(config, "head")
