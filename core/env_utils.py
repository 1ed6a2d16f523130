"""Helpers for loading optional .env files."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

from core.logging import get_logger

logger = get_logger(__name__)


def load_dotenv_if_available(path: Path | None = None) -> bool:
    """Load environment variables from a .env file when the file exists."""

    env_path = path or Path(os.getenv("METAMIND_ENV_FILE", ".env"))
    if not env_path.exists():
        return False
    loaded = load_dotenv(dotenv_path=env_path, override=False)
    logger.debug("Loaded environment variables from %s", env_path)
    return bool(loaded)


__all__ = ["load_dotenv_if_available"]
