"""Shared logging helpers."""

from __future__ import annotations

import logging
import os
from typing import Optional

_CONFIGURED = False
_DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
_QUIET_LOGGERS = ("httpx", "LiteLLM", "stripe")


def _resolve_level(default: int) -> int:
    raw = (os.getenv("LOG_LEVEL") or "").strip().upper()
    if not raw:
        return default
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else default


def setup_logging(level: int = logging.INFO, *, fmt: Optional[str] = None) -> None:
    """Ensure root logger is configured once."""
    global _CONFIGURED
    if _CONFIGURED:
        return
    logging.basicConfig(level=_resolve_level(level), format=fmt or _DEFAULT_FORMAT)
    # third-party clients log every request at INFO
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    _CONFIGURED = True


def get_logger(name: str, *, level: int = logging.INFO) -> logging.Logger:
    """Return configured logger for a module."""
    setup_logging(level=level)
    return logging.getLogger(name)
