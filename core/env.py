"""Typed environment variable readers. Invalid values fall back to the default with a warning."""

from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional, Sequence, TypeVar

from core.logging import get_logger

logger = get_logger(__name__)

N = TypeVar("N", int, float, Decimal)

_TRUE_VALUES = frozenset({"1", "true", "yes", "y", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "n", "off"})


def env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_number(key: str, default: N, parse: Callable[[str], N], minimum: Optional[N]) -> N:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = parse(raw.strip())
    except (ValueError, InvalidOperation):
        logger.warning("Invalid %s value '%s'. Using default=%s.", key, raw, default)
        return default
    if minimum is not None and value < minimum:
        logger.warning("%s=%s is below the minimum %s. Using default=%s.", key, value, minimum, default)
        return default
    return value


def env_int(key: str, default: int, *, minimum: Optional[int] = None) -> int:
    return _env_number(key, default, int, minimum)


def env_float(key: str, default: float, *, minimum: Optional[float] = None) -> float:
    return _env_number(key, default, float, minimum)


def env_decimal(key: str, default: Decimal, *, minimum: Optional[Decimal] = None) -> Decimal:
    return _env_number(key, default, Decimal, minimum)


def env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    logger.warning("Invalid boolean env %s='%s'. Using default=%s.", key, raw, default)
    return default


def env_choice(key: str, default: str, choices: Sequence[str]) -> str:
    """Return the lower-cased value when it is one of ``choices``."""
    raw = os.getenv(key)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in choices:
        return normalized
    logger.warning("Invalid %s value '%s' (expected one of %s). Using default=%s.", key, raw, ", ".join(choices), default)
    return default


__all__ = ["env_bool", "env_choice", "env_decimal", "env_float", "env_int", "env_str"]
