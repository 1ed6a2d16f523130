"""Prometheus collectors for quota, upgrade and generation outcomes."""

from __future__ import annotations

from typing import Optional

from prometheus_client import REGISTRY, Counter, Histogram

from core.logging import get_logger

logger = get_logger(__name__)


def _counter(name: str, documentation: str, labelnames: tuple[str, ...]) -> Counter:
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        # Module reloads (tests, uvicorn --reload) re-register the same names.
        logger.debug("Counter %s already registered; reusing existing collector.", name)
        return REGISTRY._names_to_collectors[name]  # type: ignore[attr-defined,return-value]


def _histogram(name: str, documentation: str, labelnames: tuple[str, ...]) -> Histogram:
    try:
        return Histogram(name, documentation, labelnames)
    except ValueError:
        logger.debug("Histogram %s already registered; reusing existing collector.", name)
        return REGISTRY._names_to_collectors[name]  # type: ignore[attr-defined,return-value]


_UPGRADE_COUNTER = _counter(
    "metamind_premium_upgrade_total",
    "Premium upgrade attempts by entry point and outcome.",
    ("source", "outcome"),
)
_QUOTA_BLOCK_COUNTER = _counter(
    "metamind_quota_blocked_total",
    "Generation attempts blocked by the quota gate.",
    ("tier",),
)
_GENERATION_COUNTER = _counter(
    "metamind_generation_total",
    "Prompt generations by tool and outcome.",
    ("tool", "outcome"),
)
_GENERATION_LATENCY = _histogram(
    "metamind_generation_seconds",
    "Latency of the upstream LLM call.",
    ("tool",),
)


def record_upgrade(source: Optional[str], outcome: str) -> None:
    _UPGRADE_COUNTER.labels(source=source or "unknown", outcome=outcome).inc()


def record_quota_block(is_premium: bool) -> None:
    _QUOTA_BLOCK_COUNTER.labels(tier="premium" if is_premium else "free").inc()


def record_generation(tool: str, outcome: str, *, seconds: Optional[float] = None) -> None:
    _GENERATION_COUNTER.labels(tool=tool, outcome=outcome).inc()
    if seconds is not None:
        _GENERATION_LATENCY.labels(tool=tool).observe(max(seconds, 0.0))


__all__ = ["record_generation", "record_quota_block", "record_upgrade"]
