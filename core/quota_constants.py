"""Quota, pricing and tool constants shared across services and routers."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Sequence

from core.env import env_bool, env_choice, env_decimal, env_float, env_int, env_str


class ToolType(str, Enum):
    V0 = "V0"
    CURSOR = "Cursor"
    BOLT = "Bolt"
    TEMPO = "Tempo"
    LOVABLE = "Lovable"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value


SUPPORTED_TOOL_TYPES: Sequence[ToolType] = tuple(ToolType)

FREE_PROMPT_LIMIT = 5
PREMIUM_PROMPT_BONUS = 150
PREMIUM_PRICE = Decimal("3.99")
PREMIUM_CURRENCY = "usd"

PAYMENT_STATUS_SUCCEEDED = "succeeded"
PAYMENT_STATUS_COMPLETED = "completed"

UPGRADE_POLICY_BASELINE_THEN_BONUS = "baseline_then_bonus"
UPGRADE_POLICY_ADDITIVE = "additive"
UPGRADE_POLICIES = (UPGRADE_POLICY_BASELINE_THEN_BONUS, UPGRADE_POLICY_ADDITIVE)

ALLOWANCE_RESET_NEVER = "never"
ALLOWANCE_RESET_ROLLING_30D = "rolling_30d"
ALLOWANCE_RESETS = (ALLOWANCE_RESET_NEVER, ALLOWANCE_RESET_ROLLING_30D)
ALLOWANCE_PERIOD_DAYS = 30


@dataclass(frozen=True)
class QuotaSettings:
    """Tunable quota/payment knobs. Defaults mirror the production configuration."""

    free_prompt_limit: int = FREE_PROMPT_LIMIT
    premium_prompt_bonus: int = PREMIUM_PROMPT_BONUS
    premium_price: Decimal = PREMIUM_PRICE
    premium_currency: str = PREMIUM_CURRENCY
    upgrade_policy: str = UPGRADE_POLICY_BASELINE_THEN_BONUS
    reset_prompt_count_on_upgrade: bool = False
    revert_premium_when_exhausted: bool = False
    allowance_reset: str = ALLOWANCE_RESET_NEVER
    allowance_period_days: int = ALLOWANCE_PERIOD_DAYS
    history_count_limit: int = 0
    cache_ttl_seconds: int = 300
    generation_timeout_seconds: float = 30.0
    poll_max_attempts: int = 5
    poll_delay_seconds: float = 2.0
    poll_backoff: bool = False

    @classmethod
    def from_env(cls) -> "QuotaSettings":
        return cls(
            free_prompt_limit=env_int("QUOTA_FREE_PROMPT_LIMIT", FREE_PROMPT_LIMIT, minimum=0),
            premium_prompt_bonus=env_int("QUOTA_PREMIUM_PROMPT_BONUS", PREMIUM_PROMPT_BONUS, minimum=1),
            premium_price=env_decimal("PREMIUM_PRICE", PREMIUM_PRICE, minimum=Decimal("0.50")),
            premium_currency=(env_str("PREMIUM_CURRENCY", PREMIUM_CURRENCY) or PREMIUM_CURRENCY).lower(),
            upgrade_policy=env_choice("QUOTA_UPGRADE_POLICY", UPGRADE_POLICY_BASELINE_THEN_BONUS, UPGRADE_POLICIES),
            reset_prompt_count_on_upgrade=env_bool("QUOTA_RESET_PROMPT_COUNT_ON_UPGRADE", False),
            revert_premium_when_exhausted=env_bool("QUOTA_REVERT_PREMIUM_WHEN_EXHAUSTED", False),
            allowance_reset=env_choice("QUOTA_ALLOWANCE_RESET", ALLOWANCE_RESET_NEVER, ALLOWANCE_RESETS),
            allowance_period_days=env_int("QUOTA_ALLOWANCE_PERIOD_DAYS", ALLOWANCE_PERIOD_DAYS, minimum=1),
            history_count_limit=env_int("QUOTA_HISTORY_COUNT_LIMIT", 0, minimum=0),
            cache_ttl_seconds=env_int("SESSION_CACHE_TTL_SECONDS", 300, minimum=0),
            generation_timeout_seconds=env_float("LLM_GENERATION_TIMEOUT_SECONDS", 30.0, minimum=1.0),
            poll_max_attempts=env_int("PAYMENT_POLL_MAX_ATTEMPTS", 5, minimum=1),
            poll_delay_seconds=env_float("PAYMENT_POLL_DELAY_SECONDS", 2.0, minimum=0.0),
            poll_backoff=env_bool("PAYMENT_POLL_BACKOFF", False),
        )


__all__ = [
    "ALLOWANCE_PERIOD_DAYS",
    "ALLOWANCE_RESETS",
    "ALLOWANCE_RESET_NEVER",
    "ALLOWANCE_RESET_ROLLING_30D",
    "FREE_PROMPT_LIMIT",
    "PAYMENT_STATUS_COMPLETED",
    "PAYMENT_STATUS_SUCCEEDED",
    "PREMIUM_CURRENCY",
    "PREMIUM_PRICE",
    "PREMIUM_PROMPT_BONUS",
    "QuotaSettings",
    "SUPPORTED_TOOL_TYPES",
    "ToolType",
    "UPGRADE_POLICIES",
    "UPGRADE_POLICY_ADDITIVE",
    "UPGRADE_POLICY_BASELINE_THEN_BONUS",
]
