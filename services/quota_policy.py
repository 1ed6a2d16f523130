"""Product policy for quota grants and resets.

Every rule that has changed between releases (how a payment adjusts the limit,
whether usage resets, whether premium lapses once exhausted) is decided here and
nowhere else. The active rules come from ``QuotaSettings`` so they can be flipped
through environment variables without touching the reconciliation code.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from core.quota_constants import (
    ALLOWANCE_RESET_ROLLING_30D,
    UPGRADE_POLICY_ADDITIVE,
    QuotaSettings,
)
from services.profile_store import ProfileState


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class QuotaPolicy:
    def __init__(self, settings: Optional[QuotaSettings] = None) -> None:
        self.settings = settings or QuotaSettings()

    @property
    def free_prompt_limit(self) -> int:
        return self.settings.free_prompt_limit

    def upgrade_limit(self, profile: ProfileState) -> int:
        """New ``total_prompts_limit`` after one successful payment."""
        bonus = self.settings.premium_prompt_bonus
        current = max(int(profile.total_prompts_limit or 0), 0)
        if self.settings.upgrade_policy == UPGRADE_POLICY_ADDITIVE:
            return current + bonus
        # A non-premium limit may have drifted; normalise to the free baseline first.
        base = current if profile.is_premium else self.settings.free_prompt_limit
        return base + bonus

    def upgrade_fields(self, profile: ProfileState, payment_intent_id: str) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "total_prompts_limit": self.upgrade_limit(profile),
            "is_premium": True,
            "has_prompt_history_access": True,
            "last_upgrade_payment_intent_id": payment_intent_id,
        }
        if self.settings.reset_prompt_count_on_upgrade:
            fields["prompt_count"] = 0
        return fields

    def rolling_allowance_enabled(self) -> bool:
        return self.settings.allowance_reset == ALLOWANCE_RESET_ROLLING_30D

    def history_window_start(self, profile: ProfileState) -> Optional[datetime]:
        """Lower bound for counting history rows; None counts everything."""
        if not self.rolling_allowance_enabled() or profile.is_premium:
            return None
        if profile.allowance_period_started_at is None:
            return None
        return _as_utc(profile.allowance_period_started_at)

    def allowance_reset_fields(self, profile: ProfileState, *, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """Fields to write when the free allowance period rolls over, else None."""
        if not self.rolling_allowance_enabled() or profile.is_premium:
            return None
        current = now or datetime.now(timezone.utc)
        started = profile.allowance_period_started_at
        if started is None:
            return {"allowance_period_started_at": current}
        if current - _as_utc(started) < timedelta(days=self.settings.allowance_period_days):
            return None
        return {"prompt_count": 0, "allowance_period_started_at": current}

    def exhausted_fields(self, profile: ProfileState, used: int) -> Optional[Dict[str, Any]]:
        """Premium lapse once the paid allowance is spent (off unless configured)."""
        if not self.settings.revert_premium_when_exhausted or not profile.is_premium:
            return None
        if used < profile.total_prompts_limit:
            return None
        return {"is_premium": False}

    @staticmethod
    def remaining(used: int, limit: int) -> int:
        # usage above the limit is displayed as-is but never yields negative remaining
        return max(int(limit) - int(used), 0)


__all__ = ["QuotaPolicy"]
