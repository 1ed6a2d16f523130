"""Reconciled prompt usage from the profile counter and the prompt history table.

``prompt_count`` and the history insert are two separate writes, and either can
fail after the LLM call succeeded. The usage figure the UI trusts is the max of
the two, which errs towards under-granting free usage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from services import metrics
from services.profile_store import ProfileState, ProfileStore
from services.quota_errors import QuotaExceeded, StoreError
from services.quota_policy import QuotaPolicy
from services.user_locks import KeyedLock

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class QuotaSnapshot:
    user_id: str
    profile: Optional[ProfileState]
    prompt_count: int
    total_prompts_limit: int
    is_premium: bool
    has_prompt_history_access: bool

    @property
    def remaining(self) -> int:
        return QuotaPolicy.remaining(self.prompt_count, self.total_prompts_limit)

    @property
    def exhausted(self) -> bool:
        return self.prompt_count >= self.total_prompts_limit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "name": self.profile.name if self.profile else None,
            "promptCount": self.prompt_count,
            "totalPromptsLimit": self.total_prompts_limit,
            "remaining": self.remaining,
            "isPremium": self.is_premium,
            "hasPromptHistoryAccess": self.has_prompt_history_access,
        }


class QuotaReconciler:
    def __init__(
        self,
        store: ProfileStore,
        *,
        policy: Optional[QuotaPolicy] = None,
        locks: Optional[KeyedLock] = None,
    ) -> None:
        self._store = store
        self._policy = policy or QuotaPolicy()
        self._locks = locks or KeyedLock()

    @property
    def policy(self) -> QuotaPolicy:
        return self._policy

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    def _history_count(self, user_id: str, profile: Optional[ProfileState]) -> int:
        since = self._policy.history_window_start(profile) if profile else None
        limit = self._policy.settings.history_count_limit or None
        return self._store.count_prompt_history(user_id, since=since, limit=limit)

    def reconcile_count(self, user_id: str) -> int:
        """Prompts used so far: max(profile.prompt_count, history rows)."""
        profile = self._store.get_profile(user_id)
        stored = profile.prompt_count if profile else 0
        history = self._history_count(user_id, profile)
        if history != stored:
            logger.info(
                "Usage counters disagree; trusting the higher value.",
                extra={"quota": {"user_id": user_id, "prompt_count": stored, "history_count": history}},
            )
        return max(stored, history)

    def increment_after_generation(self, user_id: str) -> int:
        """Record one consumed prompt. Uses the store's atomic increment."""
        with self._locks.hold(user_id):
            new_count = self._store.increment_prompt_count(user_id, 1)
        logger.debug("prompt_count for user=%s is now %d", user_id, new_count)
        return new_count

    def _apply_allowance_reset(self, profile: ProfileState) -> ProfileState:
        fields = self._policy.allowance_reset_fields(profile)
        if not fields:
            return profile
        expected = {"allowance_period_started_at": profile.allowance_period_started_at}
        with self._locks.hold(profile.id):
            applied = self._store.update_profile(profile.id, fields, expected=expected)
        if applied:
            if "prompt_count" in fields:
                logger.info("Free allowance period rolled over for user=%s", profile.id)
            return profile.with_fields(**fields)
        refreshed = self._store.get_profile(profile.id)
        return refreshed or profile

    def snapshot(self, user_id: str) -> QuotaSnapshot:
        """Reconciled quota view after applying the configured reset/lapse policies."""
        profile = self._store.get_profile(user_id)
        if profile is None:
            limit = self._policy.free_prompt_limit
            history = self._history_count(user_id, None)
            return QuotaSnapshot(
                user_id=user_id,
                profile=None,
                prompt_count=history,
                total_prompts_limit=limit,
                is_premium=False,
                has_prompt_history_access=False,
            )

        profile = self._apply_allowance_reset(profile)
        used = max(profile.prompt_count, self._history_count(user_id, profile))

        lapse = self._policy.exhausted_fields(profile, used)
        if lapse:
            try:
                if self._store.update_profile(user_id, lapse, expected={"is_premium": True}):
                    profile = profile.with_fields(**lapse)
                    logger.info("Premium lapsed for user=%s after exhausting %d prompts", user_id, used)
            except StoreError:
                # display state still reflects the lapse on the next read
                logger.warning("Failed to persist premium lapse for user=%s", user_id)

        return QuotaSnapshot(
            user_id=user_id,
            profile=profile,
            prompt_count=used,
            total_prompts_limit=profile.total_prompts_limit,
            is_premium=profile.is_premium,
            has_prompt_history_access=profile.has_prompt_history_access,
        )

    def ensure_can_generate(self, user_id: str) -> QuotaSnapshot:
        """Policy gate evaluated before any LLM call. Raises ``QuotaExceeded``."""
        snapshot = self.snapshot(user_id)
        if snapshot.exhausted:
            metrics.record_quota_block(snapshot.is_premium)
            logger.info(
                "quota.blocked",
                extra={"quota": {"user_id": user_id, "used": snapshot.prompt_count, "limit": snapshot.total_prompts_limit}},
            )
            raise QuotaExceeded(
                used=snapshot.prompt_count,
                limit=snapshot.total_prompts_limit,
                is_premium=snapshot.is_premium,
            )
        return snapshot


__all__ = ["QuotaReconciler", "QuotaSnapshot"]
