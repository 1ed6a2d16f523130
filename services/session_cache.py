"""Single source of the reconciled quota state shown to a signed-in user.

Entries are refreshed through :class:`QuotaReconciler` and kept for a short TTL.
An optional on-disk copy lets a fresh process paint the last known numbers
immediately; that copy is advisory and never consulted for quota decisions.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from core.auth.constants import REFRESHING_AUTH_EVENTS
from services.json_state_store import JsonStateStore
from services.quota_reconciler import QuotaReconciler, QuotaSnapshot

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300


@dataclass(frozen=True, slots=True)
class CachedQuota:
    user_id: str
    prompt_count: int
    total_prompts_limit: int
    is_premium: bool
    has_prompt_history_access: bool
    fetched_at: float
    name: Optional[str] = None
    snapshot: Optional[QuotaSnapshot] = None
    advisory: bool = False

    @property
    def remaining(self) -> int:
        return max(self.total_prompts_limit - self.prompt_count, 0)

    @classmethod
    def from_snapshot(cls, snapshot: QuotaSnapshot, fetched_at: float) -> "CachedQuota":
        return cls(
            user_id=snapshot.user_id,
            prompt_count=snapshot.prompt_count,
            total_prompts_limit=snapshot.total_prompts_limit,
            is_premium=snapshot.is_premium,
            has_prompt_history_access=snapshot.has_prompt_history_access,
            fetched_at=fetched_at,
            name=snapshot.profile.name if snapshot.profile else None,
            snapshot=snapshot,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "name": self.name,
            "promptCount": self.prompt_count,
            "totalPromptsLimit": self.total_prompts_limit,
            "remaining": self.remaining,
            "isPremium": self.is_premium,
            "hasPromptHistoryAccess": self.has_prompt_history_access,
            "fetchedAt": self.fetched_at,
            "advisory": self.advisory,
        }


def _from_persisted(user_id: str, raw: Dict[str, Any]) -> Optional[CachedQuota]:
    try:
        return CachedQuota(
            user_id=user_id,
            name=raw.get("name"),
            prompt_count=int(raw["promptCount"]),
            total_prompts_limit=int(raw["totalPromptsLimit"]),
            is_premium=bool(raw.get("isPremium")),
            has_prompt_history_access=bool(raw.get("hasPromptHistoryAccess")),
            fetched_at=float(raw.get("fetchedAt") or 0.0),
            advisory=True,
        )
    except (KeyError, TypeError, ValueError):
        logger.debug("Ignoring malformed persisted quota entry for user=%s", user_id)
        return None


class SessionCache:
    def __init__(
        self,
        reconciler: QuotaReconciler,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        persisted: Optional[JsonStateStore] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._reconciler = reconciler
        self._ttl = float(ttl_seconds)
        self._persisted = persisted
        self._clock = clock
        self._entries: Dict[str, CachedQuota] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def _fresh(self, entry: CachedQuota) -> bool:
        return (self._clock() - entry.fetched_at) < self._ttl

    def get(self, user_id: str, *, force: bool = False) -> CachedQuota:
        """Cached state when younger than the TTL, otherwise a reconciled refresh."""
        if not force:
            with self._lock:
                entry = self._entries.get(user_id)
            if entry is not None and self._fresh(entry):
                return entry
        return self._refresh(user_id)

    def force_refresh(self, user_id: str) -> CachedQuota:
        return self._refresh(user_id)

    def _refresh(self, user_id: str) -> CachedQuota:
        snapshot = self._reconciler.snapshot(user_id)
        entry = CachedQuota.from_snapshot(snapshot, self._clock())
        with self._lock:
            self._entries[user_id] = entry
        if self._persisted is not None:
            payload = entry.to_dict()
            payload.pop("advisory", None)
            self._persisted.put(user_id, payload)
        return entry

    def invalidate(self, user_id: Optional[str] = None) -> None:
        """Drop one user's entry, or every entry (sign-out of the whole session)."""
        with self._lock:
            if user_id is None:
                self._entries.clear()
            else:
                self._entries.pop(user_id, None)
        if self._persisted is not None:
            self._persisted.discard(user_id)

    def peek(self, user_id: str) -> Optional[CachedQuota]:
        with self._lock:
            return self._entries.get(user_id)

    def peek_persisted(self, user_id: str) -> Optional[CachedQuota]:
        """Last persisted copy for instant display. Never use it to enforce quota."""
        if self._persisted is None:
            return None
        raw = self._persisted.get(user_id)
        if raw is None:
            return None
        return _from_persisted(user_id, raw)

    def on_auth_event(self, event: str, user_id: Optional[str]) -> Optional[CachedQuota]:
        if event == "SIGNED_OUT":
            self.invalidate(user_id)
            return None
        if event in REFRESHING_AUTH_EVENTS and user_id:
            return self.force_refresh(user_id)
        return None


__all__ = ["CachedQuota", "DEFAULT_TTL_SECONDS", "SessionCache"]
