"""Turns one successful payment into exactly one quota grant.

Two independent callers reach :meth:`PremiumUpgradeProcessor.apply_upgrade`:
the Stripe webhook and the payment-success page that polls after checkout.
Either may retry, and they may overlap.

Guarantees and their limits:

* The ledger's unique constraint on ``payment_intent_id`` is the hard guard.
  The ``has_payment`` pre-check only saves work.
* The profile write records ``last_upgrade_payment_intent_id``. A retry after
  the profile was updated but the ledger insert failed sees the marker and
  skips the grant, then records the payment.
* The profile write is conditional on the values that were read and sets the
  marker, so of two overlapping attempts for the same payment only one grants.
  The other sees the marker and goes straight to the ledger insert.
* Losing the ledger insert to a concurrent attempt is reported as already
  applied; the grant written by either attempt is kept.
* Cross-process writers are not serialised (the keyed lock is per process);
  the conditional write and the ledger constraint cover that case.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.quota_constants import PAYMENT_STATUS_SUCCEEDED
from services import metrics
from services.payment_ledger import PaymentLedger
from services.profile_store import ProfileState, ProfileStore
from services.quota_errors import DuplicatePayment, ProfileNotFound, QuotaCoreError, StoreError
from services.quota_policy import QuotaPolicy
from services.user_locks import KeyedLock

logger = logging.getLogger(__name__)

SOURCE_WEBHOOK = "webhook"
SOURCE_CLIENT_POLL = "client_poll"

_MAX_WRITE_ATTEMPTS = 3


class UpgradeState(str, enum.Enum):
    INITIATED = "initiated"
    CONFIRMED_BY_PROCESSOR = "confirmed_by_processor"
    PROFILE_UPDATED = "profile_updated"
    PAYMENT_RECORDED = "payment_recorded"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class UpgradeResult:
    success: bool
    state: UpgradeState
    user_id: str
    payment_intent_id: str
    already_applied: bool = False
    new_limit: Optional[int] = None
    profile: Optional[ProfileState] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    trail: List[UpgradeState] = field(default_factory=list)

    @property
    def is_premium(self) -> bool:
        return bool(self.profile and self.profile.is_premium)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "state": self.state.value,
            "alreadyApplied": self.already_applied,
            "newLimit": self.new_limit,
            "isPremium": self.is_premium,
            "hasPromptHistoryAccess": bool(self.profile and self.profile.has_prompt_history_access),
            "error": self.error,
            "errorCode": self.error_code,
        }


class _Attempt:
    """Mutable bookkeeping for one apply_upgrade call."""

    def __init__(self, user_id: str, payment_intent_id: str) -> None:
        self.user_id = user_id
        self.payment_intent_id = payment_intent_id
        self.state = UpgradeState.INITIATED
        self.trail: List[UpgradeState] = [UpgradeState.INITIATED]

    def advance(self, state: UpgradeState) -> None:
        self.state = state
        self.trail.append(state)

    def result(self, **kwargs: Any) -> UpgradeResult:
        return UpgradeResult(
            state=self.state,
            user_id=self.user_id,
            payment_intent_id=self.payment_intent_id,
            trail=list(self.trail),
            **kwargs,
        )


def _snapshot_fields(profile: ProfileState, fields: Dict[str, Any]) -> Dict[str, Any]:
    return {name: getattr(profile, name) for name in fields}


class PremiumUpgradeProcessor:
    def __init__(
        self,
        profiles: ProfileStore,
        ledger: PaymentLedger,
        *,
        policy: Optional[QuotaPolicy] = None,
        locks: Optional[KeyedLock] = None,
    ) -> None:
        self._profiles = profiles
        self._ledger = ledger
        self._policy = policy or QuotaPolicy()
        self._locks = locks or KeyedLock()

    def apply_upgrade(
        self,
        user_id: str,
        payment_intent_id: str,
        *,
        amount: Optional[Decimal] = None,
        source: str = SOURCE_WEBHOOK,
    ) -> UpgradeResult:
        """Apply the premium grant for ``payment_intent_id`` at most once."""
        attempt = _Attempt(user_id, payment_intent_id)
        if not user_id or not payment_intent_id:
            attempt.advance(UpgradeState.FAILED)
            metrics.record_upgrade(source, "invalid")
            return attempt.result(
                success=False,
                error="userId and paymentIntentId are required.",
                error_code="payments.invalid_request",
            )

        log_context = {"user_id": user_id, "payment_intent_id": payment_intent_id, "source": source}
        try:
            with self._locks.hold(user_id):
                return self._apply_locked(attempt, amount=amount, source=source, log_context=log_context)
        except QuotaCoreError as exc:
            attempt.advance(UpgradeState.FAILED)
            metrics.record_upgrade(source, "failed")
            logger.warning(
                "Premium upgrade failed at %s: %s",
                attempt.trail[-2].value,
                exc,
                extra={"upgrade": log_context},
            )
            return attempt.result(success=False, error=exc.message, error_code=exc.code)

    def _apply_locked(
        self,
        attempt: _Attempt,
        *,
        amount: Optional[Decimal],
        source: str,
        log_context: Dict[str, Any],
    ) -> UpgradeResult:
        user_id = attempt.user_id
        payment_intent_id = attempt.payment_intent_id

        if self._ledger.has_payment(payment_intent_id):
            return self._already_applied(attempt, source, log_context)
        attempt.advance(UpgradeState.CONFIRMED_BY_PROCESSOR)

        profile = self._update_profile(attempt)
        attempt.advance(UpgradeState.PROFILE_UPDATED)

        charge = amount if amount is not None else self._policy.settings.premium_price
        try:
            self._ledger.record_payment(
                user_id,
                charge,
                payment_intent_id,
                PAYMENT_STATUS_SUCCEEDED,
                source=source,
                currency=self._policy.settings.premium_currency,
            )
        except DuplicatePayment:
            # a concurrent attempt for the same payment recorded it first
            return self._already_applied(attempt, source, log_context)
        attempt.advance(UpgradeState.PAYMENT_RECORDED)

        attempt.advance(UpgradeState.DONE)
        metrics.record_upgrade(source, "applied")
        logger.info(
            "Premium upgrade applied.",
            extra={"upgrade": {**log_context, "new_limit": profile.total_prompts_limit}},
        )
        return attempt.result(success=True, new_limit=profile.total_prompts_limit, profile=profile)

    def _update_profile(self, attempt: _Attempt) -> ProfileState:
        """Write the grant unless an earlier attempt for this payment already did."""
        user_id = attempt.user_id
        for _ in range(_MAX_WRITE_ATTEMPTS):
            current = self._profiles.get_profile(user_id)
            if current is None:
                raise ProfileNotFound("Profile not found for payment.", context={"userId": user_id})
            if current.last_upgrade_payment_intent_id == attempt.payment_intent_id:
                logger.info("Profile already carries grant for %s; recording payment only.", attempt.payment_intent_id)
                return current
            fields = self._policy.upgrade_fields(current, attempt.payment_intent_id)
            expected = _snapshot_fields(current, fields)
            if self._profiles.update_profile(user_id, fields, expected=expected):
                return current.with_fields(**fields)
            logger.info("Profile changed while applying upgrade for user=%s; retrying.", user_id)
        raise StoreError("Profile kept changing while applying upgrade.", context={"userId": user_id})

    def _already_applied(self, attempt: _Attempt, source: str, log_context: Dict[str, Any]) -> UpgradeResult:
        profile = self._profiles.get_profile(attempt.user_id)
        attempt.advance(UpgradeState.DONE)
        metrics.record_upgrade(source, "duplicate")
        logger.info("Payment already applied; nothing to do.", extra={"upgrade": log_context})
        return attempt.result(
            success=True,
            already_applied=True,
            new_limit=profile.total_prompts_limit if profile else None,
            profile=profile,
        )


__all__ = [
    "PremiumUpgradeProcessor",
    "SOURCE_CLIENT_POLL",
    "SOURCE_WEBHOOK",
    "UpgradeResult",
    "UpgradeState",
]
