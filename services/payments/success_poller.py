"""Post-checkout retry loop that drives the upgrade until the profile is premium.

The webhook and this loop race to apply the same payment; the processor's
idempotency makes whichever arrives second a no-op.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from services.premium_upgrade import SOURCE_CLIENT_POLL, UpgradeResult
from services.quota_errors import StoreError
from services.session_cache import CachedQuota, SessionCache

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Payment successful! Your account has been upgraded to premium."
FAILURE_MESSAGE = "We could not confirm your upgrade yet. Please contact support with your payment reference."

UpgradeCallable = Callable[..., UpgradeResult]
NotifyCallable = Callable[[bool, str], None]


@dataclass(slots=True)
class PollOutcome:
    success: bool
    attempts: int
    message: str
    result: Optional[UpgradeResult] = None
    quota: Optional[CachedQuota] = None
    errors: List[str] = field(default_factory=list)

    @property
    def is_premium(self) -> bool:
        if self.quota is not None:
            return self.quota.is_premium
        return bool(self.result and self.result.is_premium)


class PaymentSuccessPoller:
    def __init__(
        self,
        upgrade: UpgradeCallable,
        *,
        cache: Optional[SessionCache] = None,
        max_attempts: int = 5,
        delay_seconds: float = 2.0,
        backoff: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._upgrade = upgrade
        self._cache = cache
        self._max_attempts = max(int(max_attempts), 1)
        self._delay = max(float(delay_seconds), 0.0)
        self._backoff = backoff
        self._sleep = sleep

    def _delay_for(self, attempt: int) -> float:
        if self._backoff:
            return self._delay * (2 ** (attempt - 1))
        return self._delay

    async def run(
        self,
        user_id: str,
        payment_intent_id: str,
        *,
        notify: Optional[NotifyCallable] = None,
    ) -> PollOutcome:
        errors: List[str] = []
        last: Optional[UpgradeResult] = None
        attempts = 0
        for attempt in range(1, self._max_attempts + 1):
            attempts = attempt
            last = await asyncio.to_thread(
                self._upgrade, user_id, payment_intent_id, source=SOURCE_CLIENT_POLL
            )
            if last.success and last.is_premium:
                break
            errors.append(last.error or "Profile is not premium yet.")
            logger.info(
                "Upgrade poll attempt %d/%d not confirmed for user=%s",
                attempt,
                self._max_attempts,
                user_id,
                extra={"poll": {"payment_intent_id": payment_intent_id, "state": last.state.value}},
            )
            if attempt < self._max_attempts:
                await self._sleep(self._delay_for(attempt))

        success = bool(last and last.success and last.is_premium)
        outcome = PollOutcome(
            success=success,
            attempts=attempts,
            message=SUCCESS_MESSAGE if success else FAILURE_MESSAGE,
            result=last,
            errors=errors,
        )
        if not success:
            logger.error(
                "Upgrade not confirmed after %d attempts for user=%s",
                attempts,
                user_id,
                extra={"poll": {"payment_intent_id": payment_intent_id, "errors": errors[-3:]}},
            )

        if notify is not None:
            try:
                notify(outcome.success, outcome.message)
            except Exception:
                logger.warning("Payment notification callback failed.", exc_info=True)

        if self._cache is not None:
            try:
                outcome.quota = await asyncio.to_thread(self._cache.force_refresh, user_id)
            except StoreError:
                logger.warning("Quota refresh after payment poll failed for user=%s", user_id)
        return outcome


__all__ = ["FAILURE_MESSAGE", "PaymentSuccessPoller", "PollOutcome", "SUCCESS_MESSAGE"]
