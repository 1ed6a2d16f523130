"""Error taxonomy for the quota/premium reconciliation core."""

from __future__ import annotations

from typing import Any, Dict, Optional


class QuotaCoreError(RuntimeError):
    """Base error carrying an API-facing ``code`` and HTTP status hint."""

    code = "quota.error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context = dict(context or {})

    def to_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.context:
            detail.update(self.context)
        return detail


class AuthRequired(QuotaCoreError):
    code = "auth.required"
    status_code = 401

    def __init__(self, message: str = "Sign in to continue.") -> None:
        super().__init__(message)


class StoreError(QuotaCoreError):
    """Read/write against profiles, prompt_history or payments failed."""

    code = "store.unavailable"
    status_code = 503


class ProfileNotFound(StoreError):
    code = "store.profile_not_found"
    status_code = 404


class DuplicatePayment(QuotaCoreError):
    """The ledger already holds the payment intent. Callers treat this as success."""

    code = "payments.duplicate"
    status_code = 200

    def __init__(self, payment_intent_id: str) -> None:
        super().__init__(
            f"Payment {payment_intent_id} was already applied.",
            context={"paymentIntentId": payment_intent_id},
        )
        self.payment_intent_id = payment_intent_id


class UpstreamGenerationError(QuotaCoreError):
    code = "generation.failed"
    status_code = 502


class GenerationTimeout(UpstreamGenerationError):
    code = "generation.timeout"
    status_code = 504


class GenerationCancelled(UpstreamGenerationError):
    code = "generation.cancelled"
    status_code = 499


class QuotaExceeded(QuotaCoreError):
    code = "quota.exceeded"
    status_code = 429

    def __init__(self, *, used: int, limit: int, is_premium: bool) -> None:
        super().__init__(
            "You have used all of your prompts. Upgrade to keep generating.",
            context={"used": used, "limit": limit, "isPremium": is_premium},
        )
        self.used = used
        self.limit = limit
        self.is_premium = is_premium


__all__ = [
    "AuthRequired",
    "DuplicatePayment",
    "GenerationCancelled",
    "GenerationTimeout",
    "ProfileNotFound",
    "QuotaCoreError",
    "QuotaExceeded",
    "StoreError",
    "UpstreamGenerationError",
]
