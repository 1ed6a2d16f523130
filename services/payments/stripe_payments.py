"""Stripe PaymentIntent helper for the one-time premium purchase."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Mapping, Optional, Union

import stripe

from core.env import env_str
from core.quota_constants import PAYMENT_STATUS_SUCCEEDED, PREMIUM_CURRENCY, PREMIUM_PRICE

logger = logging.getLogger(__name__)

EVENT_PAYMENT_SUCCEEDED = "payment_intent.succeeded"


class StripePaymentsError(RuntimeError):
    """Raised when Stripe rejects a request or a webhook cannot be trusted."""

    def __init__(self, status_code: int, message: str, *, code: str = "payments.stripe_error") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code


@dataclass(frozen=True, slots=True)
class PaymentEvent:
    """Verified payment information extracted from a Stripe object."""

    payment_intent_id: str
    status: str
    amount: Decimal
    currency: str
    user_id: Optional[str] = None
    event_type: Optional[str] = None
    event_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == PAYMENT_STATUS_SUCCEEDED

    @property
    def actionable(self) -> bool:
        """True for a succeeded intent that names the buying user."""
        if self.event_type is not None and self.event_type != EVENT_PAYMENT_SUCCEEDED:
            return False
        return self.succeeded and bool(self.user_id)


def to_minor_units(amount: Union[Decimal, float, str]) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: Any) -> Decimal:
    try:
        return (Decimal(int(amount)) / 100).quantize(Decimal("0.01"))
    except (TypeError, ValueError):
        return Decimal("0.00")


def _field(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    try:
        return obj[key]
    except (KeyError, TypeError, AttributeError):
        return getattr(obj, key, default)


def _event_from_intent(intent: Any, *, event_type: Optional[str] = None, event_id: Optional[str] = None) -> PaymentEvent:
    metadata = _field(intent, "metadata") or {}
    user_id = _field(metadata, "userId")
    return PaymentEvent(
        payment_intent_id=str(_field(intent, "id") or ""),
        status=str(_field(intent, "status") or ""),
        amount=from_minor_units(_field(intent, "amount_received") or _field(intent, "amount")),
        currency=str(_field(intent, "currency") or PREMIUM_CURRENCY),
        user_id=str(user_id) if user_id else None,
        event_type=event_type,
        event_id=event_id,
    )


@dataclass(slots=True)
class StripePaymentsClient:
    """Thin wrapper over the Stripe SDK. Calls are blocking; run them off the event loop."""

    secret_key: str
    webhook_secret: Optional[str] = None

    def create_payment_intent(
        self,
        user_id: str,
        amount: Union[Decimal, float, str] = PREMIUM_PRICE,
        currency: str = PREMIUM_CURRENCY,
    ) -> Dict[str, Any]:
        """Create a PaymentIntent tagged with the buyer; returns id and client secret."""
        if not user_id:
            raise StripePaymentsError(400, "userId is required.", code="payments.invalid_request")
        minor = to_minor_units(amount)
        if minor <= 0:
            raise StripePaymentsError(400, "Invalid amount provided.", code="payments.invalid_amount")
        logger.info("Creating Stripe PaymentIntent for user=%s amount=%d %s", user_id, minor, currency)
        try:
            intent = stripe.PaymentIntent.create(
                amount=minor,
                currency=currency,
                metadata={"userId": user_id},
                automatic_payment_methods={"enabled": True},
                api_key=self.secret_key,
            )
        except stripe.StripeError as exc:
            logger.warning("Stripe PaymentIntent.create failed for user=%s: %s", user_id, exc)
            raise StripePaymentsError(502, getattr(exc, "user_message", None) or str(exc)) from exc
        return {
            "paymentIntentId": _field(intent, "id"),
            "clientSecret": _field(intent, "client_secret"),
            "amount": str(from_minor_units(minor)),
            "currency": currency,
        }

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentEvent:
        if not payment_intent_id:
            raise StripePaymentsError(400, "paymentIntentId is required.", code="payments.invalid_request")
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.secret_key)
        except stripe.InvalidRequestError as exc:
            raise StripePaymentsError(404, "Payment not found.", code="payments.not_found") from exc
        except stripe.StripeError as exc:
            logger.warning("Stripe PaymentIntent.retrieve failed for %s: %s", payment_intent_id, exc)
            raise StripePaymentsError(502, str(exc)) from exc
        return _event_from_intent(intent)

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> PaymentEvent:
        """Verify the Stripe signature and extract the PaymentIntent it carries."""
        if not self.webhook_secret:
            raise StripePaymentsError(500, "Stripe webhook secret is not configured.", code="payments.misconfigured")
        if not signature:
            raise StripePaymentsError(400, "Missing Stripe-Signature header.", code="payments.invalid_signature")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as exc:
            raise StripePaymentsError(400, "Invalid webhook payload.", code="payments.invalid_payload") from exc
        except stripe.SignatureVerificationError as exc:
            logger.warning("Stripe webhook signature verification failed: %s", exc)
            raise StripePaymentsError(400, "Invalid webhook signature.", code="payments.invalid_signature") from exc

        event_type = _field(event, "type")
        data = _field(event, "data") or {}
        intent = _field(data, "object") or {}
        parsed = _event_from_intent(intent, event_type=event_type, event_id=_field(event, "id"))
        if event_type == EVENT_PAYMENT_SUCCEEDED and not parsed.user_id:
            raise StripePaymentsError(
                400,
                "PaymentIntent is missing userId metadata.",
                code="payments.missing_user",
            )
        return parsed


def get_stripe_payments_client() -> Optional[StripePaymentsClient]:
    """Client built from STRIPE_* env vars, or None when payments are not configured."""
    secret_key = env_str("STRIPE_SECRET_KEY")
    if not secret_key:
        logger.warning("STRIPE_SECRET_KEY is not set; payment endpoints are disabled.")
        return None
    return StripePaymentsClient(secret_key=secret_key, webhook_secret=env_str("STRIPE_WEBHOOK_SECRET"))


def get_stripe_public_config(
    amount: Union[Decimal, str] = PREMIUM_PRICE,
    currency: str = PREMIUM_CURRENCY,
) -> Dict[str, Optional[str]]:
    return {
        "publishableKey": env_str("STRIPE_PUBLISHABLE_KEY"),
        "amount": str(amount),
        "currency": currency.lower(),
    }


__all__ = [
    "EVENT_PAYMENT_SUCCEEDED",
    "PaymentEvent",
    "StripePaymentsClient",
    "StripePaymentsError",
    "from_minor_units",
    "get_stripe_payments_client",
    "get_stripe_public_config",
    "to_minor_units",
]
