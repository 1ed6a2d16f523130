"""Payments service helpers."""

from .stripe_payments import (
    PaymentEvent,
    StripePaymentsClient,
    StripePaymentsError,
    get_stripe_payments_client,
    get_stripe_public_config,
)
from .success_poller import PaymentSuccessPoller, PollOutcome

__all__ = [
    "PaymentEvent",
    "PaymentSuccessPoller",
    "PollOutcome",
    "StripePaymentsClient",
    "StripePaymentsError",
    "get_stripe_payments_client",
    "get_stripe_public_config",
]
