"""Payment API schemas."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from schemas.api.quota import QuotaResponse


class StripeConfigResponse(BaseModel):
    publishableKey: Optional[str] = Field(default=None, description="Publishable key used by Stripe Elements.")
    amount: str = Field(..., description="Premium price as a decimal string.")
    currency: str = Field(..., description="ISO currency code (lower case).")


class PaymentIntentCreateRequest(BaseModel):
    amount: Optional[Decimal] = Field(
        default=None,
        gt=0,
        description="Optional amount override; defaults to the premium price.",
    )
    currency: Optional[str] = Field(default=None, description="Currency code (default usd).")


class PaymentIntentCreateResponse(BaseModel):
    success: bool = True
    paymentIntentId: str
    clientSecret: str
    amount: str
    currency: str


class PaymentSuccessRequest(BaseModel):
    paymentIntentId: str = Field(..., min_length=1, description="Stripe PaymentIntent id returned after checkout.")


class PaymentSuccessResponse(BaseModel):
    success: bool
    message: str
    alreadyApplied: bool = False
    attempts: int = Field(default=1, ge=0, description="Upgrade attempts made before answering.")
    newLimit: Optional[int] = None
    isPremium: bool = False
    hasPromptHistoryAccess: bool = False
    quota: Optional[QuotaResponse] = None
    error: Optional[str] = None


class WebhookAckResponse(BaseModel):
    received: bool = True
    handled: bool = Field(default=False, description="True when the event changed (or confirmed) account state.")
    alreadyApplied: bool = False


__all__ = [
    "PaymentIntentCreateRequest",
    "PaymentIntentCreateResponse",
    "PaymentSuccessRequest",
    "PaymentSuccessResponse",
    "StripeConfigResponse",
    "WebhookAckResponse",
]
