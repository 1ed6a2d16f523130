"""Shared FastAPI dependencies."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Depends, HTTPException, Request, status

from services.payment_ledger import PaymentLedger
from services.payments.stripe_payments import StripePaymentsClient
from services.premium_upgrade import PremiumUpgradeProcessor
from services.profile_store import ProfileState, ProfileStore
from services.prompt_generation import PromptGenerationService
from services.quota_errors import QuotaCoreError
from services.quota_reconciler import QuotaReconciler
from services.session_cache import SessionCache
from web.middleware.auth_context import AuthenticatedUser


@dataclass(slots=True)
class AppServices:
    """Everything the routers need, built once per application."""

    profiles: ProfileStore
    ledger: PaymentLedger
    reconciler: QuotaReconciler
    cache: SessionCache
    upgrades: PremiumUpgradeProcessor
    generation: PromptGenerationService
    stripe: Optional[StripePaymentsClient] = None
    engine: Any = None


def get_services(request: Request) -> AppServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "service.unavailable", "message": "The service is starting up. Please retry."},
        )
    return services


def get_current_user(request: Request) -> AuthenticatedUser:
    user = getattr(request.state, "user", None)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "auth.required", "message": "Sign in to continue."},
        )
    return user


def get_stripe_client(services: AppServices = Depends(get_services)) -> StripePaymentsClient:
    if services.stripe is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "payments.unavailable", "message": "Payments are not configured."},
        )
    return services.stripe


def http_error(exc: QuotaCoreError) -> HTTPException:
    """Map a core error onto the API's ``{"code", "message"}`` error shape."""
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


async def ensure_user_profile(services: AppServices, user_id: str, email: Optional[str] = None) -> ProfileState:
    """Create the profile row on first sight of a user."""
    try:
        return await asyncio.to_thread(services.profiles.ensure_profile, user_id, email=email)
    except QuotaCoreError as exc:
        raise http_error(exc) from exc


__all__ = [
    "AppServices",
    "get_current_user",
    "get_services",
    "get_stripe_client",
    "ensure_user_profile",
    "http_error",
]
