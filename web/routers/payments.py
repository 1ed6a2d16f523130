"""Payment endpoints: Stripe PaymentIntent creation, success confirmation and webhook."""

from __future__ import annotations

import asyncio
import logging
from functools import partial

from fastapi import APIRouter, Depends, HTTPException, Request, status

from schemas.api.payments import (
    PaymentIntentCreateRequest,
    PaymentIntentCreateResponse,
    PaymentSuccessRequest,
    PaymentSuccessResponse,
    StripeConfigResponse,
    WebhookAckResponse,
)
from schemas.api.quota import QuotaResponse
from services.payments import (
    PaymentSuccessPoller,
    StripePaymentsClient,
    StripePaymentsError,
    get_stripe_public_config,
)
from services.premium_upgrade import SOURCE_WEBHOOK
from services.quota_errors import QuotaCoreError
from web.deps import AppServices, ensure_user_profile, get_current_user, get_services, get_stripe_client, http_error
from web.middleware.auth_context import AuthenticatedUser

router = APIRouter(prefix="/payments", tags=["Payments"])

logger = logging.getLogger(__name__)


def _stripe_http_error(exc: StripePaymentsError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail={"code": exc.code, "message": exc.message})


@router.get("/config", response_model=StripeConfigResponse, summary="Return client-safe Stripe settings.")
async def read_stripe_config(services: AppServices = Depends(get_services)) -> StripeConfigResponse:
    settings = services.reconciler.policy.settings
    return StripeConfigResponse(**get_stripe_public_config(settings.premium_price, settings.premium_currency))


@router.post("/intent", response_model=PaymentIntentCreateResponse, summary="Create a premium PaymentIntent.")
async def create_payment_intent(
    payload: PaymentIntentCreateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    services: AppServices = Depends(get_services),
    stripe_client: StripePaymentsClient = Depends(get_stripe_client),
) -> PaymentIntentCreateResponse:
    settings = services.reconciler.policy.settings
    amount = payload.amount if payload.amount is not None else settings.premium_price
    currency = (payload.currency or settings.premium_currency).lower()
    await ensure_user_profile(services, user.id, user.email)
    try:
        intent = await asyncio.to_thread(stripe_client.create_payment_intent, user.id, amount, currency)
    except StripePaymentsError as exc:
        raise _stripe_http_error(exc) from exc
    logger.info("Payment intent created for user=%s: %s", user.id, intent.get("paymentIntentId"))
    return PaymentIntentCreateResponse(**intent)


@router.post("/success", response_model=PaymentSuccessResponse, summary="Confirm a completed checkout.")
async def confirm_payment_success(
    payload: PaymentSuccessRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    services: AppServices = Depends(get_services),
    stripe_client: StripePaymentsClient = Depends(get_stripe_client),
) -> PaymentSuccessResponse:
    try:
        event = await asyncio.to_thread(stripe_client.retrieve_payment_intent, payload.paymentIntentId)
    except StripePaymentsError as exc:
        raise _stripe_http_error(exc) from exc

    if event.user_id != user.id:
        logger.warning(
            "User %s tried to confirm payment %s owned by %s",
            user.id,
            event.payment_intent_id,
            event.user_id,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "payments.forbidden", "message": "This payment belongs to another account."},
        )
    if not event.succeeded:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "payments.not_succeeded", "message": f"Payment status is '{event.status}'."},
        )

    await ensure_user_profile(services, user.id, user.email)
    settings = services.reconciler.policy.settings
    poller = PaymentSuccessPoller(
        partial(services.upgrades.apply_upgrade, amount=event.amount),
        cache=services.cache,
        max_attempts=settings.poll_max_attempts,
        delay_seconds=settings.poll_delay_seconds,
        backoff=settings.poll_backoff,
    )
    outcome = await poller.run(user.id, event.payment_intent_id)
    result = outcome.result
    quota = outcome.quota
    if quota is not None:
        history_access = quota.has_prompt_history_access
    else:
        history_access = bool(result and result.profile and result.profile.has_prompt_history_access)
    return PaymentSuccessResponse(
        success=outcome.success,
        message=outcome.message,
        alreadyApplied=bool(result and result.already_applied),
        attempts=outcome.attempts,
        newLimit=result.new_limit if result else None,
        isPremium=outcome.is_premium,
        hasPromptHistoryAccess=history_access,
        quota=QuotaResponse(**quota.to_dict()) if quota else None,
        error=None if outcome.success else (result.error if result else None),
    )


@router.post("/webhook", response_model=WebhookAckResponse, summary="Receive Stripe webhook events.")
async def handle_stripe_webhook(
    request: Request,
    services: AppServices = Depends(get_services),
    stripe_client: StripePaymentsClient = Depends(get_stripe_client),
) -> WebhookAckResponse:
    raw_body = await request.body()
    signature = request.headers.get("stripe-signature")
    try:
        event = stripe_client.parse_webhook(raw_body, signature)
    except StripePaymentsError as exc:
        logger.warning("Stripe webhook rejected: %s", exc.message)
        raise _stripe_http_error(exc) from exc

    if not event.actionable:
        logger.info("Ignoring Stripe event %s (%s).", event.event_type, event.event_id)
        return WebhookAckResponse(handled=False)

    try:
        await asyncio.to_thread(services.profiles.ensure_profile, event.user_id)
    except QuotaCoreError as exc:
        logger.error("Webhook could not load profile for user=%s: %s", event.user_id, exc)
        raise http_error(exc) from exc
    result = await asyncio.to_thread(
        services.upgrades.apply_upgrade,
        event.user_id,
        event.payment_intent_id,
        amount=event.amount,
        source=SOURCE_WEBHOOK,
    )
    if not result.success:
        # Stripe retries non-2xx deliveries.
        logger.error(
            "Webhook upgrade failed for %s: %s",
            event.payment_intent_id,
            result.error,
            extra={"payment": {"user_id": event.user_id, "state": result.state.value}},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": result.error_code or "payments.upgrade_failed", "message": result.error or ""},
        )

    services.cache.invalidate(event.user_id)
    return WebhookAckResponse(handled=True, alreadyApplied=result.already_applied)


__all__ = ["router"]
