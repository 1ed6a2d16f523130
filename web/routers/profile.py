"""Profile quota endpoints backed by the session cache."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status

from core.auth.constants import AUTH_EVENTS
from schemas.api.quota import AuthEventRequest, QuotaResponse
from services.quota_errors import QuotaCoreError
from services.session_cache import CachedQuota
from web.deps import AppServices, get_current_user, get_services, http_error
from web.middleware.auth_context import AuthenticatedUser

router = APIRouter(prefix="/profile", tags=["Profile"])

logger = logging.getLogger(__name__)


def _quota_response(entry: CachedQuota) -> QuotaResponse:
    return QuotaResponse(**entry.to_dict())


async def _load_quota(services: AppServices, user: AuthenticatedUser, *, force: bool) -> CachedQuota:
    try:
        await asyncio.to_thread(services.profiles.ensure_profile, user.id, email=user.email)
        return await asyncio.to_thread(services.cache.get, user.id, force=force)
    except QuotaCoreError as exc:
        logger.warning("Quota lookup failed for user=%s: %s", user.id, exc)
        raise http_error(exc) from exc


@router.get("/quota", response_model=QuotaResponse, summary="Return the reconciled prompt quota.")
async def read_quota(
    user: AuthenticatedUser = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> QuotaResponse:
    return _quota_response(await _load_quota(services, user, force=False))


@router.post("/quota/refresh", response_model=QuotaResponse, summary="Force a reconciled quota refresh.")
async def refresh_quota(
    user: AuthenticatedUser = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> QuotaResponse:
    return _quota_response(await _load_quota(services, user, force=True))


@router.get(
    "/quota/cached",
    response_model=QuotaResponse,
    summary="Return the last persisted quota copy for instant display.",
)
async def read_cached_quota(
    user: AuthenticatedUser = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> QuotaResponse:
    entry = await asyncio.to_thread(services.cache.peek_persisted, user.id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "quota.not_cached", "message": "No cached quota for this user."},
        )
    return _quota_response(entry)


@router.post("/auth-event", status_code=status.HTTP_204_NO_CONTENT, summary="Apply a client auth state change.")
async def handle_auth_event(
    payload: AuthEventRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> Response:
    if payload.event not in AUTH_EVENTS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "auth.unknown_event", "message": f"Unsupported auth event: {payload.event}"},
        )
    try:
        await asyncio.to_thread(services.cache.on_auth_event, payload.event, user.id)
    except QuotaCoreError as exc:
        raise http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
