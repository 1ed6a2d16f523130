"""Prompt generation and prompt history endpoints."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from schemas.api.prompts import (
    GeneratePromptRequest,
    GeneratePromptResponse,
    PromptHistoryItem,
    PromptHistoryResponse,
)
from schemas.api.quota import QuotaResponse
from services.quota_errors import QuotaCoreError
from web.deps import AppServices, get_current_user, get_services, http_error
from web.middleware.auth_context import AuthenticatedUser

router = APIRouter(prefix="/prompts", tags=["Prompts"])

logger = logging.getLogger(__name__)


@router.post("/generate", response_model=GeneratePromptResponse, summary="Generate a tool-specific prompt.")
async def generate_prompt(
    payload: GeneratePromptRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> GeneratePromptResponse:
    try:
        result = await services.generation.generate(
            user,
            payload.message,
            payload.toolType,
            timeout=payload.timeoutSeconds,
        )
    except QuotaCoreError as exc:
        raise http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "prompts.invalid_request", "message": str(exc)},
        ) from exc

    if not result.persisted:
        logger.warning("Generated prompt for user=%s was not fully persisted: %s", user.id, result.persist_error)
    return GeneratePromptResponse(
        response=result.text,
        toolType=result.tool_type,
        historyId=result.history_id,
        persisted=result.persisted,
        quota=QuotaResponse(**result.quota.to_dict()) if result.quota else None,
    )


@router.get("/history", response_model=PromptHistoryResponse, summary="List generated prompts, newest first.")
async def list_prompt_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: AuthenticatedUser = Depends(get_current_user),
    services: AppServices = Depends(get_services),
) -> PromptHistoryResponse:
    try:
        quota = await asyncio.to_thread(services.cache.get, user.id)
        if not quota.has_prompt_history_access:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "code": "prompts.history_locked",
                    "message": "Prompt history is available after upgrading to premium.",
                },
            )
        records = await asyncio.to_thread(
            services.profiles.list_prompt_history,
            user.id,
            limit=limit,
            offset=offset,
        )
    except QuotaCoreError as exc:
        raise http_error(exc) from exc

    items = [
        PromptHistoryItem(
            id=record.id,
            message=record.message,
            aiResponse=record.ai_response,
            toolType=record.tool_type,
            createdAt=record.created_at,
        )
        for record in records
    ]
    return PromptHistoryResponse(items=items, limit=limit, offset=offset)


__all__ = ["router"]
