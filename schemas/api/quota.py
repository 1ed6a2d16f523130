"""Quota API schemas."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class QuotaResponse(BaseModel):
    userId: str = Field(..., description="Profile id (Supabase auth user id).")
    name: Optional[str] = Field(default=None, description="Display name stored on the profile.")
    promptCount: int = Field(..., ge=0, description="Reconciled usage: max of the profile counter and history rows.")
    totalPromptsLimit: int = Field(..., ge=0, description="Current prompt allowance.")
    remaining: int = Field(..., ge=0, description="Prompts left before the quota gate blocks generation.")
    isPremium: bool = Field(..., description="Whether a premium payment has been applied.")
    hasPromptHistoryAccess: bool = Field(..., description="Whether the prompt history page is unlocked.")
    fetchedAt: Optional[float] = Field(default=None, description="Epoch seconds when the figures were reconciled.")
    advisory: bool = Field(
        default=False,
        description="True when served from the persisted display copy rather than a reconciled read.",
    )


class AuthEventRequest(BaseModel):
    event: str = Field(..., description="Supabase auth event name, e.g. SIGNED_IN or SIGNED_OUT.")


__all__ = ["AuthEventRequest", "QuotaResponse"]
