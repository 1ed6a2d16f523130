"""Prompt generation and history API schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from core.quota_constants import ToolType
from schemas.api.quota import QuotaResponse


class GeneratePromptRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=8000, description="The user's product idea.")
    toolType: ToolType = Field(..., description="Target AI builder tool.")
    timeoutSeconds: Optional[float] = Field(
        default=None,
        ge=1,
        le=120,
        description="Optional override for the LLM call timeout.",
    )


class GeneratePromptResponse(BaseModel):
    success: bool = True
    response: str = Field(..., description="Generated tool-specific prompt (markdown).")
    toolType: ToolType
    historyId: Optional[int] = Field(default=None, description="Identifier of the stored history row, if saved.")
    persisted: bool = Field(
        default=True,
        description="False when the history row or usage counter could not be written.",
    )
    quota: Optional[QuotaResponse] = None


class PromptHistoryItem(BaseModel):
    id: int
    message: str
    aiResponse: str
    toolType: str
    createdAt: datetime


class PromptHistoryResponse(BaseModel):
    items: List[PromptHistoryItem] = Field(default_factory=list)
    limit: int
    offset: int


__all__ = [
    "GeneratePromptRequest",
    "GeneratePromptResponse",
    "PromptHistoryItem",
    "PromptHistoryResponse",
]
