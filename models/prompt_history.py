from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from database import Base


class PromptHistoryEntry(Base):
    """One generated prompt. Insert-only."""

    __tablename__ = "prompt_history"
    __table_args__ = (Index("ix_prompt_history_user_created", "user_id", "created_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("profiles.id"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    ai_response = Column(Text, nullable=False)
    tool_type = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
