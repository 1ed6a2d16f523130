from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Profile(Base):
    """Per-user quota and premium state (one row per authenticated user)."""

    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=True)
    email = Column(String(320), nullable=True)
    prompt_count = Column(Integer, nullable=False, default=0)
    total_prompts_limit = Column(Integer, nullable=False, default=5)
    is_premium = Column(Boolean, nullable=False, default=False)
    has_prompt_history_access = Column(Boolean, nullable=False, default=False)
    last_upgrade_payment_intent_id = Column(String(255), nullable=True)
    allowance_period_started_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
