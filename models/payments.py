from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String

from database import Base


class PaymentRecord(Base):
    """Completed one-time charge. ``payment_intent_id`` is the idempotency key."""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("profiles.id"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(8), nullable=False, default="usd")
    status = Column(String(32), nullable=False)
    payment_intent_id = Column(String(255), nullable=False, unique=True)
    source = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
