"""Append-only ledger of completed payments keyed by Stripe payment intent id."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.quota_constants import PAYMENT_STATUS_SUCCEEDED, PREMIUM_CURRENCY
from models.payments import PaymentRecord
from services.quota_errors import DuplicatePayment, StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    id: int
    user_id: str
    amount: Decimal
    currency: str
    status: str
    payment_intent_id: str
    source: Optional[str]
    created_at: datetime


class PaymentLedger(Protocol):
    """Insert-only payment ledger. The unique constraint on the intent id is the real guard."""

    def has_payment(self, payment_intent_id: str) -> bool: ...

    def record_payment(
        self,
        user_id: str,
        amount: Decimal,
        payment_intent_id: str,
        status: str = PAYMENT_STATUS_SUCCEEDED,
        *,
        source: Optional[str] = None,
        currency: str = PREMIUM_CURRENCY,
    ) -> LedgerEntry: ...

    def list_payments(self, user_id: str) -> List[LedgerEntry]: ...


def _to_entry(row: PaymentRecord) -> LedgerEntry:
    return LedgerEntry(
        id=int(row.id),
        user_id=row.user_id,
        amount=Decimal(str(row.amount)),
        currency=row.currency,
        status=row.status,
        payment_intent_id=row.payment_intent_id,
        source=row.source,
        created_at=row.created_at,
    )


class SqlPaymentLedger:
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def has_payment(self, payment_intent_id: str) -> bool:
        if not payment_intent_id:
            return False
        session = self._session_factory()
        try:
            found = session.execute(
                select(PaymentRecord.id).where(PaymentRecord.payment_intent_id == payment_intent_id).limit(1)
            ).first()
            return found is not None
        except SQLAlchemyError as exc:
            logger.warning("payment_ledger.has_payment failed for %s: %s", payment_intent_id, exc)
            raise StoreError("Payment ledger lookup failed.", context={"operation": "has_payment"}) from exc
        finally:
            session.close()

    def record_payment(
        self,
        user_id: str,
        amount: Decimal,
        payment_intent_id: str,
        status: str = PAYMENT_STATUS_SUCCEEDED,
        *,
        source: Optional[str] = None,
        currency: str = PREMIUM_CURRENCY,
    ) -> LedgerEntry:
        if not payment_intent_id:
            raise ValueError("payment_intent_id is required.")
        session = self._session_factory()
        try:
            row = PaymentRecord(
                user_id=user_id,
                amount=Decimal(str(amount)),
                currency=currency,
                status=status,
                payment_intent_id=payment_intent_id,
                source=source,
            )
            session.add(row)
            session.commit()
            logger.info(
                "Recorded payment.",
                extra={"payment": {"user_id": user_id, "payment_intent_id": payment_intent_id, "source": source}},
            )
            return _to_entry(row)
        except IntegrityError as exc:
            session.rollback()
            logger.info("Ledger rejected duplicate payment intent %s", payment_intent_id)
            raise DuplicatePayment(payment_intent_id) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.warning("payment_ledger.record_payment failed for %s: %s", payment_intent_id, exc)
            raise StoreError("Payment ledger insert failed.", context={"operation": "record_payment"}) from exc
        finally:
            session.close()

    def list_payments(self, user_id: str) -> List[LedgerEntry]:
        session = self._session_factory()
        try:
            rows = session.execute(
                select(PaymentRecord)
                .where(PaymentRecord.user_id == user_id)
                .order_by(PaymentRecord.created_at.desc(), PaymentRecord.id.desc())
            ).scalars()
            return [_to_entry(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.warning("payment_ledger.list_payments failed for user=%s: %s", user_id, exc)
            raise StoreError("Payment ledger lookup failed.", context={"operation": "list_payments"}) from exc
        finally:
            session.close()


__all__ = ["LedgerEntry", "PaymentLedger", "SqlPaymentLedger"]
