"""
Correlating evidence for linking an orphan payment to its booking record.

Strategies are tried strongest evidence first:
  transaction_id      gateway reference recorded on both sides
  order_code          booking flow stored the payment's order code
  record_reference    record id already on the payment or written in its description
  amount_time_window  single unclaimed booking, same amount, created within ±N minutes

A booking is only eligible when it is unclaimed (order_code IS NULL) or already
claimed by this very payment. When the payment carries a record_id, only that
booking is eligible; when it carries a patient_id, only that patient's bookings.
"""
import logging
import re
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app import models
from app.config import RECOVERY_MATCH_WINDOW_MINUTES
from app.models import BookingStatus

logger = logging.getLogger(__name__)

RECORD_ID_PATTERN = re.compile(r"record_id:\s*([a-zA-Z0-9-]+)", re.IGNORECASE)
AMOUNT_TOLERANCE = 0.01


def _eligible(query, payment: models.Payment):
    query = query.filter(
        or_(
            models.BookingRecord.order_code.is_(None),
            models.BookingRecord.order_code == payment.order_code,
        )
    )
    if payment.record_id:
        query = query.filter(models.BookingRecord.record_id == payment.record_id)
    if payment.patient_id:
        query = query.filter(models.BookingRecord.patient_id == payment.patient_id)
    return query


class MatchStrategy(ABC):
    name = "base"

    @abstractmethod
    def find(self, payment: models.Payment, db: Session) -> Optional[models.BookingRecord]:
        pass


class TransactionIdMatch(MatchStrategy):
    name = "transaction_id"

    def find(self, payment, db):
        if not payment.transaction_id:
            return None
        query = db.query(models.BookingRecord).filter(
            models.BookingRecord.transaction_id == payment.transaction_id,
            models.BookingRecord.status == BookingStatus.PENDING.value,
        )
        return _eligible(query, payment).first()


class OrderCodeReference(MatchStrategy):
    name = "order_code"

    def find(self, payment, db):
        query = db.query(models.BookingRecord).filter(
            models.BookingRecord.order_code == payment.order_code
        )
        return _eligible(query, payment).first()


class RecordReference(MatchStrategy):
    name = "record_reference"

    def find(self, payment, db):
        record_id = payment.record_id
        if not record_id and payment.description:
            match = RECORD_ID_PATTERN.search(payment.description)
            if match:
                record_id = match.group(1)
        if not record_id:
            return None
        query = db.query(models.BookingRecord).filter(
            models.BookingRecord.record_id == record_id
        )
        return _eligible(query, payment).first()


class AmountTimeWindowMatch(MatchStrategy):
    """Weakest evidence: exactly one unclaimed pending booking with the same amount nearby in time."""

    name = "amount_time_window"

    def __init__(self, window_minutes: int = RECOVERY_MATCH_WINDOW_MINUTES):
        self.window = timedelta(minutes=window_minutes)

    def find(self, payment, db):
        window_start = payment.created_at - self.window
        window_end = payment.created_at + self.window
        query = db.query(models.BookingRecord).filter(
            models.BookingRecord.status == BookingStatus.PENDING.value,
            models.BookingRecord.order_code.is_(None),
            models.BookingRecord.amount.between(
                payment.amount - AMOUNT_TOLERANCE, payment.amount + AMOUNT_TOLERANCE
            ),
            models.BookingRecord.created_at.between(window_start, window_end),
        )
        if payment.record_id:
            query = query.filter(models.BookingRecord.record_id == payment.record_id)
        if payment.patient_id:
            query = query.filter(models.BookingRecord.patient_id == payment.patient_id)

        candidates = query.limit(2).all()
        if len(candidates) != 1:
            if candidates:
                logger.info(f"Ambiguous amount/time match for {payment.order_code}, leaving unresolved")
            return None
        return candidates[0]


DEFAULT_STRATEGIES: List[MatchStrategy] = [
    TransactionIdMatch(),
    OrderCodeReference(),
    RecordReference(),
    AmountTimeWindowMatch(),
]
