from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, DateTime, Float, Integer, String

from app.database import Base


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


TERMINAL_STATUSES = frozenset(s.value for s in PaymentStatus if s.is_terminal)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_code = Column(String, nullable=False, unique=True, index=True)
    status = Column(String, nullable=False, default=PaymentStatus.PENDING.value, index=True)
    amount = Column(Float, nullable=False)
    payment_method = Column(String, nullable=False, default="payos")
    description = Column(String, nullable=True)
    patient_id = Column(String, nullable=True, index=True)
    doctor_id = Column(String, nullable=True)
    record_id = Column(String, nullable=True, index=True)
    transaction_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    paid_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class BookingRecord(Base):
    """Booking (medical record) produced by the booking flow, linkable to one payment."""

    __tablename__ = "booking_records"

    record_id = Column(String, primary_key=True)
    patient_id = Column(String, nullable=False, index=True)
    doctor_id = Column(String, nullable=True)
    amount = Column(Float, nullable=False)
    transaction_id = Column(String, nullable=True, index=True)
    order_code = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default=BookingStatus.PENDING.value)
    created_at = Column(DateTime, nullable=False, default=utcnow)
