from datetime import datetime
from typing import ClassVar, Optional

from pydantic import BaseModel, Field

from app.models import utcnow


class Event(BaseModel):
    event_type: ClassVar[str] = "event"
    occurred_at: datetime = Field(default_factory=utcnow)


class PaymentUpdated(Event):
    event_type: ClassVar[str] = "payment_updated"

    order_code: str
    old_status: str
    new_status: str
    source: str = "poller"  # "poller" | "priority" | "api" | "webhook"


class PaymentCheckFailed(Event):
    event_type: ClassVar[str] = "payment_check_failed"

    order_code: str
    error: str
    message: str = "Payment status unknown, will keep checking"


class RecoveryCompleted(Event):
    event_type: ClassVar[str] = "recovery_completed"

    total: int
    recovered: int


class PaymentNotification(BaseModel):
    """Inbound hint that an order code deserves an immediate check."""

    order_code: str
    event: str  # "payment_initiated" | "payment_status_hint"
    source: Optional[str] = None
