from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class SyncResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_code: str
    status: str
    previous_status: str
    changed: bool
    transaction_id: Optional[str] = None
    gateway_checked: bool = True


class NotifyResponse(BaseModel):
    order_code: str
    event: str
    check_scheduled: bool  # False when rate-limited; the sweep still picks it up
    priority_order_codes: List[str]


class PollerStatus(BaseModel):
    state: str
    running: bool
    breaker_state: str
    consecutive_failures: int
    priority_order_codes: List[str]
    pending_checks: int
    ticks: int


class OrphanCount(BaseModel):
    missing_count: int
    timestamp: datetime


class OrphanOutcomeEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_code: str
    status: str  # "recovered" | "unresolved" | "conflict"
    source: Optional[str] = None
    patient_id: Optional[str] = None
    record_id: Optional[str] = None
    message: Optional[str] = None


class RecoveryReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    recovered: int
    unresolved: int
    results: List[OrphanOutcomeEntry]


class WebhookResponse(BaseModel):
    success: bool
    order_code: Optional[str] = None
    changed: bool = False
    message: Optional[str] = None


class SweepResponse(BaseModel):
    swept: bool  # False when the breaker is open or another sweep is running
    priority_checked: int = 0
    checked: int = 0
    updated: int = 0
    failed: int = 0
    recovered: Optional[int] = None
    breaker_state: str
    results: List[SyncResponse] = []
