"""
Status sync: reconcile one local payment with the gateway's authoritative status.

1. Load the local record (terminal records short-circuit, the gateway is not called)
2. Query the gateway with an explicit timeout
3. Compare-and-set pending → terminal
4. Publish payment_updated when this call won the write
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.config import GATEWAY_TIMEOUT_SECONDS
from app.exceptions import NetworkError, PaymentNotFound
from app.gateways.base import BaseGateway
from app.models import PaymentStatus, TERMINAL_STATUSES, utcnow
from app.schemas.events import PaymentUpdated
from app.services.events import EventBus
from app.services.store import PaymentStore

logger = logging.getLogger(__name__)


class SyncResult:
    def __init__(
        self,
        order_code: str,
        status: str,
        previous_status: str,
        changed: bool,
        transaction_id: Optional[str] = None,
        gateway_checked: bool = True,
    ):
        self.order_code = order_code
        self.status = status
        self.previous_status = previous_status
        self.changed = changed
        self.transaction_id = transaction_id
        self.gateway_checked = gateway_checked


async def sync_payment(
    order_code: str,
    db: Session,
    gateway: BaseGateway,
    bus: Optional[EventBus] = None,
    source: str = "poller",
    timeout: float = GATEWAY_TIMEOUT_SECONDS,
    now: Callable[[], datetime] = utcnow,
) -> SyncResult:
    """
    Sync a single payment against the gateway.

    Raises:
        PaymentNotFound: no local record for order_code
        GatewayError: gateway does not know the order or refused the query
        NetworkError: gateway unreachable or timed out
    """
    store = PaymentStore(db)
    payment = store.get(order_code)
    if payment is None:
        raise PaymentNotFound(order_code)

    current_status = payment.status
    current_txn = payment.transaction_id

    if current_status in TERMINAL_STATUSES:
        return SyncResult(
            order_code=order_code,
            status=current_status,
            previous_status=current_status,
            changed=False,
            transaction_id=current_txn,
            gateway_checked=False,
        )

    try:
        remote = await asyncio.wait_for(gateway.get_status(order_code), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise NetworkError(f"{gateway.gateway_name}: no answer for {order_code} within {timeout}s") from e

    if remote.status == PaymentStatus.PENDING.value:
        return SyncResult(
            order_code=order_code,
            status=current_status,
            previous_status=current_status,
            changed=False,
            transaction_id=current_txn,
        )

    fields = {}
    if remote.status == PaymentStatus.COMPLETED.value:
        fields["paid_at"] = now()
    if remote.transaction_id and not current_txn:
        fields["transaction_id"] = remote.transaction_id

    rows = store.compare_and_set(order_code, current_status, remote.status, **fields)

    if rows == 0:
        # Another writer (webhook, parallel sync) moved the record first
        stored = store.get(order_code)
        stored_status = stored.status if stored is not None else current_status
        logger.debug(
            f"Conflict no-op for {order_code}: wanted {remote.status}, store already has {stored_status}"
        )
        return SyncResult(
            order_code=order_code,
            status=stored_status,
            previous_status=current_status,
            changed=False,
            transaction_id=stored.transaction_id if stored is not None else current_txn,
        )

    logger.info(f"Payment {order_code}: {current_status} -> {remote.status} ({source})")
    if bus is not None:
        bus.publish(PaymentUpdated(
            order_code=order_code,
            old_status=current_status,
            new_status=remote.status,
            source=source,
        ))

    return SyncResult(
        order_code=order_code,
        status=remote.status,
        previous_status=current_status,
        changed=True,
        transaction_id=fields.get("transaction_id", current_txn),
    )
