import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app import config
from app.database import get_db
from app.exceptions import GatewayError, NetworkError, OrderNotFound, PaymentNotFound
from app.gateways.base import BaseGateway
from app.routers.deps import get_bus, get_gateway, get_poller
from app.schemas.requests import NotifyRequest, SweepRequest, WebhookPayload
from app.schemas.responses import (
    NotifyResponse,
    PollerStatus,
    SweepResponse,
    SyncResponse,
    WebhookResponse,
)
from app.services.events import EventBus
from app.services.poller import ReconciliationPoller
from app.services.sync import sync_payment
from app.services.webhook import WebhookSignatureError, apply_webhook, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{order_code}/sync", response_model=SyncResponse)
async def sync(
    order_code: str,
    db: Session = Depends(get_db),
    gateway: BaseGateway = Depends(get_gateway),
    bus: EventBus = Depends(get_bus),
):
    """
    Reconcile one payment with the gateway right now.

    - Terminal payments are returned as-is without calling the gateway
    - A pending payment moves to the gateway's terminal status at most once
    - `changed` is false when another writer settled it first
    """
    try:
        result = await sync_payment(order_code, db, gateway, bus, source="api")
    except (PaymentNotFound, OrderNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=f"Gateway error: {str(e)}")
    except NetworkError as e:
        raise HTTPException(status_code=502, detail=f"Gateway unavailable: {str(e)}")

    return SyncResponse.model_validate(result)


@router.post("/notify", response_model=NotifyResponse, status_code=202)
async def notify(request: NotifyRequest, poller: ReconciliationPoller = Depends(get_poller)):
    """
    Report that a payment was just initiated or probably changed.

    The order code jumps the queue for the next sweep and gets a one-off check
    shortly after, even while sweeps are paused by the circuit breaker.
    """
    scheduled = poller.notify(request.order_code, request.event)
    return NotifyResponse(
        order_code=request.order_code,
        event=request.event,
        check_scheduled=scheduled,
        priority_order_codes=poller.priority.snapshot(),
    )


@router.get("/poller", response_model=PollerStatus)
def poller_status(poller: ReconciliationPoller = Depends(get_poller)):
    return PollerStatus(**poller.status())


@router.post("/poller/sweep", response_model=SweepResponse)
async def sweep(
    request: Optional[SweepRequest] = None,
    poller: ReconciliationPoller = Depends(get_poller),
):
    """
    Run one reconciliation sweep now.

    - `priority_order_codes` are checked before the regular page of pending payments
    - `swept` is false when the breaker is open or a sweep is already running;
      the priority codes stay queued for the next sweep
    """
    for order_code in (request.priority_order_codes if request else []):
        poller.priority.touch(order_code)

    summary = await poller.tick()
    if summary is None:
        return SweepResponse(swept=False, breaker_state=poller.breaker.state.value)

    return SweepResponse(
        swept=True,
        priority_checked=summary.priority_checked,
        checked=summary.checked,
        updated=summary.updated,
        failed=summary.failed,
        recovered=summary.recovery.recovered if summary.recovery else None,
        breaker_state=poller.breaker.state.value,
        results=[SyncResponse.model_validate(r) for r in summary.results],
    )


@router.post("/poller/start", response_model=PollerStatus)
async def start_poller(poller: ReconciliationPoller = Depends(get_poller)):
    """Resume automatic sweeps. No-op when the poller is already running."""
    poller.start()
    return PollerStatus(**poller.status())


@router.post("/poller/stop", response_model=PollerStatus)
async def stop_poller(poller: ReconciliationPoller = Depends(get_poller)):
    """Stop automatic sweeps and cancel scheduled one-off checks."""
    await poller.stop()
    return PollerStatus(**poller.status())


@router.post("/webhook", response_model=WebhookResponse)
def webhook(
    payload: WebhookPayload,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_bus),
):
    """Gateway callback. Verified by HMAC signature, applied with the same conditional update as the poller."""
    try:
        verify_signature(config.PAYOS_CHECKSUM_KEY, payload.data, payload.signature)
    except WebhookSignatureError as e:
        raise HTTPException(status_code=401, detail=str(e))

    result = apply_webhook(payload.code, payload.data, db, bus)
    return WebhookResponse(
        success=True,
        order_code=result.order_code,
        changed=result.changed,
        message=result.message,
    )
