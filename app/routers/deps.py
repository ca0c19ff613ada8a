from fastapi import HTTPException, Request

from app.gateways.base import BaseGateway
from app.services.events import EventBus
from app.services.poller import ReconciliationPoller


def get_gateway(request: Request) -> BaseGateway:
    return request.app.state.gateway


def get_bus(request: Request) -> EventBus:
    return request.app.state.bus


def get_poller(request: Request) -> ReconciliationPoller:
    poller = getattr(request.app.state, "poller", None)
    if poller is None:
        raise HTTPException(status_code=503, detail="Reconciliation poller is not configured")
    return poller
