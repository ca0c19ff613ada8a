import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app import models
from app.config import LOG_LEVEL, POLLER_ENABLED
from app.database import SessionLocal, engine
from app.gateways.factory import build_gateway
from app.services.events import EventBus
from app.services.poller import ReconciliationPoller

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Quiet per-request HTTP client logs
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    models.Base.metadata.create_all(bind=engine)

    bus = EventBus()
    gateway = build_gateway()
    poller = ReconciliationPoller(SessionLocal, gateway, bus)
    app.state.bus = bus
    app.state.gateway = gateway
    app.state.poller = poller

    if POLLER_ENABLED:
        poller.start()
    else:
        logger.info("Reconciliation poller disabled (POLLER_ENABLED=false)")
    try:
        yield
    finally:
        await poller.stop()
        await gateway.aclose()


app = FastAPI(
    title="Payment Reconciliation API",
    description="Keeps local payment records consistent with the payment gateway",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
def health_check():
    return {"status": "ok", "service": "payment-reconciliation"}


from app.routers import orphans, payments  # noqa: E402
app.include_router(orphans.router, prefix="/api/v1/payments", tags=["recovery"])
app.include_router(payments.router, prefix="/api/v1/payments", tags=["payments"])
