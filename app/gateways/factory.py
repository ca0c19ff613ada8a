import logging

from app.config import GATEWAY_MODE, PAYOS_API_KEY, PAYOS_CLIENT_ID
from app.gateways.base import BaseGateway
from app.gateways.payos import PayOSGateway
from app.gateways.simulated import SimulatedGateway

logger = logging.getLogger(__name__)


def build_gateway(mode: str = GATEWAY_MODE) -> BaseGateway:
    if mode == "payos":
        if not PAYOS_CLIENT_ID or not PAYOS_API_KEY:
            logger.warning("PAYOS_CLIENT_ID / PAYOS_API_KEY not set, gateway calls will be rejected")
        return PayOSGateway()
    if mode == "simulated":
        return SimulatedGateway()
    raise ValueError(f"Unknown gateway mode: {mode}")
