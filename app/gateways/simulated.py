import asyncio
import random
from datetime import datetime, timezone
from typing import Dict, Optional

from app.exceptions import NetworkError, OrderNotFound
from app.gateways.base import BaseGateway, GatewayStatus
from app.services.normalizer import normalize


class SimulatedGateway(BaseGateway):
    """
    Local gateway mock for development and demos.
    Status values: same vocabulary as PayOS (PENDING / PAID / CANCELLED / EXPIRED ...)
    Latency: 10-200ms
    Error rate: configurable, ~5% by default

    Order codes registered with `set_status` answer deterministically. Unknown
    codes settle lazily: each query has `settle_probability` of flipping the
    order to PAID, otherwise it stays PENDING.
    """

    def __init__(
        self,
        statuses: Optional[Dict[str, str]] = None,
        error_rate: float = 0.05,
        settle_probability: float = 0.3,
        latency: tuple = (0.01, 0.2),
        strict: bool = False,
    ):
        self._statuses: Dict[str, str] = dict(statuses or {})
        self._references: Dict[str, str] = {}
        self.error_rate = error_rate
        self.settle_probability = settle_probability
        self.latency = latency
        self.strict = strict

    @property
    def gateway_name(self) -> str:
        return "simulated"

    def set_status(self, order_code: str, raw_status: str) -> None:
        self._statuses[order_code] = raw_status

    async def get_status(self, order_code: str) -> GatewayStatus:
        low, high = self.latency
        if high > 0:
            await asyncio.sleep(random.uniform(low, high))

        if random.random() < self.error_rate:
            raise NetworkError("Simulated gateway: 503 Service Unavailable")

        raw_status = self._statuses.get(order_code)
        if raw_status is None:
            if self.strict:
                raise OrderNotFound(order_code)
            raw_status = "PENDING"
        if raw_status == "PENDING" and not self.strict and random.random() < self.settle_probability:
            raw_status = "PAID"
        self._statuses[order_code] = raw_status

        data = {"orderCode": order_code, "status": raw_status, "transactions": []}
        if raw_status == "PAID":
            reference = self._references.setdefault(order_code, f"SIM{random.randint(100000, 999999)}")
            data["transactions"].append({
                "reference": reference,
                "transactionDateTime": datetime.now(timezone.utc).isoformat(),
            })
        return normalize(order_code, data)
