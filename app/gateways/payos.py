import logging
from typing import Optional

import httpx

from app.config import (
    GATEWAY_TIMEOUT_SECONDS,
    PAYOS_API_KEY,
    PAYOS_API_URL,
    PAYOS_CLIENT_ID,
)
from app.exceptions import GatewayError, NetworkError, OrderNotFound
from app.gateways.base import BaseGateway, GatewayStatus
from app.services.normalizer import normalize

logger = logging.getLogger(__name__)

SUCCESS_CODE = "00"
# Business codes the gateway uses for an order code it has never seen
NOT_FOUND_CODES = {"101", "231"}


class PayOSGateway(BaseGateway):
    """
    PayOS payment-requests API.
    Endpoint: GET /v2/payment-requests/{orderCode}
    Envelope: {"code": "00", "desc": "success", "data": {...}}
    Status values: PENDING / PROCESSING / UNDERPAID / PAID / CANCELLED / EXPIRED / FAILED
    """

    def __init__(
        self,
        base_url: str = PAYOS_API_URL,
        client_id: Optional[str] = PAYOS_CLIENT_ID,
        api_key: Optional[str] = PAYOS_API_KEY,
        timeout: float = GATEWAY_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            headers={
                "x-client-id": client_id or "",
                "x-api-key": api_key or "",
                "Content-Type": "application/json",
            },
        )

    @property
    def gateway_name(self) -> str:
        return "payos"

    async def get_status(self, order_code: str) -> GatewayStatus:
        try:
            response = await self._client.get(f"/v2/payment-requests/{order_code}")
        except httpx.TimeoutException as e:
            raise NetworkError(f"PayOS: timeout querying {order_code}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"PayOS: transport error querying {order_code}: {e}") from e

        if response.status_code == 404:
            raise OrderNotFound(order_code)
        if response.status_code == 429 or response.status_code >= 500:
            raise NetworkError(f"PayOS: {response.status_code} querying {order_code}")
        if response.status_code >= 400:
            raise GatewayError(f"PayOS: {response.status_code} querying {order_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise GatewayError(f"PayOS: malformed reply for {order_code}") from e
        if not isinstance(body, dict):
            raise GatewayError(f"PayOS: malformed reply for {order_code}")

        code = str(body.get("code", ""))
        if code != SUCCESS_CODE:
            if code in NOT_FOUND_CODES:
                raise OrderNotFound(order_code)
            raise GatewayError(f"PayOS: {code} {body.get('desc', '')}".strip())

        data = body.get("data")
        if not isinstance(data, dict):
            raise GatewayError(f"PayOS: empty data for {order_code}")

        status = normalize(order_code, data)
        logger.debug(f"PayOS reports {order_code} as {data.get('status')} -> {status.status}")
        return status

    async def aclose(self) -> None:
        await self._client.aclose()
