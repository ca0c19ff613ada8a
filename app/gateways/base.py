from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional


class GatewayStatus:
    def __init__(
        self,
        order_code: str,
        status: str,
        transaction_id: Optional[str],
        paid_at: Optional[datetime],
        raw_response: Dict[str, Any],
    ):
        self.order_code = order_code
        self.status = status
        self.transaction_id = transaction_id
        self.paid_at = paid_at
        self.raw_response = raw_response


class BaseGateway(ABC):
    """Abstract base for payment gateway status clients."""

    @abstractmethod
    async def get_status(self, order_code: str) -> GatewayStatus:
        """
        Query the gateway for the authoritative status of one order code.

        Raises:
            OrderNotFound: the gateway does not know the order code
            GatewayError: the gateway refused or returned an unusable reply
            NetworkError: timeout, transport failure or transient gateway error
        """
        pass

    @property
    @abstractmethod
    def gateway_name(self) -> str:
        pass

    async def aclose(self) -> None:
        pass
