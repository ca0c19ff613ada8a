"""
Error taxonomy for the reconciliation engine.

NetworkError is retryable and counts toward the circuit breaker.
GatewayError is a business-level refusal for one call: logged, never counted.
"""


class ReconciliationError(Exception):
    """Base class for errors raised while reconciling payment state."""


class NetworkError(ReconciliationError):
    """Gateway or network path unavailable (timeout, transport error, 5xx, 429)."""


class GatewayError(ReconciliationError):
    """Gateway answered, but the answer cannot be used for this order."""


class OrderNotFound(GatewayError):
    """Gateway does not know the order code."""

    def __init__(self, order_code: str):
        super().__init__(f"Order {order_code} not found at gateway")
        self.order_code = order_code


class PaymentNotFound(GatewayError):
    """No local payment record for the order code."""

    def __init__(self, order_code: str):
        super().__init__(f"Payment {order_code} not found")
        self.order_code = order_code
