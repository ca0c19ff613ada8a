"""
Normalizes gateway payment-request responses to the local status vocabulary.

The gateway reports PENDING / PROCESSING / UNDERPAID while money is still in
flight and PAID / CANCELLED / EXPIRED / FAILED once the request is settled.
Anything unrecognised is treated as still pending so the poller keeps checking.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from app.exceptions import GatewayError
from app.gateways.base import GatewayStatus
from app.models import PaymentStatus


NORMALIZED_STATES = {
    "PENDING": PaymentStatus.PENDING.value,
    "PROCESSING": PaymentStatus.PENDING.value,
    "UNDERPAID": PaymentStatus.PENDING.value,
    "PAID": PaymentStatus.COMPLETED.value,
    "CANCELLED": PaymentStatus.CANCELLED.value,
    "EXPIRED": PaymentStatus.FAILED.value,
    "FAILED": PaymentStatus.FAILED.value,
}

# Gateway reports wall-clock times in Vietnam local time when no offset is given
GATEWAY_LOCAL_OFFSET = timezone(timedelta(hours=7))


def normalize_status(raw_status: Optional[str]) -> str:
    if not raw_status:
        return PaymentStatus.PENDING.value
    return NORMALIZED_STATES.get(str(raw_status).upper(), PaymentStatus.PENDING.value)


def parse_gateway_timestamp(value: Any) -> Optional[datetime]:
    """ISO8601 or "YYYY-MM-DD HH:MM:SS" → naive UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
        except (ValueError, OSError, OverflowError):
            return None
    text = str(value).strip()
    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            dt = datetime.strptime(text, "%Y-%m-%d %H:%M:%S")
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=GATEWAY_LOCAL_OFFSET)
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def normalize(order_code: str, data: Dict[str, Any]) -> GatewayStatus:
    """
    Maps the `data` object of a payment-request reply to a GatewayStatus.

    The transaction reference and payment time come from the first settled
    transaction when the gateway lists them; `paidAt` is used as a fallback.
    """
    status = normalize_status(data.get("status"))

    transactions = data.get("transactions") or []
    if not isinstance(transactions, list):
        raise GatewayError(f"Malformed transactions for {order_code}")
    first = transactions[0] if transactions else {}
    if not isinstance(first, dict):
        raise GatewayError(f"Malformed transaction entry for {order_code}")
    transaction_id = first.get("reference")
    paid_at = parse_gateway_timestamp(first.get("transactionDateTime") or data.get("paidAt"))

    return GatewayStatus(
        order_code=order_code,
        status=status,
        transaction_id=str(transaction_id) if transaction_id else None,
        paid_at=paid_at,
        raw_response=data,
    )
