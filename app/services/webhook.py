"""
Gateway webhook handling.

The webhook is the second writer of payment status, running alongside the
poller. It uses the same compare-and-set primitive, so whichever path lands
first wins and the other becomes a no-op.

Signature: HMAC-SHA256 (hex) over the `data` object serialised as
"key1=value1&key2=value2" with keys sorted, keyed by the checksum key.
"""
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.models import PaymentStatus, TERMINAL_STATUSES, utcnow
from app.schemas.events import PaymentUpdated
from app.services.events import EventBus
from app.services.normalizer import parse_gateway_timestamp
from app.services.store import PaymentStore

logger = logging.getLogger(__name__)

SUCCESS_CODE = "00"


class WebhookSignatureError(Exception):
    """Raised when webhook signature verification fails"""

    pass


def _format_value(value: Any) -> str:
    if value is None or value == "null":
        return ""
    if isinstance(value, (list, dict)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def signature_payload(data: Dict[str, Any]) -> str:
    return "&".join(f"{key}={_format_value(data[key])}" for key in sorted(data))


def compute_signature(checksum_key: str, data: Dict[str, Any]) -> str:
    return hmac.new(
        checksum_key.encode("utf-8"),
        signature_payload(data).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_signature(checksum_key: Optional[str], data: Dict[str, Any], signature: str) -> None:
    if not checksum_key:
        raise WebhookSignatureError("Webhook checksum key is not configured")
    expected = compute_signature(checksum_key, data)
    if not signature or not hmac.compare_digest(expected, signature):
        logger.warning(f"Webhook signature mismatch for order {data.get('orderCode')}")
        raise WebhookSignatureError("Invalid webhook signature")


class WebhookResult:
    def __init__(self, order_code: Optional[str], changed: bool, message: str):
        self.order_code = order_code
        self.changed = changed
        self.message = message


def apply_webhook(code: str, data: Dict[str, Any], db: Session, bus: Optional[EventBus] = None) -> WebhookResult:
    """Apply a verified webhook notification to the local payment record."""
    order_code = data.get("orderCode")
    if order_code is None:
        return WebhookResult(None, False, "No order code in payload")
    order_code = str(order_code)

    store = PaymentStore(db)
    payment = store.get(order_code)
    if payment is None:
        # Gateway sends a probe webhook when the URL is registered
        logger.info(f"Webhook for unknown order {order_code}, ignoring")
        return WebhookResult(order_code, False, "Unknown order code")

    if code != SUCCESS_CODE:
        return WebhookResult(order_code, False, f"Non-success webhook code {code}")

    current_status = payment.status
    if current_status in TERMINAL_STATUSES:
        return WebhookResult(order_code, False, f"Already {current_status}")

    fields = {"paid_at": parse_gateway_timestamp(data.get("transactionDateTime")) or utcnow()}
    if data.get("reference") and not payment.transaction_id:
        fields["transaction_id"] = str(data["reference"])

    rows = store.compare_and_set(order_code, current_status, PaymentStatus.COMPLETED.value, **fields)
    if rows == 0:
        logger.debug(f"Conflict no-op for {order_code}: poller already settled it")
        return WebhookResult(order_code, False, "Already settled")

    logger.info(f"Payment {order_code}: {current_status} -> completed (webhook)")
    if bus is not None:
        bus.publish(PaymentUpdated(
            order_code=order_code,
            old_status=current_status,
            new_status=PaymentStatus.COMPLETED.value,
            source="webhook",
        ))
    return WebhookResult(order_code, True, "Payment completed")
