"""
Payment webhook reconciliation.

The notification only tells us which payment changed; its status is always
re-read from Mercado Pago before touching the order. Redelivery is safe:
a repeated or late notification fails the monotonicity guard and is
skipped before anything is written.
"""

from typing import Any, Dict, Optional

import structlog
from pymongo.database import Database

from order_status import (
    apply_status_change,
    gateway_transition_allowed,
    is_cancellation,
    load_order,
    reached_shipment,
    restore_order_stock,
)

logger = structlog.get_logger().bind(component="webhook")

GATEWAY_STATUS_MAP = {
    "approved": "paid",
    "authorized": "confirmed",
    "pending": "pending",
    "in_process": "pending",
    "in_mediation": "pending",
    "rejected": "cancelled",
    "cancelled": "cancelled",
    "refunded": "returned",
    "charged_back": "returned",
}


def parse_notification(query: Dict[str, str], body: Optional[Dict[str, Any]]) -> Dict[str, Optional[str]]:
    """Pull the notification category and payment id from query params or body."""
    body = body if isinstance(body, dict) else {}
    kind = query.get("type") or query.get("topic") or body.get("type") or body.get("topic")
    payment_id = query.get("data.id")
    if not payment_id:
        data = body.get("data")
        if isinstance(data, dict) and data.get("id") is not None:
            payment_id = str(data["id"])
    return {"type": kind, "payment_id": payment_id}


def reconcile_payment_notification(db: Database, gateway, kind: Optional[str],
                                   payment_id: Optional[str]) -> Dict[str, Any]:
    """Apply one payment notification to its order.

    Returns the acknowledgement body. Raises OrderNotFound when the payment
    references an order we do not have, so the provider retries, and
    PaymentGatewayUnavailable when the payment cannot be fetched.
    """
    log = logger.bind(type=kind, payment_id=payment_id)
    log.info("webhook_received")

    if kind != "payment" or not payment_id:
        return {"received": True}

    payment = gateway.get_payment(payment_id)
    gateway_status = payment.get("status")
    order_id = payment.get("external_reference")
    log = log.bind(gateway_status=gateway_status, order_id=order_id)

    if not order_id:
        log.warning("payment_without_external_reference")
        return {"received": True}

    order = load_order(db, order_id)

    new_status = GATEWAY_STATUS_MAP.get(gateway_status)
    if new_status is None:
        log.warning("unknown_gateway_status")
        return {"received": True}

    if not gateway_transition_allowed(order.status, new_status):
        log.info("transition_skipped", current_status=order.status, new_status=new_status)
        return {"received": True, "skipped": True}

    previous_status = order.status
    gateway_payment_id = str(payment.get("id", payment_id))
    apply_status_change(
        db,
        order,
        new_status,
        note=f"Mercado Pago: {gateway_status} (payment #{gateway_payment_id})",
        extra_fields={"payment_id": gateway_payment_id},
    )

    if is_cancellation(new_status) and not reached_shipment(previous_status):
        units = restore_order_stock(db, order_id)
        log.info("stock_restored", units=units)

    log.info("order_reconciled", old_status=previous_status, new_status=new_status)
    return {"received": True, "orderId": order_id, "newStatus": new_status}
