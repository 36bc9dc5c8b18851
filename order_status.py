"""
Order status state machine.

pending -> confirmed -> paid -> preparing -> shipped -> delivered is the
linear happy path. cancelled and returned sit beside it and can be reached
from anywhere. Gateway-driven changes must move forward; admin overrides
are always applied. Every accepted change appends one history row.
"""

from typing import Optional

import structlog
from pymongo.database import Database

from database import create_document, increment_stock, serialize_doc, to_object_id, utcnow
from errors import OrderNotFound
from schemas import Order, OrderStatusHistory

logger = structlog.get_logger().bind(component="order_status")

STATUS_FLOW = ["pending", "confirmed", "paid", "preparing", "shipped", "delivered"]
STATUS_RANK = {status: rank for rank, status in enumerate(STATUS_FLOW)}
CANCELLATION_STATUSES = {"cancelled", "returned"}

STATUS_TIMESTAMPS = {
    "paid": "paid_at",
    "shipped": "shipped_at",
    "delivered": "delivered_at",
    "cancelled": "cancelled_at",
    "returned": "cancelled_at",
}


def is_cancellation(status: str) -> bool:
    return status in CANCELLATION_STATUSES


def gateway_transition_allowed(current: str, new: str) -> bool:
    """Monotonicity guard for payment-provider updates."""
    if current in CANCELLATION_STATUSES:
        return False
    if is_cancellation(new):
        return True
    return STATUS_RANK[new] > STATUS_RANK[current]


def reached_shipment(status: str) -> bool:
    return status in STATUS_RANK and STATUS_RANK[status] >= STATUS_RANK["shipped"]


def load_order(db: Database, order_id: str) -> Order:
    oid = to_object_id(order_id)
    doc = db["order"].find_one({"_id": oid}) if oid else None
    if not doc:
        raise OrderNotFound(f"Order {order_id} not found")
    return Order(**serialize_doc(doc))


def record_status_history(db: Database, order_id: str, old_status: Optional[str], new_status: str,
                          note: Optional[str] = None, changed_by: Optional[str] = None) -> str:
    entry = OrderStatusHistory(
        order_id=order_id,
        old_status=old_status,
        new_status=new_status,
        note=note,
        changed_by=changed_by,
    )
    return create_document(db, "order_status_history", entry)


def apply_status_change(db: Database, order: Order, new_status: str, note: Optional[str] = None,
                        changed_by: Optional[str] = None, extra_fields: Optional[dict] = None) -> Order:
    """Write the new status, its timestamp and the history row. No guard here;
    callers decide whether the transition is allowed."""
    now = utcnow()
    update = {"status": new_status, "updated_at": now, **(extra_fields or {})}
    ts_field = STATUS_TIMESTAMPS.get(new_status)
    if ts_field:
        update[ts_field] = now
    db["order"].update_one({"_id": to_object_id(order.id)}, {"$set": update})
    record_status_history(db, order.id, order.status, new_status, note=note, changed_by=changed_by)
    logger.info("order_status_changed", order_id=order.id, old_status=order.status,
                new_status=new_status, changed_by=changed_by)
    return order.model_copy(update=update)


def restore_order_stock(db: Database, order_id: str) -> int:
    """Give back every unit held by the order. Returns the number of units restored."""
    restored = 0
    for item in db["order_item"].find({"order_id": order_id}):
        if increment_stock(db, item["product_id"], item["size"], item["quantity"]):
            restored += item["quantity"]
        else:
            logger.warning("stock_restore_failed", order_id=order_id,
                           product_id=item["product_id"], size=item["size"], quantity=item["quantity"])
    return restored


def override_status(db: Database, order_id: str, new_status: str, admin_id: str,
                    note: Optional[str] = None) -> Order:
    order = load_order(db, order_id)
    return apply_status_change(db, order, new_status, note=note, changed_by=admin_id)
