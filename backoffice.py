"""
Admin order views and dashboard figures.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pymongo.database import Database

from config import STALE_PENDING_MINUTES
from database import get_documents, serialize_doc, to_object_id, utcnow
from errors import OrderNotFound, ValidationFailed
from order_status import load_order
from schemas import Customer, Order, OrderItem, OrderStatusHistory

REVENUE_STATUSES = ["confirmed", "paid", "preparing", "shipped", "delivered"]
LOW_STOCK_THRESHOLD = 5
RECENT_ORDERS_LIMIT = 5


class OrderDetail(BaseModel):
    order: Order
    customer: Optional[Customer] = None
    items: List[OrderItem]
    status_history: List[OrderStatusHistory]


class OrderUpdate(BaseModel):
    tracking_code: Optional[str] = None
    admin_notes: Optional[str] = None


def list_orders(db: Database, status: Optional[str] = None, limit: int = 100) -> List[Order]:
    query: Dict[str, Any] = {}
    if status:
        query["status"] = status
    return [Order(**doc) for doc in get_documents(db, "order", query, limit=limit, sort=[("created_at", -1)])]


def get_order_detail(db: Database, order_id: str) -> OrderDetail:
    order = load_order(db, order_id)
    customer_oid = to_object_id(order.customer_id)
    doc = db["customer"].find_one({"_id": customer_oid}) if customer_oid else None
    customer = Customer(**serialize_doc(doc)) if doc else None
    items = [OrderItem(**doc) for doc in get_documents(db, "order_item", {"order_id": order.id})]
    history = [
        OrderStatusHistory(**doc)
        for doc in get_documents(db, "order_status_history", {"order_id": order.id},
                                 sort=[("created_at", -1), ("_id", -1)])
    ]
    return OrderDetail(order=order, customer=customer, items=items, status_history=history)


def update_order_fields(db: Database, order_id: str, data: OrderUpdate) -> Order:
    update_dict = data.model_dump(exclude_unset=True)
    if not update_dict:
        raise ValidationFailed("No fields to update")
    update_dict["updated_at"] = utcnow()
    oid = to_object_id(order_id)
    res = db["order"].update_one({"_id": oid}, {"$set": update_dict}) if oid else None
    if res is None or res.matched_count == 0:
        raise OrderNotFound(f"Order {order_id} not found")
    return load_order(db, order_id)


def list_stale_pending_orders(db: Database, older_than: timedelta = timedelta(minutes=STALE_PENDING_MINUTES),
                              now: Optional[datetime] = None) -> List[Order]:
    """Pending orders that never got a payment id, e.g. because the gateway was down."""
    cutoff = (now or utcnow()) - older_than
    query = {"status": "pending", "payment_id": None, "created_at": {"$lt": cutoff}}
    return [Order(**doc) for doc in get_documents(db, "order", query, sort=[("created_at", 1)])]


def dashboard_stats(db: Database) -> Dict[str, Any]:
    revenue = sum(
        float(o.get("total", 0))
        for o in db["order"].find({"status": {"$in": REVENUE_STATUSES}}, {"total": 1})
    )
    low_stock = []
    for size in db["product_size"].find({"stock": {"$lt": LOW_STOCK_THRESHOLD}}).sort("stock", 1).limit(10):
        product = db["product"].find_one({"_id": to_object_id(size["product_id"])}, {"name": 1})
        low_stock.append({
            "product_name": product["name"] if product else None,
            "size_label": size["size_label"],
            "stock": size["stock"],
        })
    return {
        "total_products": db["product"].count_documents({}),
        "total_orders": db["order"].count_documents({}),
        "total_revenue": round(revenue, 2),
        "pending_orders": db["order"].count_documents({"status": "pending"}),
        "low_stock_count": len(low_stock),
        "low_stock_items": low_stock,
        "recent_orders": [
            Order(**doc)
            for doc in get_documents(db, "order", limit=RECENT_ORDERS_LIMIT, sort=[("created_at", -1), ("_id", -1)])
        ],
    }
