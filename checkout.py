"""
Checkout pipeline: cart validation against live inventory, coupon
resolution, and the order writer.

The order writer commits in a fixed sequence (customer, order, items,
stock, coupon usage, history, payment preference) and undoes what it has
already written in this call when the items or stock step fails.
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

import structlog
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import (
    create_document,
    decrement_stock,
    increment_coupon_usage,
    increment_stock,
    serialize_doc,
    to_object_id,
    utcnow,
)
from errors import (
    CouponExhausted,
    CouponInvalid,
    CouponMinimumNotMet,
    InsufficientStock,
    PaymentGatewayUnavailable,
    PersistenceError,
    ProductUnavailable,
    SizeUnavailable,
)
from order_status import record_status_history
from payments import Payer, PreferenceLine, confirmation_urls
from pricing import Totals, calculate_coupon_discount, compute_totals
from schemas import (
    CheckoutItemIn,
    CheckoutRequest,
    CheckoutResult,
    Coupon,
    CustomerIn,
    Order,
    OrderItem,
    ShippingAddress,
)

logger = structlog.get_logger().bind(component="checkout")


class ValidatedLine(BaseModel):
    product_id: str
    product_name: str
    category: str
    size: str
    quantity: int
    unit_price: float

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity


class ValidatedCart(BaseModel):
    lines: List[ValidatedLine]
    subtotal: float


def _load_active_products(db: Database, product_ids: List[str]) -> Dict[str, dict]:
    object_ids = [oid for oid in (to_object_id(pid) for pid in product_ids) if oid is not None]
    products = {}
    for doc in db["product"].find({"_id": {"$in": object_ids}, "active": True}):
        product = serialize_doc(doc)
        product["sizes"] = {
            s["size_label"]: s["stock"]
            for s in db["product_size"].find({"product_id": product["id"]})
        }
        products[product["id"]] = product
    return products


def validate_cart(db: Database, items: List[CheckoutItemIn]) -> ValidatedCart:
    """Re-read every product and size; price each line from the store, never the client."""
    product_ids = list(dict.fromkeys(item.product_id for item in items))
    products = _load_active_products(db, product_ids)

    lines: List[ValidatedLine] = []
    subtotal = 0.0
    for item in items:
        product = products.get(item.product_id)
        if not product:
            label = item.product_name or item.product_id
            raise ProductUnavailable(f'Product "{label}" not found or inactive',
                                     {"product_id": item.product_id})

        stock = product["sizes"].get(item.size)
        if stock is None:
            raise SizeUnavailable(f'Size "{item.size}" not available for "{product["name"]}"',
                                  {"product_id": item.product_id, "size": item.size})

        if item.quantity > stock:
            raise InsufficientStock(
                f'Insufficient stock for "{product["name"]}" size {item.size}. Available: {stock}',
                {"product_id": item.product_id, "size": item.size, "available": stock},
            )

        line = ValidatedLine(
            product_id=item.product_id,
            product_name=product["name"],
            category=product["category"],
            size=item.size,
            quantity=item.quantity,
            unit_price=float(product["price"]),
        )
        subtotal += line.line_total
        lines.append(line)

    return ValidatedCart(lines=lines, subtotal=subtotal)


def find_coupon(db: Database, code: str) -> Optional[Coupon]:
    doc = db["coupon"].find_one({"code": code.strip().upper()})
    return Coupon(**serialize_doc(doc)) if doc else None


def resolve_coupon(db: Database, code: Optional[str], cart: ValidatedCart,
                   now: Optional[datetime] = None) -> Tuple[Optional[Coupon], float]:
    """Return the applicable coupon and its discount, or raise why it cannot apply."""
    if not code or not code.strip():
        return None, 0.0
    now = now or utcnow()

    coupon = find_coupon(db, code)
    if coupon is None or not coupon.active:
        raise CouponInvalid("Invalid or expired coupon")
    if coupon.starts_at and coupon.starts_at > now:
        raise CouponInvalid("Invalid or expired coupon")
    if coupon.expires_at and coupon.expires_at <= now:
        raise CouponInvalid("Invalid or expired coupon")
    if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
        raise CouponExhausted("Coupon fully redeemed")
    if coupon.min_order_value and cart.subtotal < coupon.min_order_value:
        raise CouponMinimumNotMet(
            f"Minimum order of R$ {coupon.min_order_value:.2f} for this coupon",
            {"min_order_value": coupon.min_order_value},
        )

    eligible = cart.subtotal
    if coupon.category:
        eligible = sum(line.line_total for line in cart.lines if line.category == coupon.category)
        if eligible <= 0:
            raise CouponInvalid(f"Coupon only applies to {coupon.category}")

    return coupon, calculate_coupon_discount(coupon.discount_type, coupon.discount_value, eligible)


def upsert_customer(db: Database, customer: CustomerIn) -> str:
    """One customer row per email; name, phone and CPF follow the latest order."""
    now = utcnow()
    try:
        doc = db["customer"].find_one_and_update(
            {"email": customer.email},
            {
                "$set": {"name": customer.name, "phone": customer.phone or None,
                         "cpf": customer.cpf or None, "updated_at": now},
                "$setOnInsert": {"email": customer.email, "created_at": now},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as e:
        logger.error("customer_upsert_failed", error=str(e))
        raise PersistenceError("Could not save customer") from e
    return str(doc["_id"])


def _delete_order(db: Database, order_id: str) -> None:
    db["order_item"].delete_many({"order_id": order_id})
    db["order"].delete_one({"_id": to_object_id(order_id)})


def _release_stock(db: Database, order_id: str, reserved: List[ValidatedLine]) -> None:
    for done in reserved:
        if not increment_stock(db, done.product_id, done.size, done.quantity):
            logger.error("stock_rollback_failed", order_id=order_id,
                         product_id=done.product_id, size=done.size, quantity=done.quantity)
    _delete_order(db, order_id)


def _reserve_stock(db: Database, order_id: str, lines: List[ValidatedLine]) -> None:
    reserved: List[ValidatedLine] = []
    for line in lines:
        try:
            ok = decrement_stock(db, line.product_id, line.size, line.quantity)
        except PyMongoError as e:
            logger.error("stock_decrement_error", order_id=order_id, product_id=line.product_id,
                         error=str(e), rolled_back_lines=len(reserved))
            _release_stock(db, order_id, reserved)
            raise PersistenceError("Could not reserve stock") from e
        if ok:
            reserved.append(line)
            continue

        logger.error("stock_decrement_failed", order_id=order_id, product_id=line.product_id,
                     size=line.size, quantity=line.quantity, rolled_back_lines=len(reserved))
        _release_stock(db, order_id, reserved)
        raise InsufficientStock(
            f'Insufficient stock for "{line.product_name}" size {line.size}',
            {"product_id": line.product_id, "size": line.size},
        )


def place_order(db: Database, gateway, request: CheckoutRequest) -> CheckoutResult:
    cart = validate_cart(db, request.items)
    coupon, coupon_discount = resolve_coupon(db, request.coupon_code, cart)
    totals: Totals = compute_totals(
        cart.subtotal, request.shipping_method, request.payment_method, coupon_discount
    ).rounded()

    customer_id = upsert_customer(db, request.customer)

    address = request.address
    order = Order(
        customer_id=customer_id,
        coupon_id=coupon.id if coupon else None,
        status="pending",
        payment_method=request.payment_method,
        shipping_method=request.shipping_method,
        subtotal=totals.subtotal,
        shipping_price=totals.shipping_price,
        discount_amount=totals.total_discount,
        total=totals.total,
        shipping_address=ShippingAddress(
            name=request.customer.name,
            cep=address.cep,
            street=address.street,
            number=address.number,
            complement=address.complement or None,
            neighborhood=address.neighborhood,
            city=address.city,
            state=address.state,
        ),
        customer_notes=request.customer_notes or None,
    )
    try:
        order_id = create_document(db, "order", order)
    except PyMongoError as e:
        logger.error("order_insert_failed", customer_id=customer_id, error=str(e))
        raise PersistenceError("Could not create order") from e
    log = logger.bind(order_id=order_id)

    try:
        db["order_item"].insert_many([
            OrderItem(
                order_id=order_id,
                product_id=line.product_id,
                product_name=line.product_name,
                size=line.size,
                quantity=line.quantity,
                unit_price=line.unit_price,
            ).model_dump(exclude={"id"})
            for line in cart.lines
        ])
    except PyMongoError as e:
        log.error("order_items_insert_failed", error=str(e))
        _delete_order(db, order_id)
        raise PersistenceError("Could not save order items") from e

    _reserve_stock(db, order_id, cart.lines)

    if coupon:
        try:
            increment_coupon_usage(db, coupon.id)
        except PyMongoError as e:
            log.warning("coupon_usage_increment_failed", coupon_id=coupon.id, error=str(e))

    try:
        record_status_history(db, order_id, None, "pending", note="Order created")
    except PyMongoError as e:
        log.warning("status_history_insert_failed", error=str(e))

    try:
        preference = gateway.create_preference(
            lines=[
                PreferenceLine(id=line.product_id, title=f"{line.product_name} - {line.size}",
                               quantity=line.quantity, unit_price=line.unit_price)
                for line in cart.lines
            ],
            discount=totals.total_discount,
            shipping_amount=totals.shipping_price,
            payer=Payer(name=request.customer.name, email=request.customer.email,
                        phone=request.customer.phone, cpf=request.customer.cpf),
            back_urls=confirmation_urls(order_id),
            external_reference=order_id,
            payment_method=request.payment_method,
            shipping_method=request.shipping_method,
        )
    except PaymentGatewayUnavailable as e:
        # the order stays pending without a payment id; it shows up in the stale orders view
        log.error("payment_preference_failed", error=e.message)
        e.extra.setdefault("order_id", order_id)
        raise

    db["order"].update_one(
        {"_id": to_object_id(order_id)},
        {"$set": {"payment_id": preference.preference_id, "updated_at": utcnow()}},
    )
    log.info("order_placed", total=totals.total, payment_method=request.payment_method,
             lines=len(cart.lines), coupon_id=coupon.id if coupon else None)

    return CheckoutResult(
        order_id=order_id,
        status="pending",
        payment_method=request.payment_method,
        payment_url=preference.redirect_url,
        pix_qr_code=preference.instant_payment_code,
        pix_qr_code_base64=preference.instant_payment_image,
        subtotal=totals.subtotal,
        shipping_price=totals.shipping_price,
        discount_amount=totals.total_discount,
        total=totals.total,
    )
