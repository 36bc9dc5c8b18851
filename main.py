from typing import Iterator, List, Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pymongo.database import Database

import database
from auth import AuthContext, get_auth_context, require_admin, require_verified_admin
from backoffice import (
    OrderDetail,
    OrderUpdate,
    dashboard_stats,
    get_order_detail,
    list_orders,
    list_stale_pending_orders,
    update_order_fields,
)
from catalog import (
    CouponUpdate,
    ProductIn,
    ProductUpdate,
    create_coupon,
    create_product,
    get_product,
    list_coupons,
    list_products,
    set_product_active,
    set_size_stock,
    update_coupon,
    update_product,
)
from checkout import place_order, resolve_coupon, validate_cart
from errors import StoreError
from logs import configure_logging
from mfa import send_admin_otp, verify_admin_otp
from notifications import ResendMailer
from order_status import load_order, override_status
from payments import MercadoPagoGateway
from schemas import (
    Category,
    CheckoutItemIn,
    CheckoutRequest,
    CheckoutResult,
    Coupon,
    Order,
    OrderStatus,
    Product,
    ProductSize,
)
from shipping import AddressLookup, ShippingOption, ShippingQuoteRequest, lookup_address, quote_shipping
from webhooks import parse_notification, reconcile_payment_notification

configure_logging()
logger = structlog.get_logger().bind(component="api")

app = FastAPI(title="Palestra Baby API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
def store_error_handler(request: Request, exc: StoreError):
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.code, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Dependencies

def get_db() -> Database:
    if database.db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return database.db


def get_gateway() -> Iterator[MercadoPagoGateway]:
    gateway = MercadoPagoGateway()
    try:
        yield gateway
    finally:
        gateway.close()


def get_mailer() -> Iterator[ResendMailer]:
    mailer = ResendMailer()
    try:
        yield mailer
    finally:
        mailer.close()


# Request models
class CouponPreviewInput(BaseModel):
    code: str
    items: List[CheckoutItemIn]


class OtpVerifyInput(BaseModel):
    code: str


class StatusChangeInput(BaseModel):
    status: OrderStatus
    note: Optional[str] = None


class StockInput(BaseModel):
    stock: int
    sku: Optional[str] = None


# Routes
@app.get("/")
def read_root():
    return {"message": "Palestra Baby API"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": None,
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["database_name"] = database.db.name
            response["collections"] = database.db.list_collection_names()
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Catalog
@app.get("/products", response_model=List[Product])
def products_index(category: Optional[Category] = None, db: Database = Depends(get_db)):
    return list_products(db, category=category)


@app.get("/products/{product_id}", response_model=Product)
def products_show(product_id: str, db: Database = Depends(get_db)):
    return get_product(db, product_id)


@app.post("/coupons/validate")
def coupons_validate(payload: CouponPreviewInput, db: Database = Depends(get_db)):
    cart = validate_cart(db, payload.items)
    coupon, discount = resolve_coupon(db, payload.code, cart)
    return {
        "code": coupon.code,
        "discount_type": coupon.discount_type,
        "discount_value": coupon.discount_value,
        "min_order_value": coupon.min_order_value,
        "subtotal": round(cart.subtotal, 2),
        "discount_amount": discount,
    }


# Checkout
@app.post("/checkout", response_model=CheckoutResult, status_code=201)
def checkout(payload: CheckoutRequest, db: Database = Depends(get_db),
             gateway: MercadoPagoGateway = Depends(get_gateway)):
    return place_order(db, gateway, payload)


@app.get("/orders/{order_id}/status")
def order_status(order_id: str, db: Database = Depends(get_db)):
    order = load_order(db, order_id)
    return {
        "order_id": order.id,
        "status": order.status,
        "payment_method": order.payment_method,
        "total": order.total,
    }


@app.post("/webhooks/mercadopago")
async def mercadopago_webhook(request: Request, db: Database = Depends(get_db),
                              gateway: MercadoPagoGateway = Depends(get_gateway)):
    try:
        body = await request.json()
    except ValueError:
        # some notification types arrive with an empty body
        body = None
    notification = parse_notification(dict(request.query_params), body)
    return await run_in_threadpool(
        reconcile_payment_notification, db, gateway, notification["type"], notification["payment_id"]
    )


# Address & shipping
@app.get("/address/{cep}", response_model=AddressLookup)
def address_lookup(cep: str):
    address = lookup_address(cep)
    if address is None:
        raise HTTPException(status_code=404, detail="Address not found")
    return address


@app.post("/shipping/quote", response_model=List[ShippingOption])
def shipping_quote(payload: ShippingQuoteRequest):
    return quote_shipping(payload)


# Admin MFA
@app.post("/admin/otp/send")
def admin_otp_send(ctx: AuthContext = Depends(require_admin), db: Database = Depends(get_db),
                   mailer: ResendMailer = Depends(get_mailer)):
    return send_admin_otp(db, ctx, mailer)


@app.post("/admin/otp/verify")
def admin_otp_verify(payload: OtpVerifyInput, ctx: AuthContext = Depends(require_admin),
                     db: Database = Depends(get_db)):
    return verify_admin_otp(db, ctx, payload.code)


@app.get("/admin/me")
def admin_me(ctx: AuthContext = Depends(get_auth_context)):
    return {
        "user_id": ctx.user_id,
        "email": ctx.email,
        "is_admin": ctx.is_admin,
        "mfa_verified": ctx.mfa_verified(),
        "mfa_verified_until": ctx.mfa_verified_until,
    }


# Admin back office
@app.get("/admin/dashboard")
def admin_dashboard(ctx: AuthContext = Depends(require_verified_admin), db: Database = Depends(get_db)):
    return dashboard_stats(db)


@app.get("/admin/orders", response_model=List[Order])
def admin_orders(status: Optional[OrderStatus] = None, ctx: AuthContext = Depends(require_verified_admin),
                 db: Database = Depends(get_db)):
    return list_orders(db, status=status)


@app.get("/admin/orders/stale", response_model=List[Order])
def admin_stale_orders(ctx: AuthContext = Depends(require_verified_admin), db: Database = Depends(get_db)):
    return list_stale_pending_orders(db)


@app.get("/admin/orders/{order_id}", response_model=OrderDetail)
def admin_order_detail(order_id: str, ctx: AuthContext = Depends(require_verified_admin),
                       db: Database = Depends(get_db)):
    return get_order_detail(db, order_id)


@app.post("/admin/orders/{order_id}/status", response_model=Order)
def admin_order_status(order_id: str, payload: StatusChangeInput,
                       ctx: AuthContext = Depends(require_verified_admin), db: Database = Depends(get_db)):
    return override_status(db, order_id, payload.status, admin_id=ctx.user_id, note=payload.note)


@app.patch("/admin/orders/{order_id}", response_model=Order)
def admin_order_update(order_id: str, payload: OrderUpdate,
                       ctx: AuthContext = Depends(require_verified_admin), db: Database = Depends(get_db)):
    return update_order_fields(db, order_id, payload)


@app.get("/admin/coupons", response_model=List[Coupon])
def admin_coupons(ctx: AuthContext = Depends(require_verified_admin), db: Database = Depends(get_db)):
    return list_coupons(db)


@app.post("/admin/coupons", response_model=Coupon, status_code=201)
def admin_coupon_create(payload: Coupon, ctx: AuthContext = Depends(require_verified_admin),
                        db: Database = Depends(get_db)):
    return create_coupon(db, payload)


@app.put("/admin/coupons/{coupon_id}", response_model=Coupon)
def admin_coupon_update(coupon_id: str, payload: CouponUpdate,
                        ctx: AuthContext = Depends(require_verified_admin), db: Database = Depends(get_db)):
    return update_coupon(db, coupon_id, payload)


@app.get("/admin/products", response_model=List[Product])
def admin_products(ctx: AuthContext = Depends(require_verified_admin), db: Database = Depends(get_db)):
    return list_products(db, include_inactive=True)


@app.post("/admin/products", response_model=Product, status_code=201)
def admin_product_create(payload: ProductIn, ctx: AuthContext = Depends(require_verified_admin),
                         db: Database = Depends(get_db)):
    return create_product(db, payload)


@app.put("/admin/products/{product_id}", response_model=Product)
def admin_product_update(product_id: str, payload: ProductUpdate,
                         ctx: AuthContext = Depends(require_verified_admin), db: Database = Depends(get_db)):
    return update_product(db, product_id, payload)


@app.delete("/admin/products/{product_id}")
def admin_product_delete(product_id: str, ctx: AuthContext = Depends(require_verified_admin),
                         db: Database = Depends(get_db)):
    set_product_active(db, product_id, False)
    return {"ok": True}


@app.post("/admin/products/{product_id}/restore")
def admin_product_restore(product_id: str, ctx: AuthContext = Depends(require_verified_admin),
                          db: Database = Depends(get_db)):
    set_product_active(db, product_id, True)
    return {"ok": True}


@app.put("/admin/products/{product_id}/sizes/{size_label}", response_model=ProductSize)
def admin_size_stock(product_id: str, size_label: str, payload: StockInput,
                     ctx: AuthContext = Depends(require_verified_admin), db: Database = Depends(get_db)):
    return set_size_stock(db, product_id, size_label, payload.stock, sku=payload.sku)


if __name__ == "__main__":
    import uvicorn
    from config import PORT
    uvicorn.run(app, host="0.0.0.0", port=PORT)
