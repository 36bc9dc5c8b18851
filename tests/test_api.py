from datetime import datetime, timedelta, timezone

import pytest

import mfa
from auth import create_mfa_token

from conftest import ADMIN_ID, add_product, admin_headers, checkout_payload, line, session_token, stock_of


@pytest.fixture
def product_id(db):
    return add_product(db, price=59.90, sizes={"M": 3, "RN": 1, "GG": 2})


def test_health(client):
    assert client.get("/").status_code == 200
    assert client.get("/test").json()["backend"] == "✅ Running"


def test_checkout_returns_camel_case_result(client, db, product_id):
    response = client.post("/checkout", json=checkout_payload([line(product_id, unit_price=0.5)]))

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["total"] == 72.01
    assert body["discountAmount"] == 3.79
    assert body["pixQrCode"]
    assert body["paymentUrl"].startswith("https://")
    assert stock_of(db, product_id, "M") == 2


def test_checkout_stock_error_is_structured(client, db, product_id):
    response = client.post("/checkout", json=checkout_payload([line(product_id, quantity=9)]))
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "insufficient_stock"
    assert body["available"] == 3


def test_checkout_rejects_bad_customer_data(client, product_id):
    payload = checkout_payload([line(product_id)])
    payload["customer"]["cpf"] = "123"
    assert client.post("/checkout", json=payload).status_code == 422


def test_checkout_gateway_down(client, db, gateway, product_id):
    gateway.fail = True
    response = client.post("/checkout", json=checkout_payload([line(product_id)]))
    assert response.status_code == 502
    assert response.json()["order_id"] == str(db["order"].find_one()["_id"])


def test_order_status_lookup(client, product_id):
    order_id = client.post("/checkout", json=checkout_payload([line(product_id)])).json()["orderId"]
    body = client.get(f"/orders/{order_id}/status").json()
    assert body["status"] == "pending"
    assert body["payment_method"] == "pix"
    assert client.get("/orders/not-an-id/status").status_code == 404


def test_products_hide_inactive_and_sort_sizes(client, db, product_id):
    add_product(db, name="Fora de Linha", active=False)
    products = client.get("/products").json()
    assert [p["name"] for p in products] == ["Body Manga Longa"]
    assert [s["size_label"] for s in products[0]["sizes"]] == ["RN", "M", "GG"]


def test_coupon_preview(client, db, product_id):
    db["coupon"].insert_one({"code": "BEMVINDO15", "discount_type": "percentage", "discount_value": 15,
                             "used_count": 0, "active": True})
    response = client.post("/coupons/validate", json={"code": "bemvindo15", "items": [line(product_id)]})
    assert response.status_code == 200
    assert response.json()["discount_amount"] == 8.99


# Admin access

def test_admin_requires_session(client):
    response = client.get("/admin/orders")
    assert response.status_code == 401
    assert response.json() == {"detail": "Not authorized", "error": "not_authorized"}


def test_expired_session_is_rejected(client):
    token = session_token({"sub": ADMIN_ID, "app_metadata": {"role": "admin"}}, expires_delta=timedelta(minutes=-5))
    response = client.get("/admin/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_admin_rejects_non_admin(client):
    assert client.get("/admin/orders", headers=admin_headers(role="customer")).status_code == 403


def test_admin_requires_mfa(client):
    response = client.get("/admin/orders", headers=admin_headers(verified=False))
    assert response.status_code == 403
    assert response.json()["error"] == "mfa_required"


def test_mfa_token_is_bound_to_user(client):
    headers = admin_headers(verified=False)
    headers["X-Admin-MFA"] = create_mfa_token("someone-else")[0]
    assert client.get("/admin/orders", headers=headers).status_code == 403


def test_expired_mfa_token(client):
    headers = admin_headers(verified=False)
    two_days_ago = datetime.now(timezone.utc) - timedelta(days=2)
    headers["X-Admin-MFA"] = create_mfa_token(ADMIN_ID, now=two_days_ago)[0]
    assert client.get("/admin/orders", headers=headers).status_code == 403


def test_otp_flow_over_http(client, mailer, monkeypatch):
    monkeypatch.setattr(mfa, "generate_code", lambda: "135790")
    headers = admin_headers(verified=False)

    assert client.post("/admin/otp/send", headers=headers).json() == {"success": True, "expires_in": 300}
    assert "135790" in mailer.sent[0]["html"]

    wrong = client.post("/admin/otp/verify", headers=headers, json={"code": "000000"})
    assert wrong.status_code == 401
    assert wrong.json()["attempts_remaining"] == 2

    verified = client.post("/admin/otp/verify", headers=headers, json={"code": "135790"}).json()
    headers["X-Admin-MFA"] = verified["mfa_token"]
    assert client.get("/admin/me", headers=headers).json()["mfa_verified"] is True
    assert client.get("/admin/dashboard", headers=headers).status_code == 200


# Back office

def test_admin_order_views(client, db, product_id):
    order_id = client.post("/checkout", json=checkout_payload([line(product_id)])).json()["orderId"]
    headers = admin_headers()

    orders = client.get("/admin/orders", headers=headers, params={"status": "pending"}).json()
    assert [o["id"] for o in orders] == [order_id]

    detail = client.get(f"/admin/orders/{order_id}", headers=headers).json()
    assert detail["customer"]["email"] == "maria@example.com"
    assert detail["items"][0]["unit_price"] == 59.90
    assert detail["status_history"][0]["new_status"] == "pending"


def test_admin_status_override_and_tracking(client, db, product_id):
    order_id = client.post("/checkout", json=checkout_payload([line(product_id)])).json()["orderId"]
    headers = admin_headers()

    response = client.post(f"/admin/orders/{order_id}/status", headers=headers,
                           json={"status": "shipped", "note": "Correios"})
    assert response.json()["status"] == "shipped"
    assert response.json()["shipped_at"] is not None

    updated = client.patch(f"/admin/orders/{order_id}", headers=headers,
                           json={"tracking_code": "BR123456789BR"}).json()
    assert updated["tracking_code"] == "BR123456789BR"
    assert updated["status"] == "shipped"

    history = client.get(f"/admin/orders/{order_id}", headers=headers).json()["status_history"]
    assert history[0]["new_status"] == "shipped"
    assert history[0]["changed_by"] == ADMIN_ID


def test_admin_coupon_management(client):
    headers = admin_headers()
    created = client.post("/admin/coupons", headers=headers, json={
        "code": "natal10", "discount_type": "fixed", "discount_value": 10,
    })
    assert created.status_code == 201
    coupon = created.json()
    assert coupon["code"] == "NATAL10"

    duplicate = client.post("/admin/coupons", headers=headers, json={
        "code": "NATAL10", "discount_type": "fixed", "discount_value": 5,
    })
    assert duplicate.status_code == 400

    updated = client.put(f"/admin/coupons/{coupon['id']}", headers=headers, json={"active": False}).json()
    assert updated["active"] is False
    assert updated["discount_value"] == 10
    assert client.put("/admin/coupons/64b000000000000000000000", headers=headers,
                      json={"active": True}).status_code == 404


def test_admin_product_management(client, db):
    headers = admin_headers()
    created = client.post("/admin/products", headers=headers, json={
        "name": "Kit Maternidade", "slug": "kit-maternidade", "category": "kits", "price": 189.9,
    }).json()
    product_id = created["id"]

    size = client.put(f"/admin/products/{product_id}/sizes/RN", headers=headers, json={"stock": 4}).json()
    assert size["stock"] == 4
    assert client.put(f"/admin/products/{product_id}/sizes/RN", headers=headers,
                      json={"stock": -1}).status_code == 400

    client.put(f"/admin/products/{product_id}", headers=headers, json={"price": 179.9})
    client.delete(f"/admin/products/{product_id}", headers=headers)
    assert client.get(f"/products/{product_id}").status_code == 404
    assert db["product"].count_documents({}) == 1

    client.post(f"/admin/products/{product_id}/restore", headers=headers)
    product = client.get(f"/products/{product_id}").json()
    assert product["price"] == 179.9
    assert product["sizes"][0]["stock"] == 4


def test_dashboard(client, db, product_id):
    client.post("/checkout", json=checkout_payload([line(product_id)]))
    stats = client.get("/admin/dashboard", headers=admin_headers()).json()
    assert stats["total_orders"] == 1
    assert stats["pending_orders"] == 1
    assert stats["total_revenue"] == 0
    assert stats["low_stock_count"] == 3


def test_dashboard_lists_five_most_recent_orders(client, db):
    product_id = add_product(db, sizes={"M": 10})
    order_ids = [
        client.post("/checkout", json=checkout_payload([line(product_id)])).json()["orderId"]
        for _ in range(6)
    ]
    recent = client.get("/admin/dashboard", headers=admin_headers()).json()["recent_orders"]
    assert [o["id"] for o in recent] == order_ids[::-1][:5]
