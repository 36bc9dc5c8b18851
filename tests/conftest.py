from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import mongomock
import pytest
from fastapi.testclient import TestClient
from jose import jwt

import main
from auth import create_mfa_token
from checkout import place_order
from config import JWT_ALGORITHM, JWT_SECRET
from database import create_document
from errors import PaymentGatewayUnavailable
from payments import PaymentPreference
from schemas import CheckoutRequest

ADMIN_ID = "admin-1"
ADMIN_EMAIL = "admin@palestrababy.com.br"


class FakeGateway:
    def __init__(self):
        self.preferences: List[dict] = []
        self.payments: Dict[str, dict] = {}
        self.fetched: List[str] = []
        self.fail = False

    def create_preference(self, **kwargs) -> PaymentPreference:
        if self.fail:
            raise PaymentGatewayUnavailable("Payment provider unavailable")
        self.preferences.append(kwargs)
        pix = kwargs["payment_method"] == "pix"
        return PaymentPreference(
            preference_id=f"pref-{len(self.preferences)}",
            redirect_url="https://www.mercadopago.com.br/checkout/v1/redirect?pref_id=test",
            instant_payment_code="00020126580014br.gov.bcb.pix" if pix else None,
            instant_payment_image="iVBORw0KGgo=" if pix else None,
        )

    def set_payment(self, payment_id: str, status: str, order_id: Optional[str]):
        self.payments[payment_id] = {"id": int(payment_id), "status": status, "external_reference": order_id}

    def get_payment(self, payment_id: str) -> dict:
        self.fetched.append(payment_id)
        if payment_id not in self.payments:
            raise PaymentGatewayUnavailable("Payment provider rejected the request")
        return self.payments[payment_id]


class FakeMailer:
    def __init__(self):
        self.sent: List[dict] = []

    def send(self, to: str, subject: str, html: str) -> None:
        self.sent.append({"to": to, "subject": subject, "html": html})


@pytest.fixture
def db():
    return mongomock.MongoClient()["palestra_test"]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def mailer():
    return FakeMailer()


def add_product(db, name="Body Manga Longa", price=59.90, sizes=None, category="bodies", active=True):
    product_id = create_document(db, "product", {
        "name": name,
        "slug": name.lower().replace(" ", "-"),
        "category": category,
        "price": price,
        "active": active,
    })
    for label, stock in (sizes if sizes is not None else {"M": 3}).items():
        create_document(db, "product_size", {"product_id": product_id, "size_label": label, "stock": stock})
    return product_id


def stock_of(db, product_id, size):
    return db["product_size"].find_one({"product_id": product_id, "size_label": size})["stock"]


def checkout_payload(items, shipping_method="pac", payment_method="pix", coupon_code=None,
                     email="maria@example.com", name="Maria Silva"):
    payload = {
        "customer": {"name": name, "email": email, "phone": "(11) 98765-4321", "cpf": "123.456.789-09"},
        "address": {
            "cep": "01310-100",
            "street": "Avenida Paulista",
            "number": "1000",
            "complement": "Apto 12",
            "neighborhood": "Bela Vista",
            "city": "São Paulo",
            "state": "sp",
        },
        "shippingMethod": shipping_method,
        "paymentMethod": payment_method,
        "items": items,
    }
    if coupon_code:
        payload["couponCode"] = coupon_code
    return payload


def checkout_request(items, **kwargs) -> CheckoutRequest:
    return CheckoutRequest.model_validate(checkout_payload(items, **kwargs))


def line(product_id, size="M", quantity=1, unit_price=59.90, name="Body Manga Longa"):
    return {"productId": product_id, "productName": name, "size": size, "quantity": quantity,
            "unitPrice": unit_price}


@pytest.fixture
def placed_order(db, gateway):
    """A pending pix order holding 2 units of size M (stock 5 -> 3)."""
    product_id = add_product(db, sizes={"M": 5, "G": 2})
    result = place_order(db, gateway, checkout_request([line(product_id, quantity=2)]))
    return {"order_id": result.order_id, "product_id": product_id}


def session_token(claims: dict, expires_delta: timedelta = timedelta(hours=1)) -> str:
    """Bearer token shaped like the ones the identity provider issues."""
    to_encode = {**claims, "exp": datetime.now(timezone.utc) + expires_delta}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)


def admin_headers(verified=True, role="admin", user_id=ADMIN_ID):
    token = session_token({"sub": user_id, "email": ADMIN_EMAIL, "app_metadata": {"role": role}})
    headers = {"Authorization": f"Bearer {token}"}
    if verified:
        headers["X-Admin-MFA"] = create_mfa_token(user_id)[0]
    return headers


@pytest.fixture
def client(db, gateway, mailer):
    main.app.dependency_overrides[main.get_db] = lambda: db
    main.app.dependency_overrides[main.get_gateway] = lambda: gateway
    main.app.dependency_overrides[main.get_mailer] = lambda: mailer
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()
