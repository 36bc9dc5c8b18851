"""
Mercado Pago adapter.

Only ever receives amounts computed server-side; every transport or API
failure surfaces as PaymentGatewayUnavailable.
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import BaseModel

from config import (
    HTTP_TIMEOUT_SECONDS,
    MERCADO_PAGO_ACCESS_TOKEN,
    MERCADO_PAGO_API_URL,
    NOTIFICATION_URL,
    SITE_URL,
)
from errors import PaymentGatewayUnavailable

logger = structlog.get_logger().bind(component="payment_gateway")

CURRENCY = "BRL"
STATEMENT_DESCRIPTOR = "PALESTRA BABY"
MAX_INSTALLMENTS = 3


class PreferenceLine(BaseModel):
    id: str
    title: str
    quantity: int
    unit_price: float


class Payer(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    cpf: Optional[str] = None


class PaymentPreference(BaseModel):
    preference_id: str
    redirect_url: str
    instant_payment_code: Optional[str] = None
    instant_payment_image: Optional[str] = None


def confirmation_urls(order_id: str, site_url: str = SITE_URL) -> Dict[str, str]:
    base = f"{site_url}/pedido/confirmacao?order_id={order_id}"
    return {
        "success": f"{base}&status=approved",
        "failure": f"{base}&status=rejected",
        "pending": f"{base}&status=pending",
    }


class MercadoPagoGateway:
    def __init__(self, access_token: Optional[str] = MERCADO_PAGO_ACCESS_TOKEN,
                 base_url: str = MERCADO_PAGO_API_URL,
                 client: Optional[httpx.Client] = None,
                 notification_url: str = NOTIFICATION_URL):
        self.access_token = access_token
        self.notification_url = notification_url
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=base_url, timeout=HTTP_TIMEOUT_SECONDS)

    def close(self) -> None:
        """Close the HTTP client if this gateway created it."""
        if self._owns_client:
            self._client.close()

    def _headers(self) -> Dict[str, str]:
        if not self.access_token:
            logger.error("access_token_missing")
            raise PaymentGatewayUnavailable("Payment configuration unavailable")
        return {"Authorization": f"Bearer {self.access_token}"}

    def create_preference(self, lines: List[PreferenceLine], discount: float, shipping_amount: float,
                          payer: Payer, back_urls: Dict[str, str], external_reference: str,
                          payment_method: str, shipping_method: str) -> PaymentPreference:
        items = [
            {
                "id": line.id,
                "title": line.title,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "currency_id": CURRENCY,
            }
            for line in lines
        ]
        if shipping_amount > 0:
            items.append({
                "id": "shipping",
                "title": f"Frete ({shipping_method.upper()})",
                "quantity": 1,
                "unit_price": shipping_amount,
                "currency_id": CURRENCY,
            })
        if discount > 0:
            items.append({
                "id": "discount",
                "title": "Desconto PIX (5%)" if payment_method == "pix" else "Desconto cupom",
                "quantity": 1,
                "unit_price": -discount,
                "currency_id": CURRENCY,
            })

        phone = payer.phone or ""
        body = {
            "items": items,
            "payer": {
                "name": payer.name,
                "email": payer.email,
                "phone": {"area_code": phone[:2], "number": phone[2:]},
                "identification": {"type": "CPF", "number": payer.cpf or ""},
            },
            "back_urls": back_urls,
            "auto_return": "approved",
            "external_reference": external_reference,
            "notification_url": self.notification_url,
            "statement_descriptor": STATEMENT_DESCRIPTOR,
            "payment_methods": {
                "excluded_payment_types": (
                    [{"id": "credit_card"}, {"id": "debit_card"}] if payment_method == "pix" else []
                ),
                "installments": MAX_INSTALLMENTS,
            },
        }
        data = self._request("POST", "/checkout/preferences", json=body)
        if "id" not in data or "init_point" not in data:
            logger.error("preference_malformed", external_reference=external_reference)
            raise PaymentGatewayUnavailable("Payment provider returned an incomplete preference")
        transaction = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
        return PaymentPreference(
            preference_id=str(data["id"]),
            redirect_url=data["init_point"],
            instant_payment_code=transaction.get("qr_code"),
            instant_payment_image=transaction.get("qr_code_base64"),
        )

    def get_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/v1/payments/{payment_id}")

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self._client.request(method, path, headers=self._headers(), **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error("gateway_rejected", path=path, status=e.response.status_code)
            raise PaymentGatewayUnavailable("Payment provider rejected the request") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("gateway_unreachable", path=path, error=str(e))
            raise PaymentGatewayUnavailable("Payment provider unavailable") from e
