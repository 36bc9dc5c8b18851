"""
Postal-code address lookup (ViaCEP) and carrier quotes (Melhor Envio).

Address lookup is best effort and never raises; quotes raise
ShippingQuoteUnavailable when the carrier API cannot answer.
"""

import re
from typing import List, Optional

import httpx
import structlog
from pydantic import BaseModel, Field

from config import (
    HTTP_TIMEOUT_SECONDS,
    MELHOR_ENVIO_API_URL,
    MELHOR_ENVIO_TOKEN,
    STORE_POSTAL_CODE,
    VIACEP_URL,
)
from errors import ShippingQuoteUnavailable, ValidationFailed

logger = structlog.get_logger().bind(component="shipping")

# PAC, SEDEX, Mini Envios, Jadlog
MELHOR_ENVIO_SERVICES = "1,2,3,4"


class AddressLookup(BaseModel):
    cep: str
    street: str
    neighborhood: str
    city: str
    state: str


class ShippingProduct(BaseModel):
    id: str
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)
    length: float = Field(..., gt=0)
    weight: float = Field(..., gt=0)
    insurance_value: float = Field(0, ge=0)
    quantity: int = Field(1, ge=1)


class ShippingQuoteRequest(BaseModel):
    postal_code: str
    products: List[ShippingProduct]


class ShippingOption(BaseModel):
    service_id: int
    service_name: str
    company_name: str
    company_picture: Optional[str] = None
    price: float
    delivery_days: Optional[int] = None
    delivery_range: Optional[dict] = None


def lookup_address(cep: str, client: Optional[httpx.Client] = None) -> Optional[AddressLookup]:
    clean = re.sub(r"\D", "", cep or "")
    if len(clean) != 8:
        return None
    if client is None:
        with httpx.Client(timeout=HTTP_TIMEOUT_SECONDS) as own_client:
            return lookup_address(clean, own_client)
    try:
        response = client.get(f"{VIACEP_URL}/ws/{clean}/json/")
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("address_lookup_failed", cep=clean, error=str(e))
        return None
    if not isinstance(data, dict) or data.get("erro"):
        return None
    return AddressLookup(
        cep=clean,
        street=data.get("logradouro", ""),
        neighborhood=data.get("bairro", ""),
        city=data.get("localidade", ""),
        state=data.get("uf", ""),
    )


def quote_shipping(request: ShippingQuoteRequest, client: Optional[httpx.Client] = None,
                   token: Optional[str] = MELHOR_ENVIO_TOKEN) -> List[ShippingOption]:
    if not re.fullmatch(r"\d{8}", request.postal_code or ""):
        raise ValidationFailed("Postal code must have 8 digits")
    if not request.products:
        raise ValidationFailed("Product list is empty")
    if not token:
        logger.error("melhor_envio_token_missing")
        raise ShippingQuoteUnavailable("Shipping quotes unavailable")

    if client is None:
        with httpx.Client(timeout=HTTP_TIMEOUT_SECONDS) as own_client:
            return quote_shipping(request, own_client, token)

    body = {
        "from": {"postal_code": STORE_POSTAL_CODE},
        "to": {"postal_code": request.postal_code},
        "products": [p.model_dump() for p in request.products],
        "options": {"receipt": False, "own_hand": False},
        "services": MELHOR_ENVIO_SERVICES,
    }
    try:
        response = client.post(
            f"{MELHOR_ENVIO_API_URL}/api/v2/me/shipment/calculate",
            json=body,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "User-Agent": "PalestraBaby contato@palestrababy.com.br",
            },
        )
        response.raise_for_status()
        services = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error("shipping_quote_failed", postal_code=request.postal_code, error=str(e))
        raise ShippingQuoteUnavailable("Could not reach the shipping service. Try again.") from e

    options = [
        ShippingOption(
            service_id=s["id"],
            service_name=s["name"],
            company_name=(s.get("company") or {}).get("name", ""),
            company_picture=(s.get("company") or {}).get("picture"),
            price=float(s["price"]),
            delivery_days=s.get("delivery_time"),
            delivery_range=s.get("delivery_range"),
        )
        for s in services
        if s.get("error") is None and s.get("price")
    ]
    return sorted(options, key=lambda o: o.price)
