"""
Database Schemas

MongoDB collection schemas for the Palestra Baby store, as Pydantic models.
Each model represents a collection; the lowercased model name in snake case
is the collection name:
- Product -> "product"
- ProductSize -> "product_size"
- Coupon -> "coupon"
- Customer -> "customer"
- Order -> "order"
- OrderItem -> "order_item"
- OrderStatusHistory -> "order_status_history"
- AdminOtpCode -> "admin_otp_code"

Request/response models for checkout live at the bottom of the file.
"""

import re
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

Category = Literal["bodies", "conjuntos", "acessorios", "kits"]
ShippingMethod = Literal["pac", "sedex", "free"]
PaymentMethod = Literal["pix", "credit_card"]
DiscountType = Literal["percentage", "fixed"]
OrderStatus = Literal[
    "pending", "confirmed", "paid", "preparing", "shipped", "delivered", "cancelled", "returned"
]


def digits_only(value: str) -> str:
    return re.sub(r"\D", "", value)


# -----------------------------
# CATALOG
# -----------------------------
class ProductSize(BaseModel):
    id: Optional[str] = None
    product_id: str
    size_label: str = Field(..., min_length=1, max_length=10)
    stock: int = Field(0, ge=0, description="Units available for this size")
    sku: Optional[str] = None


class Product(BaseModel):
    id: Optional[str] = None
    name: str
    slug: str
    description: str = ""
    short_description: str = ""
    category: Category
    price: float = Field(..., ge=0, description="Authoritative unit price (BRL)")
    original_price: Optional[float] = Field(None, ge=0, description="Display only, never charged")
    featured: bool = False
    active: bool = True
    images: List[str] = Field(default_factory=list)
    care_instructions: List[str] = Field(default_factory=list)
    weight_kg: float = 0.3
    height_cm: float = 5
    width_cm: float = 20
    length_cm: float = 25
    sizes: List[ProductSize] = Field(default_factory=list, description="Joined from product_size")


class Coupon(BaseModel):
    id: Optional[str] = None
    code: str
    discount_type: DiscountType
    discount_value: float = Field(..., gt=0)
    min_order_value: Optional[float] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, ge=1)
    used_count: int = Field(0, ge=0)
    category: Optional[Category] = None
    active: bool = True
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


# -----------------------------
# CUSTOMERS & ORDERS
# -----------------------------
class Customer(BaseModel):
    id: Optional[str] = None
    name: str
    email: EmailStr
    phone: Optional[str] = None
    cpf: Optional[str] = None


class ShippingAddress(BaseModel):
    name: str
    cep: str
    street: str
    number: str
    complement: Optional[str] = None
    neighborhood: str
    city: str
    state: str


class Order(BaseModel):
    id: Optional[str] = None
    customer_id: str
    coupon_id: Optional[str] = None
    status: OrderStatus = "pending"
    payment_method: PaymentMethod
    shipping_method: ShippingMethod
    subtotal: float = Field(..., ge=0)
    shipping_price: float = Field(..., ge=0)
    discount_amount: float = Field(0, ge=0, description="Coupon plus payment-method discount")
    total: float = Field(..., ge=0)
    shipping_address: ShippingAddress
    payment_id: Optional[str] = None
    tracking_code: Optional[str] = None
    admin_notes: Optional[str] = None
    customer_notes: Optional[str] = None
    paid_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderItem(BaseModel):
    id: Optional[str] = None
    order_id: str
    product_id: str
    product_name: str = Field(..., description="Snapshot of the product name at purchase time")
    size: str
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0, description="Unit price at purchase time")


class OrderStatusHistory(BaseModel):
    id: Optional[str] = None
    order_id: str
    old_status: Optional[OrderStatus] = None
    new_status: OrderStatus
    changed_by: Optional[str] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None


# -----------------------------
# ADMIN MFA
# -----------------------------
class AdminOtpCode(BaseModel):
    id: Optional[str] = None
    user_id: str
    code_hash: str = Field(..., description="bcrypt hash, the plaintext is never stored")
    expires_at: datetime
    attempts: int = Field(0, ge=0)
    used: bool = False
    created_at: Optional[datetime] = None


# -----------------------------
# CHECKOUT (request / response)
# -----------------------------
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CustomerIn(CamelModel):
    name: str = Field(..., min_length=3, max_length=100)
    email: EmailStr
    phone: str = Field(..., pattern=r"^\(?\d{2}\)?\s?\d{4,5}-?\d{4}$")
    cpf: str = Field(..., pattern=r"^\d{3}\.?\d{3}\.?\d{3}-?\d{2}$")

    @field_validator("phone", "cpf")
    @classmethod
    def strip_formatting(cls, v: str) -> str:
        return digits_only(v)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class AddressIn(CamelModel):
    cep: str = Field(..., pattern=r"^\d{5}-?\d{3}$")
    street: str = Field(..., min_length=3)
    number: str = Field(..., min_length=1)
    complement: Optional[str] = None
    neighborhood: str = Field(..., min_length=2)
    city: str = Field(..., min_length=2)
    state: str = Field(..., min_length=2, max_length=2)

    @field_validator("cep")
    @classmethod
    def clean_cep(cls, v: str) -> str:
        return digits_only(v)

    @field_validator("state")
    @classmethod
    def upper_state(cls, v: str) -> str:
        return v.upper()


class CheckoutItemIn(CamelModel):
    product_id: str
    product_name: str = ""
    size: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    # Display data from the client; never used for pricing
    unit_price: Optional[float] = None


class CheckoutRequest(CamelModel):
    customer: CustomerIn
    address: AddressIn
    shipping_method: ShippingMethod
    payment_method: PaymentMethod
    items: List[CheckoutItemIn] = Field(..., min_length=1)
    coupon_code: Optional[str] = None
    customer_notes: Optional[str] = Field(None, max_length=1000)


class CheckoutResult(CamelModel):
    order_id: str
    status: OrderStatus
    payment_method: PaymentMethod
    payment_url: str
    pix_qr_code: Optional[str] = None
    pix_qr_code_base64: Optional[str] = None
    subtotal: float
    shipping_price: float
    discount_amount: float
    total: float
