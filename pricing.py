"""
Pricing rules for checkout.

Discounts compose sequentially: the coupon comes off the subtotal first,
then the PIX discount is taken from what is left after shipping is added.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict

from pydantic import BaseModel

SHIPPING_PRICES: Dict[str, float] = {"pac": 15.9, "sedex": 29.9, "free": 0.0}
FREE_SHIPPING_MIN_SUBTOTAL = 150.0
PIX_DISCOUNT_RATE = 0.05

# Canonical size order for display; unknown labels sort last
SIZE_ORDER: Dict[str, int] = {"RN": 0, "P": 1, "M": 2, "G": 3, "GG": 4, "Unico": 5, "Único": 5}


class Totals(BaseModel):
    subtotal: float
    shipping_price: float
    discount_amount: float
    payment_discount: float
    total: float

    @property
    def total_discount(self) -> float:
        return money(self.discount_amount + self.payment_discount)

    def rounded(self) -> "Totals":
        """Cent-rounded copy for persisting and charging.

        The total is re-derived from the rounded discount so the stored
        snapshot always satisfies total = subtotal + shipping - discount.
        """
        discount = money(self.discount_amount)
        payment_discount = money(self.payment_discount)
        subtotal = money(self.subtotal)
        shipping = money(self.shipping_price)
        total = max(0.0, money(subtotal + shipping - money(discount + payment_discount)))
        return Totals(
            subtotal=subtotal,
            shipping_price=shipping,
            discount_amount=discount,
            payment_discount=payment_discount,
            total=total,
        )


def money(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def get_shipping_price(method: str, subtotal: float) -> float:
    if method == "free":
        if subtotal >= FREE_SHIPPING_MIN_SUBTOTAL:
            return 0.0
        return SHIPPING_PRICES["pac"]
    return SHIPPING_PRICES.get(method, SHIPPING_PRICES["pac"])


def calculate_coupon_discount(discount_type: str, discount_value: float, subtotal: float) -> float:
    if discount_type == "percentage":
        raw = Decimal(str(subtotal)) * Decimal(str(discount_value)) / Decimal(100)
        return float(raw.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
    return min(discount_value, subtotal)


def compute_totals(subtotal: float, shipping_method: str, payment_method: str,
                   discount_amount: float = 0.0) -> Totals:
    shipping_price = get_shipping_price(shipping_method, subtotal)
    before_payment_discount = subtotal + shipping_price - discount_amount
    payment_discount = before_payment_discount * PIX_DISCOUNT_RATE if payment_method == "pix" else 0.0
    # never hand back a negative discount when the coupon already exceeds the order
    payment_discount = max(payment_discount, 0.0)
    total = max(0.0, before_payment_discount - payment_discount)
    return Totals(
        subtotal=subtotal,
        shipping_price=shipping_price,
        discount_amount=discount_amount,
        payment_discount=payment_discount,
        total=total,
    )


def size_rank(label: str) -> int:
    return SIZE_ORDER.get(label, len(SIZE_ORDER))
