# SPDX-License-Identifier: BUSL-1.1
# Copyright (c) 2026 pyoneerC. All rights reserved.
"""
Product catalog. Single source of truth for prices.

Prices are stored once, in integer cents. The Stripe and PayPal
representations are derived from that number, so what a webhook is checked
against can never drift from what the checkout charged.
"""
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Tuple

from .errors import NotFoundError


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    description: str
    price_cents: int
    currency: str = "USD"
    features: Tuple[str, ...] = field(default_factory=tuple)
    badge: str = ""
    highlight: bool = False

    @property
    def price_decimal(self) -> Decimal:
        return (Decimal(self.price_cents) / 100).quantize(Decimal("0.01"))

    @property
    def stripe_price(self) -> dict:
        # Stripe wants integer cents and a lower-case currency
        return {"amount": self.price_cents, "currency": self.currency.lower()}

    @property
    def paypal_price(self) -> dict:
        # PayPal wants a decimal string and an upper-case currency
        return {"value": str(self.price_decimal), "currency_code": self.currency.upper()}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "priceCents": self.price_cents,
            "price": str(self.price_decimal),
            "currency": self.currency,
            "features": list(self.features),
            "badge": self.badge,
            "highlight": self.highlight,
        }


PRODUCTS: Dict[str, Product] = {
    "premium": Product(
        id="premium",
        name="KiwiTweaks Premium",
        description="Lifetime access to all premium features",
        price_cents=2999,
        features=(
            "Lifetime updates",
            "All premium features",
            "Priority support",
            "Advanced optimization tools",
            "Performance monitoring",
        ),
        badge="Most Popular",
        highlight=True,
    ),
    "pro": Product(
        id="pro",
        name="KiwiTweaks Pro",
        description="For professional users",
        price_cents=4999,
        features=(
            "Everything in Premium",
            "Team collaboration",
            "Custom configurations",
            "White-label options",
        ),
        badge="For Teams",
    ),
}


def get_product(product_id: str) -> Product:
    product = PRODUCTS.get(product_id)
    if product is None:
        raise NotFoundError(f"Product not found: {product_id}")
    return product


def list_products() -> List[Product]:
    return sorted(PRODUCTS.values(), key=lambda p: p.price_cents)


def validate_price(product_id: str, received, provider: str = "stripe") -> bool:
    """
    True only when `received` is exactly the catalog price in the provider's unit.

    Stripe amounts are integer cents. PayPal amounts are decimal strings such
    as "29.99". Anything else (floats, booleans, garbage strings) is a mismatch.
    """
    product = get_product(product_id)

    if provider == "stripe":
        if isinstance(received, bool) or not isinstance(received, int):
            return False
        return received == product.stripe_price["amount"]

    if provider == "paypal":
        if not isinstance(received, (str, Decimal)):
            return False
        try:
            amount = Decimal(received)
        except InvalidOperation:
            return False
        if not amount.is_finite():
            return False
        return amount == Decimal(product.paypal_price["value"])

    raise ValueError(f"Unknown payment provider: {provider}")
