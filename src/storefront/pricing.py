"""
Cart pricing.

Pure functions: every total shown anywhere (cart drawer, checkout, order history,
WhatsApp summaries) is computed here so that the active unit price rule is applied
in exactly one place.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from src.storefront.models import CartLine, Product

FREE_SHIPPING_THRESHOLD = Decimal("20")
STANDARD_DELIVERY_FEE = Decimal("2")


@dataclass(frozen=True)
class PricingRules:
    free_shipping_threshold: Decimal = FREE_SHIPPING_THRESHOLD
    standard_delivery_fee: Decimal = STANDARD_DELIVERY_FEE

    @classmethod
    def from_config(cls, config) -> "PricingRules":
        return cls(
            free_shipping_threshold=config.free_shipping_threshold,
            standard_delivery_fee=config.standard_delivery_fee,
        )


DEFAULT_RULES = PricingRules()


@dataclass(frozen=True)
class PricingResult:
    subtotal: Decimal
    delivery_fee: Decimal
    total: Decimal

    @property
    def free_delivery(self) -> bool:
        return self.delivery_fee == 0

    def to_dict(self) -> dict[str, float]:
        return {
            "subtotal": float(self.subtotal),
            "deliveryFee": float(self.delivery_fee),
            "total": float(self.total),
        }


def active_unit_price(product: Product) -> Decimal:
    """The discount price when it is set and strictly lower than the list price."""
    if product.discount_price is not None and product.discount_price < product.price:
        return product.discount_price
    return product.price


def line_total(line: CartLine) -> Decimal:
    return active_unit_price(line.product) * line.quantity


def subtotal(lines: Iterable[CartLine]) -> Decimal:
    return sum((line_total(line) for line in lines), Decimal("0"))


def delivery_fee(amount: Decimal, rules: Optional[PricingRules] = None) -> Decimal:
    rules = rules or DEFAULT_RULES
    if amount >= rules.free_shipping_threshold:
        return Decimal("0")
    return rules.standard_delivery_fee


def total(lines: Iterable[CartLine], rules: Optional[PricingRules] = None) -> Decimal:
    return price_lines(lines, rules).total


def price_lines(lines: Iterable[CartLine], rules: Optional[PricingRules] = None) -> PricingResult:
    sub = subtotal(lines)
    fee = delivery_fee(sub, rules)
    return PricingResult(subtotal=sub, delivery_fee=fee, total=sub + fee)


def format_amount(amount: Decimal) -> str:
    """Two-decimal display string, e.g. `4.40`."""
    return f"{amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP):.2f}"
