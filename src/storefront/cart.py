"""
Shopping cart.

The cart is the one piece of state mutated by more than one source (the HTTP/UI
layer and voice tool calls). Both go through the methods below; each method
validates and clamps before touching `_lines`, then notifies listeners.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Iterator, Optional

import structlog

from src.storefront.errors import InvalidQuantityError, ProductNotFoundError
from src.storefront.models import CartLine, Product, to_decimal
from src.storefront.pricing import PricingResult, PricingRules, price_lines

logger = structlog.get_logger(__name__)

MIN_QUANTITY = Decimal("0.5")
QUANTITY_STEP = Decimal("0.5")

CartListener = Callable[["Cart"], None]


def normalize_quantity(value: Any) -> Decimal:
    """Round to the nearest 0.5 step and clamp to the 0.5 floor."""
    try:
        quantity = to_decimal(value)
    except ValueError as e:
        raise InvalidQuantityError(str(e))
    if not quantity.is_finite():
        raise InvalidQuantityError(f"Quantity must be finite: {value!r}")
    steps = (quantity / QUANTITY_STEP).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(MIN_QUANTITY, steps * QUANTITY_STEP)


class Cart:
    """Insertion-ordered lines, at most one per product id."""

    def __init__(self, lines: Optional[list[CartLine]] = None):
        self._lines: dict[str, CartLine] = {}
        self._listeners: list[CartListener] = []
        for line in lines or []:
            self._lines[line.product_id] = line.with_quantity(normalize_quantity(line.quantity))

    def __iter__(self) -> Iterator[CartLine]:
        return iter(list(self._lines.values()))

    def __len__(self) -> int:
        return len(self._lines)

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._lines

    @property
    def lines(self) -> tuple[CartLine, ...]:
        return tuple(self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def get(self, product_id: str) -> Optional[CartLine]:
        return self._lines.get(product_id)

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        """Register a post-mutation listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def add(self, product: Product, quantity: Any = 1) -> CartLine:
        """Add `quantity` of `product`, merging into an existing line for the same id."""
        try:
            raw = to_decimal(quantity)
        except ValueError as e:
            raise InvalidQuantityError(str(e))
        if not raw.is_finite() or raw <= 0:
            raise InvalidQuantityError(f"Quantity must be positive, got {quantity!r}")
        amount = normalize_quantity(raw)

        existing = self._lines.get(product.id)
        if existing is not None:
            line = existing.with_quantity(existing.quantity + amount)
        else:
            line = CartLine(product=product, quantity=amount)
        self._lines[product.id] = line
        self._notify()
        return line

    def remove(self, product_id: str) -> bool:
        removed = self._lines.pop(product_id, None) is not None
        if removed:
            self._notify()
        return removed

    def update_quantity(self, product_id: str, quantity: Any) -> CartLine:
        """Set a line's quantity, clamped to the 0.5 floor. Never removes the line."""
        existing = self._lines.get(product_id)
        if existing is None:
            raise ProductNotFoundError(f"Product {product_id} is not in the cart")
        line = existing.with_quantity(normalize_quantity(quantity))
        self._lines[product_id] = line
        self._notify()
        return line

    def clear(self) -> None:
        if not self._lines:
            return
        self._lines = {}
        self._notify()

    def pricing(self, rules: Optional[PricingRules] = None) -> PricingResult:
        return price_lines(self._lines.values(), rules)

    def to_dict(self) -> list[dict[str, Any]]:
        return [line.to_dict() for line in self._lines.values()]

    @classmethod
    def from_dict(cls, data: Any) -> "Cart":
        if not isinstance(data, list):
            logger.warning("Discarding malformed persisted cart", kind=type(data).__name__)
            return cls()
        try:
            return cls([CartLine.from_dict(item) for item in data])
        except (KeyError, TypeError, ValueError, InvalidQuantityError) as e:
            logger.warning("Discarding malformed persisted cart", error=str(e))
            return cls()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.warning("Cart listener failed", error=str(e))
