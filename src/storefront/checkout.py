"""
Checkout and the order status state machine.

`checkout` builds the complete Order snapshot in local variables and constructs it
once, so callers either receive a full Order or an exception.
"""

from __future__ import annotations

import re
import secrets
import string
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from src.storefront.cart import Cart
from src.storefront.errors import EmptyCartError, IllegalStatusTransitionError, InvalidPhoneError
from src.storefront.models import Order, OrderStatus
from src.storefront.pricing import PricingRules

logger = structlog.get_logger(__name__)

_PHONE_RE = re.compile(r"^7[0-9]{8}$")
_ORDER_ID_ALPHABET = string.ascii_uppercase + string.digits
ORDER_ID_LENGTH = 6

# Normal lifecycle. The admin override in `admin_set_status` bypasses it.
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def is_valid_phone(phone: str) -> bool:
    return bool(_PHONE_RE.match(phone or ""))


def validate_phone(phone: str) -> str:
    """Return the stripped local phone or raise InvalidPhoneError."""
    candidate = (phone or "").strip()
    if not is_valid_phone(candidate):
        raise InvalidPhoneError(f"Phone must be 9 digits starting with 7, got {phone!r}")
    return candidate


def generate_order_id(length: int = ORDER_ID_LENGTH) -> str:
    return "".join(secrets.choice(_ORDER_ID_ALPHABET) for _ in range(length))


def checkout(
    cart: Cart,
    customer_phone: str,
    customer_city: str,
    *,
    rules: Optional[PricingRules] = None,
    now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    id_factory: Callable[[], str] = generate_order_id,
) -> Order:
    if cart.is_empty:
        raise EmptyCartError("Cannot check out an empty cart")
    phone = validate_phone(customer_phone)

    items = cart.lines
    pricing = cart.pricing(rules)
    order = Order(
        id=id_factory(),
        customer_phone=phone,
        customer_city=(customer_city or "").strip(),
        items=items,
        subtotal=pricing.subtotal,
        delivery_fee=pricing.delivery_fee,
        total=pricing.total,
        status=OrderStatus.PENDING,
        created_at=now(),
    )
    logger.info(
        "Order created",
        order_id=order.id,
        lines=len(items),
        subtotal=str(order.subtotal),
        delivery_fee=str(order.delivery_fee),
        total=str(order.total),
    )
    return order


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def advance_status(order: Order, target: OrderStatus) -> Order:
    """Move an order along the normal lifecycle only."""
    if not can_transition(order.status, target):
        raise IllegalStatusTransitionError(
            f"Order {order.id} cannot move from {order.status.value} to {target.value}"
        )
    return order.with_status(target)


def customer_cancel(order: Order) -> Order:
    """Customers may cancel only while the order is still pending."""
    if order.status != OrderStatus.PENDING:
        raise IllegalStatusTransitionError(
            f"Order {order.id} is {order.status.value}; only pending orders can be cancelled"
        )
    return order.with_status(OrderStatus.CANCELLED)


def admin_set_status(order: Order, target: OrderStatus, *, strict_terminal: bool = False) -> Order:
    """
    Operator override: any status to any status.

    With `strict_terminal`, completed/cancelled orders cannot be re-opened.
    """
    if order.status == target:
        return order
    if order.status.is_terminal:
        if strict_terminal:
            raise IllegalStatusTransitionError(
                f"Order {order.id} is {order.status.value} and cannot be re-opened"
            )
        logger.warning(
            "Admin re-opened terminal order",
            order_id=order.id,
            from_status=order.status.value,
            to_status=target.value,
        )
    return order.with_status(target)
