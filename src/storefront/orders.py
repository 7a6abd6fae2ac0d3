"""
Order workflows that combine the session, the checkout state machine and the store.

Rules for who may do what live here; the persistence layer only stores records.
"""

from __future__ import annotations

from typing import Iterable, Optional

import structlog

from src.storefront.auth import sign_in
from src.storefront.checkout import admin_set_status, checkout, customer_cancel, validate_phone
from src.storefront.config import Config, get_config
from src.storefront.errors import EmptyCartError, PermissionDeniedError, PersistenceError
from src.storefront.models import Order, OrderStatus, Product, User
from src.storefront.persistence import Store
from src.storefront.pricing import PricingRules
from src.storefront.session import ShopSession

logger = structlog.get_logger(__name__)


def require_admin(user: Optional[User]) -> User:
    if user is None or not user.is_admin:
        raise PermissionDeniedError("Admin access required")
    return user


def require_user(user: Optional[User]) -> User:
    if user is None:
        raise PermissionDeniedError("Sign in required")
    return user


async def place_order(
    session: ShopSession,
    store: Store,
    phone: str,
    city: str,
    *,
    pin: Optional[str] = None,
    config: Optional[Config] = None,
) -> Order:
    """
    Check out the session cart and persist the order.

    The cart is cleared only once the store accepted the order.
    """
    config = config or get_config()
    if session.cart.is_empty:
        raise EmptyCartError("Cannot check out an empty cart")
    phone = validate_phone(phone)

    if session.user is None or session.user.phone != phone:
        session.sign_in(await sign_in(store, phone, city, pin, config=config))

    order = checkout(session.cart, phone, city, rules=PricingRules.from_config(config))
    try:
        await store.create_order(order)
    except PersistenceError:
        logger.warning("Order not persisted; cart kept", order_id=order.id)
        raise

    session.cart.clear()
    logger.info("Order placed", order_id=order.id, total=str(order.total))
    return order


async def order_history(session: ShopSession, store: Store) -> list[Order]:
    user = require_user(session.user)
    if user.is_admin:
        return await store.list_orders()
    return await store.list_orders(phone=user.phone)


def latest_pending(orders: Iterable[Order]) -> Optional[Order]:
    """Newest pending order, for the tracking banner."""
    pending = [o for o in orders if o.status == OrderStatus.PENDING]
    if not pending:
        return None
    return max(pending, key=lambda o: o.created_at)


async def _owned_order(session: ShopSession, store: Store, order_id: str) -> Order:
    user = require_user(session.user)
    order = await store.get_order(order_id)
    if not user.is_admin and order.customer_phone != user.phone:
        raise PermissionDeniedError(f"Order {order_id} belongs to another customer")
    return order


async def cancel_order(session: ShopSession, store: Store, order_id: str) -> Order:
    order = customer_cancel(await _owned_order(session, store, order_id))
    updated = await store.update_order_status(order.id, order.status)
    logger.info("Order cancelled by customer", order_id=order.id)
    return updated


async def admin_update_status(
    session: ShopSession,
    store: Store,
    order_id: str,
    status: OrderStatus | str,
    *,
    config: Optional[Config] = None,
) -> Order:
    config = config or get_config()
    require_admin(session.user)
    target = OrderStatus(status)
    order = admin_set_status(
        await store.get_order(order_id), target, strict_terminal=config.strict_terminal_statuses
    )
    updated = await store.update_order_status(order.id, order.status)
    logger.info("Order status set by admin", order_id=order.id, status=target.value)
    return updated


async def delete_order(session: ShopSession, store: Store, order_id: str) -> None:
    """Customers may only remove finished orders from their own history; admins anything."""
    order = await _owned_order(session, store, order_id)
    if not session.user.is_admin and order.status == OrderStatus.PENDING:
        raise PermissionDeniedError("Pending orders must be cancelled, not deleted")
    await store.delete_order(order.id)
    logger.info("Order deleted", order_id=order.id, by_admin=session.user.is_admin)


async def save_product(session: ShopSession, store: Store, product: Product) -> Product:
    require_admin(session.user)
    await store.save_product(product)
    logger.info("Product saved", product_id=product.id)
    return product


async def delete_product(session: ShopSession, store: Store, product_id: str) -> None:
    require_admin(session.user)
    await store.delete_product(product_id)
    logger.info("Product deleted", product_id=product_id)


async def seed_products(session: ShopSession, store: Store) -> None:
    require_admin(session.user)
    await store.seed_products()
    logger.info("Catalog seeded")
