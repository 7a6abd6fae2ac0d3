"""
Persistence collaborator.

`SupabaseStore` talks to the hosted Postgres backend through its PostgREST HTTP
API (`/rest/v1/<table>`). `MemoryStore` implements the same interface in process,
for tests and for running the API without a backend.

Tables and columns:
- products: id, name_en, name_ar, category, price, discount_price, image, unit,
  organic, description_en, description_ar, created_at
- orders: id, customer_phone, customer_city, items (json), subtotal, delivery_fee,
  total, status, created_at
- users: id, phone, city, role, pin
- enrollments: id, name, phone, created_at
"""

from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import httpx
import structlog

from src.storefront.catalog import SEED_PRODUCTS
from src.storefront.config import Config, get_config
from src.storefront.errors import OrderNotFoundError, PersistenceError
from src.storefront.models import (
    CartLine,
    Category,
    Enrollment,
    LocalizedString,
    Order,
    OrderStatus,
    Product,
    User,
    to_decimal,
)

logger = structlog.get_logger(__name__)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return datetime.now(timezone.utc)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def product_to_row(product: Product) -> dict[str, Any]:
    return {
        "id": product.id,
        "name_en": product.name.en,
        "name_ar": product.name.ar,
        "category": product.category.value,
        "price": float(product.price),
        "discount_price": float(product.discount_price) if product.discount_price is not None else None,
        "image": product.image,
        "unit": product.unit,
        "organic": product.organic,
        "description_en": product.description.en if product.description else None,
        "description_ar": product.description.ar if product.description else None,
    }


def product_from_row(row: dict[str, Any]) -> Product:
    description = None
    if row.get("description_en"):
        description = LocalizedString(en=row["description_en"], ar=row.get("description_ar") or "")
    discount = row.get("discount_price")
    return Product(
        id=str(row["id"]),
        name=LocalizedString(en=row.get("name_en") or "", ar=row.get("name_ar") or ""),
        category=Category(row.get("category") or Category.OTHER.value),
        price=to_decimal(row["price"]),
        discount_price=to_decimal(discount) if discount is not None else None,
        image=row.get("image") or "",
        unit=row.get("unit") or "KG",
        organic=bool(row.get("organic")),
        description=description,
    )


def order_to_row(order: Order) -> dict[str, Any]:
    data = order.to_dict()
    return {
        "id": order.id,
        "customer_phone": order.customer_phone,
        "customer_city": order.customer_city,
        "items": data["items"],
        "subtotal": data["subtotal"],
        "delivery_fee": data["deliveryFee"],
        "total": data["total"],
        "status": order.status.value,
        "created_at": data["createdAt"],
    }


def order_from_row(row: dict[str, Any]) -> Order:
    return Order(
        id=str(row["id"]),
        customer_phone=str(row["customer_phone"]),
        customer_city=row.get("customer_city") or "",
        items=tuple(CartLine.from_dict(item) for item in row.get("items") or []),
        subtotal=to_decimal(row["subtotal"]),
        delivery_fee=to_decimal(row["delivery_fee"]),
        total=to_decimal(row["total"]),
        status=OrderStatus(row.get("status") or OrderStatus.PENDING.value),
        created_at=_parse_timestamp(row.get("created_at")),
    )


def enrollment_from_row(row: dict[str, Any]) -> Enrollment:
    return Enrollment(
        id=str(row["id"]) if row.get("id") is not None else None,
        name=row.get("name") or None,
        phone=str(row["phone"]),
        created_at=_parse_timestamp(row.get("created_at")) if row.get("created_at") else None,
    )


class Store(ABC):
    """Async record store over products, orders, users and enrollments."""

    @abstractmethod
    async def test_connection(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def list_products(self) -> list[Product]:
        raise NotImplementedError

    @abstractmethod
    async def save_product(self, product: Product) -> None:
        raise NotImplementedError

    async def bulk_save_products(self, products: Iterable[Product]) -> None:
        for product in products:
            await self.save_product(product)

    @abstractmethod
    async def delete_product(self, product_id: str) -> None:
        raise NotImplementedError

    async def seed_products(self) -> None:
        await self.bulk_save_products(SEED_PRODUCTS)

    @abstractmethod
    async def list_orders(self, phone: Optional[str] = None) -> list[Order]:
        raise NotImplementedError

    @abstractmethod
    async def get_order(self, order_id: str) -> Order:
        raise NotImplementedError

    @abstractmethod
    async def create_order(self, order: Order) -> None:
        raise NotImplementedError

    @abstractmethod
    async def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        raise NotImplementedError

    @abstractmethod
    async def delete_order(self, order_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_user_by_phone(self, phone: str) -> Optional[User]:
        raise NotImplementedError

    @abstractmethod
    async def has_users(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def insert_user(self, user: User) -> User:
        raise NotImplementedError

    @abstractmethod
    async def update_user_city(self, phone: str, city: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def add_enrollment(self, phone: str, name: Optional[str] = None) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_enrollments(self) -> list[Enrollment]:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class SupabaseStore(Store):
    """PostgREST client. Every failure surfaces as PersistenceError."""

    def __init__(
        self,
        *,
        config: Optional[Config] = None,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 20.0,
    ):
        self.config = config or get_config()
        base_url = self.config.supabase_url.rstrip("/")
        headers = {
            "apikey": self.config.supabase_anon_key,
            "Authorization": f"Bearer {self.config.supabase_anon_key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout, transport=transport
        )
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: Optional[dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        headers = {"Prefer": prefer} if prefer else None
        try:
            resp = await self._client.request(
                method, f"/rest/v1/{table}", params=params, json=json, headers=headers
            )
        except httpx.HTTPError as e:
            logger.error("Backend request failed", table=table, method=method, error=str(e))
            raise PersistenceError(f"{method} {table} failed: {e}") from e

        if resp.status_code >= 400:
            logger.error(
                "Backend returned error",
                table=table,
                method=method,
                status=resp.status_code,
                body=resp.text[:200],
            )
            raise PersistenceError(f"{method} {table} returned {resp.status_code}")

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise PersistenceError(f"{method} {table} returned invalid JSON") from e

    async def test_connection(self) -> bool:
        try:
            await self._request("GET", "products", params={"select": "id", "limit": "1"})
            return True
        except PersistenceError:
            return False

    async def list_products(self) -> list[Product]:
        rows = await self._request(
            "GET", "products", params={"select": "*", "order": "created_at.desc"}
        )
        products = []
        for row in rows or []:
            try:
                products.append(product_from_row(row))
            except (KeyError, ValueError) as e:
                logger.warning("Skipping malformed product row", product_id=row.get("id"), error=str(e))
        return products

    async def save_product(self, product: Product) -> None:
        await self.bulk_save_products([product])

    async def bulk_save_products(self, products: Iterable[Product]) -> None:
        rows = [product_to_row(p) for p in products]
        if not rows:
            return
        await self._request(
            "POST",
            "products",
            json=rows,
            prefer="resolution=merge-duplicates,return=minimal",
        )
        logger.info("Products saved", count=len(rows))

    async def delete_product(self, product_id: str) -> None:
        await self._request("DELETE", "products", params={"id": f"eq.{product_id}"})

    async def list_orders(self, phone: Optional[str] = None) -> list[Order]:
        params = {"select": "*", "order": "created_at.desc"}
        if phone:
            params["customer_phone"] = f"eq.{phone}"
        rows = await self._request("GET", "orders", params=params)
        return [order_from_row(row) for row in rows or []]

    async def get_order(self, order_id: str) -> Order:
        rows = await self._request("GET", "orders", params={"select": "*", "id": f"eq.{order_id}"})
        if not rows:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order_from_row(rows[0])

    async def create_order(self, order: Order) -> None:
        await self._request("POST", "orders", json=[order_to_row(order)], prefer="return=minimal")

    async def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        rows = await self._request(
            "PATCH",
            "orders",
            params={"id": f"eq.{order_id}", "select": "*"},
            json={"status": status.value},
            prefer="return=representation",
        )
        if not rows:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order_from_row(rows[0])

    async def delete_order(self, order_id: str) -> None:
        await self._request("DELETE", "orders", params={"id": f"eq.{order_id}"})

    async def get_user_by_phone(self, phone: str) -> Optional[User]:
        rows = await self._request("GET", "users", params={"select": "*", "phone": f"eq.{phone}", "limit": "1"})
        if not rows:
            return None
        return User.from_dict(rows[0])

    async def has_users(self) -> bool:
        rows = await self._request("GET", "users", params={"select": "id", "limit": "1"})
        return bool(rows)

    async def insert_user(self, user: User) -> User:
        payload = {"phone": user.phone, "city": user.city, "role": user.role.value, "pin": user.pin}
        rows = await self._request("POST", "users", json=[payload], prefer="return=representation")
        if not rows:
            raise PersistenceError("User insert returned no row")
        return User.from_dict(rows[0])

    async def update_user_city(self, phone: str, city: str) -> None:
        await self._request("PATCH", "users", params={"phone": f"eq.{phone}"}, json={"city": city})

    async def add_enrollment(self, phone: str, name: Optional[str] = None) -> None:
        await self._request("POST", "enrollments", json=[{"name": name, "phone": phone}], prefer="return=minimal")

    async def list_enrollments(self) -> list[Enrollment]:
        rows = await self._request("GET", "enrollments", params={"select": "*", "order": "created_at.desc"})
        return [enrollment_from_row(row) for row in rows or []]


class MemoryStore(Store):
    """In-process store with the same semantics as the hosted backend."""

    def __init__(self, products: Iterable[Product] = ()):
        self.products: dict[str, Product] = {p.id: p for p in products}
        self.orders: dict[str, Order] = {}
        self.users: dict[str, User] = {}
        self.enrollments: list[Enrollment] = []
        self._ids = itertools.count(1)

    async def test_connection(self) -> bool:
        return True

    async def list_products(self) -> list[Product]:
        return list(self.products.values())

    async def save_product(self, product: Product) -> None:
        self.products[product.id] = product

    async def delete_product(self, product_id: str) -> None:
        self.products.pop(product_id, None)

    async def list_orders(self, phone: Optional[str] = None) -> list[Order]:
        orders = [o for o in self.orders.values() if phone is None or o.customer_phone == phone]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    async def get_order(self, order_id: str) -> Order:
        try:
            return self.orders[order_id]
        except KeyError:
            raise OrderNotFoundError(f"Order {order_id} not found")

    async def create_order(self, order: Order) -> None:
        if order.id in self.orders:
            raise PersistenceError(f"Duplicate order id {order.id}")
        self.orders[order.id] = order

    async def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        order = (await self.get_order(order_id)).with_status(status)
        self.orders[order_id] = order
        return order

    async def delete_order(self, order_id: str) -> None:
        self.orders.pop(order_id, None)

    async def get_user_by_phone(self, phone: str) -> Optional[User]:
        return self.users.get(phone)

    async def has_users(self) -> bool:
        return bool(self.users)

    async def insert_user(self, user: User) -> User:
        stored = User(id=str(next(self._ids)), phone=user.phone, city=user.city, role=user.role, pin=user.pin)
        self.users[user.phone] = stored
        return stored

    async def update_user_city(self, phone: str, city: str) -> None:
        user = self.users.get(phone)
        if user is not None:
            self.users[phone] = User(id=user.id, phone=user.phone, city=city, role=user.role, pin=user.pin)

    async def add_enrollment(self, phone: str, name: Optional[str] = None) -> None:
        self.enrollments.append(
            Enrollment(id=str(next(self._ids)), name=name, phone=phone, created_at=datetime.now(timezone.utc))
        )

    async def list_enrollments(self) -> list[Enrollment]:
        return list(reversed(self.enrollments))


def create_store(config: Optional[Config] = None) -> Store:
    config = config or get_config()
    if config.supabase_url and config.supabase_anon_key:
        return SupabaseStore(config=config)
    logger.warning("Backend not configured; using in-memory store")
    return MemoryStore(SEED_PRODUCTS)
