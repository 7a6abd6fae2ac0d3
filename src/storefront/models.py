"""
Domain records shared by the cart, checkout, persistence and voice layers.

Money and quantities are `Decimal` end to end; floats only appear at the JSON
boundary (`to_dict` / `from_dict`).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional


class Category(str, Enum):
    VEGETABLES = "vegetables"
    FRUITS = "fruits"
    ORGANIC = "organic"
    OTHER = "other"


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


def to_decimal(value: Any) -> Decimal:
    """Convert a JSON number/string to Decimal without float artefacts."""
    if isinstance(value, Decimal):
        return value
    if value is None or isinstance(value, bool):
        raise ValueError(f"Not a number: {value!r}")
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Not a number: {value!r}")


def _optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return to_decimal(value)


def _number(value: Decimal) -> float | int:
    # JSON-friendly: whole numbers stay ints, everything else becomes float.
    if value == value.to_integral_value():
        return int(value)
    return float(value)


@dataclass(frozen=True)
class LocalizedString:
    en: str
    ar: str

    def get(self, language: str) -> str:
        return self.ar if language == "ar" else self.en


@dataclass(frozen=True)
class Product:
    id: str
    name: LocalizedString
    category: Category
    price: Decimal
    unit: str = "KG"
    organic: bool = False
    discount_price: Optional[Decimal] = None
    image: str = ""
    description: Optional[LocalizedString] = None

    def __post_init__(self) -> None:
        if self.price <= 0:
            raise ValueError(f"Product {self.id} must have a positive price")

    @property
    def has_deal(self) -> bool:
        return self.discount_price is not None and self.discount_price < self.price

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": asdict(self.name),
            "category": self.category.value,
            "price": _number(self.price),
            "discountPrice": _number(self.discount_price) if self.discount_price is not None else None,
            "image": self.image,
            "unit": self.unit,
            "organic": self.organic,
            "description": asdict(self.description) if self.description else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Product":
        name = data.get("name") or {}
        description = data.get("description")
        return cls(
            id=str(data["id"]),
            name=LocalizedString(en=str(name.get("en", "")), ar=str(name.get("ar", ""))),
            category=Category(data.get("category", Category.OTHER.value)),
            price=to_decimal(data["price"]),
            unit=str(data.get("unit") or "KG"),
            organic=bool(data.get("organic", False)),
            discount_price=_optional_decimal(data.get("discountPrice")),
            image=str(data.get("image") or ""),
            description=(
                LocalizedString(en=str(description.get("en", "")), ar=str(description.get("ar", "")))
                if isinstance(description, dict)
                else None
            ),
        )


@dataclass(frozen=True)
class CartLine:
    product: Product
    quantity: Decimal

    @property
    def product_id(self) -> str:
        return self.product.id

    def with_quantity(self, quantity: Decimal) -> "CartLine":
        return replace(self, quantity=quantity)

    def to_dict(self) -> dict[str, Any]:
        # Same flat shape the orders table stores: product fields plus quantity.
        data = self.product.to_dict()
        data["quantity"] = _number(self.quantity)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CartLine":
        return cls(product=Product.from_dict(data), quantity=to_decimal(data["quantity"]))


@dataclass(frozen=True)
class Order:
    """Immutable order snapshot. Only `status` changes after creation, via `with_status`."""

    id: str
    customer_phone: str
    customer_city: str
    items: tuple[CartLine, ...]
    subtotal: Decimal
    delivery_fee: Decimal
    total: Decimal
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def with_status(self, status: OrderStatus) -> "Order":
        return replace(self, status=status)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "customerPhone": self.customer_phone,
            "customerCity": self.customer_city,
            "items": [line.to_dict() for line in self.items],
            "subtotal": _number(self.subtotal),
            "deliveryFee": _number(self.delivery_fee),
            "total": _number(self.total),
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class User:
    phone: str
    role: Role = Role.CUSTOMER
    id: Optional[str] = None
    city: Optional[str] = None
    pin: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def to_dict(self, *, include_pin: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "phone": self.phone, "city": self.city, "role": self.role.value}
        if include_pin:
            data["pin"] = self.pin
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=str(data["id"]) if data.get("id") is not None else None,
            phone=str(data["phone"]),
            city=data.get("city") or None,
            role=Role(data.get("role") or Role.CUSTOMER.value),
            pin=data.get("pin") or None,
        )


@dataclass(frozen=True)
class Enrollment:
    phone: str
    name: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
