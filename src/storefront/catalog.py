"""
Product catalog snapshot and lookup.

The catalog is fetched once per session and treated as immutable; only the admin
back-office changes products, and it does so through the persistence layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
import unicodedata

import structlog

from src.storefront.models import Category, LocalizedString, Product
from src.storefront.pricing import active_unit_price, format_amount

logger = structlog.get_logger(__name__)

# Arabic letter variants that customers type interchangeably.
_ARABIC_FOLD = str.maketrans({"أ": "ا", "إ": "ا", "آ": "ا", "ة": "ه", "ى": "ي"})


@dataclass(frozen=True)
class City:
    en: str
    ar: str

    def get(self, language: str) -> str:
        return self.ar if language == "ar" else self.en


JORDAN_CITIES: Tuple[City, ...] = (
    City(en="Amman", ar="عمان"),
    City(en="Zarqa", ar="الزرقاء"),
    City(en="Irbid", ar="إربد"),
    City(en="Aqaba", ar="العقبة"),
    City(en="Madaba", ar="مادبا"),
    City(en="Salt", ar="السلط"),
    City(en="Mafraq", ar="المفرق"),
    City(en="Ma'an", ar="معان"),
    City(en="Tafilah", ar="الطفيلة"),
    City(en="Karak", ar="الكرك"),
    City(en="Jerash", ar="جرش"),
    City(en="Ajloun", ar="عجلون"),
)

DEFAULT_CITY = JORDAN_CITIES[0].en


def _seed(
    id: str,
    en: str,
    ar: str,
    category: Category,
    price: str,
    *,
    discount: Optional[str] = None,
    unit: str = "KG",
    organic: bool = False,
    image: str = "",
) -> Product:
    return Product(
        id=id,
        name=LocalizedString(en=en, ar=ar),
        category=category,
        price=Decimal(price),
        discount_price=Decimal(discount) if discount else None,
        unit=unit,
        organic=organic,
        image=image,
    )


SEED_PRODUCTS: Tuple[Product, ...] = (
    # Deals
    _seed("v1", "Local Baladi Tomatoes", "بندورة بلدية", Category.VEGETABLES, "0.85", discount="0.65",
          image="https://images.unsplash.com/photo-1592924357228-91a4daadcfea?w=500"),
    _seed("f1", "Valencia Oranges", "برتقال فالنسيا", Category.FRUITS, "1.10", discount="0.85",
          image="https://images.unsplash.com/photo-1580052614034-c55d20bfee3b?w=500"),
    _seed("o1", "Medjool Dates Premium", "تمر مجهول نخب أول", Category.OTHER, "7.00", discount="5.50",
          image="https://images.unsplash.com/photo-1589135091720-6d09323565e3?w=500"),
    # Vegetables
    _seed("v2", "Fresh Cucumbers", "خيار بلدي طازج", Category.VEGETABLES, "0.75",
          image="https://images.unsplash.com/photo-1449300079323-02e209d9d3a6?w=500"),
    _seed("v6", "Yellow Potatoes", "بطاطا", Category.VEGETABLES, "0.50",
          image="https://images.unsplash.com/photo-1518977676601-b53f02ac6d31?w=500"),
    # Fruits
    _seed("f3", "Red Gala Apples", "تفاح أحمر جالا", Category.FRUITS, "1.35",
          image="https://images.unsplash.com/photo-1568702846914-96b305d2aaeb?w=500"),
    # Other
    _seed("o2", "Local Mountain Honey", "عسل جبلي بلدي", Category.OTHER, "12.00", unit="Jar", organic=True,
          image="https://images.unsplash.com/photo-1589927986089-35812388d1f4?w=500"),
    _seed("o3", "Extra Virgin Olive Oil", "زيت زيتون بكر", Category.OTHER, "9.50", unit="Liter", organic=True,
          image="https://images.unsplash.com/photo-1474979266404-7eaacbcd87c5?w=500"),
)


def _normalize(text: str) -> str:
    """
    Normalize text for matching: casefold + strip accents/harakat + fold Arabic
    letter variants + collapse whitespace.
    """
    text = unicodedata.normalize("NFKD", text or "")
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = text.translate(_ARABIC_FOLD)
    text = " ".join(text.split())
    return text.casefold()


class Catalog:
    """Read-only view over a list of products, keyed by id in fetch order."""

    def __init__(self, products: Iterable[Product] = ()):
        self._products: Dict[str, Product] = {}
        for product in products:
            if product.id in self._products:
                logger.warning("Duplicate product id in catalog", product_id=product.id)
            self._products[product.id] = product

    def __len__(self) -> int:
        return len(self._products)

    def __iter__(self):
        return iter(self._products.values())

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._products

    @property
    def products(self) -> Tuple[Product, ...]:
        return tuple(self._products.values())

    def get(self, product_id: str) -> Optional[Product]:
        return self._products.get(str(product_id).strip()) if product_id is not None else None

    def by_category(self, category: Category | str) -> List[Product]:
        category = Category(category)
        # Organic products show up in the organic aisle whatever their base category.
        if category == Category.ORGANIC:
            return [p for p in self._products.values() if p.organic or p.category == Category.ORGANIC]
        return [p for p in self._products.values() if p.category == category]

    def deals(self) -> List[Product]:
        return [p for p in self._products.values() if p.has_deal]

    def search(self, query: str, *, limit: Optional[int] = None) -> List[Product]:
        """
        Find products by substring/token match against both localized names.
        """
        q = _normalize(query)
        if not q:
            return list(self._products.values())[:limit]

        q_tokens = set(q.split())
        scored: List[Tuple[int, int, Product]] = []
        for position, product in enumerate(self._products.values()):
            score = 0
            for name in (product.name.en, product.name.ar):
                name_n = _normalize(name)
                if q in name_n:
                    score += 3
                score += min(2, len(q_tokens & set(name_n.split())))
            if score > 0:
                scored.append((score, position, product))

        scored.sort(key=lambda t: (-t[0], t[1]))
        return [product for _, _, product in scored[:limit]]

    def to_prompt_lines(self, *, currency: str = "JD") -> List[str]:
        """
        Render a compact, deterministic representation for prompting.
        """
        lines: List[str] = []
        for product in self._products.values():
            price = format_amount(active_unit_price(product))
            deal = " (deal)" if product.has_deal else ""
            lines.append(
                f"- id={product.id} | {product.name.en} / {product.name.ar} | "
                f"{price} {currency} per {product.unit}{deal}"
            )
        return lines
