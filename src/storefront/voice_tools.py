from __future__ import annotations

import time
from typing import Any, Callable, Optional

import structlog

from src.storefront.cart import Cart
from src.storefront.catalog import Catalog
from src.storefront.errors import InvalidQuantityError
from src.storefront.live_protocol import FunctionCall

logger = structlog.get_logger(__name__)

ADD_TO_BASKET = "add_to_basket"


class BasketToolExecutor:
    """
    Tool layer for live-session function calling.

    The model can only add catalog products to the shopper's cart; it goes through
    the same `Cart.add` the storefront UI uses.
    """

    def __init__(
        self,
        *,
        catalog: Catalog,
        cart: Cart,
        language: str = "ar",
        on_added: Optional[Callable[[list[dict[str, Any]]], None]] = None,
    ):
        self.catalog = catalog
        self.cart = cart
        self.language = language
        self.on_added = on_added

    def tool_definitions(self) -> list[dict[str, Any]]:
        return [
            {
                "name": ADD_TO_BASKET,
                "description": (
                    "Add one or more catalog products to the customer's basket. "
                    "Use the product ids from the catalog list exactly. Quantity is in the "
                    "product's unit (KG, Jar, Liter) and may be fractional in 0.5 steps."
                ),
                "parameters": {
                    "type": "OBJECT",
                    "properties": {
                        "items": {
                            "type": "ARRAY",
                            "items": {
                                "type": "OBJECT",
                                "properties": {
                                    "product_id": {"type": "STRING"},
                                    "quantity": {"type": "NUMBER"},
                                },
                                "required": ["product_id", "quantity"],
                            },
                        }
                    },
                    "required": ["items"],
                },
            }
        ]

    async def execute(self, call: FunctionCall) -> dict[str, Any]:
        started = time.time()
        try:
            if call.name == ADD_TO_BASKET:
                return self._add_to_basket(call.args, started=started)
            return {"ok": False, "error": f"unknown_tool:{call.name}", "added_count": 0}
        except Exception as e:
            logger.exception("Voice tool execution failed", tool=call.name)
            return {"ok": False, "error": str(e), "added_count": 0}

    def _add_to_basket(self, args: dict[str, Any], *, started: float) -> dict[str, Any]:
        items = args.get("items")
        if not isinstance(items, list):
            items = []

        added: list[dict[str, Any]] = []
        skipped: list[str] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            product_id = str(item.get("product_id") or "").strip()
            product = self.catalog.get(product_id)
            if product is None:
                skipped.append(product_id)
                continue
            try:
                line = self.cart.add(product, item.get("quantity", 1))
            except InvalidQuantityError:
                skipped.append(product_id)
                continue
            added.append(
                {
                    "product_id": product.id,
                    "name": product.name.get(self.language),
                    "cart_quantity": float(line.quantity),
                    "unit": product.unit,
                }
            )

        logger.info(
            "Basket updated by voice",
            added=len(added),
            skipped=skipped or None,
            ms=int((time.time() - started) * 1000),
        )
        if added and self.on_added is not None:
            try:
                self.on_added(added)
            except Exception as e:
                logger.warning("Basket notification failed", error=str(e))

        return {"ok": True, "added_count": len(added), "added": added, "skipped": skipped}
