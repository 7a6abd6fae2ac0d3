"""
Tests for the add_to_basket voice tool.
"""

from decimal import Decimal

import pytest

from src.storefront.cart import Cart
from src.storefront.live_protocol import FunctionCall
from src.storefront.voice_tools import ADD_TO_BASKET, BasketToolExecutor


def _call(items, name=ADD_TO_BASKET):
    return FunctionCall(id="call-1", name=name, args={"items": items})


@pytest.fixture
def cart():
    return Cart()


@pytest.fixture
def notified():
    return []


@pytest.fixture
def executor(catalog, cart, notified):
    return BasketToolExecutor(catalog=catalog, cart=cart, language="en", on_added=notified.append)


def test_tool_definition(executor):
    (definition,) = executor.tool_definitions()

    assert definition["name"] == "add_to_basket"
    item = definition["parameters"]["properties"]["items"]["items"]
    assert item["required"] == ["product_id", "quantity"]


class TestAddToBasket:
    @pytest.mark.asyncio
    async def test_adds_known_products(self, executor, cart, notified):
        result = await executor.execute(_call([{"product_id": "v1", "quantity": 2}, {"product_id": "f3", "quantity": 0.5}]))

        assert result["ok"] is True
        assert result["added_count"] == 2
        assert cart.get("v1").quantity == Decimal("2")
        assert cart.get("f3").quantity == Decimal("0.5")
        assert len(notified) == 1

    @pytest.mark.asyncio
    async def test_unknown_id_is_skipped(self, executor, cart):
        """One valid and one unknown id: one line added, one mutation."""
        mutations = []
        cart.subscribe(lambda c: mutations.append(len(c)))

        result = await executor.execute(_call([{"product_id": "v1", "quantity": 1}, {"product_id": "zz9", "quantity": 3}]))

        assert result["added_count"] == 1
        assert result["skipped"] == ["zz9"]
        assert result["added"][0]["name"] == "Local Baladi Tomatoes"
        assert mutations == [1]

    @pytest.mark.asyncio
    async def test_merges_into_existing_line(self, executor, cart, catalog):
        cart.add(catalog.get("v1"), 1)
        result = await executor.execute(_call([{"product_id": "v1", "quantity": 1.5}]))

        assert result["added"][0]["cart_quantity"] == 2.5
        assert len(cart) == 1

    @pytest.mark.asyncio
    async def test_bad_quantity_is_skipped(self, executor, cart, notified):
        result = await executor.execute(_call([{"product_id": "v1", "quantity": -2}]))

        assert result == {"ok": True, "added_count": 0, "added": [], "skipped": ["v1"]}
        assert cart.is_empty
        assert notified == []

    @pytest.mark.asyncio
    async def test_missing_quantity_defaults_to_one(self, executor, cart):
        await executor.execute(_call([{"product_id": "o2"}]))
        assert cart.get("o2").quantity == Decimal("1")

    @pytest.mark.asyncio
    async def test_malformed_args(self, executor, cart):
        result = await executor.execute(FunctionCall(id="c", name=ADD_TO_BASKET, args={"items": "v1"}))
        assert result["added_count"] == 0
        assert cart.is_empty

    @pytest.mark.asyncio
    async def test_unknown_tool(self, executor):
        result = await executor.execute(_call([], name="checkout"))
        assert result["ok"] is False
        assert result["added_count"] == 0

    @pytest.mark.asyncio
    async def test_arabic_names(self, catalog, cart):
        executor = BasketToolExecutor(catalog=catalog, cart=cart, language="ar")
        result = await executor.execute(_call([{"product_id": "v1", "quantity": 1}]))
        assert result["added"][0]["name"] == "بندورة بلدية"
