"""
Tests for the persistence layer.

The backend client is exercised against httpx.MockTransport, so no network is used.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from src.storefront.catalog import SEED_PRODUCTS
from src.storefront.errors import OrderNotFoundError, PersistenceError
from src.storefront.models import CartLine, Order, OrderStatus, Role, User
from src.storefront.persistence import (
    MemoryStore,
    SupabaseStore,
    create_store,
    order_from_row,
    order_to_row,
    product_from_row,
    product_to_row,
)

TOMATO_ROW = {
    "id": "v1",
    "name_en": "Local Baladi Tomatoes",
    "name_ar": "بندورة بلدية",
    "category": "vegetables",
    "price": 0.85,
    "discount_price": 0.65,
    "image": "",
    "unit": "KG",
    "organic": False,
    "description_en": None,
    "description_ar": None,
}


def _order(tomatoes, order_id="ABC123", status=OrderStatus.PENDING, phone="712345678", hour=12) -> Order:
    return Order(
        id=order_id,
        customer_phone=phone,
        customer_city="Amman",
        items=(CartLine(tomatoes, Decimal("2")),),
        subtotal=Decimal("1.30"),
        delivery_fee=Decimal("2"),
        total=Decimal("3.30"),
        status=status,
        created_at=datetime(2025, 1, 1, hour, tzinfo=timezone.utc),
    )


class Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _store(config, handler) -> SupabaseStore:
    return SupabaseStore(config=config, transport=httpx.MockTransport(handler))


class TestRowMapping:
    def test_product_round_trip(self, tomatoes):
        assert product_from_row(product_to_row(tomatoes)) == tomatoes

    def test_order_round_trip(self, tomatoes):
        order = _order(tomatoes)
        row = json.loads(json.dumps(order_to_row(order)))
        assert order_from_row(row) == order

    def test_order_row_uses_snake_case_columns(self, tomatoes):
        row = order_to_row(_order(tomatoes))
        assert set(row) == {
            "id", "customer_phone", "customer_city", "items", "subtotal",
            "delivery_fee", "total", "status", "created_at",
        }
        assert row["items"][0]["discountPrice"] == 0.65


class TestSupabaseStore:
    @pytest.mark.asyncio
    async def test_sends_auth_headers(self, config):
        recorder = Recorder(httpx.Response(200, json=[TOMATO_ROW]))
        store = _store(config, recorder)
        try:
            products = await store.list_products()
        finally:
            await store.close()

        request = recorder.requests[0]
        assert request.url.path == "/rest/v1/products"
        assert request.headers["apikey"] == "test_anon_key"
        assert request.headers["Authorization"] == "Bearer test_anon_key"
        assert products[0].discount_price == Decimal("0.65")

    @pytest.mark.asyncio
    async def test_skips_malformed_product_rows(self, config):
        bad = dict(TOMATO_ROW, id="bad", price=None)
        store = _store(config, Recorder(httpx.Response(200, json=[bad, TOMATO_ROW])))
        try:
            products = await store.list_products()
        finally:
            await store.close()

        assert [p.id for p in products] == ["v1"]

    @pytest.mark.asyncio
    async def test_http_error_becomes_persistence_error(self, config):
        store = _store(config, Recorder(httpx.Response(500, text="boom")))
        try:
            with pytest.raises(PersistenceError):
                await store.list_orders()
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_network_error_becomes_persistence_error(self, config):
        store = _store(config, Recorder(httpx.ConnectError("unreachable")))
        try:
            with pytest.raises(PersistenceError):
                await store.get_user_by_phone("712345678")
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_test_connection_reports_failure(self, config):
        store = _store(config, Recorder(httpx.Response(503)))
        try:
            assert await store.test_connection() is False
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_create_order_posts_row(self, config, tomatoes):
        recorder = Recorder(httpx.Response(201))
        store = _store(config, recorder)
        try:
            await store.create_order(_order(tomatoes))
        finally:
            await store.close()

        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.headers["Prefer"] == "return=minimal"
        body = json.loads(request.content)
        assert body[0]["id"] == "ABC123"
        assert body[0]["customer_phone"] == "712345678"

    @pytest.mark.asyncio
    async def test_list_orders_filters_by_phone(self, config, tomatoes):
        recorder = Recorder(httpx.Response(200, json=[order_to_row(_order(tomatoes))]))
        store = _store(config, recorder)
        try:
            orders = await store.list_orders(phone="712345678")
        finally:
            await store.close()

        params = recorder.requests[0].url.params
        assert params["customer_phone"] == "eq.712345678"
        assert params["order"] == "created_at.desc"
        assert orders[0].id == "ABC123"

    @pytest.mark.asyncio
    async def test_update_status_of_missing_order(self, config):
        store = _store(config, Recorder(httpx.Response(200, json=[])))
        try:
            with pytest.raises(OrderNotFoundError):
                await store.update_order_status("NOPE00", OrderStatus.CANCELLED)
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_update_status_returns_updated_order(self, config, tomatoes):
        row = order_to_row(_order(tomatoes, status=OrderStatus.PROCESSING))
        recorder = Recorder(httpx.Response(200, json=[row]))
        store = _store(config, recorder)
        try:
            order = await store.update_order_status("ABC123", OrderStatus.PROCESSING)
        finally:
            await store.close()

        assert json.loads(recorder.requests[0].content) == {"status": "processing"}
        assert order.status == OrderStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_has_users(self, config):
        store = _store(config, Recorder(httpx.Response(200, json=[]), httpx.Response(200, json=[{"id": 1}])))
        try:
            assert await store.has_users() is False
            assert await store.has_users() is True
        finally:
            await store.close()


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_orders_newest_first_and_filtered(self, tomatoes):
        store = MemoryStore()
        await store.create_order(_order(tomatoes, "OLD001", hour=1))
        await store.create_order(_order(tomatoes, "NEW001", hour=5))
        await store.create_order(_order(tomatoes, "OTHER1", phone="799999999", hour=3))

        assert [o.id for o in await store.list_orders()] == ["NEW001", "OTHER1", "OLD001"]
        assert [o.id for o in await store.list_orders(phone="712345678")] == ["NEW001", "OLD001"]

    @pytest.mark.asyncio
    async def test_duplicate_order_id_rejected(self, tomatoes):
        store = MemoryStore()
        await store.create_order(_order(tomatoes))
        with pytest.raises(PersistenceError):
            await store.create_order(_order(tomatoes))

    @pytest.mark.asyncio
    async def test_missing_order(self):
        with pytest.raises(OrderNotFoundError):
            await MemoryStore().update_order_status("NOPE00", OrderStatus.CANCELLED)

    @pytest.mark.asyncio
    async def test_users(self):
        store = MemoryStore()
        assert await store.has_users() is False

        user = await store.insert_user(User(phone="712345678", role=Role.ADMIN, pin="1"))
        await store.update_user_city("712345678", "Zarqa")

        assert user.id is not None
        assert (await store.get_user_by_phone("712345678")).city == "Zarqa"
        assert await store.has_users() is True

    @pytest.mark.asyncio
    async def test_seed_products(self):
        store = MemoryStore()
        await store.seed_products()
        assert {p.id for p in await store.list_products()} == {p.id for p in SEED_PRODUCTS}


def test_create_store_falls_back_to_memory(config):
    from dataclasses import replace

    assert isinstance(create_store(replace(config, supabase_url="")), MemoryStore)
    assert isinstance(create_store(config), SupabaseStore)
