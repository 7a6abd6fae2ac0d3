"""
Tests for checkout and the order status state machine.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from src.storefront.cart import Cart
from src.storefront.checkout import (
    ORDER_ID_LENGTH,
    admin_set_status,
    advance_status,
    can_transition,
    checkout,
    customer_cancel,
    generate_order_id,
    is_valid_phone,
    validate_phone,
)
from src.storefront.errors import EmptyCartError, IllegalStatusTransitionError, InvalidPhoneError
from src.storefront.models import OrderStatus

FIXED_NOW = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


@pytest.fixture
def cart(tomatoes, oranges):
    cart = Cart()
    cart.add(tomatoes, 2)
    cart.add(oranges, 1)
    return cart


@pytest.fixture
def order(cart):
    return checkout(cart, "712345678", "Amman", now=lambda: FIXED_NOW, id_factory=lambda: "ABC123")


class TestPhoneValidation:
    @pytest.mark.parametrize("phone", ["712345678", "799999999", " 790000000 "])
    def test_valid(self, phone):
        assert validate_phone(phone) == phone.strip()

    @pytest.mark.parametrize("phone", ["812345678", "71234567", "7123456789", "07123456", "7123a5678", "", None])
    def test_invalid(self, phone):
        assert not is_valid_phone((phone or "").strip())
        with pytest.raises(InvalidPhoneError):
            validate_phone(phone)


class TestCheckout:
    def test_builds_complete_order(self, order):
        assert order.id == "ABC123"
        assert order.customer_phone == "712345678"
        assert order.customer_city == "Amman"
        assert order.status == OrderStatus.PENDING
        assert order.created_at == FIXED_NOW
        assert order.subtotal == Decimal("2.40")
        assert order.delivery_fee == Decimal("2")
        assert order.total == Decimal("4.40")
        assert [line.product_id for line in order.items] == ["v1", "f9"]

    def test_empty_cart_fails_first(self):
        # Empty cart wins over an invalid phone.
        with pytest.raises(EmptyCartError):
            checkout(Cart(), "812345678", "Amman")

    def test_invalid_phone(self, cart):
        with pytest.raises(InvalidPhoneError):
            checkout(cart, "812345678", "Amman")

    def test_order_is_snapshot(self, cart, order, tomatoes):
        cart.add(tomatoes, 10)
        assert order.items[0].quantity == Decimal("2")
        assert order.total == Decimal("4.40")

    def test_checkout_does_not_clear_cart(self, cart, order):
        assert len(cart) == 2

    def test_generated_ids(self):
        ids = {generate_order_id() for _ in range(50)}
        assert all(len(i) == ORDER_ID_LENGTH and i.isalnum() and i.upper() == i for i in ids)
        assert len(ids) > 1


class TestStatusMachine:
    def test_normal_lifecycle(self, order):
        processing = advance_status(order, OrderStatus.PROCESSING)
        completed = advance_status(processing, OrderStatus.COMPLETED)

        assert completed.status == OrderStatus.COMPLETED
        assert order.status == OrderStatus.PENDING

    @pytest.mark.parametrize(
        "current, target",
        [
            (OrderStatus.PENDING, OrderStatus.COMPLETED),
            (OrderStatus.COMPLETED, OrderStatus.PROCESSING),
            (OrderStatus.CANCELLED, OrderStatus.PENDING),
            (OrderStatus.PROCESSING, OrderStatus.PENDING),
        ],
    )
    def test_illegal_transitions(self, order, current, target):
        assert not can_transition(current, target)
        with pytest.raises(IllegalStatusTransitionError):
            advance_status(order.with_status(current), target)

    def test_terminal_states_have_no_exits(self):
        for status in OrderStatus:
            if status.is_terminal:
                assert not any(can_transition(status, target) for target in OrderStatus)

    def test_customer_cancel_only_from_pending(self, order):
        assert customer_cancel(order).status == OrderStatus.CANCELLED
        for status in (OrderStatus.PROCESSING, OrderStatus.COMPLETED, OrderStatus.CANCELLED):
            with pytest.raises(IllegalStatusTransitionError):
                customer_cancel(order.with_status(status))

    def test_admin_override_is_unrestricted_by_default(self, order):
        completed = order.with_status(OrderStatus.COMPLETED)
        assert admin_set_status(completed, OrderStatus.PROCESSING).status == OrderStatus.PROCESSING
        assert admin_set_status(order, OrderStatus.COMPLETED).status == OrderStatus.COMPLETED

    def test_admin_override_strict_terminal(self, order):
        cancelled = order.with_status(OrderStatus.CANCELLED)
        with pytest.raises(IllegalStatusTransitionError):
            admin_set_status(cancelled, OrderStatus.PENDING, strict_terminal=True)
        # Non-terminal orders still move freely.
        assert admin_set_status(order, OrderStatus.COMPLETED, strict_terminal=True).status == OrderStatus.COMPLETED

    def test_admin_same_status_is_noop(self, order):
        assert admin_set_status(order, OrderStatus.PENDING) is order
