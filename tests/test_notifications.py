"""
Tests for auto-dismissing notices.
"""

import asyncio

import pytest

from src.storefront.notifications import NotificationCenter


class TestNotificationCenter:
    @pytest.mark.asyncio
    async def test_notice_dismisses_itself(self):
        seen = []
        center = NotificationCenter(ttl=0.01, on_change=lambda active: seen.append(len(active)))

        center.show("Added to basket")
        assert [n.message for n in center.active] == ["Added to basket"]

        await asyncio.sleep(0.05)

        assert center.active == []
        assert seen == [1, 0]

    @pytest.mark.asyncio
    async def test_notices_stack(self):
        center = NotificationCenter(ttl=10)
        first = center.show("one")
        center.show("two")

        center.dismiss(first.id)

        assert [n.message for n in center.active] == ["two"]
        center.clear()

    @pytest.mark.asyncio
    async def test_clear_cancels_timers(self):
        center = NotificationCenter(ttl=10)
        center.show("one")
        center.show("two", ttl=20)

        center.clear()

        assert center.active == []
        assert center._timers == {}

    @pytest.mark.asyncio
    async def test_failing_listener(self):
        def boom(_active):
            raise RuntimeError("ui gone")

        center = NotificationCenter(ttl=10, on_change=boom)
        center.show("one")
        center.clear()
        assert center.active == []

    def test_dismiss_unknown_is_noop(self):
        NotificationCenter().dismiss(42)
