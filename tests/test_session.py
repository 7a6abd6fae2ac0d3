"""
Tests for per-shopper session persistence.
"""

import json
from decimal import Decimal

import pytest

from src.storefront.models import Role, User
from src.storefront.session import (
    FileSessionStore,
    MemorySessionStore,
    ShopSession,
    is_valid_session_id,
)


@pytest.mark.parametrize("session_id, valid", [
    ("abc-123_X", True),
    ("", False),
    ("../etc/passwd", False),
    ("a" * 65, False),
])
def test_session_id_validation(session_id, valid):
    assert is_valid_session_id(session_id) is valid


class TestShopSession:
    def test_cart_mutations_are_persisted(self, tomatoes):
        store = MemorySessionStore()
        session = ShopSession("s1", store).load()
        session.cart.add(tomatoes, "1.5")

        restored = ShopSession("s1", store).load()
        assert restored.cart.get("v1").quantity == Decimal("1.5")

    def test_restored_cart_keeps_persisting(self, tomatoes):
        store = MemorySessionStore()
        ShopSession("s1", store).load().cart.add(tomatoes)

        restored = ShopSession("s1", store).load()
        restored.cart.update_quantity("v1", 4)

        assert ShopSession("s1", store).load().cart.get("v1").quantity == Decimal("4")

    def test_user_persisted_without_pin(self):
        store = MemorySessionStore()
        session = ShopSession("s1", store).load()
        session.sign_in(User(id="1", phone="712345678", role=Role.ADMIN, pin="123456"))

        assert "pin" not in store.load("s1")["user"]
        restored = ShopSession("s1", store).load()
        assert restored.user.phone == "712345678"
        assert restored.user.is_admin
        assert restored.user.pin is None

    def test_logout_keeps_cart(self, tomatoes):
        store = MemorySessionStore()
        session = ShopSession("s1", store).load()
        session.sign_in(User(phone="712345678"))
        session.cart.add(tomatoes)
        session.logout()

        restored = ShopSession("s1", store).load()
        assert restored.user is None
        assert "v1" in restored.cart

    def test_language(self):
        store = MemorySessionStore()
        session = ShopSession("s1", store).load()
        session.set_language("en")

        assert ShopSession("s1", store).load().language == "en"
        with pytest.raises(ValueError):
            session.set_language("fr")

    def test_malformed_data_is_discarded(self):
        store = MemorySessionStore()
        store.save("s1", {"cart": "oops", "user": {"phone": "712345678", "role": "wizard"}, "language": "xx"})

        session = ShopSession("s1", store, language="en").load()

        assert session.cart.is_empty
        assert session.user is None
        assert session.language == "en"

    def test_failed_save_does_not_raise(self, tomatoes):
        class BrokenStore(MemorySessionStore):
            def save(self, session_id, data):
                raise OSError("read-only")

        session = ShopSession("s1", BrokenStore()).load()
        session.cart.add(tomatoes)
        assert "v1" in session.cart


class TestFileSessionStore:
    def test_round_trip(self, tmp_path, tomatoes):
        store = FileSessionStore(tmp_path / "sessions")
        session = ShopSession("abc", store).load()
        session.cart.add(tomatoes, 2)
        session.close()

        data = json.loads((tmp_path / "sessions" / "abc.json").read_text(encoding="utf-8"))
        assert data["cart"][0]["id"] == "v1"
        assert ShopSession("abc", store).load().cart.get("v1").quantity == Decimal("2")

    def test_missing_file(self, tmp_path):
        assert FileSessionStore(tmp_path).load("nobody") is None

    def test_corrupt_file(self, tmp_path):
        (tmp_path / "bad.json").write_text("{not json", encoding="utf-8")
        assert FileSessionStore(tmp_path).load("bad") is None

    def test_rejects_path_traversal(self, tmp_path):
        with pytest.raises(ValueError):
            FileSessionStore(tmp_path).save("../x", {})
