"""
Pytest configuration and fixtures.
"""

import pytest
import os
from decimal import Decimal
from unittest.mock import patch


@pytest.fixture(autouse=True)
def mock_env_vars(tmp_path):
    """Mock environment variables for tests."""
    env_vars = {
        "PUBLIC_HOST": "shop.test",
        "PORT": "7860",
        "LOG_LEVEL": "DEBUG",
        "DEFAULT_LANGUAGE": "ar",
        "SUPABASE_URL": "https://backend.test",
        "SUPABASE_ANON_KEY": "test_anon_key",
        "GEMINI_API_KEY": "",
        "API_KEY": "",
        "WHATSAPP_NUMBER": "962790801695",
        "ADMIN_PHONE": "790000000",
        "DEFAULT_ADMIN_PIN": "123456",
        "STRICT_TERMINAL_STATUSES": "false",
        "SESSION_DIR": str(tmp_path / "sessions"),
    }

    with patch.dict(os.environ, env_vars):
        # Clear config cache
        from src.storefront.config import get_config
        get_config.cache_clear()
        yield
        get_config.cache_clear()


@pytest.fixture
def config():
    from src.storefront.config import get_config
    return get_config()


@pytest.fixture
def tomatoes():
    """Deal product: 0.85 list, 0.65 discounted."""
    from src.storefront.models import Category, LocalizedString, Product
    return Product(
        id="v1",
        name=LocalizedString(en="Local Baladi Tomatoes", ar="بندورة بلدية"),
        category=Category.VEGETABLES,
        price=Decimal("0.85"),
        discount_price=Decimal("0.65"),
    )


@pytest.fixture
def oranges():
    """No active deal: 1.10 list."""
    from src.storefront.models import Category, LocalizedString, Product
    return Product(
        id="f9",
        name=LocalizedString(en="Jaffa Oranges", ar="برتقال يافا"),
        category=Category.FRUITS,
        price=Decimal("1.10"),
    )


@pytest.fixture
def catalog():
    from src.storefront.catalog import SEED_PRODUCTS, Catalog
    return Catalog(SEED_PRODUCTS)


@pytest.fixture
def memory_store():
    from src.storefront.catalog import SEED_PRODUCTS
    from src.storefront.persistence import MemoryStore
    return MemoryStore(SEED_PRODUCTS)


@pytest.fixture
def session():
    from src.storefront.session import MemorySessionStore, ShopSession
    return ShopSession("test-session", MemorySessionStore()).load()
