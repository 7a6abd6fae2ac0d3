"""
Tests for the catalog snapshot.
"""

from decimal import Decimal

from src.storefront.catalog import DEFAULT_CITY, JORDAN_CITIES, SEED_PRODUCTS, Catalog
from src.storefront.models import Category


class TestCatalogLookup:
    def test_get_by_id(self, catalog):
        assert catalog.get("v1").name.en == "Local Baladi Tomatoes"
        assert catalog.get(" v1 ") is not None
        assert catalog.get("missing") is None
        assert catalog.get(None) is None

    def test_preserves_fetch_order(self):
        catalog = Catalog(reversed(SEED_PRODUCTS))
        assert [p.id for p in catalog][0] == SEED_PRODUCTS[-1].id

    def test_deals(self, catalog):
        assert {p.id for p in catalog.deals()} == {"v1", "f1", "o1"}

    def test_by_category(self, catalog):
        assert {p.id for p in catalog.by_category(Category.VEGETABLES)} == {"v1", "v2", "v6"}
        assert {p.id for p in catalog.by_category("fruits")} == {"f1", "f3"}

    def test_organic_aisle_includes_organic_flag(self, catalog):
        assert {p.id for p in catalog.by_category(Category.ORGANIC)} == {"o2", "o3"}


class TestSearch:
    def test_english_case_insensitive(self, catalog):
        assert [p.id for p in catalog.search("TOMATO")] == ["v1"]

    def test_arabic_letter_variants(self, catalog):
        # "زيت زيتون" typed without hamza variants still matches.
        assert catalog.search("زيت")[0].id == "o3"
        assert catalog.search("تفاح")[0].id == "f3"

    def test_empty_query_returns_all(self, catalog):
        assert len(catalog.search("")) == len(SEED_PRODUCTS)

    def test_limit(self, catalog):
        assert len(catalog.search("", limit=3)) == 3

    def test_no_match(self, catalog):
        assert catalog.search("pineapple") == []


def test_prompt_lines_use_active_price(catalog):
    lines = catalog.to_prompt_lines(currency="JD")
    tomato = next(line for line in lines if "id=v1" in line)

    assert "0.65 JD per KG (deal)" in tomato
    assert "بندورة بلدية" in tomato


def test_cities():
    assert DEFAULT_CITY == "Amman"
    assert JORDAN_CITIES[0].get("ar") == "عمان"
    assert len({c.en for c in JORDAN_CITIES}) == len(JORDAN_CITIES)


def test_seed_prices_positive():
    assert all(p.price > Decimal("0") for p in SEED_PRODUCTS)
