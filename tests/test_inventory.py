"""Inventory lookup: resolving (product, color, size) and checking stock."""
import pytest

from errors import InsufficientStock, ProductNotFound, SizeNotFound, VariantNotFound
from inventory import Claims, check_line, find_stock


def test_find_stock(store, shirt):
    match = find_stock(store.get_product(shirt), shirt, "Red", "L")
    assert match.stock == 5
    assert match.title == "Linen Shirt"
    assert match.price == 100.0
    assert (match.variant_index, match.size_index) == (0, 1)


def test_missing_product(store):
    with pytest.raises(ProductNotFound, match="Product abc not found"):
        check_line(store.get_product, "abc", "Red", "M", 1)


def test_missing_color(store, shirt):
    with pytest.raises(VariantNotFound, match="Green"):
        check_line(store.get_product, shirt, "Green", "M", 1)


def test_missing_size(store, shirt):
    with pytest.raises(SizeNotFound, match="Size XL not available for Linen Shirt"):
        check_line(store.get_product, shirt, "Blue", "XL", 1)


def test_insufficient_stock_reports_available(store, shirt):
    with pytest.raises(InsufficientStock) as exc:
        check_line(store.get_product, shirt, "Red", "M", 4)
    assert exc.value.available == 3
    assert "Available: 3" in str(exc.value)


def test_exact_stock_is_enough(store, shirt):
    assert check_line(store.get_product, shirt, "Red", "M", 3).stock == 3


def test_claimed_units_reduce_availability(store, shirt):
    with pytest.raises(InsufficientStock) as exc:
        check_line(store.get_product, shirt, "Red", "M", 2, claimed=2)
    assert exc.value.available == 1


def test_first_matching_variant_wins():
    product = {
        "_id": "p1",
        "title": "Tee",
        "variants": [
            {"color": "Red", "sizes": [{"size": "M", "stock": 2}]},
            {"color": "Red", "sizes": [{"size": "M", "stock": 9}]},
        ],
    }
    assert find_stock(product, "p1", "Red", "M").stock == 2


def test_lookup_is_read_only(store, shirt):
    check_line(store.get_product, shirt, "Red", "M", 2)
    assert store.get_product(shirt)["variants"][0]["sizes"][0]["stock"] == 3


def test_claims_accumulate_per_key():
    claims = Claims()
    claims.add("p1", "Red", "M", 2)
    claims.add("p1", "Red", "M", 1)
    claims.add("p1", "Red", "L", 4)
    assert claims.get("p1", "Red", "M") == 3
    assert claims.get("p1", "Red", "L") == 4
    assert claims.get("p2", "Red", "M") == 0
