"""
Inventory lookup and validation

Resolves a requested (product, color, size, quantity) against a product
document and either returns where the stock lives or raises the matching
InventoryError. Nothing here writes; callers decide whether the product came
from a plain read or from inside a transaction.
"""
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from errors import InsufficientStock, ProductNotFound, SizeNotFound, VariantNotFound

StockKey = Tuple[str, str, str]


@dataclass
class StockMatch:
    product: dict
    variant_index: int
    size_index: int
    stock: int

    @property
    def title(self) -> str:
        return self.product.get("title", "")

    @property
    def price(self) -> float:
        return float(self.product.get("price", 0))


def find_stock(product: Optional[dict], product_id: str, color: str, size: str) -> StockMatch:
    """Locate the (color, size) entry on a product. The first match wins."""
    if not product:
        raise ProductNotFound(product_id)
    title = product.get("title", "")
    variants = product.get("variants") or []
    v_index = next((i for i, v in enumerate(variants) if v.get("color") == color), None)
    if v_index is None:
        raise VariantNotFound(title, color)
    sizes = variants[v_index].get("sizes") or []
    s_index = next((i for i, s in enumerate(sizes) if s.get("size") == size), None)
    if s_index is None:
        raise SizeNotFound(title, color, size)
    return StockMatch(product, v_index, s_index, int(sizes[s_index].get("stock", 0)))


def check_line(get_product: Callable[[str], Optional[dict]], product_id: str, color: str, size: str,
               quantity: int, claimed: int = 0) -> StockMatch:
    """Fetch the product and check that ``quantity`` units are still free.

    ``claimed`` is what earlier lines of the same cart already took from this
    (product, color, size); the available amount reported on failure excludes it.
    """
    match = find_stock(get_product(product_id), product_id, color, size)
    available = match.stock - claimed
    if available < quantity:
        raise InsufficientStock(match.title, color, size, max(available, 0))
    return match


class Claims:
    """Running per-(product, color, size) demand within one cart."""

    def __init__(self):
        self._claimed: Dict[StockKey, int] = {}

    def get(self, product_id: str, color: str, size: str) -> int:
        return self._claimed.get((product_id, color, size), 0)

    def add(self, product_id: str, color: str, size: str, quantity: int) -> None:
        key = (product_id, color, size)
        self._claimed[key] = self._claimed.get(key, 0) + quantity
