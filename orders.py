"""
Order placement and fulfillment

place_order is the only code path that takes stock out of the catalog. It runs
in two passes:

1. a pre-validation pass over plain reads, which rejects carts that obviously
   cannot be filled and prices the order;
2. a transactional pass that re-reads every product inside the store
   transaction, re-checks the same conditions, deducts the stock and inserts
   the order.

The second pass is the one that counts. Stock may have moved between the two
and only the transaction sees a consistent view. If anything in it raises, the
store discards every write made inside it.

Lines that repeat the same (product, color, size) stay separate in the order,
but both passes check each one against the stock left after the earlier lines
of the cart, so a cart can never take more than exists.
"""
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from database import object_id, to_public
from errors import InvalidRequest, OrderNotFound, PersistenceError, VerificationFailed
from inventory import Claims, check_line, find_stock
from schemas import ORDER_STATUSES, Customer, LineItem, Order
from verification import VerificationResult

logger = logging.getLogger(__name__)

REQUIRED_CUSTOMER_FIELDS = ("name", "phone", "address", "city", "state", "pincode")


def product_key(item: LineItem) -> str:
    oid = object_id(item.product_id)
    return str(oid) if oid is not None else item.product_id


@dataclass
class PlacedOrder:
    id: str
    total_amount: float


# -----------------
# Input checks
# -----------------

def check_items(items: Sequence[LineItem]) -> None:
    if not items:
        raise InvalidRequest("Items are required")
    for position, item in enumerate(items, start=1):
        quantity = item.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidRequest(f"Invalid quantity for item {position}: must be a positive integer")


def check_customer(customer: Optional[Customer]) -> None:
    if customer is None or any(not (getattr(customer, f, None) or "").strip() for f in REQUIRED_CUSTOMER_FIELDS):
        raise InvalidRequest("Customer information is incomplete")


# -----------------
# The two passes
# -----------------

def validate_cart(get_product, items: Sequence[LineItem]) -> Tuple[List[Dict[str, Any]], float]:
    """Check every line against current stock and snapshot it for the order.

    Titles and prices are captured here and are not read again later.
    """
    claims = Claims()
    snapshot = []
    total = 0.0
    for item in items:
        key = product_key(item)
        match = check_line(get_product, item.product_id, item.color, item.size, item.quantity,
                           claims.get(key, item.color, item.size))
        claims.add(key, item.color, item.size, item.quantity)
        total += match.price * item.quantity
        snapshot.append({
            "product_id": str(match.product["_id"]),
            "title": match.title,
            "price": match.price,
            "quantity": item.quantity,
            "color": item.color,
            "size": item.size,
        })
    return snapshot, round(total, 2)


def deduct_stock(tx, items: Sequence[LineItem]) -> None:
    """Re-validate every line inside ``tx`` and then take the stock."""
    claims = Claims()
    products: Dict[str, dict] = {}
    for item in items:
        key = product_key(item)
        match = check_line(tx.get_product, item.product_id, item.color, item.size, item.quantity,
                           claims.get(key, item.color, item.size))
        claims.add(key, item.color, item.size, item.quantity)
        products.setdefault(key, match.product)

    for item in items:
        product = products[product_key(item)]
        match = find_stock(product, item.product_id, item.color, item.size)
        product["variants"][match.variant_index]["sizes"][match.size_index]["stock"] = match.stock - item.quantity

    for product_id, product in products.items():
        tx.set_variants(product_id, product["variants"])


def place_order(store, items: Sequence[LineItem], customer: Customer,
                verifier=None, token: Optional[str] = None) -> PlacedOrder:
    """Validate a cart, take the stock and persist the order atomically.

    Raises InvalidRequest or VerificationFailed before touching the store,
    an InventoryError subclass when a line cannot be filled (in either pass),
    and PersistenceError when the store cannot commit. Only a successful
    commit returns.
    """
    if verifier is not None and verifier.verify(token) is VerificationResult.FAILED:
        raise VerificationFailed("reCAPTCHA verification failed")
    check_items(items)
    check_customer(customer)

    snapshot, total_amount = validate_cart(store.get_product, items)
    order = {
        "items": snapshot,
        "customer": customer.model_dump(),
        "total_amount": total_amount,
        "status": "Pending",
    }

    def commit(tx):
        deduct_stock(tx, items)
        return tx.insert_order(order)

    order_id = store.run_transaction(commit)
    logger.info("Order %s placed: %d line(s), total %.2f", order_id, len(snapshot), total_amount)
    return PlacedOrder(id=order_id, total_amount=total_amount)


# -----------------
# Fulfillment
# -----------------

def public_order(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc = to_public(doc)
    try:
        out = Order.model_validate(doc).model_dump(mode="json", by_alias=True)
    except ValidationError as exc:
        logger.error("Stored order %s does not match the schema: %s", doc["id"], exc)
        raise PersistenceError(f"Stored order {doc['id']} is malformed") from exc
    out["id"] = doc["id"]
    return out


def get_order(store, order_id: str) -> Dict[str, Any]:
    doc = store.get_order(order_id)
    if doc is None:
        raise OrderNotFound(order_id)
    return public_order(doc)


def update_order_status(store, order_id: str, status: Any) -> Dict[str, Any]:
    # Any listed status may follow any other, including moving back from Delivered.
    if status not in ORDER_STATUSES:
        raise InvalidRequest("Invalid status")
    doc = store.set_order_status(order_id, status)
    if doc is None:
        raise OrderNotFound(order_id)
    logger.info("Order %s set to %s", order_id, status)
    return public_order(doc)


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    return (datetime.combine(day, time.min, tzinfo=timezone.utc),
            datetime.combine(day, time.max, tzinfo=timezone.utc))


def list_orders(store, page: int = 1, limit: int = 20, day: Optional[date] = None,
                start_date: Optional[date] = None, end_date: Optional[date] = None) -> Dict[str, Any]:
    """Newest orders first, one page at a time, each item with its product image.

    A start/end range wins over a single ``day`` when both are given.
    """
    created_from = created_to = None
    if day is not None:
        created_from, created_to = day_bounds(day)
    if start_date is not None and end_date is not None:
        created_from, created_to = day_bounds(start_date)[0], day_bounds(end_date)[1]

    docs = store.list_orders(created_from, created_to, skip=(page - 1) * limit, limit=limit)
    total = store.count_orders(created_from=created_from, created_to=created_to)

    orders = [public_order(d) for d in docs]
    images = store.product_images({item["productId"] for o in orders for item in o["items"]})
    for o in orders:
        for item in o["items"]:
            item["image"] = images.get(item["productId"])

    return {
        "orders": orders,
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
    }


def order_stats(store) -> Dict[str, int]:
    return {
        "totalOrders": store.count_orders(),
        "pendingOrders": store.count_orders(status="Pending"),
        "totalProducts": store.count_products(),
    }
