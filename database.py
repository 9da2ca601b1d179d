"""
Data access

Two stores with the same surface:

- MongoStore talks to MongoDB through pymongo. Multi-document transactions
  need a replica set or sharded cluster.
- MemoryStore keeps everything in process. Transactions are serialized on a
  single lock, which is enough for tests and local development. It is only
  used when DATABASE_URL is "memory://".

Both hand out plain dicts shaped like the Mongo documents (``_id`` is an
ObjectId). ``run_transaction(callback)`` calls ``callback(tx)`` inside one
atomic unit of work: if the callback raises, nothing it wrote survives.

The store is created once per process (see ``connect_store``), passed to the
request handlers through the app state and closed at shutdown.
"""
import copy
import functools
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from errors import PersistenceError
from settings import Settings

logger = logging.getLogger(__name__)

PRODUCTS = "product"
ORDERS = "order"

# -----------------
# Utility helpers
# -----------------

def now() -> datetime:
    return datetime.now(timezone.utc)


def object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id string, returning None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def to_public(doc: Optional[Dict[str, Any]]):
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def stamped(data: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(data)
    ts = now()
    doc.setdefault("created_at", ts)
    doc["updated_at"] = ts
    return doc


def created_filter(created_from: Optional[datetime] = None, created_to: Optional[datetime] = None) -> Dict[str, Any]:
    window: Dict[str, Any] = {}
    if created_from is not None:
        window["$gte"] = created_from
    if created_to is not None:
        window["$lte"] = created_to
    return {"created_at": window} if window else {}


def translate_errors(fn):
    """Re-raise driver failures as PersistenceError."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except PyMongoError as exc:
            logger.exception("MongoDB call %s failed", fn.__name__)
            raise PersistenceError(f"Database error: {exc}") from exc
    return wrapper


# -----------------
# MongoDB
# -----------------

class MongoTransaction:
    def __init__(self, db, session):
        self.db = db
        self.session = session

    def get_product(self, product_id: str) -> Optional[dict]:
        oid = object_id(product_id)
        if oid is None:
            return None
        return self.db[PRODUCTS].find_one({"_id": oid}, session=self.session)

    def set_variants(self, product_id: str, variants: List[dict]) -> None:
        self.db[PRODUCTS].update_one(
            {"_id": object_id(product_id)},
            {"$set": {"variants": variants, "updated_at": now()}},
            session=self.session,
        )

    def insert_order(self, order: Dict[str, Any]) -> str:
        result = self.db[ORDERS].insert_one(stamped(order), session=self.session)
        return str(result.inserted_id)


class MongoStore:
    backend = "mongodb"

    def __init__(self, url: Optional[str] = None, name: str = "storefront",
                 transaction_timeout_ms: int = 10000, client: Optional[MongoClient] = None):
        self.client = client if client is not None else MongoClient(url, tz_aware=True)
        self.db = self.client[name]
        self.transaction_timeout_ms = transaction_timeout_ms

    @translate_errors
    def ensure_indexes(self) -> None:
        self.db[ORDERS].create_index([("status", ASCENDING)])
        self.db[ORDERS].create_index([("created_at", DESCENDING)])
        self.db[PRODUCTS].create_index([("category", ASCENDING)])

    @translate_errors
    def describe(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "database_name": self.db.name,
            "collections": self.db.list_collection_names()[:10],
        }

    def close(self) -> None:
        self.client.close()

    @translate_errors
    def run_transaction(self, callback: Callable[[MongoTransaction], Any]) -> Any:
        # with_transaction retries transient errors (write conflicts between
        # concurrent checkouts), so a retried callback re-reads fresh stock.
        with self.client.start_session() as session:
            return session.with_transaction(
                lambda s: callback(MongoTransaction(self.db, s)),
                read_concern=ReadConcern("snapshot"),
                write_concern=WriteConcern("majority"),
                max_commit_time_ms=self.transaction_timeout_ms,
            )

    # Catalog

    @translate_errors
    def insert_product(self, data: Dict[str, Any]) -> str:
        """Seed a catalog document. Catalog editing itself lives in the admin console."""
        result = self.db[PRODUCTS].insert_one(stamped(data))
        return str(result.inserted_id)

    @translate_errors
    def get_product(self, product_id: str) -> Optional[dict]:
        oid = object_id(product_id)
        if oid is None:
            return None
        return self.db[PRODUCTS].find_one({"_id": oid})

    @translate_errors
    def list_products(self, query: Dict[str, Any], limit: int = 60) -> List[dict]:
        return list(self.db[PRODUCTS].find(query).sort("created_at", DESCENDING).limit(limit))

    @translate_errors
    def count_products(self) -> int:
        return self.db[PRODUCTS].count_documents({})

    @translate_errors
    def product_images(self, product_ids: Iterable[str]) -> Dict[str, str]:
        ids = [oid for oid in (object_id(p) for p in product_ids) if oid is not None]
        images = {}
        for doc in self.db[PRODUCTS].find({"_id": {"$in": ids}}, {"images": 1}):
            if doc.get("images"):
                images[str(doc["_id"])] = doc["images"][0]
        return images

    # Orders

    @translate_errors
    def get_order(self, order_id: str) -> Optional[dict]:
        oid = object_id(order_id)
        if oid is None:
            return None
        return self.db[ORDERS].find_one({"_id": oid})

    @translate_errors
    def set_order_status(self, order_id: str, status: str) -> Optional[dict]:
        oid = object_id(order_id)
        if oid is None:
            return None
        return self.db[ORDERS].find_one_and_update(
            {"_id": oid},
            {"$set": {"status": status, "updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )

    @translate_errors
    def list_orders(self, created_from: Optional[datetime] = None, created_to: Optional[datetime] = None,
                    skip: int = 0, limit: int = 20) -> List[dict]:
        cursor = self.db[ORDERS].find(created_filter(created_from, created_to))
        return list(cursor.sort("created_at", DESCENDING).skip(skip).limit(limit))

    @translate_errors
    def count_orders(self, status: Optional[str] = None, created_from: Optional[datetime] = None,
                     created_to: Optional[datetime] = None) -> int:
        query = created_filter(created_from, created_to)
        if status is not None:
            query["status"] = status
        return self.db[ORDERS].count_documents(query)


# -----------------
# In-memory
# -----------------

def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, expected in query.items():
        if key == "created_at":
            created = doc.get("created_at")
            if "$gte" in expected and created < expected["$gte"]:
                return False
            if "$lte" in expected and created > expected["$lte"]:
                return False
        elif doc.get(key) != expected:
            return False
    return True


class MemoryTransaction:
    """Buffers writes until the owning store applies them."""

    def __init__(self, collections: Dict[str, Dict[ObjectId, dict]]):
        self._collections = collections
        self._writes: Dict[str, Dict[ObjectId, dict]] = {PRODUCTS: {}, ORDERS: {}}

    def _read(self, collection: str, oid: ObjectId) -> Optional[dict]:
        doc = self._writes[collection].get(oid) or self._collections[collection].get(oid)
        return copy.deepcopy(doc)

    def get_product(self, product_id: str) -> Optional[dict]:
        oid = object_id(product_id)
        if oid is None:
            return None
        return self._read(PRODUCTS, oid)

    def set_variants(self, product_id: str, variants: List[dict]) -> None:
        oid = object_id(product_id)
        doc = self._read(PRODUCTS, oid)
        doc["variants"] = copy.deepcopy(variants)
        doc["updated_at"] = now()
        self._writes[PRODUCTS][oid] = doc

    def insert_order(self, order: Dict[str, Any]) -> str:
        doc = stamped(copy.deepcopy(order))
        doc["_id"] = ObjectId()
        self._writes[ORDERS][doc["_id"]] = doc
        return str(doc["_id"])

    def apply(self) -> None:
        for collection, docs in self._writes.items():
            self._collections[collection].update(docs)


class MemoryStore:
    backend = "memory"

    def __init__(self, transaction_timeout_ms: int = 10000):
        self.transaction_timeout_ms = transaction_timeout_ms
        self._collections: Dict[str, Dict[ObjectId, dict]] = {PRODUCTS: {}, ORDERS: {}}
        self._lock = threading.RLock()

    @contextmanager
    def _locked(self):
        if not self._lock.acquire(timeout=self.transaction_timeout_ms / 1000):
            raise PersistenceError("Timed out waiting for a transaction to finish")
        try:
            yield
        finally:
            self._lock.release()

    def describe(self) -> Dict[str, Any]:
        with self._locked():
            names = [name for name, docs in self._collections.items() if docs]
        return {"backend": self.backend, "database_name": None, "collections": names}

    def close(self) -> None:
        pass

    def run_transaction(self, callback: Callable[[MemoryTransaction], Any]) -> Any:
        with self._locked():
            tx = MemoryTransaction(self._collections)
            result = callback(tx)
            tx.apply()
            return result

    def _get(self, collection: str, doc_id: str) -> Optional[dict]:
        oid = object_id(doc_id)
        if oid is None:
            return None
        with self._locked():
            return copy.deepcopy(self._collections[collection].get(oid))

    def _find(self, collection: str, query: Dict[str, Any]) -> List[dict]:
        with self._locked():
            docs = [d for d in self._collections[collection].values() if _matches(d, query)]
            docs = copy.deepcopy(list(reversed(docs)))
        return sorted(docs, key=lambda d: d["created_at"], reverse=True)

    # Catalog

    def insert_product(self, data: Dict[str, Any]) -> str:
        """Seed a catalog document (tests, local development)."""
        doc = stamped(copy.deepcopy(data))
        doc["_id"] = ObjectId()
        with self._locked():
            self._collections[PRODUCTS][doc["_id"]] = doc
        return str(doc["_id"])

    def get_product(self, product_id: str) -> Optional[dict]:
        return self._get(PRODUCTS, product_id)

    def list_products(self, query: Dict[str, Any], limit: int = 60) -> List[dict]:
        return self._find(PRODUCTS, query)[:limit]

    def update_product(self, product_id: str, fields: Dict[str, Any]) -> bool:
        """Edit a seeded product in place, e.g. to reprice it in a test."""
        oid = object_id(product_id)
        with self._locked():
            doc = self._collections[PRODUCTS].get(oid)
            if doc is None:
                return False
            doc.update(copy.deepcopy(fields))
            doc["updated_at"] = now()
            return True

    def count_products(self) -> int:
        with self._locked():
            return len(self._collections[PRODUCTS])

    def product_images(self, product_ids: Iterable[str]) -> Dict[str, str]:
        images = {}
        for product_id in set(product_ids):
            doc = self.get_product(product_id)
            if doc and doc.get("images"):
                images[str(doc["_id"])] = doc["images"][0]
        return images

    # Orders

    def get_order(self, order_id: str) -> Optional[dict]:
        return self._get(ORDERS, order_id)

    def set_order_status(self, order_id: str, status: str) -> Optional[dict]:
        oid = object_id(order_id)
        if oid is None:
            return None
        with self._locked():
            doc = self._collections[ORDERS].get(oid)
            if doc is None:
                return None
            doc["status"] = status
            doc["updated_at"] = now()
            return copy.deepcopy(doc)

    def list_orders(self, created_from: Optional[datetime] = None, created_to: Optional[datetime] = None,
                    skip: int = 0, limit: int = 20) -> List[dict]:
        return self._find(ORDERS, created_filter(created_from, created_to))[skip:skip + limit]

    def count_orders(self, status: Optional[str] = None, created_from: Optional[datetime] = None,
                     created_to: Optional[datetime] = None) -> int:
        query = created_filter(created_from, created_to)
        if status is not None:
            query["status"] = status
        return len(self._find(ORDERS, query))


MEMORY_URL = "memory://"


def connect_store(settings: Settings):
    """Open the configured store, or return None when no database is configured.

    ``DATABASE_URL=memory://`` selects the in-process store. It does not
    survive a restart and is not shared between workers, so it is for local
    development only.
    """
    if not settings.database_url:
        logger.error("DATABASE_URL not set, database endpoints will answer 500")
        return None
    if settings.database_url == MEMORY_URL:
        logger.warning("Using the in-memory store, data is lost on restart")
        return MemoryStore(settings.transaction_timeout_ms)
    store = MongoStore(settings.database_url, settings.database_name, settings.transaction_timeout_ms)
    store.ensure_indexes()
    logger.info("Using MongoDB database %s", settings.database_name)
    return store
