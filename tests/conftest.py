import pytest
from fastapi.testclient import TestClient

from database import MemoryStore
from main import create_app
from schemas import Customer, LineItem
from settings import Settings
from verification import VerificationResult

ADMIN_TOKEN = "test-admin-token"

CUSTOMER = {
    "name": "Asha Rao",
    "phone": "9876543210",
    "email": "asha.rao@gmail.com",
    "address": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}


class StubVerifier:
    def __init__(self, result=VerificationResult.PASSED):
        self.result = result
        self.tokens = []

    def verify(self, token):
        self.tokens.append(token)
        if not token:
            return VerificationResult.SKIPPED
        return self.result


def stock_of(store, product_id, color, size):
    product = store.get_product(product_id)
    for variant in product["variants"]:
        if variant["color"] == color:
            for entry in variant["sizes"]:
                if entry["size"] == size:
                    return entry["stock"]
    raise AssertionError(f"no stock entry for {color}/{size}")


def line(product_id, color, size, quantity):
    return LineItem(product_id=product_id, color=color, size=size, quantity=quantity)


@pytest.fixture
def store():
    return MemoryStore(transaction_timeout_ms=2000)


@pytest.fixture
def shirt(store):
    return store.insert_product({
        "title": "Linen Shirt",
        "description": "Relaxed fit linen shirt",
        "price": 100.0,
        "category": "Shirts",
        "images": ["https://cdn.example.com/linen-shirt.jpg"],
        "variants": [
            {"color": "Red", "sizes": [{"size": "M", "stock": 3}, {"size": "L", "stock": 5}]},
            {"color": "Blue", "sizes": [{"size": "M", "stock": 1}]},
        ],
    })


@pytest.fixture
def socks(store):
    return store.insert_product({
        "title": "Cotton Socks",
        "description": "Pack of three",
        "price": 50.0,
        "category": "Accessories",
        "variants": [{"color": "Black", "sizes": [{"size": "Free", "stock": 10}]}],
    })


@pytest.fixture
def customer():
    return Customer(**CUSTOMER)


@pytest.fixture
def verifier():
    return StubVerifier()


@pytest.fixture
def client(store, verifier):
    app = create_app(store=store, verifier=verifier, settings=Settings(admin_token=ADMIN_TOKEN))
    return TestClient(app)


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}
