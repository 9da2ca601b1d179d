import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import require_admin
from database import connect_store, to_public
from errors import PersistenceError, StorefrontError
from inventory import find_stock
from orders import get_order, list_orders, order_stats, place_order, update_order_status
from schemas import CheckoutPayload, Product, StatusPayload
from settings import Settings, load_settings
from verification import RecaptchaVerifier

logger = logging.getLogger(__name__)


def create_app(store=None, verifier=None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    owns_verifier = verifier is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_store = app.state.store is None
        if owns_store:
            app.state.store = connect_store(settings)
        yield
        if owns_store and app.state.store is not None:
            app.state.store.close()
            app.state.store = None
        if owns_verifier:
            app.state.verifier.close()

    app = FastAPI(title="Storefront Orders API", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.verifier = verifier if verifier is not None else RecaptchaVerifier(
        settings.recaptcha_secret_key, settings.recaptcha_verify_url)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    register_routes(app)
    return app


# -----------------
# Utility helpers
# -----------------

def get_store(request: Request):
    store = request.app.state.store
    if store is None:
        raise PersistenceError("Database not configured")
    return store


def get_verifier(request: Request):
    return request.app.state.verifier


def public_product(doc: dict) -> dict:
    doc = to_public(doc)
    try:
        out = Product.model_validate(doc).model_dump(mode="json", by_alias=True)
    except ValidationError as exc:
        logger.error("Stored product %s does not match the schema: %s", doc["id"], exc)
        raise PersistenceError(f"Stored product {doc['id']} is malformed") from exc
    out["id"] = doc["id"]
    return out


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StorefrontError)
    async def storefront_error(request: Request, exc: StorefrontError):
        if exc.status_code < 500:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        details = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
        return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


def register_routes(app: FastAPI) -> None:
    @app.get("/")
    def root():
        return {"name": "Storefront Orders API", "status": "ok"}

    @app.get("/test")
    def test_database(request: Request):
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_name": None,
            "connection_status": "Not Connected",
            "collections": [],
        }
        store = request.app.state.store
        if store is None:
            response["database"] = "⚠️  Available but not initialized"
            return response
        try:
            info = store.describe()
            response["database"] = f"✅ Connected & Working ({info['backend']})"
            response["database_name"] = info["database_name"]
            response["connection_status"] = "Connected"
            response["collections"] = info["collections"]
        except StorefrontError as e:
            response["database"] = f"❌ Error: {e.message[:50]}"
        return response

    # -----------------
    # Catalog
    # -----------------
    @app.get("/api/products")
    def list_products(category: Optional[str] = None, subcategory: Optional[str] = None,
                      limit: int = Query(60, ge=1, le=100), store=Depends(get_store)):
        query = {}
        if category:
            query["category"] = category
        if subcategory:
            query["subcategory"] = subcategory
        return [public_product(d) for d in store.list_products(query, limit=limit)]

    @app.get("/api/products/{product_id}")
    def get_product(product_id: str, store=Depends(get_store)):
        doc = store.get_product(product_id)
        if not doc:
            raise HTTPException(status_code=404, detail="Product not found")
        return public_product(doc)

    @app.get("/api/products/{product_id}/stock")
    def product_stock(product_id: str, color: str, size: str, quantity: int = Query(1, ge=1),
                      store=Depends(get_store)):
        match = find_stock(store.get_product(product_id), product_id, color, size)
        return {"available": match.stock, "inStock": match.stock >= quantity}

    # -----------------
    # Checkout / Orders
    # -----------------
    @app.post("/api/orders", status_code=201)
    def create_order(payload: CheckoutPayload, store=Depends(get_store), verifier=Depends(get_verifier)):
        try:
            placed = place_order(store, payload.items, payload.customer, verifier=verifier, token=payload.token)
        except StorefrontError:
            raise
        except Exception as exc:
            logger.exception("Error creating order")
            raise PersistenceError("Failed to create order") from exc
        return {"order": {"id": placed.id, "totalAmount": placed.total_amount}}

    @app.get("/api/orders/{order_id}", dependencies=[Depends(require_admin)])
    def read_order(order_id: str, store=Depends(get_store)):
        return {"order": get_order(store, order_id)}

    @app.put("/api/orders/{order_id}", dependencies=[Depends(require_admin)])
    def set_order_status(order_id: str, payload: StatusPayload, store=Depends(get_store)):
        return {"order": update_order_status(store, order_id, payload.status)}

    # -----------------
    # Admin
    # -----------------
    @app.get("/api/admin/orders", dependencies=[Depends(require_admin)])
    def admin_orders(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                     day: Optional[date] = Query(None, alias="date"),
                     start_date: Optional[date] = Query(None, alias="startDate"),
                     end_date: Optional[date] = Query(None, alias="endDate"),
                     store=Depends(get_store)):
        return list_orders(store, page=page, limit=limit, day=day, start_date=start_date, end_date=end_date)

    @app.get("/api/admin/stats", dependencies=[Depends(require_admin)])
    def admin_stats(store=Depends(get_store)):
        return order_stats(store)


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
