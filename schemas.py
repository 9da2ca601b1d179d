"""
Database Schemas for the clothing storefront

Each Pydantic model corresponds to a MongoDB collection (lowercased class name).
Embedded documents (variants, sizes, order items, customer) live inside their
parent document. JSON on the wire is camelCase; Python attributes are snake_case.
"""
from __future__ import annotations
from datetime import datetime
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import List, Optional, Literal

OrderStatus = Literal["Pending", "Confirmed", "Packed", "Shipped", "Delivered"]
ORDER_STATUSES = ("Pending", "Confirmed", "Packed", "Shipped", "Delivered")

# A category is referenced by its name, not by id. Renaming a category does
# not rewrite the products that carry the old name.
CategoryName = str


class Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------
# Catalog
# -----------------------------
class SizeStock(Document):
    size: str
    stock: int = Field(..., ge=0)

class ProductVariant(Document):
    color: str
    sizes: List[SizeStock] = Field(..., min_length=1)

class Product(Document):
    title: str
    description: str = ""
    price: float = Field(..., ge=0)
    category: CategoryName
    subcategory: Optional[str] = None
    images: List[str] = []
    variants: List[ProductVariant] = []
    slug: Optional[str] = None

# -----------------------------
# Orders / Checkout
# -----------------------------
class OrderItem(Document):
    """Snapshot of a line item taken when the order was placed."""
    product_id: str
    title: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    color: str
    size: str

class Customer(Document):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

class Order(Document):
    items: List[OrderItem]
    customer: Customer
    total_amount: float = Field(..., ge=0)
    status: OrderStatus = "Pending"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

# -----------------------------
# Request payloads
# -----------------------------
class LineItem(Document):
    product_id: str
    quantity: int = Field(..., gt=0, strict=True)
    color: str
    size: str

class CheckoutPayload(Document):
    items: List[LineItem] = Field(..., min_length=1)
    customer: Customer
    verification_token: Optional[str] = None
    recaptcha_token: Optional[str] = None

    @property
    def token(self) -> Optional[str]:
        return self.verification_token or self.recaptcha_token

class StatusPayload(Document):
    status: str
