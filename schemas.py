"""
Database Schemas for the VapeX store

Each top-level Pydantic model maps to a MongoDB collection:
- Product -> "products"
- Order -> "orders"
- Customer -> "customers"
- Banner -> "banners"
- Testimonial -> "testimonials"
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union
from uuid import uuid4
from pydantic import BaseModel, Field, field_validator, model_validator

# Category slug -> stored display name
CATEGORIES: dict[str, str] = {
    "podkits": "PODKITS",
    "disposable": "DISPOSABLE",
    "nic-salts": "NIC & SALTS",
    "accessories": "Accessories",
    "most-selling": "MOST SELLING",
}

OrderStatus = Literal["Pending", "Processing", "Shipped", "Delivered", "Cancelled"]
ORDER_STATUSES: tuple[str, ...] = ("Pending", "Processing", "Shipped", "Delivered", "Cancelled")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_category(value: str) -> str:
    """Accept a category slug or display name, return the display name."""
    key = str(value).strip()
    if key.lower() in CATEGORIES:
        return CATEGORIES[key.lower()]
    for name in CATEGORIES.values():
        if key.lower() == name.lower():
            return name
    raise ValueError(f"Unknown category '{value}'")


class Flavor(BaseModel):
    name: str = Field(..., min_length=1)
    in_stock: bool = True


class Variant(BaseModel):
    name: str = Field(..., min_length=1)
    price: Optional[float] = Field(None, ge=0, description="Overrides the product price")
    stock: Optional[int] = Field(None, ge=0, description="Overrides the product stock")


class Rating(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex, description="Stable key for edits and deletes")
    rating: int = Field(..., ge=1, le=5)
    content: str = ""
    customer_name: str = "Anonymous"
    customer_id: Optional[str] = None
    date: datetime = Field(default_factory=utcnow)
    is_customer_review: bool = False


# Product options: exactly one of these applies to any product

class NoOptions(BaseModel):
    kind: Literal["none"] = "none"


class FlavorsOnly(BaseModel):
    kind: Literal["flavors"] = "flavors"
    flavors: list[Flavor]


class VariantsOnly(BaseModel):
    kind: Literal["variants"] = "variants"
    variants: list[Variant]


ProductOptions = Annotated[Union[NoOptions, FlavorsOnly, VariantsOnly], Field(discriminator="kind")]


class Product(BaseModel):
    """
    Products collection schema
    Collection: "products"
    """
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0, description="Price in INR")
    sale_price: Optional[float] = Field(None, ge=0)
    stock: int = Field(..., ge=0)
    category: str = Field(..., description="Category slug or display name; stored as display name")
    brand: str = Field(..., min_length=1)
    image_url: str = ""
    images: list[str] = Field(default_factory=list)
    flavors: list[Flavor] = Field(default_factory=list)
    variants: list[Variant] = Field(default_factory=list)
    ratings: list[Rating] = Field(default_factory=list)
    featured: bool = False
    most_selling: bool = False

    @field_validator("category")
    @classmethod
    def _known_category(cls, v: str) -> str:
        return normalize_category(v)

    @field_validator("brand")
    @classmethod
    def _strip_brand(cls, v: str) -> str:
        return v.strip()

    @model_validator(mode="after")
    def _check_consistency(self) -> "Product":
        if self.sale_price is not None and self.sale_price >= self.price:
            raise ValueError("sale_price must be less than price")
        if self.flavors and self.variants:
            raise ValueError("a product may offer flavors or variants, not both")
        if len({f.name for f in self.flavors}) != len(self.flavors):
            raise ValueError("duplicate flavor name")
        if len({v.name for v in self.variants}) != len(self.variants):
            raise ValueError("duplicate variant name")
        return self

    @property
    def options(self) -> Union[NoOptions, FlavorsOnly, VariantsOnly]:
        if self.flavors:
            return FlavorsOnly(flavors=self.flavors)
        if self.variants:
            return VariantsOnly(variants=self.variants)
        return NoOptions()


class CatalogProduct(Product):
    """A product as read back from the store."""
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ShippingAddress(BaseModel):
    street: str
    city: str
    state: str
    pincode: str


class OrderUser(BaseModel):
    id: str
    name: str
    email: str
    phone: str
    is_guest: bool = False


class OrderItem(BaseModel):
    """Snapshot of a cart line at submission time."""
    id: str
    name: str
    price: float = Field(..., ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    quantity: int = Field(..., ge=1)
    image_url: str = ""
    flavor: Optional[str] = None
    variant: Optional[str] = None

    @property
    def unit_price(self) -> float:
        return self.sale_price if self.sale_price is not None else self.price


class Order(BaseModel):
    """
    Orders collection schema
    Collection: "orders"
    """
    user: OrderUser
    items: list[OrderItem] = Field(..., min_length=1)
    total: float = Field(..., ge=0)
    status: OrderStatus = "Pending"
    shipping_address: ShippingAddress
    created_at: datetime = Field(default_factory=utcnow)


class Customer(BaseModel):
    name: str = Field(..., min_length=1)
    email: str
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    total_orders: int = Field(0, ge=0)
    total_spent: float = Field(0, ge=0)


class CustomerUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    total_orders: Optional[int] = Field(None, ge=0)
    total_spent: Optional[float] = Field(None, ge=0)


class Banner(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    image_url: str = ""
    link: str = ""
    order: int = 0


class BannerUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    link: Optional[str] = None
    order: Optional[int] = None


class Testimonial(BaseModel):
    customer_name: str = Field(..., min_length=1)
    title: str = ""
    content: str = Field(..., min_length=1)
    rating: int = Field(5, ge=1, le=5)
    location: str = ""
    date: datetime = Field(default_factory=utcnow)


class TestimonialUpdate(BaseModel):
    customer_name: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    location: Optional[str] = None
    date: Optional[datetime] = None
