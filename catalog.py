from __future__ import annotations
import re
from datetime import datetime, timezone
from typing import Any, Optional

from database import BANNERS, PRODUCTS, TESTIMONIALS, DocumentStore
from schemas import CatalogProduct, normalize_category

SORT_OPTIONS = ("popular", "price-asc", "price-desc", "newest")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


async def list_products(
    store: DocumentStore,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    featured: Optional[bool] = None,
    most_selling: Optional[bool] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: str = "popular",
    q: Optional[str] = None,
) -> list[dict[str, Any]]:
    if sort not in SORT_OPTIONS:
        raise ValueError(f"Unknown sort '{sort}'")
    filt: dict[str, Any] = {}
    if category and category != "all":
        filt["category"] = normalize_category(category)
    if brand and brand != "all":
        filt["brand"] = brand
    if featured is not None:
        filt["featured"] = featured
    if most_selling is not None:
        filt["most_selling"] = most_selling
    if q:
        filt["name"] = {"$regex": re.escape(q), "$options": "i"}

    docs = await store.find(PRODUCTS, filt)
    if min_price is not None:
        docs = [d for d in docs if float(d.get("price", 0)) >= min_price]
    if max_price is not None:
        docs = [d for d in docs if float(d.get("price", 0)) <= max_price]

    if sort == "price-asc":
        docs.sort(key=lambda d: float(d.get("price", 0)))
    elif sort == "price-desc":
        docs.sort(key=lambda d: float(d.get("price", 0)), reverse=True)
    elif sort == "newest":
        docs.sort(key=lambda d: d.get("created_at") or _EPOCH, reverse=True)
    return docs


async def get_product(store: DocumentStore, product_id: str) -> Optional[dict[str, Any]]:
    return await store.get(PRODUCTS, product_id)


def to_catalog_product(doc: dict[str, Any]) -> CatalogProduct:
    return CatalogProduct.model_validate(doc)


async def list_brands(store: DocumentStore) -> list[str]:
    docs = await store.find(PRODUCTS)
    return sorted({d["brand"] for d in docs if d.get("brand")})


async def list_banners(store: DocumentStore) -> list[dict[str, Any]]:
    return await store.find(BANNERS, sort=[("order", 1)])


async def list_testimonials(store: DocumentStore, limit: int = 0) -> list[dict[str, Any]]:
    return await store.find(TESTIMONIALS, sort=[("date", -1)], limit=limit)
