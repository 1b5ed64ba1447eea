from __future__ import annotations
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field

from database import PRODUCTS, DocumentStore
from schemas import Rating

ReviewFilter = Literal["all", "customer", "admin"]


class ReviewError(Exception):
    pass


class ReviewNotFoundError(ReviewError):
    pass


class ReviewIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    content: str = ""
    customer_name: Optional[str] = None


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    content: Optional[str] = None
    customer_name: Optional[str] = None


async def _load_ratings(store: DocumentStore, product_id: str) -> list[dict[str, Any]]:
    product = await store.get(PRODUCTS, product_id)
    if product is None:
        raise ReviewNotFoundError("Product not found")
    return list(product.get("ratings") or [])


def _rating_match(rating: dict[str, Any]) -> dict[str, Any]:
    # Older ratings carry no id and are matched on their content
    if rating.get("id"):
        return {"id": rating["id"]}
    return {k: rating[k] for k in ("rating", "content", "customer_name", "customer_id") if k in rating}


async def _rating_at(store: DocumentStore, product_id: str, index: int) -> dict[str, Any]:
    ratings = await _load_ratings(store, product_id)
    if not 0 <= index < len(ratings):
        raise ReviewNotFoundError("Review not found")
    return ratings[index]


async def add_review(store: DocumentStore, product_id: str, rating: Rating) -> dict[str, Any]:
    updated = await store.push(PRODUCTS, product_id, "ratings", rating.model_dump())
    if updated is None:
        raise ReviewNotFoundError("Product not found")
    return updated


async def list_reviewed_products(store: DocumentStore, review_filter: ReviewFilter = "all") -> list[dict[str, Any]]:
    products = [p for p in await store.find(PRODUCTS) if p.get("ratings")]
    if review_filter == "all":
        return products
    want_customer = review_filter == "customer"
    return [
        p for p in products
        if any(bool(r.get("is_customer_review")) == want_customer for r in p["ratings"])
    ]


async def update_review(store: DocumentStore, product_id: str, index: int, changes: ReviewUpdate) -> dict[str, Any]:
    """Edit the review at ``index`` in place.

    The index only locates the review; the write targets that review itself,
    so reviews added or removed meanwhile are left alone.
    """
    current = await _rating_at(store, product_id, index)
    updates = changes.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        return await store.get(PRODUCTS, product_id)
    updated = await store.update_in_array(PRODUCTS, product_id, "ratings", _rating_match(current), updates)
    if updated is None:
        raise ReviewNotFoundError("Review not found")
    return updated


async def delete_review(store: DocumentStore, product_id: str, index: int) -> dict[str, Any]:
    current = await _rating_at(store, product_id, index)
    updated = await store.pull(PRODUCTS, product_id, "ratings", _rating_match(current))
    if updated is None:
        raise ReviewNotFoundError("Review not found")
    return updated
