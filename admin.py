import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional, Type
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from auth import Identity, require_admin
from cart import Cart, CartError, CartSelection
from catalog import get_product, to_catalog_product
from checkout import build_order
from database import BANNERS, CUSTOMERS, ORDERS, PRODUCTS, TESTIMONIALS, DocumentStore, get_store
from importer import ImportFileError, ImportValidationError, build_template, run_import
from reports import dashboard_totals, revenue_summary
from reviews import ReviewFilter, ReviewIn, ReviewNotFoundError, ReviewUpdate, add_review, delete_review, list_reviewed_products, update_review
from schemas import (
    Banner, BannerUpdate, Customer, CustomerUpdate, OrderStatus, OrderUser, Product, Rating,
    ShippingAddress, Testimonial, TestimonialUpdate,
)
from storage import LocalBlobStorage, get_blob_storage

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

ORDER_SORTS = {
    "date-desc": (lambda o: o.get("created_at") or _EPOCH, True),
    "date-asc": (lambda o: o.get("created_at") or _EPOCH, False),
    "amount-desc": (lambda o: float(o.get("total") or 0), True),
    "amount-asc": (lambda o: float(o.get("total") or 0), False),
}

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _matches(doc: dict[str, Any], q: str, fields: tuple[str, ...]) -> bool:
    needle = q.lower()
    return any(needle in str(doc.get(f) or "").lower() for f in fields)


async def _require(store: DocumentStore, collection: str, doc_id: str, label: str) -> dict[str, Any]:
    doc = await store.get(collection, doc_id)
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc


# ------------------------------- Products -------------------------------
@router.get("/products")
async def list_products(q: Optional[str] = None, store: DocumentStore = Depends(get_store)):
    filt = {"name": {"$regex": re.escape(q), "$options": "i"}} if q else {}
    return await store.find(PRODUCTS, filt, sort=[("created_at", -1)])


@router.get("/products/import/template")
async def import_template():
    return Response(
        content=build_template(),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": 'attachment; filename="product_upload_template.xlsx"'},
    )


@router.post("/products/import")
async def import_products(file: UploadFile = File(...), store: DocumentStore = Depends(get_store)):
    data = await file.read()
    try:
        report = await run_import(store, file.filename or "", data)
    except ImportFileError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ImportValidationError as e:
        raise HTTPException(status_code=400, detail={
            "message": str(e),
            "errors": [err.model_dump() for err in e.errors],
        })
    return report


@router.get("/products/{product_id}")
async def get_product_admin(product_id: str, store: DocumentStore = Depends(get_store)):
    return await _require(store, PRODUCTS, product_id, "Product")


@router.post("/products", status_code=201)
async def create_product(payload: Product, store: DocumentStore = Depends(get_store)):
    created = await store.create(PRODUCTS, payload.model_dump())
    logger.info(f"Product {created['id']} created: {payload.name}")
    return created


@router.put("/products/{product_id}")
async def update_product(product_id: str, payload: Product, store: DocumentStore = Depends(get_store)):
    # Reviews are managed through the review endpoints and survive edits
    updated = await store.update(PRODUCTS, product_id, payload.model_dump(exclude={"ratings"}))
    if not updated:
        raise HTTPException(status_code=404, detail="Product not found")
    return updated


@router.delete("/products/{product_id}")
async def delete_product(product_id: str, store: DocumentStore = Depends(get_store)):
    if not await store.delete(PRODUCTS, product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info(f"Product {product_id} deleted")
    return {"deleted": True}


@router.post("/products/{product_id}/image")
async def upload_product_image(
    product_id: str,
    file: UploadFile = File(...),
    store: DocumentStore = Depends(get_store),
    blobs: LocalBlobStorage = Depends(get_blob_storage),
):
    product = await _require(store, PRODUCTS, product_id, "Product")
    # Upload first; the document only ever points at a stored file
    url = await run_in_threadpool(blobs.save, "products", file.filename or "image", await file.read())
    images = list(product.get("images") or []) + [url]
    return await store.update(PRODUCTS, product_id, {"image_url": url, "images": images})


@router.post("/products/{product_id}/ratings", status_code=201)
async def add_admin_review(
    product_id: str,
    payload: ReviewIn,
    identity: Identity = Depends(require_admin),
    store: DocumentStore = Depends(get_store),
):
    rating = Rating(
        rating=payload.rating,
        content=payload.content,
        customer_name=payload.customer_name or identity.display_name,
        is_customer_review=False,
    )
    try:
        return await add_review(store, product_id, rating)
    except ReviewNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ------------------------------- Reviews -------------------------------
@router.get("/reviews")
async def list_reviews(
    review_filter: ReviewFilter = Query("all", alias="filter"),
    store: DocumentStore = Depends(get_store),
):
    return await list_reviewed_products(store, review_filter)


@router.put("/reviews/{product_id}/{index}")
async def edit_review(product_id: str, index: int, payload: ReviewUpdate, store: DocumentStore = Depends(get_store)):
    try:
        return await update_review(store, product_id, index, payload)
    except ReviewNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/reviews/{product_id}/{index}")
async def remove_review(product_id: str, index: int, store: DocumentStore = Depends(get_store)):
    try:
        return await delete_review(store, product_id, index)
    except ReviewNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ------------------------------- Orders -------------------------------
class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class ManualOrderItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    variant: Optional[str] = None
    flavor: Optional[str] = None


class ManualOrderIn(BaseModel):
    customer_id: str
    items: list[ManualOrderItem] = Field(..., min_length=1)
    shipping_address: Optional[ShippingAddress] = None


@router.get("/orders")
async def list_orders(
    q: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    sort: str = Query("date-desc", pattern="^(date|amount)-(asc|desc)$"),
    store: DocumentStore = Depends(get_store),
):
    orders = await store.find(ORDERS, {"status": status} if status else {})
    if q:
        needle = q.lower()
        orders = [
            o for o in orders
            if _matches(o.get("user") or {}, needle, ("name", "email")) or needle in str(o.get("id", "")).lower()
        ]
    key, reverse = ORDER_SORTS[sort]
    orders.sort(key=key, reverse=reverse)
    return orders


@router.get("/orders/{order_id}")
async def get_order(order_id: str, store: DocumentStore = Depends(get_store)):
    return await _require(store, ORDERS, order_id, "Order")


@router.patch("/orders/{order_id}")
async def update_order_status(order_id: str, payload: OrderStatusUpdate, store: DocumentStore = Depends(get_store)):
    updated = await store.update(ORDERS, order_id, {"status": payload.status})
    if not updated:
        raise HTTPException(status_code=404, detail="Order not found")
    logger.info(f"Order {order_id} moved to {payload.status}")
    return updated


@router.post("/orders", status_code=201)
async def create_manual_order(payload: ManualOrderIn, store: DocumentStore = Depends(get_store)):
    customer = await store.get(CUSTOMERS, payload.customer_id)
    if not customer:
        raise HTTPException(status_code=400, detail="Please select a customer")

    # Prices come from the catalog, never from the request
    cart = Cart()
    try:
        for item in payload.items:
            doc = await get_product(store, item.product_id)
            if not doc:
                raise HTTPException(status_code=400, detail=f"Invalid product {item.product_id}")
            line = cart.add_to_cart(to_catalog_product(doc), CartSelection(variant=item.variant, flavor=item.flavor))
            if item.quantity > 1:
                cart.update_quantity(line.line_id, line.quantity + item.quantity - 1)
    except CartError as e:
        raise HTTPException(status_code=400, detail=str(e))

    address = payload.shipping_address or ShippingAddress(
        street=customer.get("address") or "",
        city=customer.get("city") or "",
        state=customer.get("state") or "",
        pincode=customer.get("pincode") or "",
    )
    if not all(s.strip() for s in (address.street, address.city, address.state, address.pincode)):
        raise HTTPException(status_code=400, detail="A complete shipping address is required")

    user = OrderUser(
        id=customer["id"],
        name=customer.get("name") or "",
        email=customer.get("email") or "",
        phone=customer.get("phone") or "",
    )
    order = build_order(cart, user, address, status="Processing")
    saved = await store.create(ORDERS, order.model_dump())
    logger.info(f"Manual order {saved['id']} created for customer {customer['id']}")
    return saved


# ------------------------------- Simple collections -------------------------------
def register_crud(
    path: str,
    collection: str,
    label: str,
    create_model: Type[BaseModel],
    update_model: Type[BaseModel],
    sort: list[tuple[str, int]],
    search_fields: tuple[str, ...] = (),
) -> None:
    """List/get/create/update/delete routes for a flat admin-managed collection."""

    async def list_items(q: Optional[str] = None, store: DocumentStore = Depends(get_store)):
        docs = await store.find(collection, sort=sort)
        if q and search_fields:
            docs = [d for d in docs if _matches(d, q, search_fields)]
        return docs

    async def get_item(item_id: str, store: DocumentStore = Depends(get_store)):
        return await _require(store, collection, item_id, label)

    async def create_item(payload: create_model, store: DocumentStore = Depends(get_store)):  # type: ignore[valid-type]
        created = await store.create(collection, payload.model_dump())
        logger.info(f"{label} {created['id']} created")
        return created

    async def update_item(item_id: str, payload: update_model, store: DocumentStore = Depends(get_store)):  # type: ignore[valid-type]
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return await _require(store, collection, item_id, label)
        updated = await store.update(collection, item_id, changes)
        if not updated:
            raise HTTPException(status_code=404, detail=f"{label} not found")
        return updated

    async def delete_item(item_id: str, store: DocumentStore = Depends(get_store)):
        if not await store.delete(collection, item_id):
            raise HTTPException(status_code=404, detail=f"{label} not found")
        logger.info(f"{label} {item_id} deleted")
        return {"deleted": True}

    router.add_api_route(f"/{path}", list_items, methods=["GET"], name=f"list_{path}")
    router.add_api_route(f"/{path}/{{item_id}}", get_item, methods=["GET"], name=f"get_{path}")
    router.add_api_route(f"/{path}", create_item, methods=["POST"], status_code=201, name=f"create_{path}")
    router.add_api_route(f"/{path}/{{item_id}}", update_item, methods=["PATCH"], name=f"update_{path}")
    router.add_api_route(f"/{path}/{{item_id}}", delete_item, methods=["DELETE"], name=f"delete_{path}")


register_crud("customers", CUSTOMERS, "Customer", Customer, CustomerUpdate,
              sort=[("created_at", -1)], search_fields=("name", "email", "phone"))
register_crud("banners", BANNERS, "Banner", Banner, BannerUpdate, sort=[("order", 1)])
register_crud("testimonials", TESTIMONIALS, "Testimonial", Testimonial, TestimonialUpdate,
              sort=[("date", -1)], search_fields=("customer_name", "title", "content"))


@router.post("/banners/{banner_id}/image")
async def upload_banner_image(
    banner_id: str,
    file: UploadFile = File(...),
    store: DocumentStore = Depends(get_store),
    blobs: LocalBlobStorage = Depends(get_blob_storage),
):
    await _require(store, BANNERS, banner_id, "Banner")
    url = await run_in_threadpool(blobs.save, "banners", file.filename or "image", await file.read())
    return await store.update(BANNERS, banner_id, {"image_url": url})


# ------------------------------- Reports -------------------------------
@router.get("/dashboard")
async def dashboard(store: DocumentStore = Depends(get_store)):
    return await dashboard_totals(store)


@router.get("/revenue")
async def revenue(store: DocumentStore = Depends(get_store)):
    return await revenue_summary(store)
