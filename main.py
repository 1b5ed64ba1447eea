import os
import logging
from typing import Optional
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError
from starlette.middleware.sessions import SessionMiddleware

import admin
from auth import (
    AuthError, Credentials, Identity, Registration, SessionRegistry, authenticate, bearer_token,
    current_identity, ensure_default_admin, get_sessions, register_user, require_user,
)
from cart import CartError, CartSelection, LineNotFoundError, SessionCartStore
from catalog import get_product, list_banners, list_brands, list_products, list_testimonials, to_catalog_product
from checkout import CheckoutForm, EmptyCartError, OrderSubmissionError, submit_order
from config import settings
from database import ORDERS, DocumentStore, get_db, get_store
from reviews import ReviewIn, ReviewNotFoundError, add_review
from schemas import Rating
from storage import UPLOAD_ROUTE

logger = logging.getLogger("uvicorn.error")

app = FastAPI(title="VapeX Store API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# The shopper's cart rides in this signed cookie, never in the database
app.add_middleware(SessionMiddleware, secret_key=settings.SESSION_SECRET, session_cookie="vapex_session")

app.state.sessions = SessionRegistry()
app.mount(UPLOAD_ROUTE, StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False), name="uploads")
app.include_router(admin.router)


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Database unavailable, please try again"})


@app.on_event("startup")
async def startup_event():
    # Must never crash the app when the database is down
    try:
        await ensure_default_admin(DocumentStore(await get_db()))
    except PyMongoError as e:
        logger.warning(f"Skipping default admin setup: {e}")


# Helpers

def get_cart_store(request: Request, store: DocumentStore = Depends(get_store)) -> SessionCartStore:
    return SessionCartStore(request.session, store)


@app.get("/")
async def root():
    return {"message": "VapeX Store Backend Running"}


@app.get("/test")
async def test(store: DocumentStore = Depends(get_store)):
    try:
        colls = await store.collection_names()
        return {
            "backend": "✅ Running",
            "database": "✅ Available",
            "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
            "database_name": settings.DATABASE_NAME,
            "connection_status": "Connected",
            "collections": colls,
        }
    except Exception as e:
        return {"backend": "✅ Running", "database": "❌ Not Available", "error": str(e)[:100]}


# ------------------------------- Catalog -------------------------------
@app.get("/api/products")
async def catalog_products(
    category: Optional[str] = None,
    brand: Optional[str] = None,
    featured: Optional[bool] = None,
    most_selling: Optional[bool] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    sort: str = "popular",
    q: Optional[str] = None,
    store: DocumentStore = Depends(get_store),
):
    try:
        return await list_products(store, category, brand, featured, most_selling, min_price, max_price, sort, q)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/api/brands")
async def catalog_brands(store: DocumentStore = Depends(get_store)):
    return await list_brands(store)


@app.get("/api/products/{product_id}")
async def catalog_product(product_id: str, store: DocumentStore = Depends(get_store)):
    doc = await get_product(store, product_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return doc


@app.post("/api/products/{product_id}/ratings", status_code=201)
async def rate_product(
    product_id: str,
    payload: ReviewIn,
    identity: Identity = Depends(require_user),
    store: DocumentStore = Depends(get_store),
):
    rating = Rating(
        rating=payload.rating,
        content=payload.content,
        customer_name=identity.display_name,
        customer_id=identity.uid,
        is_customer_review=True,
    )
    try:
        return await add_review(store, product_id, rating)
    except ReviewNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.get("/api/banners")
async def home_banners(store: DocumentStore = Depends(get_store)):
    return await list_banners(store)


@app.get("/api/testimonials")
async def home_testimonials(limit: int = Query(0, ge=0), store: DocumentStore = Depends(get_store)):
    return await list_testimonials(store, limit)


# ------------------------------- Cart -------------------------------
class CartItemIn(BaseModel):
    product_id: str = Field(..., min_length=1)
    variant: Optional[str] = None
    flavor: Optional[str] = None


class QuantityIn(BaseModel):
    quantity: int


@app.get("/api/cart")
async def view_cart(cart_store: SessionCartStore = Depends(get_cart_store)):
    return (await cart_store.load()).summary()


@app.post("/api/cart/items", status_code=201)
async def add_cart_item(
    payload: CartItemIn,
    cart_store: SessionCartStore = Depends(get_cart_store),
    store: DocumentStore = Depends(get_store),
):
    doc = await get_product(store, payload.product_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    cart = await cart_store.load()
    try:
        cart.add_to_cart(to_catalog_product(doc), CartSelection(variant=payload.variant, flavor=payload.flavor))
    except CartError as e:
        raise HTTPException(status_code=400, detail=str(e))
    cart_store.save(cart)
    return cart.summary()


@app.patch("/api/cart/items/{line_id}")
async def update_cart_item(line_id: str, payload: QuantityIn, cart_store: SessionCartStore = Depends(get_cart_store)):
    cart = await cart_store.load()
    try:
        cart.update_quantity(line_id, payload.quantity)
    except LineNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CartError as e:
        raise HTTPException(status_code=400, detail=str(e))
    cart_store.save(cart)
    return cart.summary()


@app.delete("/api/cart/items/{line_id}")
async def remove_cart_item(line_id: str, cart_store: SessionCartStore = Depends(get_cart_store)):
    cart = await cart_store.load()
    cart.remove_from_cart(line_id)
    cart_store.save(cart)
    return cart.summary()


@app.delete("/api/cart")
async def clear_cart(cart_store: SessionCartStore = Depends(get_cart_store)):
    cart = await cart_store.load()
    cart.clear_cart()
    cart_store.save(cart)
    return cart.summary()


# ------------------------------- Checkout & orders -------------------------------
@app.post("/api/checkout", status_code=201)
async def checkout(
    form: CheckoutForm,
    identity: Optional[Identity] = Depends(current_identity),
    cart_store: SessionCartStore = Depends(get_cart_store),
    store: DocumentStore = Depends(get_store),
):
    cart = await cart_store.load()
    try:
        order = await submit_order(store, cart, form, identity)
    except EmptyCartError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OrderSubmissionError as e:
        raise HTTPException(status_code=503, detail=str(e))
    cart_store.save(cart)
    return order


@app.get("/api/orders/mine")
async def my_orders(identity: Identity = Depends(require_user), store: DocumentStore = Depends(get_store)):
    return await store.find(ORDERS, {"user.id": identity.uid}, sort=[("created_at", -1)])


# ------------------------------- Auth -------------------------------
@app.post("/api/auth/register", status_code=201)
async def register(
    payload: Registration,
    store: DocumentStore = Depends(get_store),
    sessions: SessionRegistry = Depends(get_sessions),
):
    try:
        identity = await register_user(store, payload)
    except AuthError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"token": sessions.issue(identity), "user": identity}


@app.post("/api/auth/login")
async def login(
    payload: Credentials,
    store: DocumentStore = Depends(get_store),
    sessions: SessionRegistry = Depends(get_sessions),
):
    try:
        identity = await authenticate(store, payload)
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return {"token": sessions.issue(identity), "user": identity}


@app.post("/api/auth/logout")
async def logout(token: Optional[str] = Depends(bearer_token), sessions: SessionRegistry = Depends(get_sessions)):
    if token:
        sessions.revoke(token)
    return {"logged_out": True}


@app.get("/api/auth/me")
async def me(identity: Identity = Depends(require_user)):
    return {"user": identity, "is_admin": identity.is_admin}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
