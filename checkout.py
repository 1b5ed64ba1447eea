from __future__ import annotations
import logging
from typing import Iterable, Optional
from pydantic import BaseModel, ConfigDict, Field
from pymongo.errors import PyMongoError

from auth import Identity
from cart import Cart, CartLineItem
from database import ORDERS, DocumentStore
from schemas import Order, OrderItem, OrderStatus, OrderUser, ShippingAddress

logger = logging.getLogger("uvicorn.error")


class CheckoutError(Exception):
    pass


class EmptyCartError(CheckoutError):
    pass


class OrderSubmissionError(CheckoutError):
    pass


class CheckoutForm(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    phone: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)

    @property
    def shipping_address(self) -> ShippingAddress:
        return ShippingAddress(street=self.street, city=self.city, state=self.state, pincode=self.pincode)


def snapshot_items(lines: Iterable[CartLineItem]) -> list[OrderItem]:
    # Copies every field so the order never shares state with the cart
    items = []
    for line in lines:
        items.append(OrderItem(
            id=str(line.product_id or ""),
            name=str(line.name or "Unknown Product"),
            price=float(line.price or 0),
            sale_price=float(line.sale_price) if line.sale_price is not None else None,
            quantity=max(1, int(line.quantity or 1)),
            image_url=line.image_url or "",
            flavor=line.flavor or None,
            variant=line.variant or None,
        ))
    return items


def compute_total(items: Iterable[OrderItem]) -> float:
    return round(sum(item.unit_price * item.quantity for item in items), 2)


def order_user(form: CheckoutForm, identity: Optional[Identity]) -> OrderUser:
    return OrderUser(
        id=identity.uid if identity else "guest",
        name=form.name,
        email=form.email,
        phone=form.phone,
        is_guest=identity is None,
    )


def build_order(cart: Cart, user: OrderUser, address: ShippingAddress, status: OrderStatus = "Pending") -> Order:
    if cart.is_empty:
        raise EmptyCartError("Your cart is empty")
    items = snapshot_items(cart.items)
    return Order(user=user, items=items, total=compute_total(items), status=status, shipping_address=address)


async def submit_order(
    store: DocumentStore,
    cart: Cart,
    form: CheckoutForm,
    identity: Optional[Identity] = None,
) -> dict:
    """Persist the cart as a Pending order and clear the cart.

    The cart is only cleared after the write succeeds; a failed write leaves it
    exactly as it was.
    """
    order = build_order(cart, order_user(form, identity), form.shipping_address)
    try:
        saved = await store.create(ORDERS, order.model_dump())
    except PyMongoError as e:
        logger.error(f"Failed to save order for {order.user.email}: {e}")
        raise OrderSubmissionError(f"Failed to process order: {e}") from e

    cart.clear_cart()
    logger.info(f"Order {saved.get('id')} placed by {order.user.email} for {order.total}")
    return saved
