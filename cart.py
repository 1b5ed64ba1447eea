"""
Shopping cart engine.

A cart is an ordered collection of line items keyed by the composite identity
product id + variant name + flavor name. Adding the same combination again
increments that line's quantity; it never creates a duplicate row.

Pricing of a line is fixed when it is added:
- a selected variant with its own price sets ``price`` and drops the sale price
- otherwise ``price`` is the product's base price and ``sale_price`` its sale price
The effective unit price is ``sale_price`` when set, else ``price``.

The cart itself is storage agnostic. ``SessionCartStore`` persists it in a
mutable mapping such as the shopper's session, so it lives on the shopper's
device and never in the document database. Only the pricing snapshot of each
line is kept there; name, image and category are read back from the catalog
when the cart is loaded. A cart holds at most ``MAX_CART_LINES`` distinct lines
so the signed session cookie stays under the browser's 4 KB limit.
"""
from __future__ import annotations
import hashlib
import logging
from typing import Any, Mapping, MutableMapping, Optional, Union
from pydantic import BaseModel, Field

from database import PRODUCTS, DocumentStore
from schemas import CatalogProduct, FlavorsOnly, NoOptions, VariantsOnly

logger = logging.getLogger("uvicorn.error")

MAX_CART_LINES = 25


class CartError(ValueError):
    pass


class CartValidationError(CartError):
    pass


class OutOfStockError(CartError):
    pass


class LineNotFoundError(CartError):
    pass


class CartSelection(BaseModel):
    variant: Optional[str] = None
    flavor: Optional[str] = None


class CartLineItem(BaseModel):
    line_id: str
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    quantity: int = Field(1, ge=1)
    stock: int = Field(..., ge=0, description="Effective stock when the line was last added")
    image_url: str = ""
    category: str = ""
    flavor: Optional[str] = None
    variant: Optional[str] = None

    @property
    def unit_price(self) -> float:
        return self.sale_price if self.sale_price is not None else self.price

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity


def line_id_for(product_id: str, variant: Optional[str] = None, flavor: Optional[str] = None) -> str:
    if not variant and not flavor:
        return product_id
    key = "\x1f".join([product_id, variant or "", flavor or ""])
    return f"{product_id}-{hashlib.sha1(key.encode()).hexdigest()[:10]}"


def cover_image(image_url: Optional[str], images: Optional[list[str]]) -> str:
    return image_url or (images[0] if images else "")


def resolve_selection(product: CatalogProduct, selection: CartSelection) -> tuple[float, Optional[float], int]:
    """Return ``(price, sale_price, stock)`` for ``product`` under ``selection``."""
    options: Union[NoOptions, FlavorsOnly, VariantsOnly] = product.options

    if isinstance(options, NoOptions):
        if selection.variant or selection.flavor:
            raise CartValidationError(f"'{product.name}' has no flavors or variants to select")
        return product.price, product.sale_price, product.stock

    if isinstance(options, FlavorsOnly):
        if selection.variant:
            raise CartValidationError(f"'{product.name}' has no variants")
        if not selection.flavor:
            raise CartValidationError("Please select a flavor first")
        flavor = next((f for f in options.flavors if f.name == selection.flavor), None)
        if flavor is None:
            raise CartValidationError(f"Unknown flavor '{selection.flavor}' for '{product.name}'")
        return product.price, product.sale_price, product.stock if flavor.in_stock else 0

    if isinstance(options, VariantsOnly):
        if selection.flavor:
            raise CartValidationError(f"'{product.name}' has no flavors")
        if not selection.variant:
            raise CartValidationError("Please select a variant first")
        variant = next((v for v in options.variants if v.name == selection.variant), None)
        if variant is None:
            raise CartValidationError(f"Unknown variant '{selection.variant}' for '{product.name}'")
        stock = variant.stock if variant.stock is not None else product.stock
        if variant.price is not None:
            return variant.price, None, stock
        return product.price, product.sale_price, stock

    raise TypeError(f"Unhandled product options: {options!r}")


class Cart:
    def __init__(self, items: Optional[list[CartLineItem]] = None):
        self._lines: dict[str, CartLineItem] = {}
        for item in items or []:
            existing = self._lines.get(item.line_id)
            if existing:
                item = item.model_copy(update={"quantity": existing.quantity + item.quantity})
            self._lines[item.line_id] = item

    @property
    def items(self) -> list[CartLineItem]:
        return list(self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def __len__(self) -> int:
        return len(self._lines)

    def get(self, line_id: str) -> Optional[CartLineItem]:
        return self._lines.get(line_id)

    def add_to_cart(self, product: Optional[CatalogProduct], selection: Optional[CartSelection] = None) -> CartLineItem:
        if product is None or not product.id:
            raise CartValidationError("Product id is required")
        selection = selection or CartSelection()
        price, sale_price, stock = resolve_selection(product, selection)

        line_id = line_id_for(product.id, selection.variant, selection.flavor)
        existing = self._lines.get(line_id)
        quantity = existing.quantity + 1 if existing else 1
        if stock <= 0:
            raise OutOfStockError(f"'{product.name}' is out of stock")
        if quantity > stock:
            raise OutOfStockError(f"Only {stock} of '{product.name}' available")
        if existing is None and len(self._lines) >= MAX_CART_LINES:
            raise CartValidationError(f"A cart holds at most {MAX_CART_LINES} different items")

        line = CartLineItem(
            line_id=line_id,
            product_id=product.id,
            name=product.name,
            price=price,
            sale_price=sale_price,
            quantity=quantity,
            stock=stock,
            image_url=cover_image(product.image_url, product.images),
            category=product.category,
            flavor=selection.flavor or None,
            variant=selection.variant or None,
        )
        self._lines[line_id] = line
        return line

    def update_quantity(self, line_id: str, quantity: int) -> CartLineItem:
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise CartValidationError("Quantity must be a whole number")
        if quantity < 1:
            raise CartValidationError("Quantity must be at least 1")
        line = self._lines.get(line_id)
        if line is None:
            raise LineNotFoundError(f"No cart line '{line_id}'")
        if quantity > line.stock:
            raise OutOfStockError(f"Only {line.stock} of '{line.name}' available")
        line = line.model_copy(update={"quantity": quantity})
        self._lines[line_id] = line
        return line

    def remove_from_cart(self, line_id: str) -> None:
        self._lines.pop(line_id, None)

    def clear_cart(self) -> None:
        self._lines.clear()

    def get_total(self) -> float:
        return round(sum(line.line_total for line in self._lines.values()), 2)

    def get_item_count(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    def summary(self) -> dict[str, Any]:
        return {
            "items": [line.model_dump() for line in self._lines.values()],
            "total": self.get_total(),
            "item_count": self.get_item_count(),
        }

    def to_session(self) -> list[list[Any]]:
        # [product_id, variant, flavor, quantity, price, sale_price, stock]
        return [
            [line.product_id, line.variant, line.flavor, line.quantity, line.price, line.sale_price, line.stock]
            for line in self._lines.values()
        ]

    @classmethod
    def from_session(cls, data: Any, products: Mapping[str, dict[str, Any]]) -> "Cart":
        """Rebuild a cart from ``to_session`` rows, taking display fields from ``products``.

        Rows that are unreadable or whose product is gone are dropped.
        """
        items = []
        for raw in data if isinstance(data, list) else []:
            try:
                product_id, variant, flavor, quantity, price, sale_price, stock = raw
                product = products[product_id]
                items.append(CartLineItem(
                    line_id=line_id_for(product_id, variant, flavor),
                    product_id=product_id,
                    name=product.get("name") or "Unknown Product",
                    price=price,
                    sale_price=sale_price,
                    quantity=quantity,
                    stock=stock,
                    image_url=cover_image(product.get("image_url"), product.get("images")),
                    category=product.get("category") or "",
                    flavor=flavor,
                    variant=variant,
                ))
            except (TypeError, ValueError, KeyError):
                logger.warning(f"Dropping unreadable cart line: {raw!r}")
        return cls(items)


def session_product_ids(data: Any) -> set[str]:
    if not isinstance(data, list):
        return set()
    return {raw[0] for raw in data if isinstance(raw, list) and raw and isinstance(raw[0], str)}


class SessionCartStore:
    """Loads and saves a shopper's cart in a mutable mapping.

    Products referenced by the stored lines are read from ``store`` on load.
    """

    key = "cart"

    def __init__(self, session: MutableMapping[str, Any], store: DocumentStore):
        self.session = session
        self.store = store

    async def load(self) -> Cart:
        data = self.session.get(self.key)
        products = {}
        for product_id in session_product_ids(data):
            doc = await self.store.get(PRODUCTS, product_id)
            if doc:
                products[product_id] = doc
        return Cart.from_session(data, products)

    def save(self, cart: Cart) -> None:
        if cart.is_empty:
            self.session.pop(self.key, None)
        else:
            self.session[self.key] = cart.to_session()
