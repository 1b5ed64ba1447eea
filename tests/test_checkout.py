import pytest

from auth import Identity
from cart import Cart, CartSelection
from checkout import CheckoutForm, EmptyCartError, OrderSubmissionError, build_order, order_user, submit_order
from schemas import CatalogProduct

FORM = CheckoutForm(
    name=" Asha Rao ",
    email="asha@example.com",
    phone="9876543210",
    street="12 MG Road",
    city="Bengaluru",
    state="Karnataka",
    pincode="560001",
)


def filled_cart() -> Cart:
    cart = Cart()
    pod = CatalogProduct(
        id="pod", name="Caliburn G2", description="Pod kit", price=1999, sale_price=1799,
        stock=10, category="podkits", brand="Uwell",
    )
    salt = CatalogProduct(
        id="salt", name="Nasty Salt", description="Nic salt", price=999,
        stock=5, category="nic-salts", brand="Nasty", flavors=[{"name": "Mango"}],
    )
    cart.add_to_cart(pod)
    cart.add_to_cart(pod)
    cart.add_to_cart(salt, CartSelection(flavor="Mango"))
    return cart


@pytest.mark.anyio
async def test_submit_order_persists_snapshot_and_clears_cart(store):
    cart = filled_cart()

    saved = await submit_order(store, cart, FORM)

    assert saved["total"] == 4597
    assert saved["status"] == "Pending"
    assert saved["user"]["name"] == "Asha Rao"
    assert saved["shipping_address"] == {
        "street": "12 MG Road", "city": "Bengaluru", "state": "Karnataka", "pincode": "560001",
    }
    assert [(i["id"], i["quantity"], i["flavor"]) for i in saved["items"]] == [("pod", 2, None), ("salt", 1, "Mango")]
    assert len(store.docs("orders")) == 1
    assert cart.is_empty


@pytest.mark.anyio
async def test_empty_cart_is_rejected_without_writing(store):
    with pytest.raises(EmptyCartError):
        await submit_order(store, Cart(), FORM)
    assert store.create_calls == []


@pytest.mark.anyio
async def test_failed_write_keeps_the_cart(store):
    store.fail_on = lambda collection, data: collection == "orders"
    cart = filled_cart()
    before = cart.summary()

    with pytest.raises(OrderSubmissionError):
        await submit_order(store, cart, FORM)

    assert cart.summary() == before
    assert store.docs("orders") == []


@pytest.mark.anyio
async def test_signed_in_shopper_is_recorded(store):
    identity = Identity(uid="u-42", email="asha@example.com", display_name="Asha", role="customer")

    saved = await submit_order(store, filled_cart(), FORM, identity)

    assert saved["user"]["id"] == "u-42"
    assert saved["user"]["is_guest"] is False


def test_guest_checkout_user():
    user = order_user(FORM, None)
    assert user.id == "guest"
    assert user.is_guest


def test_order_items_do_not_share_state_with_cart():
    cart = filled_cart()
    order = build_order(cart, order_user(FORM, None), FORM.shipping_address)
    line_id = cart.items[0].line_id

    cart.update_quantity(line_id, 5)

    assert order.items[0].quantity == 2
    assert order.total == 4597


def test_checkout_form_requires_every_field():
    with pytest.raises(ValueError):
        CheckoutForm(name="Asha", email="asha@example.com", phone="1", street="", city="x", state="y", pincode="1")
    with pytest.raises(ValueError):
        CheckoutForm(name="Asha", email="not-an-email", phone="1", street="s", city="x", state="y", pincode="1")
