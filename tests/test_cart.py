import pytest

from cart import Cart, CartItem
from errors import NotFoundError


def _item(poster_id="p1", size="Small", quantity=1, price=500):
    return CartItem(
        poster_id=poster_id,
        poster_title="Poster",
        size_name=size,
        size_dimensions="A4",
        price=price,
        quantity=quantity,
    )


def test_add_same_pair_merges():
    cart = Cart().add(_item(quantity=1)).add(_item(quantity=2))
    assert len(cart.items) == 1
    assert cart.items[0].quantity == 3


def test_add_different_size_is_new_line():
    cart = Cart().add(_item(size="Small")).add(_item(size="Large"))
    assert len(cart.items) == 2


def test_add_returns_new_cart():
    first = Cart().add(_item())
    first.add(_item(quantity=4))
    assert first.items[0].quantity == 1


def test_update_and_remove():
    cart = Cart().add(_item()).add(_item(poster_id="p2", price=1000))
    cart = cart.update_quantity("p1", "Small", 5)
    assert cart.total_items == 6
    assert cart.total_price == 3500
    assert cart.update_quantity("p1", "Small", 0).total_items == 1
    assert len(cart.remove("p2", "Small").items) == 1
    assert cart.clear().items == []


def test_update_missing_line():
    with pytest.raises(NotFoundError):
        Cart().update_quantity("p1", "Small", 2)


def test_cart_endpoints(client):
    line = _item().model_dump()
    client.post("/api/cart/s1/items", json=line)
    res = client.post("/api/cart/s1/items", json=line)
    assert res.status_code == 200
    assert res.json()["total_items"] == 2
    assert len(res.json()["items"]) == 1

    res = client.patch("/api/cart/s1/items", json={"poster_id": "p1", "size_name": "Small", "quantity": 4})
    assert res.json()["total_price"] == 2000

    assert client.get("/api/cart/s2").json()["items"] == []

    res = client.request("DELETE", "/api/cart/s1/items", json={"poster_id": "p1", "size_name": "Small"})
    assert res.json()["items"] == []

    client.post("/api/cart/s1/items", json=line)
    client.delete("/api/cart/s1")
    assert client.get("/api/cart/s1").json()["total_items"] == 0
