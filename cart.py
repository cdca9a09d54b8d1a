"""
Shopping cart

A cart is a plain value: a list of lines keyed by (poster_id, size_name).
Operations return a new Cart; CartStore persists it per client session.
"""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from database import db
from errors import NotFoundError
from pricing import calculate_subtotal


class CartItem(BaseModel):
    poster_id: str
    poster_title: str
    poster_image_url: Optional[str] = None
    size_name: str
    size_dimensions: str
    price: float = Field(..., ge=0)
    quantity: int = Field(1, ge=1)

    @property
    def key(self):
        return (self.poster_id, self.size_name)


class Cart(BaseModel):
    items: List[CartItem] = Field(default_factory=list)

    def _find(self, poster_id: str, size_name: str) -> int:
        for i, it in enumerate(self.items):
            if it.key == (poster_id, size_name):
                return i
        return -1

    def add(self, item: CartItem) -> "Cart":
        items = [it.model_copy() for it in self.items]
        idx = self._find(*item.key)
        if idx >= 0:
            items[idx].quantity += item.quantity
        else:
            items.append(item.model_copy())
        return Cart(items=items)

    def remove(self, poster_id: str, size_name: str) -> "Cart":
        return Cart(items=[it for it in self.items if it.key != (poster_id, size_name)])

    def update_quantity(self, poster_id: str, size_name: str, quantity: int) -> "Cart":
        if quantity < 1:
            return self.remove(poster_id, size_name)
        if self._find(poster_id, size_name) < 0:
            raise NotFoundError("Item not in cart")
        return Cart(items=[
            it.model_copy(update={"quantity": quantity}) if it.key == (poster_id, size_name) else it
            for it in self.items
        ])

    def clear(self) -> "Cart":
        return Cart()

    @property
    def total_items(self) -> int:
        return sum(it.quantity for it in self.items)

    @property
    def total_price(self) -> float:
        return float(calculate_subtotal(self.items))

    def summary(self) -> dict:
        return {
            "items": [it.model_dump() for it in self.items],
            "total_items": self.total_items,
            "total_price": self.total_price,
        }


class CartStore:
    """Reads and writes carts in the "cart" collection, one per session id."""

    collection = "cart"

    def load(self, session_id: str) -> Cart:
        doc = db[self.collection].find_one({"session_id": session_id})
        if not doc:
            return Cart()
        return Cart(items=doc.get("items", []))

    def save(self, session_id: str, cart: Cart) -> Cart:
        now = datetime.now(timezone.utc)
        db[self.collection].update_one(
            {"session_id": session_id},
            {
                "$set": {"items": [it.model_dump() for it in cart.items], "updated_at": now},
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
        )
        return cart

    def clear(self, session_id: str) -> None:
        db[self.collection].delete_one({"session_id": session_id})
