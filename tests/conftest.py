import os
from unittest import mock

import mongomock
import pytest

os.environ["DATABASE_URL"] = "mongodb://localhost:27017"
os.environ["DATABASE_NAME"] = "posters_test"
os.environ["RAZORPAY_KEY_SECRET"] = "test_secret"

# every MongoClient built by the app talks to an in-memory mongomock server
mock.patch("pymongo.MongoClient", mongomock.MongoClient).start()

from fastapi.testclient import TestClient  # noqa: E402

import auth  # noqa: E402
import catalog  # noqa: E402
import database  # noqa: E402
import main  # noqa: E402
from schemas import Coupon, Profile  # noqa: E402

SHIPPING = {
    "full_name": "Asha Rao",
    "phone": "9999999999",
    "address_line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "postal_code": "560001",
}


@pytest.fixture(autouse=True)
def clean_db():
    for name in database.db.list_collection_names():
        database.db.drop_collection(name)
    auth.rate_store.clear()
    yield


@pytest.fixture
def db():
    return database.db


@pytest.fixture
def client():
    return TestClient(main.app)


def _make_profile(role):
    profile = Profile(email=f"{role}@example.com", full_name=role.title(), password_hash="x" * 20, role=role)
    profile_id = database.create_document("profile", profile)
    token = auth.create_access_token(profile_id, role)
    return profile_id, {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin():
    return _make_profile("admin")


@pytest.fixture
def user():
    return _make_profile("user")


@pytest.fixture
def admin_headers(admin):
    return admin[1]


@pytest.fixture
def user_headers(user):
    return user[1]


@pytest.fixture
def make_poster():
    def _make(title="Water Lilies", artist="Claude Monet", prices=(999,), stock=10, **extra):
        data = {
            "title": title,
            "artist": artist,
            "description": "Impressionist print",
            "image_url": "https://img.example/poster.jpg",
            "sizes": [
                {"name": name, "dimensions": f"{i}x{i}", "price": price, "stock_quantity": stock, "display_order": i}
                for i, (name, price) in enumerate(zip(["Small", "Medium", "Large", "XL"], prices))
            ],
        }
        data.update(extra)
        return catalog.create_poster(data)
    return _make


@pytest.fixture
def make_coupon():
    def _make(code="SAVE10", type="percentage", value=10, **extra):
        coupon = Coupon(code=code, type=type, value=value, **extra)
        return database.create_document("coupon", coupon)
    return _make


def order_item(poster, quantity=1, size="Small", **overrides):
    """A checkout line as the storefront sends it, copied from the catalog."""
    variant = next(s for s in poster["sizes"] if s["name"] == size)
    item = {
        "poster_id": poster["id"],
        "poster_title": poster["title"],
        "poster_image_url": poster.get("image_url"),
        "size_name": size,
        "size_dimensions": variant["dimensions"],
        "price": variant["price"],
        "quantity": quantity,
    }
    item.update(overrides)
    return item


def order_payload(items, **overrides):
    payload = {
        "email": "asha@example.com",
        "full_name": "Asha Rao",
        "phone": "9999999999",
        "shipping_address": SHIPPING,
        "items": items,
        "payment_method": "upi",
    }
    payload.update(overrides)
    return payload
