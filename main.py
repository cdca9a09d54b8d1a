import logging
import os
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, EmailStr, Field
from pymongo import ReturnDocument
from starlette.exceptions import HTTPException as StarletteHTTPException

import catalog
import coupons
import orders
import payments
from auth import (
    check_rate_limit,
    create_access_token,
    get_current_user,
    get_optional_user,
    hash_password,
    require_admin,
    verify_password,
)
from cart import CartItem, CartStore
from config import LOG_LEVEL, RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET
from database import create_document, db, get_documents, oid, serialize
from errors import AuthenticationError, NotFoundError, PaymentVerificationFailed, StoreError, ValidationError
from schemas import Address, Category, Coupon, OrderStatus, PaymentMethod, PaymentStatus, Profile

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("posters")

app = FastAPI(title="Posters API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

cart_store = CartStore()

STORE_COLLECTIONS = ("profile", "category", "poster", "postersize", "coupon", "order", "orderitem", "cart")


# Error rendering
@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    err = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
    message = f"{field}: {err.get('msg', 'Invalid input')}" if field else err.get("msg", "Invalid input")
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Health checks
@app.get("/")
def root():
    return {"message": "Posters API running"}


@app.get("/test")
def test_database():
    """Report database reachability and the size of each store collection."""
    status = {
        "backend": "running",
        "database": "unavailable",
        "database_name": None,
        "payments_configured": bool(RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET),
        "collections": {},
    }
    if db is None:
        return status
    try:
        status["collections"] = {name: db[name].estimated_document_count() for name in STORE_COLLECTIONS}
        status["database"] = "connected"
        status["database_name"] = db.name
    except Exception as e:
        logger.warning("Health check could not reach the database: %s", e)
        status["database"] = f"error: {str(e)[:100]}"
    return status


# Auth
class RegisterPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: Optional[str] = None
    phone: Optional[str] = None


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


def _auth_response(profile_id: str, role: str, doc: dict):
    token = create_access_token(profile_id, role)
    return {"token": token, "user": serialize(doc)}


@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterPayload):
    email = payload.email.lower()
    if db["profile"].find_one({"email": email}):
        raise ValidationError("Email already registered")
    profile = Profile(
        email=email,
        full_name=payload.full_name,
        phone=payload.phone,
        password_hash=hash_password(payload.password),
        role="user",
    )
    profile_id = create_document("profile", profile)
    return _auth_response(profile_id, "user", db["profile"].find_one({"_id": oid(profile_id)}))


@app.post("/api/auth/login")
def login(payload: LoginPayload, request: Request):
    # Rate limit per IP
    ip = request.client.host if request.client else "unknown"
    check_rate_limit(ip)

    doc = db["profile"].find_one({"email": payload.email.lower()})
    if not doc or not verify_password(payload.password, doc.get("password_hash", "")):
        raise AuthenticationError("Invalid credentials")
    return _auth_response(str(doc["_id"]), doc.get("role", "user"), doc)


# Profile
class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None


@app.get("/api/profile")
def get_profile(user: dict = Depends(get_current_user)):
    return {"data": serialize(user)}


@app.put("/api/profile")
def update_profile(payload: ProfileUpdate, user: dict = Depends(get_current_user)):
    changes = {k: v for k, v in payload.model_dump().items() if v is not None}
    doc = db["profile"].find_one_and_update(
        {"_id": user["_id"]},
        {"$set": changes, "$currentDate": {"updated_at": True}},
        return_document=ReturnDocument.AFTER,
    )
    return {"data": serialize(doc)}


# Categories
class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = Field(None, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: Optional[str] = None
    image_url: Optional[str] = None
    display_order: Optional[int] = None
    is_active: Optional[bool] = None


def _check_slug_free(slug: str, exclude_id=None):
    existing = db["category"].find_one({"slug": slug})
    if existing and existing["_id"] != exclude_id:
        raise ValidationError("Category slug already exists")


@app.get("/api/categories")
def list_categories():
    docs = db["category"].find({"is_active": True}).sort([("display_order", 1), ("name", 1)])
    return {"data": [serialize(d) for d in docs]}


@app.post("/api/categories", status_code=201, dependencies=[Depends(require_admin)])
def create_category(payload: Category):
    _check_slug_free(payload.slug)
    cat_id = create_document("category", payload)
    return {"data": serialize(db["category"].find_one({"_id": oid(cat_id)}))}


@app.put("/api/categories/{category_id}", dependencies=[Depends(require_admin)])
def update_category(category_id: str, payload: CategoryUpdate):
    _id = oid(category_id)
    changes = {k: v for k, v in payload.model_dump().items() if v is not None}
    if "slug" in changes:
        _check_slug_free(changes["slug"], exclude_id=_id)
    doc = db["category"].find_one_and_update(
        {"_id": _id},
        {"$set": changes, "$currentDate": {"updated_at": True}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFoundError("Category not found")
    return {"data": serialize(doc)}


@app.delete("/api/categories/{category_id}", dependencies=[Depends(require_admin)])
def delete_category(category_id: str):
    res = db["category"].delete_one({"_id": oid(category_id)})
    if res.deleted_count == 0:
        raise NotFoundError("Category not found")
    db["poster"].update_many({"category_id": category_id}, {"$set": {"category_id": None}})
    return {"message": "Category deleted successfully"}


# Posters
class SizePayload(BaseModel):
    name: str
    dimensions: str
    price: float = Field(..., ge=0)
    stock_quantity: int = Field(0, ge=0)
    is_available: bool = True
    display_order: int = 0


class PosterPayload(BaseModel):
    title: str = Field(..., min_length=1)
    artist: str
    description: Optional[str] = None
    category_id: Optional[str] = None
    image_url: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    is_featured: bool = False
    is_new: bool = False
    status: Literal["active", "inactive", "draft"] = "active"
    sizes: List[SizePayload] = Field(default_factory=list)


class PosterUpdatePayload(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    artist: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[str] = None
    image_url: Optional[str] = None
    images: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    is_featured: Optional[bool] = None
    is_new: Optional[bool] = None
    status: Optional[Literal["active", "inactive", "draft"]] = None
    sizes: Optional[List[SizePayload]] = None


@app.get("/api/posters")
def list_posters(
    category: Optional[str] = None,
    featured: Optional[bool] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    sort_by: str = Query("created_at", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    query = catalog.PosterQuery(
        category=category,
        featured=featured,
        search=search,
        min_price=min_price,
        max_price=max_price,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return catalog.list_posters(query)


@app.get("/api/posters/{poster_id}")
def get_poster(poster_id: str):
    return {"data": catalog.get_poster(poster_id)}


@app.post("/api/posters", status_code=201, dependencies=[Depends(require_admin)])
def create_poster(payload: PosterPayload):
    return {"data": catalog.create_poster(payload.model_dump())}


@app.put("/api/posters/{poster_id}", dependencies=[Depends(require_admin)])
def update_poster(poster_id: str, payload: PosterUpdatePayload):
    changes = payload.model_dump()
    if payload.sizes is None:
        changes.pop("sizes")
    return {"data": catalog.update_poster(poster_id, changes)}


@app.delete("/api/posters/{poster_id}", dependencies=[Depends(require_admin)])
def delete_poster(poster_id: str):
    catalog.delete_poster(poster_id)
    return {"message": "Poster deleted successfully"}


# Coupons
class CouponValidatePayload(BaseModel):
    code: Optional[str] = None
    amount: float = Field(0, ge=0)


class CouponUpdate(BaseModel):
    code: Optional[str] = None
    description: Optional[str] = None
    type: Optional[Literal["percentage", "fixed"]] = None
    value: Optional[float] = Field(None, ge=0)
    min_purchase_amount: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


def _check_code_free(code: str, exclude_id=None):
    existing = db["coupon"].find_one({"code": code})
    if existing and existing["_id"] != exclude_id:
        raise ValidationError("Coupon code already exists")


@app.post("/api/coupons/validate")
def validate_coupon(payload: CouponValidatePayload):
    coupon, discount = coupons.validate_coupon(payload.code, payload.amount)
    return {"coupon": serialize(coupon), "discount": float(discount)}


@app.get("/api/coupons", dependencies=[Depends(require_admin)])
def list_coupons():
    return {"data": [serialize(c) for c in get_documents("coupon")]}


@app.post("/api/coupons", status_code=201, dependencies=[Depends(require_admin)])
def create_coupon(payload: Coupon):
    _check_code_free(payload.code)
    coupon_id = create_document("coupon", payload)
    return {"data": serialize(db["coupon"].find_one({"_id": oid(coupon_id)}))}


@app.put("/api/coupons/{coupon_id}", dependencies=[Depends(require_admin)])
def update_coupon(coupon_id: str, payload: CouponUpdate):
    _id = oid(coupon_id)
    changes = {k: v for k, v in payload.model_dump().items() if v is not None}
    if "code" in changes:
        changes["code"] = coupons.normalize_code(changes["code"])
        _check_code_free(changes["code"], exclude_id=_id)
    doc = db["coupon"].find_one_and_update(
        {"_id": _id},
        {"$set": changes, "$currentDate": {"updated_at": True}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFoundError("Coupon not found")
    return {"data": serialize(doc)}


@app.delete("/api/coupons/{coupon_id}", dependencies=[Depends(require_admin)])
def delete_coupon(coupon_id: str):
    res = db["coupon"].delete_one({"_id": oid(coupon_id)})
    if res.deleted_count == 0:
        raise NotFoundError("Coupon not found")
    return {"message": "Coupon deleted successfully"}


# Cart
class CartQuantityPayload(BaseModel):
    poster_id: str
    size_name: str
    quantity: int


class CartLineRef(BaseModel):
    poster_id: str
    size_name: str


@app.get("/api/cart/{session_id}")
def get_cart(session_id: str):
    return cart_store.load(session_id).summary()


@app.post("/api/cart/{session_id}/items")
def add_to_cart(session_id: str, item: CartItem):
    cart = cart_store.load(session_id).add(item)
    return cart_store.save(session_id, cart).summary()


@app.patch("/api/cart/{session_id}/items")
def update_cart_item(session_id: str, payload: CartQuantityPayload):
    cart = cart_store.load(session_id).update_quantity(payload.poster_id, payload.size_name, payload.quantity)
    return cart_store.save(session_id, cart).summary()


@app.delete("/api/cart/{session_id}/items")
def remove_cart_item(session_id: str, payload: CartLineRef):
    cart = cart_store.load(session_id).remove(payload.poster_id, payload.size_name)
    return cart_store.save(session_id, cart).summary()


@app.delete("/api/cart/{session_id}")
def clear_cart(session_id: str):
    cart_store.clear(session_id)
    return {"items": [], "total_items": 0, "total_price": 0.0}


# Checkout / Orders
class OrderItemPayload(BaseModel):
    poster_id: str
    size_name: str
    quantity: int = Field(..., ge=1)
    # snapshot fields below are ignored and read from the catalog
    poster_title: Optional[str] = None
    poster_image_url: Optional[str] = None
    size_dimensions: Optional[str] = None
    price: Optional[float] = None


class QuotePayload(BaseModel):
    items: List[OrderItemPayload] = Field(..., min_length=1)
    coupon_code: Optional[str] = None


class CreateOrderPayload(BaseModel):
    email: EmailStr
    full_name: str
    phone: str
    shipping_address: Address
    billing_address: Optional[Address] = None
    items: List[OrderItemPayload] = Field(..., min_length=1)
    subtotal: Optional[float] = None
    tax_amount: Optional[float] = None
    shipping_amount: Optional[float] = None
    discount_amount: Optional[float] = None
    coupon_id: Optional[str] = None
    total_amount: Optional[float] = None
    payment_method: PaymentMethod
    payment_id: Optional[str] = None
    session_id: Optional[str] = None


class OrderUpdatePayload(BaseModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None


@app.post("/api/checkout/quote")
def checkout_quote(payload: QuotePayload):
    items = [i.model_dump() for i in payload.items]
    coupon = None
    if payload.coupon_code:
        coupon = coupons.find_active_coupon(payload.coupon_code)
    totals = orders.quote(orders.resolve_items(items), coupon)
    return {"totals": totals.model_dump(), "coupon": serialize(coupon) if coupon else None}


@app.post("/api/orders", status_code=201)
def create_order(payload: CreateOrderPayload, user: Optional[dict] = Depends(get_optional_user)):
    data = payload.model_dump()
    session_id = data.pop("session_id", None)
    order = orders.create_order(data, user_id=str(user["_id"]) if user else None)
    if session_id:
        cart_store.clear(session_id)
    return {"order": order}


@app.get("/api/orders")
def list_orders(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100), user: dict = Depends(get_current_user)):
    return orders.list_orders(user, page, limit)


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user: Optional[dict] = Depends(get_optional_user)):
    return {"order": orders.get_order(order_id, user)}


@app.patch("/api/orders/{order_id}", dependencies=[Depends(require_admin)])
def update_order(order_id: str, payload: OrderUpdatePayload):
    return {"order": orders.update_order(order_id, payload.model_dump())}


# Payments
class PaymentSessionPayload(BaseModel):
    order_id: str
    amount: Optional[int] = Field(None, description="Amount in paise, checked against the order total")


class PaymentVerifyPayload(BaseModel):
    gateway_order_id: str = Field(..., validation_alias=AliasChoices("gateway_order_id", "razorpay_order_id"))
    gateway_payment_id: str = Field(..., validation_alias=AliasChoices("gateway_payment_id", "razorpay_payment_id"))
    signature: str = Field("", validation_alias=AliasChoices("signature", "razorpay_signature"))
    order_id: Optional[str] = None


@app.post("/api/payments/create-order")
def create_payment_order(payload: PaymentSessionPayload, user: Optional[dict] = Depends(get_optional_user)):
    return payments.create_payment_session(payload.order_id, user, expected_amount=payload.amount)


@app.post("/api/payments/verify")
def verify_payment(payload: PaymentVerifyPayload):
    try:
        return payments.reconcile_payment(
            payload.gateway_order_id,
            payload.gateway_payment_id,
            payload.signature,
            order_id=payload.order_id,
        )
    except PaymentVerificationFailed as e:
        return JSONResponse(status_code=400, content={"verified": False, "error": e.message})


# Admin dashboard
@app.get("/api/admin/stats", dependencies=[Depends(require_admin)])
def admin_stats():
    return {"data": orders.dashboard_stats()}


# Dev seed: one admin, a few categories and posters
@app.post("/api/seed")
def seed():
    from faker import Faker
    fake = Faker()
    created = {"admin": 0, "categories": 0, "posters": 0}

    if not db["profile"].find_one({"role": "admin"}):
        admin = Profile(email="admin@posters.dev", full_name="Admin", password_hash=hash_password("Admin@123"), role="admin")
        create_document("profile", admin)
        created["admin"] = 1

    if db["category"].count_documents({}) == 0:
        for i, name in enumerate(["Abstract", "Botanical", "Typography"]):
            create_document("category", Category(name=name, slug=catalog.slugify(name), display_order=i))
            created["categories"] += 1

    if db["poster"].count_documents({}) == 0:
        cats = [str(c["_id"]) for c in db["category"].find({})]
        for i in range(6):
            catalog.create_poster({
                "title": fake.catch_phrase(),
                "artist": fake.name(),
                "description": fake.sentence(nb_words=12),
                "category_id": cats[i % len(cats)] if cats else None,
                "image_url": f"https://picsum.photos/seed/poster{i}/600/800",
                "tags": fake.words(nb=3),
                "is_featured": i < 2,
                "is_new": i >= 4,
                "sizes": [
                    {"name": "Small", "dimensions": "A4", "price": 799, "stock_quantity": 25, "display_order": 0},
                    {"name": "Medium", "dimensions": "A3", "price": 1299, "stock_quantity": 15, "display_order": 1},
                    {"name": "Large", "dimensions": "A2", "price": 2499, "stock_quantity": 8, "display_order": 2},
                ],
            })
            created["posters"] += 1
    return {"created": created}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
