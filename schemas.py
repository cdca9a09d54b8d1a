"""
Database Schemas for the Posters store

Each Pydantic model represents a MongoDB collection. Collection name is the lowercase of the class name.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled", "refunded"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
PaymentMethod = Literal["card", "upi", "wallet", "netbanking", "cod"]


# Profiles collection (one per auth identity)
class Profile(BaseModel):
    email: EmailStr
    full_name: Optional[str] = None
    phone: Optional[str] = None
    role: Literal["user", "admin"] = "user"
    avatar_url: Optional[str] = None
    password_hash: str = Field(..., min_length=10)


# Categories collection
class Category(BaseModel):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: Optional[str] = None
    image_url: Optional[str] = None
    display_order: int = 0
    is_active: bool = True


# Posters collection
class Poster(BaseModel):
    title: str = Field(..., min_length=1)
    slug: str
    artist: str
    description: Optional[str] = None
    category_id: Optional[str] = None
    image_url: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    is_featured: bool = False
    is_new: bool = False
    status: Literal["active", "inactive", "draft"] = "active"
    views_count: int = Field(0, ge=0)


# Size variants of a poster
class PosterSize(BaseModel):
    poster_id: str
    name: str
    dimensions: str
    price: float = Field(..., ge=0)
    stock_quantity: int = Field(0, ge=0)
    is_available: bool = True
    display_order: int = 0


# Coupons collection
class Coupon(BaseModel):
    code: str = Field(..., min_length=1)
    description: Optional[str] = None
    type: Literal["percentage", "fixed"]
    value: float = Field(..., ge=0)
    min_purchase_amount: float = Field(0, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    used_count: int = Field(0, ge=0)
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.strip().upper()


# Orders collection
class Address(BaseModel):
    full_name: str
    phone: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    postal_code: str
    country: str = "India"


class Order(BaseModel):
    order_number: str
    user_id: Optional[str] = None
    email: EmailStr
    full_name: str
    phone: str
    shipping_address: Dict[str, Any]
    billing_address: Dict[str, Any]
    subtotal: float = Field(..., ge=0)
    tax_amount: float = 0
    shipping_amount: float = Field(0, ge=0)
    discount_amount: float = Field(0, ge=0)
    coupon_id: Optional[str] = None
    total_amount: float = Field(..., ge=0)
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "pending"
    payment_method: Optional[PaymentMethod] = None
    payment_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None


# Snapshot of a purchased line, never updated after creation
class OrderItem(BaseModel):
    order_id: str
    poster_id: Optional[str] = None
    poster_title: str
    poster_image_url: Optional[str] = None
    size_name: str
    size_dimensions: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    subtotal: float = Field(..., ge=0)
