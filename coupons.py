"""
Coupon validation and redemption.

Rules are checked in a fixed order and the first failing rule wins.
Redemption is a single conditional $inc at the store so two checkouts
can never both take the last usage slot.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from pymongo import ReturnDocument

from database import db, oid
from errors import (
    BelowMinimumPurchase,
    Expired,
    InvalidCoupon,
    NotYetValid,
    UsageLimitReached,
    ValidationError,
)
from pricing import ZERO, quantize, to_decimal

logger = logging.getLogger(__name__)


def normalize_code(code: Optional[str]) -> str:
    code = (code or "").strip().upper()
    if not code:
        raise ValidationError("Coupon code is required")
    return code


def _as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def find_active_coupon(code: str) -> Dict[str, Any]:
    coupon = db["coupon"].find_one({"code": normalize_code(code), "is_active": True})
    if not coupon:
        raise InvalidCoupon()
    return coupon


def check_eligibility(coupon: Dict[str, Any], amount, now: Optional[datetime] = None) -> None:
    now = now or datetime.now(timezone.utc)

    valid_from = coupon.get("valid_from")
    if valid_from and _as_utc(valid_from) > now:
        raise NotYetValid()

    valid_until = coupon.get("valid_until")
    if valid_until and _as_utc(valid_until) < now:
        raise Expired()

    usage_limit = coupon.get("usage_limit")
    if usage_limit is not None and coupon.get("used_count", 0) >= usage_limit:
        raise UsageLimitReached()

    minimum = to_decimal(coupon.get("min_purchase_amount") or 0)
    if minimum > 0 and to_decimal(amount) < minimum:
        raise BelowMinimumPurchase(coupon.get("min_purchase_amount"))


def compute_discount(coupon: Dict[str, Any], amount) -> Decimal:
    value = to_decimal(coupon.get("value", 0))
    if coupon.get("type") == "percentage":
        discount = to_decimal(amount) * value / 100
        cap = coupon.get("max_discount_amount")
        if cap is not None:
            discount = min(discount, to_decimal(cap))
    else:
        # fixed discounts are not bounded by the amount; totals floor at zero
        discount = value
    return quantize(max(discount, ZERO))


def evaluate_coupon(coupon: Dict[str, Any], amount, now: Optional[datetime] = None) -> Decimal:
    check_eligibility(coupon, amount, now)
    return compute_discount(coupon, amount)


def validate_coupon(code: str, amount, now: Optional[datetime] = None) -> Tuple[Dict[str, Any], Decimal]:
    coupon = find_active_coupon(code)
    return coupon, evaluate_coupon(coupon, amount, now)


def get_coupon_by_id(coupon_id: str) -> Dict[str, Any]:
    coupon = db["coupon"].find_one({"_id": oid(coupon_id), "is_active": True})
    if not coupon:
        raise InvalidCoupon()
    return coupon


def redeem_coupon(coupon_id: str) -> Dict[str, Any]:
    """Take one usage slot. Raises UsageLimitReached when none is left."""
    coupon = db["coupon"].find_one({"_id": oid(coupon_id)}, {"usage_limit": 1})
    if not coupon:
        raise InvalidCoupon()
    limit = coupon.get("usage_limit")
    # the limit read here is part of the guard, so a concurrent edit makes the update miss
    guard: Dict[str, Any] = {"_id": coupon["_id"], "usage_limit": limit}
    if limit is not None:
        guard["used_count"] = {"$lt": limit}
    updated = db["coupon"].find_one_and_update(
        guard,
        {"$inc": {"used_count": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        logger.info("Coupon %s has no usage left", coupon_id)
        raise UsageLimitReached()
    return updated


def release_coupon(coupon_id: str) -> None:
    db["coupon"].update_one({"_id": oid(coupon_id), "used_count": {"$gt": 0}}, {"$inc": {"used_count": -1}})
