"""
Order creation and management.

Creating an order is all-or-nothing: header, line items, coupon usage and
stock reservations are each undone if a later step fails.
"""
import logging
import math
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

import coupons
from database import create_document, db, insert_documents, oid, serialize
from errors import (
    AuthenticationError,
    AuthorizationError,
    BusinessRuleViolation,
    InsufficientStock,
    NotFoundError,
    PaymentVerificationFailed,
    PosterNotFound,
    StoreError,
    UpstreamFailure,
    ValidationError,
)
from pricing import CENT, OrderTotals, calculate_subtotal, calculate_totals, line_subtotal, to_decimal
from schemas import Order, OrderItem

logger = logging.getLogger(__name__)


def generate_order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}-{uuid.uuid4().hex.upper()}"


def quote(items: List[Dict[str, Any]], coupon: Optional[Dict[str, Any]] = None) -> OrderTotals:
    subtotal = calculate_subtotal(items)
    discount = coupons.evaluate_coupon(coupon, subtotal) if coupon else 0
    return calculate_totals(subtotal, discount)


def _check_client_totals(claimed: Dict[str, Any], totals: OrderTotals):
    for field, value in totals.model_dump().items():
        sent = claimed.get(field)
        if sent is None:
            continue
        if abs(to_decimal(sent) - to_decimal(value)) > CENT:
            raise ValidationError(f"Order {field} does not match: expected {value}")


def resolve_items(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Price order lines from the stored poster and size.

    Only poster_id, size_name and quantity are taken from the request; the
    snapshot fields come from the catalog.
    """
    lines = []
    for it in items:
        poster_id = it.get("poster_id")
        if not poster_id:
            raise ValidationError("Each item needs a poster_id")
        poster = db["poster"].find_one({"_id": oid(poster_id), "status": "active"})
        if not poster:
            raise PosterNotFound()
        size = db["postersize"].find_one({"poster_id": poster_id, "name": it["size_name"]})
        if not size or not size.get("is_available", True):
            raise ValidationError(f"Size {it['size_name']} is not available for {poster['title']}")
        lines.append({
            "poster_id": poster_id,
            "poster_title": poster["title"],
            "poster_image_url": poster.get("image_url"),
            "size_name": size["name"],
            "size_dimensions": size["dimensions"],
            "price": float(size["price"]),
            "quantity": it["quantity"],
        })
    return lines


def reserve_stock(poster_id: Optional[str], size_name: str, quantity: int) -> bool:
    """Decrement variant stock. False when the variant no longer exists."""
    if not poster_id:
        return False
    res = db["postersize"].update_one(
        {"poster_id": poster_id, "name": size_name, "stock_quantity": {"$gte": quantity}},
        {"$inc": {"stock_quantity": -quantity}},
    )
    if res.modified_count == 1:
        return True
    if db["postersize"].find_one({"poster_id": poster_id, "name": size_name}):
        raise InsufficientStock(f"Not enough stock for size {size_name}")
    return False


def release_stock(poster_id: str, size_name: str, quantity: int) -> None:
    db["postersize"].update_one({"poster_id": poster_id, "name": size_name}, {"$inc": {"stock_quantity": quantity}})


def _build_items(order_id: str, items: List[Dict[str, Any]]) -> List[OrderItem]:
    return [
        OrderItem(
            order_id=order_id,
            poster_id=it.get("poster_id"),
            poster_title=it["poster_title"],
            poster_image_url=it.get("poster_image_url"),
            size_name=it["size_name"],
            size_dimensions=it["size_dimensions"],
            price=it["price"],
            quantity=it["quantity"],
            subtotal=float(line_subtotal(it["price"], it["quantity"])),
        )
        for it in items
    ]


def create_order(data: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
    if not data.get("items"):
        raise ValidationError("Order has no items")
    items = resolve_items(data["items"])

    coupon = coupons.get_coupon_by_id(data["coupon_id"]) if data.get("coupon_id") else None
    totals = quote(items, coupon)
    _check_client_totals(data, totals)

    shipping_address = data["shipping_address"]
    order = Order(
        order_number=generate_order_number(),
        user_id=user_id,
        email=data["email"],
        full_name=data["full_name"],
        phone=data["phone"],
        shipping_address=shipping_address,
        billing_address=data.get("billing_address") or shipping_address,
        coupon_id=data.get("coupon_id"),
        payment_method=data.get("payment_method"),
        payment_id=data.get("payment_id"),
        payment_status="paid" if data.get("payment_id") else "pending",
        **totals.model_dump(),
    )

    order_id = create_document("order", order)
    items_saved = False
    coupon_taken = False
    reserved = []
    try:
        try:
            insert_documents("orderitem", _build_items(order_id, items))
        except Exception:
            logger.exception("Item insert failed for order %s", order_id)
            raise UpstreamFailure("Failed to create order items")
        items_saved = True

        if coupon:
            coupons.redeem_coupon(order.coupon_id)
            coupon_taken = True

        for it in items:
            if reserve_stock(it.get("poster_id"), it["size_name"], it["quantity"]):
                reserved.append((it["poster_id"], it["size_name"], it["quantity"]))
    except Exception as exc:
        if isinstance(exc, StoreError):
            logger.warning("Rolling back order %s: %s", order_id, exc.message)
        else:
            logger.exception("Rolling back order %s", order_id)
        for poster_id, size_name, qty in reserved:
            release_stock(poster_id, size_name, qty)
        if coupon_taken:
            coupons.release_coupon(order.coupon_id)
        if items_saved:
            db["orderitem"].delete_many({"order_id": order_id})
        db["order"].delete_one({"_id": oid(order_id)})
        if isinstance(exc, StoreError):
            raise
        raise UpstreamFailure("Failed to create order") from exc

    logger.info("Order %s created (%s)", order.order_number, order_id)
    return get_order(order_id)


def get_order(order_id: str, user: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    doc = db["order"].find_one({"_id": oid(order_id)})
    if not doc:
        raise NotFoundError("Order not found")
    owner = doc.get("user_id")
    if user is not None and owner and owner != str(user["_id"]) and user.get("role") != "admin":
        raise AuthorizationError()
    if user is None and owner:
        raise AuthenticationError()
    return _with_items(doc)


def _with_items(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize(doc)
    out["items"] = [serialize(i) for i in db["orderitem"].find({"order_id": out["id"]})]
    return out


def list_orders(user: Dict[str, Any], page: int = 1, limit: int = 20) -> Dict[str, Any]:
    filt = {} if user.get("role") == "admin" else {"user_id": str(user["_id"])}
    total = db["order"].count_documents(filt)
    cursor = db["order"].find(filt).sort([("created_at", -1), ("_id", -1)]).skip((page - 1) * limit).limit(limit)
    return {
        "data": [_with_items(o) for o in cursor],
        "pagination": {"page": page, "limit": limit, "total": total, "totalPages": math.ceil(total / limit)},
    }


def update_order(order_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    update_doc = {k: v for k, v in changes.items() if v is not None}
    if not update_doc:
        raise ValidationError("Nothing to update")
    doc = db["order"].find_one_and_update(
        {"_id": oid(order_id)},
        {"$set": update_doc, "$currentDate": {"updated_at": True}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFoundError("Order not found")
    logger.info("Order %s updated: %s", order_id, sorted(update_doc))
    return _with_items(doc)


def attach_gateway_order(order_id: str, gateway_order_id: str) -> None:
    db["order"].update_one(
        {"_id": oid(order_id)},
        {"$set": {"gateway_order_id": gateway_order_id}, "$currentDate": {"updated_at": True}},
    )
    logger.info("Order %s bound to gateway order %s", order_id, gateway_order_id)


def mark_order_paid(order_id: str, payment_id: str, gateway_order_id: str) -> bool:
    """Move a pending order to paid/processing.

    The callback must carry the gateway order created for this order.
    Returns False when the order was already paid by that gateway order.
    """
    res = db["order"].update_one(
        {
            "_id": oid(order_id),
            "gateway_order_id": gateway_order_id,
            "status": "pending",
            "payment_status": {"$ne": "paid"},
        },
        {
            "$set": {"payment_status": "paid", "status": "processing", "payment_id": payment_id},
            "$currentDate": {"updated_at": True},
        },
    )
    if res.modified_count == 1:
        logger.info("Order %s marked paid (%s)", order_id, payment_id)
        return True

    doc = db["order"].find_one({"_id": oid(order_id)})
    if not doc:
        raise NotFoundError("Order not found")
    if doc.get("gateway_order_id") != gateway_order_id:
        logger.warning("Gateway order %s does not belong to order %s", gateway_order_id, order_id)
        raise PaymentVerificationFailed()
    if doc.get("payment_status") == "paid":
        return False
    logger.warning("Ignoring payment %s for %s order %s", payment_id, doc.get("status"), order_id)
    raise BusinessRuleViolation(f"Order is {doc.get('status')} and cannot be paid")


def _revenue(filt: Dict[str, Any]) -> float:
    return round(sum(float(o.get("total_amount", 0)) for o in db["order"].find(filt, {"total_amount": 1})), 2)


def _change(current: float, previous: float) -> int:
    if previous <= 0:
        return 0
    return round((current - previous) / previous * 100)


def dashboard_stats(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    # stored datetimes come back naive UTC
    month_ago = (now - timedelta(days=30)).replace(tzinfo=None)

    total_revenue = _revenue({"payment_status": "paid"})
    last_month_revenue = _revenue({"payment_status": "paid", "created_at": {"$lt": month_ago}})
    total_orders = db["order"].count_documents({})
    last_month_orders = db["order"].count_documents({"created_at": {"$lt": month_ago}})

    return {
        "totalRevenue": total_revenue,
        "totalOrders": total_orders,
        "totalUsers": db["profile"].count_documents({}),
        "activePosters": db["poster"].count_documents({"status": "active"}),
        "revenueChange": _change(total_revenue, last_month_revenue),
        "ordersChange": _change(total_orders, last_month_orders),
    }
