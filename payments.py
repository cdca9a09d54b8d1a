"""
Razorpay integration: gateway order creation and payment signature checks.

A gateway order is always created for a stored order and for that order's
own total. Its id is saved on the order, and a verified callback can only
settle the order it was created for.
"""
import hashlib
import hmac
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import orders
from config import PAYMENT_CURRENCY, RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET
from errors import BusinessRuleViolation, PaymentVerificationFailed, UpstreamFailure, ValidationError
from pricing import to_decimal

logger = logging.getLogger(__name__)


def get_gateway():
    import razorpay
    return razorpay.Client(auth=(RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET))


def to_minor_units(amount) -> int:
    """Rupees to paise."""
    return int((to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def create_payment_session(
    order_id: str,
    user: Optional[Dict[str, Any]] = None,
    expected_amount: Optional[int] = None,
) -> Dict[str, Any]:
    """Create a gateway order charging the stored total of ``order_id``."""
    order = orders.get_order(order_id, user)
    if order.get("payment_status") == "paid":
        raise BusinessRuleViolation("Order is already paid")
    amount = to_minor_units(order.get("total_amount") or 0)
    if amount <= 0:
        raise ValidationError("Order has nothing to pay")
    if expected_amount is not None and expected_amount != amount:
        raise ValidationError(f"Payment amount does not match order total: expected {amount}")
    options = {
        "amount": amount,
        "currency": PAYMENT_CURRENCY,
        "receipt": order["order_number"],
    }
    try:
        gw_order = get_gateway().order.create(data=options)
    except Exception:
        logger.exception("Razorpay order creation failed for order %s", order_id)
        raise UpstreamFailure("Failed to create payment order")
    orders.attach_gateway_order(order_id, gw_order["id"])
    return {"order_id": gw_order["id"], "amount": gw_order["amount"], "currency": gw_order["currency"]}


def compute_signature(gateway_order_id: str, gateway_payment_id: str, secret: str) -> str:
    message = f"{gateway_order_id}|{gateway_payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(gateway_order_id: str, gateway_payment_id: str, signature: Optional[str], secret: Optional[str] = None) -> bool:
    secret = RAZORPAY_KEY_SECRET if secret is None else secret
    if not secret:
        logger.error("RAZORPAY_KEY_SECRET is not set, rejecting payment signature")
        return False
    if not signature or not gateway_order_id or not gateway_payment_id:
        return False
    expected = compute_signature(gateway_order_id, gateway_payment_id, secret)
    return hmac.compare_digest(expected.encode(), signature.encode())


def reconcile_payment(
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    order_id: Optional[str] = None,
    secret: Optional[str] = None,
) -> Dict[str, Any]:
    """Verify a gateway callback and, when an order is named, mark it paid.

    Safe to call again with the same callback: an order that is already
    paid is left untouched.
    """
    if not verify_signature(gateway_order_id, gateway_payment_id, signature, secret):
        logger.warning("Signature mismatch for gateway order %s", gateway_order_id)
        raise PaymentVerificationFailed()
    result: Dict[str, Any] = {"verified": True}
    if order_id:
        result["updated"] = orders.mark_order_paid(order_id, gateway_payment_id, gateway_order_id)
    return result
