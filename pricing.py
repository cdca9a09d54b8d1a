"""
Order total calculation.

Money is computed with Decimal and quantized to cents (half-up) on every
reported amount. Totals are always recomputed from the inputs, never
patched.
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from pydantic import BaseModel

from config import FREE_SHIPPING_THRESHOLD, SHIPPING_COST, TAX_RATE

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value if value is not None else 0))


def quantize(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def line_subtotal(price, quantity: int) -> Decimal:
    return quantize(to_decimal(price) * quantity)


def calculate_subtotal(lines: Iterable) -> Decimal:
    """Sum of price x quantity over objects or dicts with price/quantity."""
    total = ZERO
    for line in lines:
        if isinstance(line, dict):
            price, qty = line.get("price", 0), line.get("quantity", 0)
        else:
            price, qty = line.price, line.quantity
        total += to_decimal(price) * int(qty)
    return quantize(total)


def shipping_for(subtotal, threshold: Decimal = FREE_SHIPPING_THRESHOLD, cost: Decimal = SHIPPING_COST) -> Decimal:
    return ZERO if to_decimal(subtotal) >= threshold else quantize(cost)


class OrderTotals(BaseModel):
    subtotal: float
    shipping_amount: float
    tax_amount: float
    discount_amount: float
    total_amount: float


def calculate_totals(
    subtotal,
    discount=ZERO,
    *,
    free_shipping_threshold: Optional[Decimal] = None,
    shipping_cost: Optional[Decimal] = None,
    tax_rate: Optional[Decimal] = None,
) -> OrderTotals:
    subtotal = quantize(subtotal)
    discount = quantize(discount)
    threshold = FREE_SHIPPING_THRESHOLD if free_shipping_threshold is None else to_decimal(free_shipping_threshold)
    cost = SHIPPING_COST if shipping_cost is None else to_decimal(shipping_cost)
    rate = TAX_RATE if tax_rate is None else to_decimal(tax_rate)

    shipping = shipping_for(subtotal, threshold, cost)
    # tax is charged on the discounted amount
    taxable = max(subtotal - discount, ZERO)
    tax = quantize(taxable * rate / 100)
    total = max(subtotal + shipping + tax - discount, ZERO)

    return OrderTotals(
        subtotal=float(subtotal),
        shipping_amount=float(shipping),
        tax_amount=float(tax),
        discount_amount=float(discount),
        total_amount=float(quantize(total)),
    )
