from decimal import Decimal

import pytest

from pricing import calculate_subtotal, calculate_totals, line_subtotal, quantize, shipping_for


def test_free_shipping_above_threshold():
    totals = calculate_totals(3500)
    assert totals.shipping_amount == 0
    assert totals.tax_amount == 630
    assert totals.total_amount == 4130


def test_fixed_discount_below_threshold():
    totals = calculate_totals(2000, 300)
    assert totals.shipping_amount == 99
    assert totals.tax_amount == 306
    assert totals.discount_amount == 300
    assert totals.total_amount == 2105


@pytest.mark.parametrize("subtotal,expected", [(2999, 0), (5000, 0), (2998.99, 99), (0, 99)])
def test_shipping_threshold(subtotal, expected):
    assert shipping_for(subtotal) == expected


def test_tax_is_charged_after_discount():
    assert calculate_totals(5000, 1000).tax_amount == 720


def test_total_never_negative():
    totals = calculate_totals(100, 500)
    assert totals.tax_amount == 0
    assert totals.total_amount == 0


def test_overrides():
    totals = calculate_totals(100, free_shipping_threshold=50, shipping_cost=10, tax_rate=10)
    assert totals.shipping_amount == 0
    assert totals.total_amount == 110


def test_half_up_rounding():
    assert quantize(Decimal("0.125")) == Decimal("0.13")
    assert quantize(2.675) == Decimal("2.68")
    assert calculate_totals(Decimal("10.25")).tax_amount == 1.85  # 1.845 rounds up


def test_subtotal_from_lines():
    lines = [{"price": 799, "quantity": 2}, {"price": 1299.5, "quantity": 1}]
    assert calculate_subtotal(lines) == Decimal("2897.50")
    assert line_subtotal(19.99, 3) == Decimal("59.97")
