import math
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from invoice_studio.backends.errors import ValidationFailed
from invoice_studio.backends.money import (
    derive_total,
    grand_total,
    items_subtotal,
    quote_totals,
    tax_amount,
    taxable_amount,
)


@pytest.mark.parametrize(
    "subtotal, discount, rate, charges",
    [
        (0, 0, 0, 0),
        (1000, 100, 18, 50),
        (1234.56, 1234.56, 28, 0),
        (99.99, 0.01, 5, 12.5),
        (500, 250, 100, 0),
    ],
)
def test_total_matches_taxable_plus_tax_plus_charges(subtotal, discount, rate, charges):
    quote = quote_totals(subtotal, discount, rate, charges)

    taxable = subtotal - discount
    expected = taxable * (1 + rate / 100) + charges
    assert math.isclose(quote.total, expected, rel_tol=1e-9, abs_tol=1e-9)


def test_quote_breakdown_for_gst_invoice():
    quote = quote_totals(1000, discount=100, tax_rate=18, additional_charges=50)

    assert quote.taxable == 900
    assert quote.tax_total == pytest.approx(162)
    assert quote.total == pytest.approx(1112)


def test_tax_exempt_quote_has_no_tax():
    quote = quote_totals(1000, tax_rate=18, apply_tax=False)

    assert quote.tax_total == 0
    assert quote.tax_rate == 0
    assert quote.total == 1000


def test_discount_larger_than_subtotal_clamps_taxable_to_zero():
    assert taxable_amount(100, 150) == 0


@pytest.mark.parametrize("bad", [-1, float("nan"), float("inf"), "abc", None])
def test_invalid_discount_is_rejected_not_clamped(bad):
    with pytest.raises(ValidationFailed):
        quote_totals(100, discount=bad)


@pytest.mark.parametrize("rate", [-0.5, 100.5])
def test_tax_rate_outside_range_is_rejected(rate):
    with pytest.raises(ValidationFailed):
        tax_amount(100, rate)


def test_grand_total_rejects_negative_charges():
    with pytest.raises(ValidationFailed):
        grand_total(100, 0, -5)


def test_derive_total_recomputes_when_subtotal_and_tax_known():
    total = derive_total(
        subtotal=1000, discount=100, tax_total=162, additional_charges=50, total=5
    )
    assert total == pytest.approx(1112)


def test_derive_total_clamps_only_the_final_sum():
    total = derive_total(
        subtotal=100, discount=200, tax_total=50, additional_charges=0, total=None
    )
    assert total == 0

    total = derive_total(
        subtotal=100, discount=150, tax_total=30, additional_charges=40, total=None
    )
    assert total == pytest.approx(20)


def test_derive_total_keeps_manual_total():
    total = derive_total(
        subtotal=None, discount=100, tax_total=None, additional_charges=50, total=777
    )
    assert total == 777


def test_derive_total_without_any_total_fails():
    with pytest.raises(ValidationFailed):
        derive_total(subtotal=1000, discount=0, tax_total=None, additional_charges=0, total=None)


def test_items_subtotal_accepts_models_and_mappings():
    class Line:
        quantity = 2
        price = 400

    assert items_subtotal([Line(), {"quantity": 1, "price": 200}]) == 1000
