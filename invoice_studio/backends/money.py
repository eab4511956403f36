"""Money and tax arithmetic for invoices.

All amounts are plain floats in the canonical currency. Nothing here touches
storage; the invoice guard calls these helpers before anything is written.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Iterable

from .errors import ValidationFailed


def _finite(value: object, field_name: str) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValidationFailed(f"Invalid {field_name}: expected a number") from exc
    if not math.isfinite(number):
        raise ValidationFailed(f"Invalid {field_name}: expected a finite number")
    return number


def require_money(value: object, field_name: str) -> float:
    """Validate a non-negative, finite amount. Negative values are rejected, not clamped."""

    number = _finite(value, field_name)
    if number < 0:
        raise ValidationFailed(f"Invalid {field_name}: must not be negative")
    return number


def require_rate(value: object) -> float:
    rate = _finite(value, "tax rate")
    if rate < 0 or rate > 100:
        raise ValidationFailed("Invalid tax rate: must be between 0 and 100")
    return rate


def taxable_amount(subtotal: float, discount: float) -> float:
    subtotal = require_money(subtotal, "subtotal")
    discount = require_money(discount, "discount")
    return max(0.0, subtotal - discount)


def tax_amount(taxable: float, rate: float, apply_tax: bool = True) -> float:
    # The rate is validated even when tax is not applied.
    rate = require_rate(rate)
    if not apply_tax:
        return 0.0
    return require_money(taxable, "taxable amount") * rate / 100


def grand_total(taxable: float, tax: float, additional_charges: float) -> float:
    taxable = require_money(taxable, "taxable amount")
    tax = require_money(tax, "tax total")
    additional_charges = require_money(additional_charges, "additional charges")
    return max(0.0, taxable + tax + additional_charges)


def derive_total(
    *,
    subtotal: float | None,
    discount: float,
    tax_total: float | None,
    additional_charges: float,
    total: float | None,
) -> float:
    """Return the invoice total.

    The total is recomputed only when both ``subtotal`` and ``tax_total`` are
    known. Otherwise the supplied total is kept as-is so manually overridden
    invoices are never clobbered. Only the final sum is clamped at zero, so a
    discount larger than the subtotal also eats into tax and charges.
    """

    if subtotal is not None and tax_total is not None:
        subtotal = require_money(subtotal, "subtotal")
        discount = require_money(discount, "discount")
        tax_total = require_money(tax_total, "tax total")
        additional_charges = require_money(additional_charges, "additional charges")
        return max(0.0, subtotal - discount + tax_total + additional_charges)
    if total is None:
        raise ValidationFailed("total is required when subtotal and tax total are not both given")
    return require_money(total, "total")


def items_subtotal(items: Iterable[object]) -> float:
    """Sum quantity x price over catalog items (objects or mappings)."""

    subtotal = 0.0
    for item in items:
        if isinstance(item, dict):
            quantity, price = item.get("quantity", 0), item.get("price", 0)
        else:
            quantity, price = getattr(item, "quantity", 0), getattr(item, "price", 0)
        subtotal += _finite(quantity, "quantity") * require_money(price, "price")
    return subtotal


@dataclass(frozen=True)
class TotalsQuote:
    subtotal: float
    discount: float
    taxable: float
    tax_rate: float
    tax_total: float
    additional_charges: float
    total: float

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


def quote_totals(
    subtotal: float,
    discount: float = 0.0,
    tax_rate: float = 0.0,
    additional_charges: float = 0.0,
    apply_tax: bool = True,
) -> TotalsQuote:
    """Compute the full breakdown shown while composing an invoice."""

    discount = require_money(discount, "discount")
    additional_charges = require_money(additional_charges, "additional charges")
    taxable = taxable_amount(subtotal, discount)
    tax = tax_amount(taxable, tax_rate, apply_tax=apply_tax)
    return TotalsQuote(
        subtotal=float(subtotal),
        discount=discount,
        taxable=taxable,
        tax_rate=float(tax_rate) if apply_tax else 0.0,
        tax_total=tax,
        additional_charges=additional_charges,
        total=grand_total(taxable, tax, additional_charges),
    )


__all__ = [
    "TotalsQuote",
    "derive_total",
    "grand_total",
    "items_subtotal",
    "quote_totals",
    "require_money",
    "require_rate",
    "tax_amount",
    "taxable_amount",
]
