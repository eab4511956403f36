"""Currency conversion and the render contract shared by PDF and HTML views.

Every monetary line is converted on its own from the canonical amount; the
total is never converted first and split back into components.
"""
from __future__ import annotations

import math
from datetime import date
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field

from ..utils.config import CANONICAL_CURRENCY
from .errors import ValidationFailed
from .fx import normalize_currency_code
from .invoices_models import Account, Client, Invoice, Item
from .lifecycle import normalize_status
from .money import taxable_amount

# code -> (symbol, fraction digits)
_CURRENCY_FORMATS: dict[str, tuple[str, int]] = {
    "INR": ("₹", 2),
    "USD": ("$", 2),
    "EUR": ("€", 2),
    "GBP": ("£", 2),
    "JPY": ("¥", 0),
    "AUD": ("A$", 2),
    "CAD": ("CA$", 2),
    "NZD": ("NZ$", 2),
    "SGD": ("SGD ", 2),
    "CHF": ("CHF ", 2),
    "AED": ("AED ", 2),
    "CNY": ("CN¥", 2),
    "HKD": ("HK$", 2),
    "SEK": ("SEK ", 2),
    "ZAR": ("ZAR ", 2),
}

_LOCALES = {"en-IN", "en-US"}


def _group_western(digits: str) -> str:
    groups = []
    while len(digits) > 3:
        groups.insert(0, digits[-3:])
        digits = digits[:-3]
    groups.insert(0, digits)
    return ",".join(groups)


def _group_indian(digits: str) -> str:
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def format_money(amount: float, currency: str | None, locale: str = "en-IN") -> str:
    """Format an amount already expressed in ``currency``.

    Known codes get their symbol and locale grouping (en-IN groups in lakhs).
    Codes the formatter does not know fall back to ``"<CODE> 12.00"``.
    """

    value = float(amount or 0)
    code = normalize_currency_code(currency) or CANONICAL_CURRENCY
    spec = _CURRENCY_FORMATS.get(code)
    if spec is None or locale not in _LOCALES or not math.isfinite(value):
        return f"{code} {value:.2f}"

    symbol, digits = spec
    text = f"{abs(value):.{digits}f}"
    whole, _, fraction = text.partition(".")
    grouped = _group_indian(whole) if locale == "en-IN" else _group_western(whole)
    number = f"{grouped}.{fraction}" if fraction else grouped
    sign = "-" if value < 0 and float(text) != 0 else ""
    return f"{sign}{symbol}{number}"


def _format_rate(rate: float) -> str:
    return f"{rate:g}"


class CurrencyConverter:
    """Converts canonical amounts with ``rate`` units of target per canonical unit."""

    def __init__(self, currency_code: str | None = None, rate: float = 1.0, locale: str = "en-IN"):
        code = normalize_currency_code(currency_code) or CANONICAL_CURRENCY
        if code == CANONICAL_CURRENCY:
            rate = 1.0
        try:
            rate = float(rate)
        except (TypeError, ValueError) as exc:
            raise ValidationFailed("Invalid exchange rate") from exc
        if not math.isfinite(rate) or rate <= 0:
            raise ValidationFailed("Invalid exchange rate")
        self.currency_code = code
        self.rate = rate
        self.locale = locale

    def convert(self, amount: float | None) -> float:
        return float(amount or 0) * self.rate

    def format(self, amount: float | None) -> str:
        return format_money(self.convert(amount), self.currency_code, self.locale)


class SummaryLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    amount: float
    formatted: str


class ItemRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str
    quantity: float
    unit_price: float
    amount: float
    unit_price_formatted: str
    amount_formatted: str


class Party(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    lines: list[str] = Field(default_factory=list)


class RenderContract(BaseModel):
    model_config = ConfigDict(frozen=True)

    invoice_id: str
    invoice_number: str
    issue_date: date
    due_date: date
    status: str
    template_key: str
    currency_code: str
    rate: float
    seller: Party
    bill_to: Party
    payment_meta: list[str] = Field(default_factory=list)
    items: list[ItemRow] = Field(default_factory=list)
    summary: list[SummaryLine] = Field(default_factory=list)
    notes: str = ""
    payment_instructions: str = ""
    terms_and_conditions: str = ""

    def line(self, key: str) -> SummaryLine | None:
        for line in self.summary:
            if line.key == key:
                return line
        return None


def _seller(account: Account | None) -> Party:
    if account is None:
        return Party(name="Your Company")
    lines = [
        account.company_address,
        account.company_email or account.email,
        account.company_phone,
        f"Tax ID: {account.company_tax_id}" if account.company_tax_id else "",
    ]
    return Party(
        name=account.company_name or account.name or "Your Company",
        lines=[line for line in lines if line],
    )


def _bill_to(client: Client | None) -> Party:
    if client is None:
        return Party(name="")
    lines = [
        client.address,
        client.email,
        f"Tax ID: {client.tax_id}" if client.tax_id else "",
        "Tax-exempt" if client.is_tax_exempt else "",
    ]
    return Party(name=client.name, lines=[line for line in lines if line])


def summary_lines(invoice: Invoice, converter: CurrencyConverter) -> list[SummaryLine]:
    """Summary block in its fixed order: subtotal, discount, taxable, tax, charges, total."""

    def line(key: str, label: str, amount: float, prefix: str = "") -> SummaryLine:
        return SummaryLine(
            key=key,
            label=label,
            amount=converter.convert(amount),
            formatted=f"{prefix}{converter.format(amount)}",
        )

    lines: list[SummaryLine] = []
    # Manual-total invoices have no breakdown to show.
    if invoice.subtotal is not None:
        subtotal = invoice.subtotal
        discount = float(invoice.discount or 0)
        charges = float(invoice.additional_charges or 0)
        tax_total = float(invoice.tax_total or 0)
        snapshot = invoice.tax_snapshot

        lines.append(line("subtotal", "Subtotal", subtotal))
        if discount > 0:
            lines.append(line("discount", "Discount", discount, prefix="-"))
        lines.append(line("taxable", "Taxable", taxable_amount(subtotal, discount)))
        if tax_total > 0 or snapshot is not None:
            label = (snapshot.name if snapshot and snapshot.name else None) or "Tax"
            if snapshot is not None and snapshot.rate is not None:
                label = f"{label} ({_format_rate(snapshot.rate)}%)"
            lines.append(line("tax", label, tax_total))
        if charges > 0:
            lines.append(line("additional_charges", "Additional charges", charges))
    lines.append(line("total", "Total", invoice.total))
    if normalize_status(invoice.status) == "paid" and float(invoice.paid_amount or 0) > 0:
        lines.append(line("paid", "Paid", invoice.paid_amount))
    return lines


def render_invoice(
    invoice: Invoice,
    client: Client | None,
    items: Iterable[Item],
    currency_code: str | None = None,
    rate: float = 1.0,
    account: Account | None = None,
) -> RenderContract:
    """Build the data both the PDF and the summary views render from."""

    converter = CurrencyConverter(currency_code, rate)

    rows = [
        ItemRow(
            description=item.description,
            quantity=item.quantity,
            unit_price=converter.convert(item.price),
            amount=converter.convert(item.amount),
            unit_price_formatted=converter.format(item.price),
            amount_formatted=converter.format(item.amount),
        )
        for item in items
    ]

    payment_meta = [
        f"Currency: {invoice.currency_code}" if invoice.currency_code else "",
        f"Terms: {invoice.payment_terms}" if invoice.payment_terms else "",
        f"Method: {invoice.payment_method}" if invoice.payment_method else "",
    ]

    return RenderContract(
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        issue_date=invoice.issue_date,
        due_date=invoice.due_date,
        status=invoice.status,
        template_key=invoice.template_key,
        currency_code=converter.currency_code,
        rate=converter.rate,
        seller=_seller(account),
        bill_to=_bill_to(client),
        payment_meta=[meta for meta in payment_meta if meta],
        items=rows,
        summary=summary_lines(invoice, converter),
        notes=invoice.notes,
        payment_instructions=invoice.payment_instructions,
        terms_and_conditions=invoice.terms_and_conditions,
    )


__all__ = [
    "CurrencyConverter",
    "ItemRow",
    "Party",
    "RenderContract",
    "SummaryLine",
    "format_money",
    "render_invoice",
    "summary_lines",
]
