"""Pydantic models for invoices and the documents they reference."""
from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    confloat,
    field_validator,
    model_validator,
)

from ..utils.config import CANONICAL_CURRENCY
from .lifecycle import InvoiceState, invoice_state

Money = confloat(ge=0, allow_inf_nan=False)
TaxRate = confloat(ge=0, le=100, allow_inf_nan=False)

DEFAULT_TEMPLATE_KEY = "classic"
DEFAULT_STATUS = "pending"


def _coerce_calendar_date(value: Any) -> Any:
    """Accept datetimes and ISO datetime strings for date-only fields."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        text = value.strip()
        if "T" in text or " " in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return text or None
    return value


def _normalize_currency(value: Any) -> str:
    code = str(value or "").strip().upper()
    return code or CANONICAL_CURRENCY


class TaxSnapshot(BaseModel):
    """Tax name and rate frozen onto an invoice when it was written.

    Both the nested ``{"tax": {"name", "rate"}}`` and the flat
    ``{"name", "rate"}`` input shapes are accepted; the stored form is flat.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore", frozen=True)

    name: str | None = Field(default=None, max_length=128)
    rate: TaxRate | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_nested_shape(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        nested = value.get("tax")
        if isinstance(nested, dict):
            return {
                "name": nested.get("name", value.get("name")),
                "rate": nested.get("rate", value.get("rate")),
            }
        return {"name": value.get("name"), "rate": value.get("rate")}

    def canonical(self) -> str:
        return json.dumps(self.model_dump(mode="json"), sort_keys=True)


class HistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    version: int
    changed_at: datetime
    changed_by: str | None = None
    summary: str = ""
    diff: dict[str, dict[str, Any]] = Field(default_factory=dict)


class Invoice(BaseModel):
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
    )

    id: str
    owner: str
    client: str | None = None
    items: list[str] = Field(default_factory=list)

    invoice_number: str = Field(min_length=1, max_length=64)
    issue_date: date
    due_date: date

    currency_code: str = CANONICAL_CURRENCY
    payment_terms: str = Field(default="", max_length=500)
    payment_method: str = Field(default="", max_length=128)
    paid_amount: Money = 0.0

    # Stored in the canonical currency. subtotal/tax_total are None when the
    # invoice was written with a manual total.
    subtotal: Money | None = None
    discount: Money = 0.0
    additional_charges: Money = 0.0
    tax_total: Money | None = None
    total: Money
    tax_snapshot: TaxSnapshot | None = None

    notes: str = Field(default="", max_length=2000)
    payment_instructions: str = Field(default="", max_length=2000)
    terms_and_conditions: str = Field(default="", max_length=4000)

    status: str = DEFAULT_STATUS
    sent_at: datetime | None = None
    paid_at: datetime | None = None
    locked: bool = False
    template_key: str = DEFAULT_TEMPLATE_KEY

    version: int = Field(default=1, ge=1)
    history: list[HistoryEntry] = Field(default_factory=list)
    # Bumped on every write; guards the read-modify-write against races.
    revision: int = Field(default=0, ge=0)

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("issue_date", "due_date", mode="before")
    @classmethod
    def _date_only(cls, value: Any) -> Any:
        return _coerce_calendar_date(value)

    @field_validator("currency_code", mode="before")
    @classmethod
    def _currency(cls, value: Any) -> str:
        return _normalize_currency(value)

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, value: Any) -> str:
        text = str(value or "").strip()
        return text or DEFAULT_STATUS

    @field_validator("template_key", mode="before")
    @classmethod
    def _template_key(cls, value: Any) -> str:
        text = str(value or "").strip()
        return text or DEFAULT_TEMPLATE_KEY

    @property
    def state(self) -> InvoiceState:
        return invoice_state(self.status)

    def to_index_entry(self) -> dict[str, object]:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "client": self.client,
            "status": self.status,
            "issue_date": self.issue_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "total": self.total,
            "tax_total": self.tax_total,
            "currency_code": self.currency_code,
            "locked": self.locked,
            "version": self.version,
        }


class InvoiceFields(BaseModel):
    """Caller-supplied invoice fields for create and update.

    ``None`` (or leaving a field out) means "not provided": create falls back
    to defaults, update keeps the stored value.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    client: str | None = None
    items: list[str] | None = None
    invoice_number: str | None = None
    issue_date: date | None = None
    due_date: date | None = None
    currency_code: str | None = None
    payment_terms: str | None = None
    payment_method: str | None = None
    paid_amount: float | None = None
    total: float | None = None
    subtotal: float | None = None
    discount: float | None = None
    additional_charges: float | None = None
    tax_total: float | None = None
    tax_snapshot: TaxSnapshot | None = None
    notes: str | None = None
    payment_instructions: str | None = None
    terms_and_conditions: str | None = None
    template_key: str | None = None
    status: str | None = None

    @field_validator("issue_date", "due_date", mode="before")
    @classmethod
    def _date_only(cls, value: Any) -> Any:
        return _coerce_calendar_date(value)

    def provided(self) -> dict[str, Any]:
        """Fields the caller actually supplied, as model values."""

        return {
            name: getattr(self, name)
            for name in type(self).model_fields
            if getattr(self, name) is not None
        }


class Client(BaseModel):
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
    )

    id: str
    owner: str
    name: str = Field(min_length=1, max_length=256)
    email: str = Field(min_length=1, max_length=256)
    address: str = Field(default="", max_length=1000)
    phone: str = Field(default="", max_length=64)
    tax_id: str = Field(default="", max_length=64)
    is_tax_exempt: bool = False


class Item(BaseModel):
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
    )

    id: str
    owner: str
    description: str = Field(min_length=1, max_length=512)
    quantity: confloat(gt=0, allow_inf_nan=False) = 1.0
    price: Money

    @property
    def amount(self) -> float:
        return float(self.quantity) * float(self.price)


class InvoiceDefaults(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    default_tax_name: str = "GST"
    default_tax_rate: TaxRate = 0.0
    tax_mode: str = "invoice"
    payment_terms_days: int = Field(default=0, ge=0)


class Account(BaseModel):
    """Owner profile used on PDFs and email drafts."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="forbid",
    )

    id: str
    name: str = Field(min_length=1, max_length=256)
    email: str = Field(min_length=1, max_length=256)
    company_name: str = ""
    company_address: str = ""
    company_email: str = ""
    company_phone: str = ""
    company_tax_id: str = ""
    invoice_defaults: InvoiceDefaults = Field(default_factory=InvoiceDefaults)


class EmailLog(BaseModel):
    """One send attempt; written once and never modified."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    owner: str
    invoice: str
    sender: str = ""
    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    subject: str = ""
    body_text: str = ""
    currency: str = CANONICAL_CURRENCY
    status: Literal["sent", "failed"]
    provider_message_id: str = ""
    accepted: list[str] = Field(default_factory=list)
    rejected: list[str] = Field(default_factory=list)
    provider_response: str = ""
    error_message: str = ""
    sent_at: datetime | None = None
    created_at: datetime | None = None


__all__ = [
    "Account",
    "Client",
    "DEFAULT_STATUS",
    "DEFAULT_TEMPLATE_KEY",
    "EmailLog",
    "HistoryEntry",
    "Invoice",
    "InvoiceDefaults",
    "InvoiceFields",
    "Item",
    "TaxSnapshot",
]
