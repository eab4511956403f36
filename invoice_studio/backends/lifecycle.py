"""Status normalisation and the lifecycle classifier.

Everything here is a pure function of its inputs. List views, the dashboard
aggregation, reports and the HTML detail page all call :func:`classify` so
badges and totals agree everywhere.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any

from ..utils.config import DUE_SOON_DAYS, STALE_DRAFT_DAYS

MS_PER_DAY = 24 * 60 * 60 * 1000

LABEL_STALE_DRAFT = "Stale draft"
LABEL_DUE_SOON = "Due soon"
LABEL_OVERDUE = "Overdue"


class InvoiceState(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OTHER = "other"


def normalize_status(status: str | None) -> str:
    """Lowercase the stored status and fold the legacy ``pending`` into ``draft``."""

    value = str(status or "").strip().lower()
    if not value or value == "pending":
        return "draft"
    return value


def invoice_state(status: str | None) -> InvoiceState:
    normalized = normalize_status(status)
    try:
        return InvoiceState(normalized)
    except ValueError:
        return InvoiceState.OTHER


def is_draft_like(status: str | None) -> bool:
    return invoice_state(status) is InvoiceState.DRAFT


def _as_instant(value: date | datetime | str | None) -> datetime | None:
    """Turn a date, datetime or ISO string into an aware UTC datetime.

    Plain dates become UTC midnight so a due date of "today" is already
    overdue once the day has started.
    """

    if value is None or value == "":
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if "T" in text or " " in text:
            value = datetime.fromisoformat(text.replace("Z", "+00:00"))
        else:
            value = date.fromisoformat(text)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _millis(delta: timedelta) -> int:
    return delta.days * MS_PER_DAY + delta.seconds * 1000 + delta.microseconds // 1000


@dataclass(frozen=True)
class LifecycleFlags:
    is_draft: bool
    is_paid: bool
    is_overdue: bool
    is_due_soon: bool
    is_stale_draft: bool

    def as_dict(self) -> dict[str, bool]:
        return {
            "is_draft": self.is_draft,
            "is_paid": self.is_paid,
            "is_overdue": self.is_overdue,
            "is_due_soon": self.is_due_soon,
            "is_stale_draft": self.is_stale_draft,
        }


@dataclass(frozen=True)
class Lifecycle:
    normalized_status: str
    computed_status: str
    labels: list[str] = field(default_factory=list)
    flags: LifecycleFlags | None = None
    age_days: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "normalized_status": self.normalized_status,
            "computed_status": self.computed_status,
            "labels": list(self.labels),
            "flags": self.flags.as_dict() if self.flags else {},
            "age_days": self.age_days,
        }


def classify(
    status: str | None,
    issue_date: date | datetime | str | None,
    due_date: date | datetime | str | None,
    now: datetime | None = None,
    stale_draft_days: int = STALE_DRAFT_DAYS,
    due_soon_days: int = DUE_SOON_DAYS,
) -> Lifecycle:
    """Derive the display status and risk labels of an invoice."""

    now_at = _as_instant(now or datetime.now(timezone.utc))
    issued_at = _as_instant(issue_date)
    due_at = _as_instant(due_date)

    normalized = normalize_status(status)
    is_paid = normalized == "paid"
    is_draft = normalized == "draft"

    is_overdue = not is_paid and due_at is not None and due_at < now_at
    is_due_soon = (
        not is_paid
        and due_at is not None
        and now_at <= due_at <= now_at + timedelta(days=due_soon_days)
    )

    age_days = None
    is_stale_draft = False
    if issued_at is not None:
        age_days = _millis(now_at - issued_at) // MS_PER_DAY
        is_stale_draft = is_draft and age_days >= stale_draft_days

    labels = []
    if is_stale_draft:
        labels.append(LABEL_STALE_DRAFT)
    if is_due_soon:
        labels.append(LABEL_DUE_SOON)
    if is_overdue:
        labels.append(LABEL_OVERDUE)

    return Lifecycle(
        normalized_status=normalized,
        computed_status="overdue" if is_overdue else normalized,
        labels=labels,
        flags=LifecycleFlags(
            is_draft=is_draft,
            is_paid=is_paid,
            is_overdue=is_overdue,
            is_due_soon=is_due_soon,
            is_stale_draft=is_stale_draft,
        ),
        age_days=age_days,
    )


def classify_lifecycle(invoice: Any, now: datetime | None = None, **options: int) -> Lifecycle:
    """Classify an invoice document (model or mapping)."""

    if isinstance(invoice, dict):
        return classify(
            invoice.get("status"),
            invoice.get("issue_date"),
            invoice.get("due_date"),
            now,
            **options,
        )
    return classify(invoice.status, invoice.issue_date, invoice.due_date, now, **options)


__all__ = [
    "InvoiceState",
    "LABEL_DUE_SOON",
    "LABEL_OVERDUE",
    "LABEL_STALE_DRAFT",
    "Lifecycle",
    "LifecycleFlags",
    "classify",
    "classify_lifecycle",
    "invoice_state",
    "is_draft_like",
    "normalize_status",
]
