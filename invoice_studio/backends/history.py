"""Version history for draft edits."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

from .invoices_models import HistoryEntry, Invoice
from .lifecycle import normalize_status


def _text(value: Any) -> str:
    return str(value or "")


def _count(value: Any) -> int:
    return len(value) if value else 0


# (field, label, comparison key); the order is the order of the summary.
TRACKED_FIELDS: tuple[tuple[str, str, Callable[[Any], Any]], ...] = (
    ("invoice_number", "Invoice #", _text),
    ("due_date", "Due date", lambda value: value),
    ("issue_date", "Issue date", lambda value: value),
    ("total", "Total", lambda value: value),
    ("subtotal", "Subtotal", lambda value: value),
    ("discount", "Discount", lambda value: value),
    ("additional_charges", "Additional charges", lambda value: value),
    ("tax_total", "Tax", lambda value: value),
    ("client", "Client", _text),
    ("items", "Items", _count),
    ("status", "Status", normalize_status),
)


def diff_tracked_fields(current: Invoice, proposed: Invoice) -> tuple[dict[str, dict[str, Any]], list[str]]:
    """Return the sparse diff and the labels of the tracked fields that changed.

    Dates are date-only already, so they compare by calendar day. Items only
    register when the number of referenced items changes.
    """

    diff: dict[str, dict[str, Any]] = {}
    labels: list[str] = []
    for field_name, label, key in TRACKED_FIELDS:
        before = getattr(current, field_name)
        after = getattr(proposed, field_name)
        if key(before) == key(after):
            continue
        if field_name == "items":
            diff[field_name] = {"from": _count(before), "to": _count(after)}
        else:
            diff[field_name] = {"from": before, "to": after}
        labels.append(label)
    return diff, labels


def record_history(
    invoice: Invoice,
    diff: dict[str, dict[str, Any]],
    labels: list[str],
    changed_by: str | None,
    now: datetime | None = None,
) -> Invoice:
    """Return ``invoice`` with a bumped version and one more history entry.

    An empty diff returns the invoice unchanged.
    """

    if not diff:
        return invoice

    version = invoice.version + 1
    entry = HistoryEntry(
        version=version,
        changed_at=now or datetime.now(timezone.utc),
        changed_by=changed_by,
        summary=f"Updated: {', '.join(labels)}",
        diff=diff,
    )
    return invoice.model_copy(
        update={"version": version, "history": [*invoice.history, entry]}
    )


__all__ = ["TRACKED_FIELDS", "diff_tracked_fields", "record_history"]
