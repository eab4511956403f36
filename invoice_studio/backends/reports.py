"""Dashboard and report aggregation over an owner's invoices.

Every paid/overdue/due-soon decision goes through the lifecycle classifier,
so the KPIs agree with the badges in list views.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable

from mcp.server.fastmcp import FastMCP

from . import invoices_storage as storage
from .access import resolve_owner
from .invoices import parse_iso_date
from .invoices_models import Invoice
from .lifecycle import classify_lifecycle


@dataclass
class InvoiceSummary:
    count: int = 0
    total: float = 0.0
    paid: float = 0.0
    unpaid: float = 0.0
    overdue: float = 0.0
    due_soon: float = 0.0
    tax_total: float = 0.0
    tax_by_name: dict[str, float] = field(default_factory=dict)
    status_counts: dict[str, int] = field(default_factory=dict)
    status_mix: dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def summarize_invoices(
    invoices: Iterable[Invoice],
    now: datetime | None = None,
    issue_date_from: date | None = None,
    issue_date_to: date | None = None,
) -> InvoiceSummary:
    """Aggregate totals (canonical currency) for invoices issued in the range."""

    now = now or datetime.now(timezone.utc)
    summary = InvoiceSummary()
    tax_by_name: dict[str, float] = {}
    status_counts: Counter[str] = Counter()
    mix = {"paid": 0, "overdue": 0, "due_soon": 0, "other_unpaid": 0}

    for invoice in invoices:
        if issue_date_from and invoice.issue_date < issue_date_from:
            continue
        if issue_date_to and invoice.issue_date > issue_date_to:
            continue

        lifecycle = classify_lifecycle(invoice, now)
        flags = lifecycle.flags
        amount = float(invoice.total or 0)
        summary.count += 1
        summary.total += amount
        status_counts[lifecycle.normalized_status] += 1

        tax = float(invoice.tax_total or 0)
        if tax > 0:
            summary.tax_total += tax
            snapshot = invoice.tax_snapshot
            name = (snapshot.name if snapshot and snapshot.name else "") or "Tax"
            tax_by_name[name] = tax_by_name.get(name, 0.0) + tax

        if lifecycle.computed_status == "paid":
            summary.paid += amount
            mix["paid"] += 1
            continue

        summary.unpaid += amount
        if flags.is_overdue:
            summary.overdue += amount
            mix["overdue"] += 1
        elif flags.is_due_soon:
            mix["due_soon"] += 1
        else:
            mix["other_unpaid"] += 1
        if flags.is_due_soon:
            summary.due_soon += amount

    summary.tax_by_name = tax_by_name
    summary.status_counts = dict(status_counts.most_common())
    summary.status_mix = mix
    return summary


def register(server: FastMCP) -> None:
    """Register report tools."""

    @server.tool(name="summarize_invoices")
    def summarize_invoices_tool(
        issue_date_from: str | None = None,
        issue_date_to: str | None = None,
        owner: str | None = None,
    ) -> Dict[str, Any]:
        """Dashboard KPIs in INR: total, paid, unpaid, overdue, due soon, tax by name, status mix."""

        invoices = storage.invoices().find(owner=resolve_owner(owner))
        return summarize_invoices(
            invoices,
            issue_date_from=parse_iso_date(issue_date_from, "issue_date_from"),
            issue_date_to=parse_iso_date(issue_date_to, "issue_date_to"),
        ).as_dict()


__all__ = ["InvoiceSummary", "register", "summarize_invoices"]
