"""Invoice lifecycle: the mutation guard, owner-scoped reads and MCP tools."""
from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError

from ..utils.logging import record_write_attempt
from . import catalog
from . import invoices_storage as storage
from .access import require_same_owner, require_writes_enabled, resolve_owner
from .errors import Locked, NotFound, TaxLocked, ValidationFailed, describe_validation_error
from .fx import FxRatesCache, default_cache, resolve_rate
from .history import diff_tracked_fields, record_history
from .invoices_models import DEFAULT_STATUS, Invoice, InvoiceFields
from .invoices_storage import build_document, new_id
from .lifecycle import InvoiceState, classify_lifecycle, invoice_state, normalize_status
from .money import derive_total, quote_totals, require_money
from .render import RenderContract, render_invoice

_LOGGER = logging.getLogger("invoice_studio.backends.invoices")

DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100

DEFAULT_INVOICE_NUMBER = "INV-1001"

# Frozen once an invoice has been sent.
MONEY_FIELDS = ("subtotal", "discount", "additional_charges", "tax_total", "total")
# Inputs the stored total is derived from.
TOTAL_INPUTS = ("subtotal", "discount", "additional_charges", "tax_total")

_TRAILING_NUMBER = re.compile(r"^(.*?)(\d+)$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_fields(fields: InvoiceFields | dict[str, Any] | None) -> InvoiceFields:
    if isinstance(fields, InvoiceFields):
        return fields
    try:
        return InvoiceFields.model_validate(fields or {})
    except ValidationError as exc:
        raise ValidationFailed(describe_validation_error(exc)) from exc


def _check_money(values: dict[str, Any]) -> None:
    for name in (*MONEY_FIELDS, "paid_amount"):
        if values.get(name) is not None:
            values[name] = require_money(values[name], name.replace("_", " "))


def get_invoice(owner: str, invoice_id: str) -> Invoice:
    """Load an invoice of ``owner`` with consistent error handling."""

    normalized_id = str(invoice_id).strip() if invoice_id is not None else ""
    if not normalized_id:
        raise ValidationFailed("invoice_id is required")

    try:
        invoice = storage.invoices().find_by_id(normalized_id)
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ValidationFailed(f"Invoice {normalized_id} is invalid") from exc
    if invoice is None:
        raise NotFound("Invoice not found")
    require_same_owner(invoice.owner, owner, "invoice")
    return invoice


def create_invoice(
    owner: str,
    fields: InvoiceFields | dict[str, Any],
    now: datetime | None = None,
) -> Invoice:
    """Validate and persist a new invoice at version 1.

    Requires client, items, invoice_number, due_date and either a total or
    both subtotal and tax_total. When subtotal and tax_total are both given
    the total is derived from them.
    """

    data = _parse_fields(fields)
    if (
        not data.client
        or not data.items
        or not data.invoice_number
        or data.due_date is None
        or (data.total is None and (data.subtotal is None or data.tax_total is None))
    ):
        raise ValidationFailed("Please add all fields")

    catalog.require_owned_client(owner, data.client)
    catalog.require_owned_items(owner, data.items)

    values = data.provided()
    values.setdefault("discount", 0.0)
    values.setdefault("additional_charges", 0.0)
    _check_money(values)
    values["total"] = derive_total(
        subtotal=values.get("subtotal"),
        discount=values["discount"],
        tax_total=values.get("tax_total"),
        additional_charges=values["additional_charges"],
        total=values.get("total"),
    )

    now = now or _utcnow()
    state = invoice_state(values.get("status", DEFAULT_STATUS))
    invoice = build_document(
        Invoice,
        {
            **values,
            "id": new_id(),
            "owner": owner,
            "issue_date": values.get("issue_date") or now.date(),
            "sent_at": now if state is InvoiceState.SENT else None,
            "paid_at": now if state is InvoiceState.PAID else None,
            "locked": state in (InvoiceState.SENT, InvoiceState.PAID),
            "version": 1,
            "history": [],
            "created_at": now,
            "updated_at": now,
        },
    )

    record_write_attempt("invoice.create", owner=owner, invoice=invoice.id)
    storage.invoices().create(invoice)
    _LOGGER.info("Created invoice %s (%s)", invoice.invoice_number, invoice.id)
    return invoice


def _require_money_unchanged(
    current: Invoice, proposed: Invoice, raw_snapshot: Any = None
) -> None:
    for name in MONEY_FIELDS:
        if getattr(current, name) != getattr(proposed, name):
            raise TaxLocked(
                "Sent invoices have locked amounts and tax. Move the invoice back "
                "to draft to change them."
            )
    before = current.tax_snapshot.canonical() if current.tax_snapshot else None
    after = proposed.tax_snapshot.canonical() if proposed.tax_snapshot else None
    # A re-supplied snapshot must match the stored flat form exactly, shape included.
    stored = current.tax_snapshot.model_dump(mode="json") if current.tax_snapshot else None
    if before != after or (raw_snapshot is not None and raw_snapshot != stored):
        raise TaxLocked("Tax snapshot is locked after the invoice has been sent")


def update_invoice(
    owner: str,
    invoice_id: str,
    patch: InvoiceFields | dict[str, Any],
    now: datetime | None = None,
) -> Invoice:
    """Apply ``patch`` to an invoice, enforcing the lifecycle rules.

    * Paid invoices, and locked invoices in any non-standard status, reject
      every mutation with :class:`Locked`.
    * Sent invoices keep their amounts and tax snapshot (:class:`TaxLocked`)
      unless the same update moves them back to draft.
    * Draft edits to tracked fields bump ``version`` and append history.

    Fields left out of ``patch`` (or ``None``) keep their stored values. The
    write is a compare-and-swap on the stored revision.
    """

    current = get_invoice(owner, invoice_id)
    state = current.state
    if state is InvoiceState.PAID:
        raise Locked("Paid invoices are locked")
    if state is InvoiceState.OTHER and current.locked:
        raise Locked("Invoice is locked")

    raw_snapshot = patch.get("tax_snapshot") if isinstance(patch, dict) else None
    provided = _parse_fields(patch).provided()
    _check_money(provided)

    merged = {**current.model_dump(), **provided}
    touches_totals = any(name in provided for name in TOTAL_INPUTS)
    if touches_totals and merged["subtotal"] is not None and merged["tax_total"] is not None:
        merged["total"] = derive_total(
            subtotal=merged["subtotal"],
            discount=merged["discount"],
            tax_total=merged["tax_total"],
            additional_charges=merged["additional_charges"],
            total=merged["total"],
        )

    if merged.get("client") != current.client:
        catalog.require_owned_client(owner, merged.get("client"))
    if list(merged.get("items") or []) != list(current.items):
        catalog.require_owned_items(owner, merged.get("items"))

    proposed = build_document(Invoice, merged)
    target = proposed.state
    if state is InvoiceState.SENT and target is not InvoiceState.DRAFT:
        _require_money_unchanged(current, proposed, raw_snapshot)

    now = now or _utcnow()
    updates: dict[str, Any] = {
        "locked": current.locked or target in (InvoiceState.SENT, InvoiceState.PAID),
        "updated_at": now,
        "revision": current.revision + 1,
    }
    status_changed = normalize_status(current.status) != normalize_status(proposed.status)
    if status_changed and target is InvoiceState.SENT and proposed.sent_at is None:
        updates["sent_at"] = now
    if status_changed and target is InvoiceState.PAID and proposed.paid_at is None:
        updates["paid_at"] = now
    proposed = proposed.model_copy(update=updates)

    if state is InvoiceState.DRAFT:
        diff, labels = diff_tracked_fields(current, proposed)
        proposed = record_history(proposed, diff, labels, owner, now)

    record_write_attempt(
        "invoice.update",
        owner=owner,
        invoice=current.id,
        fields=sorted(provided),
    )
    storage.invoices().save(proposed, expected={"revision": current.revision})
    _LOGGER.info(
        "Updated invoice %s (status=%s, version=%s)",
        proposed.id,
        normalize_status(proposed.status),
        proposed.version,
    )
    return proposed


def delete_invoice(owner: str, invoice_id: str) -> Dict[str, Any]:
    """Hard-delete an invoice in any state."""

    invoice = get_invoice(owner, invoice_id)
    record_write_attempt("invoice.delete", owner=owner, invoice=invoice.id)
    storage.invoices().delete(invoice.id)
    _LOGGER.info("Deleted invoice %s", invoice.id)
    return {"deleted_invoice_id": invoice.id}


def is_mutable(invoice: Invoice) -> bool:
    state = invoice.state
    if state is InvoiceState.PAID:
        return False
    return not (state is InvoiceState.OTHER and invoice.locked)


def select_template(owner: str, invoice_id: str, template_key: str | None) -> Invoice:
    """Pick the template for a render, persisting it while the invoice is mutable.

    Locked invoices render with the requested template without it being saved.
    """

    invoice = get_invoice(owner, invoice_id)
    key = str(template_key or "").strip()
    if not key or key == invoice.template_key:
        return invoice
    if not is_mutable(invoice):
        return invoice.model_copy(update={"template_key": key})
    return update_invoice(owner, invoice_id, {"template_key": key})


def invoice_render_contract(
    owner: str,
    invoice_id: str | Invoice,
    currency_code: str | None = None,
    fx_cache: FxRatesCache | None = None,
) -> RenderContract:
    """Load what an invoice references and build its render contract."""

    invoice = invoice_id if isinstance(invoice_id, Invoice) else get_invoice(owner, invoice_id)
    code, rate = resolve_rate(currency_code or invoice.currency_code, fx_cache or default_cache())
    client = None
    if invoice.client:
        try:
            client = catalog.get_client(owner, invoice.client)
        except NotFound:
            _LOGGER.warning("Client %s of invoice %s is missing", invoice.client, invoice.id)
    return render_invoice(
        invoice,
        client,
        catalog.resolve_items(owner, invoice.items),
        currency_code=code,
        rate=rate,
        account=catalog.get_account(owner),
    )


# -------------------- listing --------------------


def _normalize_sort(sort_by: str | None, direction: str | None) -> tuple[str, str]:
    allowed_sort = {"issue_date", "due_date", "invoice_number", "total"}
    normalized_sort = sort_by if sort_by in allowed_sort else "issue_date"
    normalized_direction = direction if direction in {"asc", "desc"} else "desc"
    return normalized_sort, normalized_direction


def coerce_total(entry: dict) -> float:
    """Convert an invoice entry's ``total`` field to a float safely."""

    try:
        return float(entry.get("total", 0) or 0)
    except (TypeError, ValueError):
        return 0.0


def _validate_limit(limit: int | None) -> int:
    try:
        parsed = int(limit) if limit is not None else DEFAULT_LIST_LIMIT
    except (TypeError, ValueError) as exc:
        raise ValidationFailed("limit must be an integer") from exc

    if parsed < 1:
        raise ValidationFailed("limit must be a positive integer")

    return min(parsed, MAX_LIST_LIMIT)


def _validate_offset(offset: int | None) -> int:
    try:
        parsed = int(offset) if offset is not None else 0
    except (TypeError, ValueError) as exc:
        raise ValidationFailed("offset must be an integer") from exc

    if parsed < 0:
        raise ValidationFailed("offset cannot be negative")

    return parsed


def _sort_entries(entries: list[dict], sort_by: str, direction: str) -> list[dict]:
    key_funcs = {
        "issue_date": lambda entry: (
            str(entry.get("issue_date", "")),
            str(entry.get("invoice_number", "")),
        ),
        "due_date": lambda entry: (
            str(entry.get("due_date", "")),
            str(entry.get("invoice_number", "")),
        ),
        "invoice_number": lambda entry: (str(entry.get("invoice_number", "")),),
        "total": lambda entry: (
            coerce_total(entry),
            str(entry.get("invoice_number", "")),
        ),
    }

    key_func = key_funcs.get(sort_by, key_funcs["issue_date"])
    reverse = direction == "desc"
    return sorted(entries, key=key_func, reverse=reverse)


def _filter_entries(
    entries: list[dict],
    *,
    status: str | None = None,
    client: str | None = None,
    number_query: str | None = None,
    issue_date_from: date | None = None,
    issue_date_to: date | None = None,
) -> list[dict]:
    wanted_status = normalize_status(status) if status else None
    filtered: list[dict] = []
    for entry in entries:
        if wanted_status and wanted_status not in (
            entry["lifecycle"]["normalized_status"],
            entry["lifecycle"]["computed_status"],
        ):
            continue
        if client and entry.get("client") != client:
            continue
        if number_query and number_query.lower() not in str(entry.get("invoice_number", "")).lower():
            continue

        issued = date.fromisoformat(entry["issue_date"])
        if issue_date_from and issued < issue_date_from:
            continue
        if issue_date_to and issued > issue_date_to:
            continue

        filtered.append(entry)
    return filtered


def parse_iso_date(value: str | None, field_name: str) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValidationFailed(f"Invalid {field_name}: expected YYYY-MM-DD") from exc


def list_invoices_impl(
    owner: str,
    *,
    status: str | None = None,
    client: str | None = None,
    number_query: str | None = None,
    issue_date_from: str | None = None,
    issue_date_to: str | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
    offset: int = 0,
    sort_by: str | None = None,
    direction: str | None = None,
    include_total_count: bool = True,
    now: datetime | None = None,
) -> Dict[str, Any]:
    """List the owner's invoice summaries with lifecycle badges, filters and pagination.

    ``status`` matches either the normalised status or the computed one, so
    ``status="overdue"`` lists overdue invoices.
    """

    date_from = parse_iso_date(issue_date_from, "issue_date_from")
    date_to = parse_iso_date(issue_date_to, "issue_date_to")
    safe_limit = _validate_limit(limit)
    safe_offset = _validate_offset(offset)

    now = now or _utcnow()
    entries = []
    for invoice in storage.invoices().find(owner=owner):
        entry = invoice.to_index_entry()
        entry["lifecycle"] = classify_lifecycle(invoice, now).as_dict()
        entries.append(entry)

    filtered = _filter_entries(
        entries,
        status=status,
        client=client,
        number_query=number_query,
        issue_date_from=date_from,
        issue_date_to=date_to,
    )

    normalized_sort, normalized_dir = _normalize_sort(sort_by, direction)
    sorted_entries = _sort_entries(filtered, normalized_sort, normalized_dir)

    page = sorted_entries[safe_offset : safe_offset + safe_limit]
    total_count = len(filtered) if include_total_count else None
    has_more = safe_offset + safe_limit < len(filtered)
    next_offset = safe_offset + safe_limit if has_more else None

    return {
        "invoices": page,
        "total_count": total_count,
        "limit": safe_limit,
        "offset": safe_offset,
        "has_more": has_more,
        "next_offset": next_offset,
        "sort": {"by": normalized_sort, "direction": normalized_dir},
        "filters": {
            "status": status,
            "client": client,
            "number_query": number_query,
            "issue_date_from": issue_date_from,
            "issue_date_to": issue_date_to,
        },
    }


# -------------------- create-screen helpers --------------------


def next_invoice_number(previous: str | None) -> str | None:
    """Increment the trailing number of ``previous``, keeping its zero padding."""

    match = _TRAILING_NUMBER.match(str(previous or "").strip())
    if not match:
        return None
    prefix, digits = match.groups()
    return f"{prefix}{int(digits) + 1:0{len(digits)}d}"


def suggest_invoice_number(owner: str, seed: str | None = None) -> str:
    """Suggest the next invoice number from ``seed`` or the owner's invoices."""

    suggested = next_invoice_number(seed)
    if suggested:
        return suggested

    best: tuple[int, str] | None = None
    for invoice in storage.invoices().find(owner=owner):
        match = _TRAILING_NUMBER.match(invoice.invoice_number)
        if match and (best is None or int(match.group(2)) > best[0]):
            best = (int(match.group(2)), invoice.invoice_number)
    if best is not None:
        return next_invoice_number(best[1]) or DEFAULT_INVOICE_NUMBER
    return DEFAULT_INVOICE_NUMBER


def compute_due_date_from_terms(days: int | None, from_date: date | None = None) -> date:
    """Due date ``days`` after ``from_date`` (today when omitted)."""

    try:
        offset = int(days or 0)
    except (TypeError, ValueError) as exc:
        raise ValidationFailed("Payment terms must be a whole number of days") from exc
    if offset < 0:
        raise ValidationFailed("Payment terms must not be negative")
    start = from_date or _utcnow().date()
    return start + timedelta(days=offset)


def register(server: FastMCP) -> None:
    """Register invoice tools."""

    @server.tool()
    def list_invoices(
        owner: str | None = None,
        status: str | None = None,
        client: str | None = None,
        number_query: str | None = None,
        issue_date_from: str | None = None,
        issue_date_to: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
        sort_by: str | None = None,
        direction: str | None = None,
        include_total_count: bool = True,
    ) -> Dict[str, Any]:
        """Read-only listing of invoice summaries with lifecycle labels.

        status: draft | sent | paid | overdue | any custom status.
        sort_by: issue_date (default) | due_date | invoice_number | total.
        """

        return list_invoices_impl(
            resolve_owner(owner),
            status=status,
            client=client,
            number_query=number_query,
            issue_date_from=issue_date_from,
            issue_date_to=issue_date_to,
            limit=limit,
            offset=offset,
            sort_by=sort_by,
            direction=direction,
            include_total_count=include_total_count,
        )

    @server.tool(name="get_invoice")
    def get_invoice_tool(invoice_id: str, owner: str | None = None) -> Dict[str, Any]:
        """Read a full invoice JSON payload by id, with its lifecycle (read-only)."""

        invoice = get_invoice(resolve_owner(owner), invoice_id)
        payload = invoice.model_dump(mode="json")
        payload["lifecycle"] = classify_lifecycle(invoice).as_dict()
        return payload

    @server.tool(name="create_invoice")
    def create_invoice_tool(fields: InvoiceFields, owner: str | None = None) -> Dict[str, Any]:
        """Create an invoice.

        Required: client, items (catalog item ids), invoice_number, due_date and
        either total or both subtotal and tax_total. Amounts are in INR; when
        subtotal and tax_total are both given, total is derived as
        max(0, subtotal - discount + tax_total + additional_charges).
        status sent/paid stamps sent_at/paid_at and locks the invoice.
        """

        require_writes_enabled()
        return create_invoice(resolve_owner(owner), fields).model_dump(mode="json")

    @server.tool(name="update_invoice")
    def update_invoice_tool(
        invoice_id: str, fields: InvoiceFields, owner: str | None = None
    ) -> Dict[str, Any]:
        """Patch an invoice; omitted fields keep their stored values.

        Restrictions:
        - Paid invoices cannot be edited.
        - Sent invoices keep their amounts and tax unless moved back to draft.
        - Draft edits to tracked fields bump version and add a history entry.
        """

        require_writes_enabled()
        return update_invoice(resolve_owner(owner), invoice_id, fields).model_dump(mode="json")

    @server.tool(name="delete_invoice")
    def delete_invoice_tool(invoice_id: str, owner: str | None = None) -> Dict[str, Any]:
        """Delete an invoice permanently, in any status. Irreversible."""

        require_writes_enabled()
        return delete_invoice(resolve_owner(owner), invoice_id)

    @server.tool()
    def render_invoice_summary(
        invoice_id: str, currency: str | None = None, owner: str | None = None
    ) -> Dict[str, Any]:
        """Render-ready summary (items and totals) converted to ``currency``.

        Every line is converted independently from INR at the current rate.
        """

        contract = invoice_render_contract(resolve_owner(owner), invoice_id, currency)
        return contract.model_dump(mode="json")

    @server.tool()
    def quote_invoice_totals(
        subtotal: float,
        discount: float = 0.0,
        tax_rate: float = 0.0,
        additional_charges: float = 0.0,
        apply_tax: bool = True,
    ) -> Dict[str, Any]:
        """Preview taxable amount, tax and total; apply_tax=False for tax-exempt clients."""

        return quote_totals(subtotal, discount, tax_rate, additional_charges, apply_tax).as_dict()

    @server.tool(name="suggest_invoice_number")
    def suggest_invoice_number_tool(
        seed: str | None = None, owner: str | None = None
    ) -> Dict[str, Any]:
        """Suggest the next invoice number (INV-1001 when nothing to continue from)."""

        return {"invoice_number": suggest_invoice_number(resolve_owner(owner), seed)}

    @server.tool(name="compute_due_date")
    def compute_due_date_tool(days: int, from_date: str | None = None) -> Dict[str, Any]:
        """Due date after ``days`` of payment terms, counted from from_date or today."""

        start = parse_iso_date(from_date, "from_date")
        return {"due_date": compute_due_date_from_terms(days, start).isoformat()}


__all__ = [
    "DEFAULT_INVOICE_NUMBER",
    "MONEY_FIELDS",
    "compute_due_date_from_terms",
    "create_invoice",
    "delete_invoice",
    "get_invoice",
    "invoice_render_contract",
    "is_mutable",
    "list_invoices_impl",
    "next_invoice_number",
    "parse_iso_date",
    "register",
    "select_template",
    "suggest_invoice_number",
    "update_invoice",
]
