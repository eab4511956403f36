#!/usr/bin/env python3
"""
Lightweight smoke test for invoice-studio.

Creates a client, two catalog items and a sample invoice under a temp
INVOICE_STUDIO_ROOT, renders the PDF (requires pdflatex), and prints the
resulting paths.
"""
from __future__ import annotations

import os
import sys
import tempfile
from datetime import date
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from invoice_studio.backends import catalog, invoices
from invoice_studio.backends.invoices_storage import get_store_root
from invoice_studio.backends.money import items_subtotal, quote_totals
from invoice_studio.backends.pdf import render_invoice_pdf

OWNER = "smoke-user"


def main() -> None:
    # Isolate into a temp directory unless INVOICE_STUDIO_ROOT is already set
    if "INVOICE_STUDIO_ROOT" not in os.environ:
        os.environ["INVOICE_STUDIO_ROOT"] = tempfile.mkdtemp(prefix="invoice-studio-smoke-")
    root = get_store_root()

    catalog.save_account(
        OWNER,
        {
            "name": "Smoke Tester",
            "email": "smoke@example.com",
            "company_name": "Smoke Studio",
            "company_address": "MG Road 1, Bengaluru",
        },
    )
    client = catalog.create_client(
        OWNER,
        {"name": "ACME Pvt Ltd", "email": "billing@acme.example", "address": "Park Street 5, Kolkata"},
    )
    items = [
        catalog.create_item(OWNER, {"description": "Consulting", "quantity": 2, "price": 1500}),
        catalog.create_item(OWNER, {"description": "Implementation", "quantity": 1, "price": 8000}),
    ]

    quote = quote_totals(items_subtotal(items), discount=500, tax_rate=18)
    today = date.today()
    invoice = invoices.create_invoice(
        OWNER,
        {
            "client": client.id,
            "items": [item.id for item in items],
            "invoice_number": invoices.suggest_invoice_number(OWNER),
            "issue_date": today,
            "due_date": invoices.compute_due_date_from_terms(14, today),
            "subtotal": quote.subtotal,
            "discount": quote.discount,
            "tax_total": quote.tax_total,
            "tax_snapshot": {"name": "GST", "rate": 18},
            "payment_terms": "Due in 14 days.",
        },
    )
    render_result = render_invoice_pdf(OWNER, invoice.id, template_key="modern")

    print(f"[smoke] INVOICE_STUDIO_ROOT={root}")
    print(f"[smoke] Invoice: {invoice.invoice_number} ({invoice.id}), total {invoice.total:.2f}")
    print(f"[smoke] Due: {invoice.due_date.isoformat()}")
    print(f"[smoke] LaTeX: {render_result['tex_path']}")
    print(f"[smoke] PDF:   {render_result['pdf_path']}")
    print("[smoke] Done.")


if __name__ == "__main__":  # pragma: no cover
    main()
