"""Minimal web UI for invoice overview and detail views."""
from __future__ import annotations

from pathlib import Path

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, RedirectResponse, Response
from starlette.routing import Route
from starlette.templating import Jinja2Templates

from invoice_studio.backends import invoices, mailer, pdf
from invoice_studio.backends.access import require_writes_enabled, resolve_owner
from invoice_studio.backends.errors import InvoiceError
from invoice_studio.backends.lifecycle import classify_lifecycle
from invoice_studio.backends.pdf import TEMPLATE_THEMES
from invoice_studio.utils.config import writes_enabled

_TEMPLATES = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))


def _owner(request: Request) -> str:
    return resolve_owner(request.headers.get("x-user-id"))


def _error(exc: InvoiceError) -> HTMLResponse:
    return HTMLResponse(str(exc), status_code=exc.status_code)


async def invoices_overview(request: Request) -> Response:
    try:
        listing = invoices.list_invoices_impl(
            _owner(request),
            status=request.query_params.get("status"),
            limit=invoices.MAX_LIST_LIMIT,
        )
    except InvoiceError as exc:
        return _error(exc)
    context = {
        "request": request,
        "invoices": listing["invoices"],
        "count": listing["total_count"],
        "status": request.query_params.get("status") or "",
    }
    return _TEMPLATES.TemplateResponse(request, "invoices_list.html", context)


async def invoice_detail(request: Request) -> Response:
    invoice_id = request.path_params.get("invoice_id")
    currency = request.query_params.get("currency")
    try:
        owner = _owner(request)
        invoice = invoices.get_invoice(owner, invoice_id)
        contract = invoices.invoice_render_contract(owner, invoice, currency)
        email_logs = mailer.list_email_history(owner, invoice.id)
    except InvoiceError as exc:
        return _error(exc)

    context = {
        "request": request,
        "invoice": invoice,
        "contract": contract,
        "lifecycle": classify_lifecycle(invoice),
        "mutable": invoices.is_mutable(invoice),
        "email_logs": email_logs,
        "templates": list(TEMPLATE_THEMES),
        "writes_enabled": writes_enabled(),
    }
    return _TEMPLATES.TemplateResponse(request, "invoice_detail.html", context)


async def download_pdf(request: Request) -> Response:
    invoice_id = request.path_params.get("invoice_id")
    params = request.query_params
    template_key = params.get("template_key") or None
    try:
        if template_key:
            require_writes_enabled()
        result = pdf.render_invoice_pdf(
            _owner(request), invoice_id, params.get("currency") or None, template_key
        )
    except InvoiceError as exc:
        return _error(exc)
    return Response(
        result["content"],
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{result["filename"]}"'},
    )


async def _set_status(request: Request, status: str) -> Response:
    invoice_id = request.path_params.get("invoice_id")
    try:
        require_writes_enabled()
        invoices.update_invoice(_owner(request), invoice_id, {"status": status})
    except InvoiceError as exc:
        return _error(exc)
    return RedirectResponse(url=f"/invoices/{invoice_id}", status_code=303)


async def mark_sent(request: Request) -> Response:
    return await _set_status(request, "sent")


async def mark_paid(request: Request) -> Response:
    return await _set_status(request, "paid")


async def delete_invoice(request: Request) -> Response:
    invoice_id = request.path_params.get("invoice_id")
    try:
        require_writes_enabled()
        invoices.delete_invoice(_owner(request), invoice_id)
    except InvoiceError as exc:
        return _error(exc)
    return RedirectResponse(url="/invoices", status_code=303)


def register_routes(app: Starlette) -> None:
    routes = [
        Route("/invoices", invoices_overview, methods=["GET"]),
        Route("/invoices/{invoice_id}", invoice_detail, methods=["GET"]),
        Route("/invoices/{invoice_id}/pdf", download_pdf, methods=["GET"]),
        Route("/invoices/{invoice_id}/mark-sent", mark_sent, methods=["POST"]),
        Route("/invoices/{invoice_id}/mark-paid", mark_paid, methods=["POST"]),
        Route("/invoices/{invoice_id}/delete", delete_invoice, methods=["POST"]),
    ]
    for route in routes:
        app.router.routes.append(route)


__all__ = ["register_routes"]
