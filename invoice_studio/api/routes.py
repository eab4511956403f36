"""JSON HTTP routes over the invoice backends.

Every route answers with the ``{"ok", "data", "errors"}`` envelope; domain
errors map to their HTTP status. The acting user comes from the
``X-User-Id`` header, falling back to ``INVOICE_STUDIO_OWNER``.
"""
from __future__ import annotations

import functools
import json
import logging
from typing import Any, Awaitable, Callable

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from invoice_studio.backends import catalog, fx, invoices, mailer, pdf, reports
from invoice_studio.backends import invoices_storage as storage
from invoice_studio.backends.access import require_writes_enabled, resolve_owner
from invoice_studio.backends.errors import InvoiceError, ValidationFailed
from invoice_studio.backends.lifecycle import classify_lifecycle
from invoice_studio.backends.money import quote_totals

from .envelopes import envelope_error, envelope_ok

_LOGGER = logging.getLogger("invoice_studio.api.routes")

OWNER_HEADER = "x-user-id"

Handler = Callable[[Request], Awaitable[Any]]


def _owner(request: Request) -> str:
    return resolve_owner(request.headers.get(OWNER_HEADER))


async def _body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise ValidationFailed("Request body must be JSON") from exc
    if not isinstance(payload, dict):
        raise ValidationFailed("Request body must be a JSON object")
    return payload


def _dump(document: Any) -> Any:
    return document.model_dump(mode="json")


def json_endpoint(handler: Handler) -> Callable[[Request], Awaitable[Response]]:
    """Wrap a handler returning plain data (or a Response) into an envelope."""

    @functools.wraps(handler)
    async def endpoint(request: Request) -> Response:
        try:
            data = await handler(request)
        except InvoiceError as exc:
            if exc.status_code >= 500:
                _LOGGER.warning("%s %s failed: %s", request.method, request.url.path, exc)
            return JSONResponse(envelope_error(exc.to_dict()), status_code=exc.status_code)
        if isinstance(data, Response):
            return data
        return JSONResponse(envelope_ok(data))

    return endpoint


# -------------------- invoices --------------------


@json_endpoint
async def list_invoices(request: Request) -> Any:
    params = request.query_params
    return invoices.list_invoices_impl(
        _owner(request),
        status=params.get("status"),
        client=params.get("client"),
        number_query=params.get("q"),
        issue_date_from=params.get("from"),
        issue_date_to=params.get("to"),
        limit=params.get("limit") or invoices.DEFAULT_LIST_LIMIT,
        offset=params.get("offset") or 0,
        sort_by=params.get("sort_by"),
        direction=params.get("direction"),
    )


@json_endpoint
async def create_invoice(request: Request) -> Any:
    require_writes_enabled()
    return _dump(invoices.create_invoice(_owner(request), await _body(request)))


@json_endpoint
async def get_invoice(request: Request) -> Any:
    invoice = invoices.get_invoice(_owner(request), request.path_params["invoice_id"])
    payload = _dump(invoice)
    payload["lifecycle"] = classify_lifecycle(invoice).as_dict()
    return payload


@json_endpoint
async def update_invoice(request: Request) -> Any:
    require_writes_enabled()
    invoice = invoices.update_invoice(
        _owner(request), request.path_params["invoice_id"], await _body(request)
    )
    return _dump(invoice)


@json_endpoint
async def delete_invoice(request: Request) -> Any:
    require_writes_enabled()
    return invoices.delete_invoice(_owner(request), request.path_params["invoice_id"])


@json_endpoint
async def render_summary(request: Request) -> Any:
    contract = invoices.invoice_render_contract(
        _owner(request),
        request.path_params["invoice_id"],
        request.query_params.get("currency"),
    )
    return _dump(contract)


@json_endpoint
async def invoice_pdf(request: Request) -> Any:
    template_key = request.query_params.get("template")
    if template_key:
        require_writes_enabled()
    result = pdf.render_invoice_pdf(
        _owner(request),
        request.path_params["invoice_id"],
        request.query_params.get("currency"),
        template_key,
    )
    return Response(
        result["content"],
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{result["filename"]}"'},
    )


@json_endpoint
async def quote(request: Request) -> Any:
    body = await _body(request)
    return quote_totals(
        body.get("subtotal", 0),
        body.get("discount", 0),
        body.get("tax_rate", 0),
        body.get("additional_charges", 0),
        body.get("apply_tax", True) is not False,
    ).as_dict()


@json_endpoint
async def suggest_number(request: Request) -> Any:
    number = invoices.suggest_invoice_number(_owner(request), request.query_params.get("seed"))
    return {"invoice_number": number}


@json_endpoint
async def due_date(request: Request) -> Any:
    start = invoices.parse_iso_date(request.query_params.get("from"), "from")
    days = request.query_params.get("days")
    return {"due_date": invoices.compute_due_date_from_terms(days, start).isoformat()}


# -------------------- email --------------------


@json_endpoint
async def email_draft(request: Request) -> Any:
    draft = mailer.get_email_draft(_owner(request), request.path_params["invoice_id"])
    return draft.model_dump()


@json_endpoint
async def send_email(request: Request) -> Any:
    require_writes_enabled()
    body = await _body(request)
    return mailer.send_invoice_email(
        _owner(request),
        request.path_params["invoice_id"],
        request.query_params.get("currency"),
        body or None,
    )


@json_endpoint
async def invoice_email_history(request: Request) -> Any:
    logs = mailer.list_email_history(_owner(request), request.path_params["invoice_id"])
    return [_dump(log) for log in logs]


@json_endpoint
async def email_history(request: Request) -> Any:
    return [_dump(log) for log in mailer.list_email_history(_owner(request))]


# -------------------- catalog --------------------


@json_endpoint
async def list_clients(request: Request) -> Any:
    return [_dump(client) for client in catalog.list_clients(_owner(request))]


@json_endpoint
async def create_client(request: Request) -> Any:
    require_writes_enabled()
    return _dump(catalog.create_client(_owner(request), await _body(request)))


@json_endpoint
async def update_client(request: Request) -> Any:
    require_writes_enabled()
    client = catalog.update_client(
        _owner(request), request.path_params["client_id"], await _body(request)
    )
    return _dump(client)


@json_endpoint
async def delete_client(request: Request) -> Any:
    require_writes_enabled()
    return {"id": catalog.delete_client(_owner(request), request.path_params["client_id"])}


@json_endpoint
async def list_items(request: Request) -> Any:
    return [_dump(item) for item in catalog.list_items(_owner(request))]


@json_endpoint
async def create_item(request: Request) -> Any:
    require_writes_enabled()
    return _dump(catalog.create_item(_owner(request), await _body(request)))


@json_endpoint
async def update_item(request: Request) -> Any:
    require_writes_enabled()
    item = catalog.update_item(
        _owner(request), request.path_params["item_id"], await _body(request)
    )
    return _dump(item)


@json_endpoint
async def delete_item(request: Request) -> Any:
    require_writes_enabled()
    return {"id": catalog.delete_item(_owner(request), request.path_params["item_id"])}


@json_endpoint
async def get_account(request: Request) -> Any:
    account = catalog.get_account(_owner(request))
    return _dump(account) if account else None


@json_endpoint
async def save_account(request: Request) -> Any:
    require_writes_enabled()
    return _dump(catalog.save_account(_owner(request), await _body(request)))


# -------------------- fx & reports --------------------


@json_endpoint
async def fx_latest(request: Request) -> Any:
    symbols = request.query_params.get("symbols")
    wanted = symbols.split(",") if symbols else None
    return fx.latest_rates(fx.default_cache(), wanted)


@json_endpoint
async def report_summary(request: Request) -> Any:
    params = request.query_params
    owned = storage.invoices().find(owner=_owner(request))
    return reports.summarize_invoices(
        owned,
        issue_date_from=invoices.parse_iso_date(params.get("from"), "from"),
        issue_date_to=invoices.parse_iso_date(params.get("to"), "to"),
    ).as_dict()


@json_endpoint
async def health(request: Request) -> Any:
    return {"service": "invoice-studio"}


def make_routes() -> list[Route]:
    """HTTP routes under ``/api``; fixed paths come before ``{invoice_id}``."""

    return [
        Route("/api/health", health, methods=["GET"]),
        Route("/api/invoices", list_invoices, methods=["GET"]),
        Route("/api/invoices", create_invoice, methods=["POST"]),
        Route("/api/invoices/quote", quote, methods=["POST"]),
        Route("/api/invoices/suggest-number", suggest_number, methods=["GET"]),
        Route("/api/invoices/due-date", due_date, methods=["GET"]),
        Route("/api/invoices/{invoice_id}", get_invoice, methods=["GET"]),
        Route("/api/invoices/{invoice_id}", update_invoice, methods=["PATCH", "PUT"]),
        Route("/api/invoices/{invoice_id}", delete_invoice, methods=["DELETE"]),
        Route("/api/invoices/{invoice_id}/render", render_summary, methods=["GET"]),
        Route("/api/invoices/{invoice_id}/pdf", invoice_pdf, methods=["GET"]),
        Route("/api/invoices/{invoice_id}/email/draft", email_draft, methods=["GET"]),
        Route("/api/invoices/{invoice_id}/email", send_email, methods=["POST"]),
        Route("/api/invoices/{invoice_id}/email/history", invoice_email_history, methods=["GET"]),
        Route("/api/email/history", email_history, methods=["GET"]),
        Route("/api/clients", list_clients, methods=["GET"]),
        Route("/api/clients", create_client, methods=["POST"]),
        Route("/api/clients/{client_id}", update_client, methods=["PATCH", "PUT"]),
        Route("/api/clients/{client_id}", delete_client, methods=["DELETE"]),
        Route("/api/items", list_items, methods=["GET"]),
        Route("/api/items", create_item, methods=["POST"]),
        Route("/api/items/{item_id}", update_item, methods=["PATCH", "PUT"]),
        Route("/api/items/{item_id}", delete_item, methods=["DELETE"]),
        Route("/api/account", get_account, methods=["GET"]),
        Route("/api/account", save_account, methods=["PUT"]),
        Route("/api/fx/latest", fx_latest, methods=["GET"]),
        Route("/api/reports/summary", report_summary, methods=["GET"]),
    ]


__all__ = ["OWNER_HEADER", "json_endpoint", "make_routes"]
