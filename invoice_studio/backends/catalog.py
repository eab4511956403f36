"""Clients, catalog items and the owner account profile."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable

from mcp.server.fastmcp import FastMCP

from ..utils.logging import record_write_attempt
from . import invoices_storage as storage
from .access import require_same_owner, require_writes_enabled, resolve_owner
from .errors import NotFound, ValidationFailed
from .invoices_models import Account, Client, Item
from .invoices_storage import build_document, new_id

_LOGGER = logging.getLogger("invoice_studio.backends.catalog")

_CLIENT_FIELDS = ("name", "email", "address", "phone", "tax_id", "is_tax_exempt")
_ITEM_FIELDS = ("description", "quantity", "price")
_ACCOUNT_FIELDS = (
    "name",
    "email",
    "company_name",
    "company_address",
    "company_email",
    "company_phone",
    "company_tax_id",
    "invoice_defaults",
)


def _pick(fields: dict[str, Any], allowed: Iterable[str], kind: str) -> dict[str, Any]:
    unknown = sorted(set(fields) - set(allowed))
    if unknown:
        raise ValidationFailed(f"Unknown {kind} field(s): {', '.join(unknown)}")
    return {key: value for key, value in fields.items() if value is not None}


# -------------------- clients --------------------


def list_clients(owner: str) -> list[Client]:
    return storage.clients().find(owner=owner)


def get_client(owner: str, client_id: str) -> Client:
    client = storage.clients().find_by_id(client_id)
    if client is None:
        raise NotFound("Client not found")
    require_same_owner(client.owner, owner, "client")
    return client


def create_client(owner: str, fields: dict[str, Any]) -> Client:
    values = _pick(fields, _CLIENT_FIELDS, "client")
    if not values.get("name") or not values.get("email"):
        raise ValidationFailed("Please add name and email")
    client = build_document(Client, {**values, "id": new_id(), "owner": owner})
    record_write_attempt("client.create", owner=owner, client=client.id)
    return storage.clients().create(client)


def update_client(owner: str, client_id: str, patch: dict[str, Any]) -> Client:
    client = get_client(owner, client_id)
    values = _pick(patch, _CLIENT_FIELDS, "client")
    updated = build_document(Client, {**client.model_dump(), **values})
    record_write_attempt("client.update", owner=owner, client=client_id)
    return storage.clients().save(updated)


def delete_client(owner: str, client_id: str) -> str:
    get_client(owner, client_id)
    record_write_attempt("client.delete", owner=owner, client=client_id)
    storage.clients().delete(client_id)
    return client_id


def require_owned_client(owner: str, client_id: str | None) -> Client:
    """Resolve a client reference for an invoice; foreign clients count as missing."""

    if not client_id:
        raise ValidationFailed("client is required")
    client = storage.clients().find_by_id(client_id)
    if client is None or client.owner != owner:
        raise NotFound("Client not found")
    return client


# -------------------- items --------------------


def list_items(owner: str) -> list[Item]:
    return storage.items().find(owner=owner)


def get_item(owner: str, item_id: str) -> Item:
    item = storage.items().find_by_id(item_id)
    if item is None:
        raise NotFound("Item not found")
    require_same_owner(item.owner, owner, "item")
    return item


def create_item(owner: str, fields: dict[str, Any]) -> Item:
    values = _pick(fields, _ITEM_FIELDS, "item")
    if not values.get("description") or not values.get("quantity") or values.get("price") is None:
        raise ValidationFailed("Please add all fields")
    item = build_document(Item, {**values, "id": new_id(), "owner": owner})
    record_write_attempt("item.create", owner=owner, item=item.id)
    return storage.items().create(item)


def update_item(owner: str, item_id: str, patch: dict[str, Any]) -> Item:
    item = get_item(owner, item_id)
    values = _pick(patch, _ITEM_FIELDS, "item")
    updated = build_document(Item, {**item.model_dump(), **values})
    record_write_attempt("item.update", owner=owner, item=item_id)
    return storage.items().save(updated)


def delete_item(owner: str, item_id: str) -> str:
    get_item(owner, item_id)
    record_write_attempt("item.delete", owner=owner, item=item_id)
    storage.items().delete(item_id)
    return item_id


def require_owned_items(owner: str, item_ids: list[str] | None) -> list[Item]:
    """Check that every distinct id is an item of ``owner``.

    Duplicates are fine; a single unknown or foreign id fails the whole call.
    Returns the items in the order of ``item_ids`` (duplicates repeated).
    """

    ids = [str(item_id) for item_id in (item_ids or [])]
    unique = list(dict.fromkeys(ids))
    if not unique:
        raise ValidationFailed("At least one item is required")

    found: dict[str, Item] = {}
    for item_id in unique:
        item = storage.items().find_by_id(item_id)
        if item is not None and item.owner == owner:
            found[item_id] = item
    if len(found) != len(unique):
        raise NotFound("One or more items are invalid")
    return [found[item_id] for item_id in ids]


def resolve_items(owner: str, item_ids: list[str]) -> list[Item]:
    """Load referenced items for rendering, skipping ones deleted since."""

    resolved = []
    for item_id in item_ids:
        item = storage.items().find_by_id(item_id)
        if item is not None and item.owner == owner:
            resolved.append(item)
        else:
            _LOGGER.warning("Referenced item %s is missing; skipped", item_id)
    return resolved


# -------------------- account --------------------


def get_account(owner: str) -> Account | None:
    return storage.accounts().find_by_id(owner)


def save_account(owner: str, fields: dict[str, Any]) -> Account:
    values = _pick(fields, _ACCOUNT_FIELDS, "account")
    existing = get_account(owner)
    base = existing.model_dump() if existing else {}
    account = build_document(Account, {**base, **values, "id": owner})
    record_write_attempt("account.save", owner=owner)
    if existing is None:
        return storage.accounts().create(account)
    return storage.accounts().save(account)


def register(server: FastMCP) -> None:
    """Register client, item and account tools."""

    @server.tool(name="list_clients")
    def list_clients_tool(owner: str | None = None) -> list[Dict[str, Any]]:
        """List the clients of the acting user (read-only)."""

        return [client.model_dump(mode="json") for client in list_clients(resolve_owner(owner))]

    @server.tool()
    def save_client(
        fields: Dict[str, Any], client_id: str | None = None, owner: str | None = None
    ) -> Dict[str, Any]:
        """Create a client (no client_id) or update one.

        Fields: name and email (required on create), address, phone, tax_id,
        is_tax_exempt.
        """

        require_writes_enabled()
        acting = resolve_owner(owner)
        if client_id:
            client = update_client(acting, client_id, fields)
        else:
            client = create_client(acting, fields)
        return client.model_dump(mode="json")

    @server.tool(name="delete_client")
    def delete_client_tool(client_id: str, owner: str | None = None) -> Dict[str, Any]:
        """Delete a client permanently."""

        require_writes_enabled()
        return {"id": delete_client(resolve_owner(owner), client_id)}

    @server.tool(name="list_items")
    def list_items_tool(owner: str | None = None) -> list[Dict[str, Any]]:
        """List the catalog items of the acting user (read-only)."""

        return [item.model_dump(mode="json") for item in list_items(resolve_owner(owner))]

    @server.tool()
    def save_item(
        fields: Dict[str, Any], item_id: str | None = None, owner: str | None = None
    ) -> Dict[str, Any]:
        """Create a catalog item (no item_id) or update one.

        Fields: description, quantity (> 0), price (>= 0, canonical currency).
        Editing an item changes the totals rendered for every invoice that
        references it.
        """

        require_writes_enabled()
        acting = resolve_owner(owner)
        if item_id:
            item = update_item(acting, item_id, fields)
        else:
            item = create_item(acting, fields)
        return item.model_dump(mode="json")

    @server.tool(name="delete_item")
    def delete_item_tool(item_id: str, owner: str | None = None) -> Dict[str, Any]:
        """Delete a catalog item permanently."""

        require_writes_enabled()
        return {"id": delete_item(resolve_owner(owner), item_id)}

    @server.tool()
    def save_account_profile(fields: Dict[str, Any], owner: str | None = None) -> Dict[str, Any]:
        """Create or update the acting user's company profile used on PDFs and emails."""

        require_writes_enabled()
        return save_account(resolve_owner(owner), fields).model_dump(mode="json")


__all__ = [
    "create_client",
    "create_item",
    "delete_client",
    "delete_item",
    "get_account",
    "get_client",
    "get_item",
    "list_clients",
    "list_items",
    "register",
    "require_owned_client",
    "require_owned_items",
    "resolve_items",
    "save_account",
    "update_client",
    "update_item",
]
