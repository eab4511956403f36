"""Caller checks shared by the MCP tools and the HTTP routes."""
from __future__ import annotations

from ..utils.config import default_owner, writes_enabled
from .errors import Forbidden, WritesDisabled


def require_writes_enabled() -> None:
    if not writes_enabled():
        raise WritesDisabled(
            "Write-capable tools are disabled. Set INVOICE_STUDIO_ENABLE_WRITES=1 to allow writes."
        )


def resolve_owner(owner: str | None) -> str:
    """Return the acting owner id, falling back to INVOICE_STUDIO_OWNER."""

    value = str(owner).strip() if owner is not None else ""
    if value:
        return value
    fallback = default_owner()
    if not fallback:
        raise Forbidden("No acting user. Pass an owner or set INVOICE_STUDIO_OWNER.")
    return fallback


def require_same_owner(document_owner: str, owner: str, what: str) -> None:
    if str(document_owner) != str(owner):
        raise Forbidden(f"User not authorized for this {what}")


__all__ = ["require_same_owner", "require_writes_enabled", "resolve_owner"]
