"""Envelope helpers for HTTP/MCP responses."""
from __future__ import annotations


def envelope_ok(data: object) -> dict[str, object]:
    return {"ok": True, "data": data, "errors": []}


def envelope_error(*errors: dict[str, str]) -> dict[str, object]:
    return {"ok": False, "data": None, "errors": list(errors)}


__all__ = ["envelope_error", "envelope_ok"]
