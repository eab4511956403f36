"""Tool registration for invoice-studio."""
from __future__ import annotations

import logging

from mcp.server.fastmcp import FastMCP

from invoice_studio.backends import catalog, fx, invoices, mailer, pdf, reports

_LOGGER = logging.getLogger("invoice_studio.api.tools")

_BACKENDS = (invoices, catalog, pdf, mailer, fx, reports)


def register_tools(server: FastMCP) -> list[str]:
    """Register built-in backends on the MCP server."""

    loaded: list[str] = []
    for backend in _BACKENDS:
        backend.register(server)
        loaded.append(backend.__name__)
    _LOGGER.debug("Registered backends: %s", ", ".join(loaded))
    return loaded


__all__ = ["register_tools"]
