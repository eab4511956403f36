"""Application wiring: the MCP server and the Starlette HTTP app."""
from __future__ import annotations

from mcp.server.fastmcp import FastMCP
from starlette.applications import Starlette

from invoice_studio.api import make_routes, register_tools
from invoice_studio.web import register_routes

MCP_SERVER = FastMCP("invoice-studio")
LOADED_BACKENDS = register_tools(MCP_SERVER)


def build_api_app() -> Starlette:
    """JSON API under /api plus the HTML views under /invoices."""

    app = Starlette(routes=make_routes())
    register_routes(app)
    return app


__all__ = ["LOADED_BACKENDS", "MCP_SERVER", "build_api_app"]
