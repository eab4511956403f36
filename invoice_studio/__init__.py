"""invoice-studio: invoice lifecycle engine with MCP tools and an HTTP API."""

__version__ = "0.1.0"
