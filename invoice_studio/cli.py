"""Minimal CLI helpers for running the MCP server and the HTTP app."""
from __future__ import annotations

import argparse
import logging
import socket
import threading
from typing import Callable

import uvicorn
from starlette.applications import Starlette

from invoice_studio.utils.config import writes_enabled

AppFactory = Callable[[], Starlette]
StartSSE = Callable[[str, int], None]
RunStdIO = Callable[[], None]


def build_parser() -> argparse.ArgumentParser:
    """Create an argument parser for the runtime."""

    parser = argparse.ArgumentParser(description="invoice-studio server")
    parser.add_argument(
        "--transport",
        type=str,
        default="sse",
        choices=["stdio", "sse"],
        help="Transport mechanism to expose (default: sse)",
    )
    parser.add_argument(
        "--mcp-host",
        type=str,
        default="127.0.0.1",
        help="Host for the MCP SSE server",
    )
    parser.add_argument(
        "--mcp-port",
        type=int,
        default=8099,
        help="Port for the MCP SSE server",
    )
    parser.add_argument(
        "--http-host",
        type=str,
        default="127.0.0.1",
        help="Host for the JSON API and HTML views",
    )
    parser.add_argument(
        "--http-port",
        type=int,
        default=8081,
        help="Port for the JSON API and HTML views",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def run(
    args: argparse.Namespace,
    *,
    logger: logging.Logger,
    start_sse: StartSSE,
    run_stdio: RunStdIO,
    app_factory: AppFactory,
) -> None:
    """Start the requested transport; SSE also serves the HTTP app."""

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)

    logger.info(
        "Starting invoice-studio (transport=%s, mcp=%s:%s, http=%s:%s, writes=%s)",
        args.transport,
        args.mcp_host,
        args.mcp_port,
        args.http_host,
        args.http_port,
        "enabled" if writes_enabled() else "disabled",
    )

    def _validate_port(value: int, *, flag: str) -> None:
        if value <= 0 or value > 65535:
            logger.error("Invalid %s: %s (must be between 1 and 65535)", flag, value)
            raise SystemExit(2)

    def _check_port_available(host: str, port: int, *, label: str, flag: str) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                sock.bind((host, port))
            except OSError as exc:  # pragma: no cover - depends on local env
                logger.error(
                    "%s port %s is unavailable on %s: %s. Use %s to pick a free port.",
                    label,
                    port,
                    host,
                    exc.strerror or exc,
                    flag,
                )
                raise SystemExit(1)

    _validate_port(args.mcp_port, flag="--mcp-port")
    _validate_port(args.http_port, flag="--http-port")

    if args.transport == "sse":
        if args.mcp_host == args.http_host and args.mcp_port == args.http_port:
            logger.error(
                "HTTP port conflicts with MCP SSE port (%s:%s). Use --http-port to separate them.",
                args.http_host,
                args.http_port,
            )
            raise SystemExit(2)

        _check_port_available(args.mcp_host, args.mcp_port, label="MCP SSE", flag="--mcp-port")
        _check_port_available(args.http_host, args.http_port, label="HTTP", flag="--http-port")

        logger.debug("MCP SSE server listening on http://%s:%s", args.mcp_host, args.mcp_port)
        if not writes_enabled():
            logger.warning(
                "Write-capable tools disabled (set INVOICE_STUDIO_ENABLE_WRITES=1 to enable writes)."
            )

        thread = threading.Thread(
            target=start_sse, args=(args.mcp_host, args.mcp_port), daemon=True
        )
        thread.start()

        app = app_factory()
        logger.debug("HTTP API on http://%s:%s/api", args.http_host, args.http_port)
        try:
            uvicorn.run(app, host=args.http_host, port=int(args.http_port))
        except OSError as exc:  # pragma: no cover - depends on local env
            logger.error(
                "Failed to start HTTP app on %s:%s: %s",
                args.http_host,
                args.http_port,
                exc.strerror or exc,
            )
            raise SystemExit(1)
    else:
        logger.debug("Transport: stdio (HTTP app disabled)")
        run_stdio()


__all__ = ["build_parser", "run"]
