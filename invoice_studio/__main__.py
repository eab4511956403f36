"""Entry point for python -m invoice_studio."""
from __future__ import annotations

import logging


def main() -> None:
    """Forward to the invoice_studio.cli entry point."""
    from invoice_studio.cli import build_parser, run
    from invoice_studio.utils.logging import configure_root

    parser = build_parser()
    args = parser.parse_args()

    # Imported after parsing so --help does not build the server
    from invoice_studio.app import MCP_SERVER, build_api_app

    configure_root()
    logger = logging.getLogger("invoice_studio.cli")

    def _start_sse(host: str, port: int) -> None:
        """Launch the MCP SSE server."""
        MCP_SERVER.settings.host = host
        MCP_SERVER.settings.port = int(port)
        MCP_SERVER.run(transport="sse")

    def _run_stdio() -> None:
        """Run stdio transport."""
        MCP_SERVER.run()

    run(
        args,
        logger=logger,
        start_sse=_start_sse,
        run_stdio=_run_stdio,
        app_factory=build_api_app,
    )


if __name__ == "__main__":
    main()
