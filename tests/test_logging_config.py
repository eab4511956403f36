import argparse
import json
import logging
import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from invoice_studio import cli
from invoice_studio.cli import run
from invoice_studio.utils import config
from invoice_studio.utils.logging import configure_root, record_write_attempt


class ConfigureRootTests(unittest.TestCase):
    def setUp(self) -> None:
        self.root_logger = logging.getLogger()
        self.original_handlers = list(self.root_logger.handlers)
        self.original_level = self.root_logger.level

    def tearDown(self) -> None:
        self.root_logger.handlers = self.original_handlers
        self.root_logger.setLevel(self.original_level)

    def test_configure_root_forces_reconfiguration(self) -> None:
        dummy_handler = logging.StreamHandler()
        dummy_handler.setFormatter(logging.Formatter("%(message)s"))

        self.root_logger.handlers = [dummy_handler]
        self.root_logger.setLevel(logging.WARNING)

        configure_root()

        self.assertNotIn(dummy_handler, self.root_logger.handlers)
        self.assertEqual(self.root_logger.level, logging.INFO)
        self.assertTrue(self.root_logger.handlers)
        formatter = self.root_logger.handlers[0].formatter
        self.assertIsNotNone(formatter)
        self.assertEqual(formatter._fmt, "%(levelname)s:%(name)s:%(message)s")

    def _args(self, **overrides) -> argparse.Namespace:
        values = {
            "transport": "stdio",
            "mcp_host": "127.0.0.1",
            "mcp_port": 8099,
            "http_host": "127.0.0.1",
            "http_port": 8081,
            "debug": False,
        }
        values.update(overrides)
        return argparse.Namespace(**values)

    def test_debug_flag_raises_logger_level(self) -> None:
        configure_root()
        cli_logger = logging.getLogger("invoice_studio.cli")
        cli_logger_level = cli_logger.level
        stdio_calls = []

        try:
            run(
                self._args(debug=True),
                logger=cli_logger,
                start_sse=lambda host, port: None,
                run_stdio=lambda: stdio_calls.append(True),
                app_factory=lambda: None,
            )
            self.assertEqual(cli_logger.getEffectiveLevel(), logging.DEBUG)
            self.assertEqual(stdio_calls, [True])
        finally:
            cli_logger.setLevel(cli_logger_level)

    def test_invalid_port_exits(self) -> None:
        with self.assertRaises(SystemExit) as ctx:
            run(
                self._args(http_port=70000),
                logger=logging.getLogger("invoice_studio.cli"),
                start_sse=lambda host, port: None,
                run_stdio=lambda: None,
                app_factory=lambda: None,
            )
        self.assertEqual(ctx.exception.code, 2)

    def test_sse_port_conflict_exits(self) -> None:
        with patch.object(cli.uvicorn, "run") as uvicorn_run:
            with self.assertRaises(SystemExit) as ctx:
                run(
                    self._args(transport="sse", mcp_port=8081),
                    logger=logging.getLogger("invoice_studio.cli"),
                    start_sse=lambda host, port: None,
                    run_stdio=lambda: None,
                    app_factory=lambda: None,
                )
        self.assertEqual(ctx.exception.code, 2)
        uvicorn_run.assert_not_called()

    def test_parser_defaults(self) -> None:
        args = cli.build_parser().parse_args([])
        self.assertEqual(args.transport, "sse")
        self.assertEqual(args.mcp_port, 8099)
        self.assertEqual(args.http_port, 8081)


class AuditLogTests(unittest.TestCase):
    def test_write_attempts_append_to_audit_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "audit" / "writes.jsonl"
            with patch.object(config, "AUDIT_LOG_PATH", path):
                with self.assertLogs("invoice_studio.audit", level="INFO") as logs:
                    record_write_attempt("invoice.update", owner="user-1", invoice="abc")

            entry = json.loads(path.read_text(encoding="utf-8").strip())

        self.assertEqual(logs.output, ["INFO:invoice_studio.audit:write invoice.update"])
        self.assertEqual(entry["action"], "invoice.update")
        self.assertEqual(entry["owner"], "user-1")
        self.assertEqual(entry["invoice"], "abc")

    def test_no_audit_file_by_default(self) -> None:
        with patch.object(config, "AUDIT_LOG_PATH", None), patch.dict(os.environ, {}):
            record_write_attempt("invoice.delete", owner="user-1")


__all__ = ["AuditLogTests", "ConfigureRootTests"]
