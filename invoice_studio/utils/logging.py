"""Logging setup and write auditing."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from . import config

_FORMAT = "%(levelname)s:%(name)s:%(message)s"
_AUDIT_LOGGER = logging.getLogger("invoice_studio.audit")


def configure_root(level: int = logging.INFO) -> None:
    """(Re)configure the root logger, dropping handlers installed by others."""

    logging.basicConfig(level=level, format=_FORMAT, force=True)


def record_write_attempt(action: str, **fields: object) -> None:
    """Log a write operation and append it to the audit file when configured."""

    _AUDIT_LOGGER.info("write %s", action, extra={"audit": fields})

    path = config.AUDIT_LOG_PATH
    if path is None:
        return

    entry = {
        "at": datetime.now(timezone.utc).isoformat(),
        "action": action,
        **{key: str(value) for key, value in fields.items()},
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(entry, sort_keys=True))
        handle.write("\n")


__all__ = ["configure_root", "record_write_attempt"]
