"""Error taxonomy shared by the invoice backends and their surfaces."""
from __future__ import annotations

from mcp.server.fastmcp.exceptions import ToolError
from pydantic import ValidationError


class InvoiceError(ToolError):
    """Base class for domain failures; the message is shown to the caller."""

    status_code = 400
    code = "error"

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": str(self)}


class ValidationFailed(InvoiceError):
    status_code = 400
    code = "validation_failed"


class NotFound(InvoiceError):
    status_code = 404
    code = "not_found"


class Forbidden(InvoiceError):
    status_code = 403
    code = "forbidden"


class Locked(InvoiceError):
    """Raised for any mutation of a paid (or otherwise locked) invoice."""

    status_code = 409
    code = "locked"


class TaxLocked(InvoiceError):
    """Raised when a sent invoice's money fields would change."""

    status_code = 409
    code = "tax_locked"


class Conflict(InvoiceError):
    """Raised when the stored version moved underneath a read-modify-write."""

    status_code = 409
    code = "conflict"


class UpstreamFailure(InvoiceError):
    status_code = 502
    code = "upstream_failure"


class WritesDisabled(InvoiceError):
    """Raised when write operations are attempted while disabled."""

    status_code = 403
    code = "writes_disabled"


def describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "__root__")
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid input"


__all__ = [
    "Conflict",
    "Forbidden",
    "InvoiceError",
    "Locked",
    "NotFound",
    "TaxLocked",
    "UpstreamFailure",
    "ValidationFailed",
    "WritesDisabled",
    "describe_validation_error",
]
