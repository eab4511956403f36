"""Runtime configuration helpers for invoice-studio."""
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Optional

from dotenv import load_dotenv

# Load .env file from project root (if it exists)
load_dotenv()


def _parse_bool(value: str | None, *, default: bool = False) -> bool:
    if value is None:
        return default
    value = value.strip().lower()
    return value in {"1", "true", "yes", "on"}


def _parse_int(value: str | None, *, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float(value: str | None, *, default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_bool(name: str, *, default: bool = False) -> bool:
    return _parse_bool(os.getenv(name), default=default)


def _env_int(name: str, *, default: int) -> int:
    return _parse_int(os.getenv(name), default=default)


def _env_float(name: str, *, default: float) -> float:
    return _parse_float(os.getenv(name), default=default)


CANONICAL_CURRENCY: Final[str] = (
    os.getenv("INVOICE_STUDIO_CURRENCY", "").strip().upper() or "INR"
)
FX_RATES_URL: Final[str] = os.getenv(
    "FX_RATES_URL", "https://latest.currency-api.pages.dev/v1/currencies/inr.json"
)
FX_CACHE_TTL_SECONDS: Final[int] = _env_int("FX_CACHE_TTL_SECONDS", default=600)
FX_TIMEOUT_SECONDS: Final[float] = _env_float("FX_TIMEOUT_SECONDS", default=10.0)

STALE_DRAFT_DAYS: Final[int] = _env_int("INVOICE_STUDIO_STALE_DRAFT_DAYS", default=14)
DUE_SOON_DAYS: Final[int] = _env_int("INVOICE_STUDIO_DUE_SOON_DAYS", default=7)

_audit_log_env = os.getenv("INVOICE_STUDIO_AUDIT_LOG", "").strip()
AUDIT_LOG_PATH: Final[Optional[Path]] = (
    Path(_audit_log_env).expanduser() if _audit_log_env else None
)


def writes_enabled() -> bool:
    """Whether write-capable MCP tools and web form actions are allowed."""

    return _env_bool("INVOICE_STUDIO_ENABLE_WRITES", default=False)


def default_owner() -> Optional[str]:
    """Owner id used by MCP tools and HTTP callers that send no X-User-Id."""

    value = os.getenv("INVOICE_STUDIO_OWNER", "").strip()
    return value or None


@dataclass(frozen=True)
class EmailSettings:
    host: str | None
    port: int
    user: str | None
    password: str | None
    sender: str | None
    brevo_api_key: str | None
    timeout: float

    def smtp_missing(self) -> list[str]:
        """Names of the SMTP environment variables that are not set."""

        missing = []
        for name, value in (
            ("EMAIL_HOST", self.host),
            ("EMAIL_PORT", self.port or None),
            ("EMAIL_USER", self.user),
            ("EMAIL_PASS", self.password),
            ("EMAIL_FROM", self.sender),
        ):
            if not value:
                missing.append(name)
        return missing


def email_settings() -> EmailSettings:
    def _opt(name: str) -> str | None:
        value = os.getenv(name, "").strip()
        return value or None

    return EmailSettings(
        host=_opt("EMAIL_HOST"),
        port=_env_int("EMAIL_PORT", default=0),
        user=_opt("EMAIL_USER"),
        password=_opt("EMAIL_PASS"),
        sender=_opt("EMAIL_FROM"),
        brevo_api_key=_opt("BREVO_API_KEY"),
        timeout=_env_float("EMAIL_TIMEOUT_SECONDS", default=30.0),
    )


def _discover_pdflatex() -> Optional[str]:
    """Auto-discover pdflatex in common locations.

    Search order:
    1. System PATH (via shutil.which)
    2. ~/.local/texlive/*/bin/*/pdflatex (user installations)
    3. /usr/local/texlive/*/bin/*/pdflatex (system-wide installations)
    """
    system_pdflatex = shutil.which("pdflatex")
    if system_pdflatex:
        return system_pdflatex

    search_roots = [
        Path.home() / ".local" / "texlive",
        Path("/usr/local/texlive"),
    ]

    for root in search_roots:
        if not root.exists():
            continue
        # texlive/YEAR/bin/ARCH/pdflatex, newest year first
        for year_dir in sorted(root.iterdir(), reverse=True):
            bin_dir = year_dir / "bin"
            if not bin_dir.is_dir():
                continue
            for arch_dir in bin_dir.iterdir():
                pdflatex = arch_dir / "pdflatex"
                if pdflatex.is_file() and os.access(pdflatex, os.X_OK):
                    return str(pdflatex)

    return None


def get_pdflatex_path() -> Optional[str]:
    """Get the pdflatex executable path.

    ``PDFLATEX_PATH`` wins when set, even if it does not exist yet, so the
    render step fails with a clear message instead of silently using another
    binary.
    """
    explicit_path = os.getenv("PDFLATEX_PATH", "").strip()
    if explicit_path:
        return str(Path(explicit_path).expanduser())

    return _discover_pdflatex()


__all__ = [
    "AUDIT_LOG_PATH",
    "CANONICAL_CURRENCY",
    "DUE_SOON_DAYS",
    "EmailSettings",
    "FX_CACHE_TTL_SECONDS",
    "FX_RATES_URL",
    "FX_TIMEOUT_SECONDS",
    "STALE_DRAFT_DAYS",
    "default_owner",
    "email_settings",
    "get_pdflatex_path",
    "writes_enabled",
]
