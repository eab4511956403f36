"""Exchange rates from the canonical currency, cached with an explicit TTL."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict

import httpx
from mcp.server.fastmcp import FastMCP

from ..utils.config import (
    CANONICAL_CURRENCY,
    FX_CACHE_TTL_SECONDS,
    FX_RATES_URL,
    FX_TIMEOUT_SECONDS,
)
from .errors import UpstreamFailure, ValidationFailed

_LOGGER = logging.getLogger("invoice_studio.backends.fx")

DEFAULT_SYMBOLS = ("INR", "USD", "EUR", "GBP", "JPY", "AUD", "CAD")

Fetcher = Callable[[], Dict[str, Any]]
Clock = Callable[[], float]


def normalize_currency_code(code: str | None) -> str:
    return str(code or "").strip().upper()


@dataclass(frozen=True)
class FxSnapshot:
    fetched_at: float
    date: str | None
    rates: dict[str, float] = field(default_factory=dict)
    base: str = CANONICAL_CURRENCY


def fetch_rates(url: str = FX_RATES_URL, timeout: float = FX_TIMEOUT_SECONDS) -> dict[str, Any]:
    """Fetch the public currency-api feed, e.g. ``{"date": ..., "inr": {"usd": 0.012}}``."""

    try:
        response = httpx.get(url, timeout=timeout, follow_redirects=True)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as exc:
        raise UpstreamFailure(f"FX request failed ({exc.response.status_code})") from exc
    except (httpx.HTTPError, ValueError) as exc:
        raise UpstreamFailure(f"FX request failed: {exc}") from exc


class FxRatesCache:
    """Holds the last fetched rate table and refreshes it after ``ttl_seconds``.

    ``fetcher`` and ``clock`` are injectable so tests never touch the network.
    """

    def __init__(
        self,
        fetcher: Fetcher | None = None,
        ttl_seconds: float = FX_CACHE_TTL_SECONDS,
        clock: Clock = time.monotonic,
        base: str = CANONICAL_CURRENCY,
    ) -> None:
        self._fetcher = fetcher or fetch_rates
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self.base = normalize_currency_code(base)
        self._snapshot: FxSnapshot | None = None
        # Serializes refreshes between the MCP and HTTP threads.
        self._lock = threading.Lock()

    @property
    def snapshot(self) -> FxSnapshot | None:
        return self._snapshot

    def is_fresh(self) -> bool:
        if self._snapshot is None:
            return False
        return self._clock() - self._snapshot.fetched_at < self.ttl_seconds

    def latest(self) -> FxSnapshot:
        with self._lock:
            if self.is_fresh():
                return self._snapshot  # type: ignore[return-value]
            self._snapshot = self._refresh()
            return self._snapshot

    def _refresh(self) -> FxSnapshot:
        payload = self._fetcher()
        rates = payload.get(self.base.lower()) if isinstance(payload, dict) else None
        if not isinstance(rates, dict) or not rates:
            raise UpstreamFailure(f"FX response missing {self.base} rates")

        snapshot = FxSnapshot(
            fetched_at=self._clock(),
            date=payload.get("date"),
            rates={str(code).lower(): value for code, value in rates.items()},
            base=self.base,
        )
        _LOGGER.debug("FX rates refreshed (date=%s, codes=%d)", snapshot.date, len(rates))
        return snapshot

    def clear(self) -> None:
        with self._lock:
            self._snapshot = None


def get_rate_from_inr(rates: dict[str, Any], target_currency: str | None) -> float:
    """Units of ``target_currency`` per one unit of the canonical currency."""

    target = normalize_currency_code(target_currency)
    if not target or target == CANONICAL_CURRENCY:
        return 1.0
    rate = rates.get(target.lower()) if rates else None
    if isinstance(rate, bool) or not isinstance(rate, (int, float)) or rate <= 0:
        raise ValidationFailed(f"Unsupported currency: {target}")
    return float(rate)


def resolve_rate(currency_code: str | None, cache: FxRatesCache) -> tuple[str, float]:
    """Return ``(code, rate)``; the canonical currency is never looked up."""

    code = normalize_currency_code(currency_code) or CANONICAL_CURRENCY
    if code == CANONICAL_CURRENCY:
        return code, 1.0
    return code, get_rate_from_inr(cache.latest().rates, code)


def latest_rates(cache: FxRatesCache, symbols: list[str] | None = None) -> dict[str, Any]:
    wanted = [normalize_currency_code(s) for s in symbols or [] if normalize_currency_code(s)]
    if not wanted:
        wanted = list(DEFAULT_SYMBOLS)
    snapshot = cache.latest()
    return {
        "base": CANONICAL_CURRENCY,
        "date": snapshot.date,
        "rates": {code: get_rate_from_inr(snapshot.rates, code) for code in wanted},
    }


_DEFAULT_CACHE: FxRatesCache | None = None
_DEFAULT_CACHE_LOCK = threading.Lock()


def default_cache() -> FxRatesCache:
    """Process-wide cache used by the MCP tools and HTTP routes."""

    global _DEFAULT_CACHE
    with _DEFAULT_CACHE_LOCK:
        if _DEFAULT_CACHE is None:
            _DEFAULT_CACHE = FxRatesCache()
    return _DEFAULT_CACHE


def register(server: FastMCP) -> None:
    """Register FX tools."""

    @server.tool(name="get_fx_rates")
    def get_fx_rates_tool(symbols: list[str] | None = None) -> Dict[str, Any]:
        """Latest rates from the canonical currency (INR) for the given codes.

        Without symbols, returns INR, USD, EUR, GBP, JPY, AUD and CAD. Rates are
        cached for FX_CACHE_TTL_SECONDS (default 10 minutes).
        """

        return latest_rates(default_cache(), symbols)


__all__ = [
    "DEFAULT_SYMBOLS",
    "FxRatesCache",
    "FxSnapshot",
    "default_cache",
    "fetch_rates",
    "get_rate_from_inr",
    "latest_rates",
    "normalize_currency_code",
    "register",
    "resolve_rate",
]
