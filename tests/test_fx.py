import sys
import threading
import unittest
from pathlib import Path
from unittest.mock import patch

import httpx

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from invoice_studio.backends import fx
from invoice_studio.backends.errors import UpstreamFailure, ValidationFailed
from invoice_studio.backends.fx import FxRatesCache, latest_rates, resolve_rate

PAYLOAD = {"date": "2024-01-10", "inr": {"usd": 0.012, "eur": 0.011, "jpy": 1.77}}


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class CountingFetcher:
    def __init__(self, payload=PAYLOAD):
        self.payload = payload
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.payload


def _refuse():
    raise AssertionError("rates must not be fetched")


class FxRatesCacheTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.fetcher = CountingFetcher()
        self.cache = FxRatesCache(self.fetcher, ttl_seconds=600, clock=self.clock)

    def test_rates_are_cached_until_ttl(self):
        self.assertEqual(resolve_rate("usd", self.cache), ("USD", 0.012))
        self.clock.now += 599
        self.assertEqual(resolve_rate("EUR", self.cache), ("EUR", 0.011))
        self.assertEqual(self.fetcher.calls, 1)

        self.clock.now += 2
        resolve_rate("USD", self.cache)
        self.assertEqual(self.fetcher.calls, 2)

    def test_concurrent_callers_share_one_refresh(self):
        started = threading.Event()
        release = threading.Event()

        def slow_fetch():
            self.fetcher.calls += 1
            started.set()
            release.wait(timeout=5)
            return PAYLOAD

        cache = FxRatesCache(slow_fetch, ttl_seconds=600, clock=self.clock)
        results = []
        threads = [
            threading.Thread(target=lambda: results.append(cache.latest())) for _ in range(4)
        ]
        for thread in threads:
            thread.start()
        self.assertTrue(started.wait(timeout=5))
        release.set()
        for thread in threads:
            thread.join(timeout=5)

        self.assertEqual(self.fetcher.calls, 1)
        self.assertEqual(len(results), 4)
        self.assertTrue(all(snapshot is results[0] for snapshot in results))

    def test_canonical_currency_is_never_fetched(self):
        cache = FxRatesCache(_refuse, clock=self.clock)

        self.assertEqual(resolve_rate("INR", cache), ("INR", 1.0))
        self.assertEqual(resolve_rate(None, cache), ("INR", 1.0))
        self.assertEqual(resolve_rate(" inr ", cache), ("INR", 1.0))

    def test_unsupported_currency(self):
        with self.assertRaises(ValidationFailed):
            resolve_rate("XYZ", self.cache)

    def test_missing_base_table(self):
        cache = FxRatesCache(CountingFetcher({"date": "2024-01-10", "usd": {}}), clock=self.clock)
        with self.assertRaises(UpstreamFailure):
            resolve_rate("USD", cache)

    def test_latest_rates_for_symbols(self):
        result = latest_rates(self.cache, ["usd", "", "INR"])

        self.assertEqual(
            result, {"base": "INR", "date": "2024-01-10", "rates": {"USD": 0.012, "INR": 1.0}}
        )

    def test_latest_rates_defaults_fail_on_unknown_code(self):
        # GBP is a default symbol but missing from this feed.
        with self.assertRaises(ValidationFailed):
            latest_rates(self.cache)

    def test_clear_forces_refresh(self):
        resolve_rate("USD", self.cache)
        self.cache.clear()
        resolve_rate("USD", self.cache)
        self.assertEqual(self.fetcher.calls, 2)


class FetchRatesTests(unittest.TestCase):
    def test_http_error_status(self):
        request = httpx.Request("GET", "https://fx.test/inr.json")
        response = httpx.Response(503, request=request)
        with patch.object(fx.httpx, "get", return_value=response):
            with self.assertRaises(UpstreamFailure) as ctx:
                fx.fetch_rates("https://fx.test/inr.json")
        self.assertIn("503", str(ctx.exception))

    def test_network_error(self):
        with patch.object(fx.httpx, "get", side_effect=httpx.ConnectError("boom")):
            with self.assertRaises(UpstreamFailure):
                fx.fetch_rates("https://fx.test/inr.json")

    def test_success(self):
        request = httpx.Request("GET", "https://fx.test/inr.json")
        response = httpx.Response(200, json=PAYLOAD, request=request)
        with patch.object(fx.httpx, "get", return_value=response):
            self.assertEqual(fx.fetch_rates("https://fx.test/inr.json"), PAYLOAD)


if __name__ == "__main__":
    unittest.main()
