import asyncio
import unittest
import sys
import os
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import aiohttp
import numpy as np

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from btc_duel.data.price_feed import (
    PriceFeed,
    format_price,
    format_price_change,
    snapshot_display,
)
from btc_duel.errors import InvalidPriceError, PriceFeedError
from btc_duel.models import PriceSnapshot
from btc_duel.utils.clock import ManualClock


class TestPriceFeedCache(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.clock = ManualClock(datetime(2025, 1, 1, tzinfo=timezone.utc))
        self.feed = PriceFeed(
            cache_ttl_seconds=10,
            clock=self.clock,
            rng=np.random.default_rng(1)
        )

    async def asyncTearDown(self):
        await self.feed.close()

    def snapshot(self, price, change=1.5):
        return PriceSnapshot(
            price=Decimal(str(price)),
            change_24h=change,
            observed_at=self.clock.now()
        )

    async def test_fresh_cache_skips_fetch(self):
        first = self.snapshot(95000)
        self.feed._fetch = AsyncMock(return_value=first)

        self.assertIs(await self.feed.get_current_price(), first)
        self.clock.advance(9.9)
        self.assertIs(await self.feed.get_current_price(), first)

        self.feed._fetch.assert_awaited_once()
        self.assertEqual(self.feed.cache_hits, 1)

    async def test_expired_cache_refetches(self):
        first = self.snapshot(95000)
        self.feed._fetch = AsyncMock(return_value=first)
        await self.feed.get_current_price()

        self.clock.advance(10)
        second = self.snapshot(96000)
        self.feed._fetch = AsyncMock(return_value=second)

        self.assertIs(await self.feed.get_current_price(), second)
        self.assertIs(self.feed.cached_snapshot, second)

    async def test_failure_returns_stale_cache(self):
        first = self.snapshot(95000)
        self.feed._fetch = AsyncMock(return_value=first)
        await self.feed.get_current_price()

        self.clock.advance(60)
        self.feed._fetch = AsyncMock(side_effect=aiohttp.ClientError("boom"))

        self.assertIs(await self.feed.get_current_price(), first)
        self.assertEqual(self.feed.failure_count, 1)

    async def test_failure_without_cache_returns_placeholder(self):
        for error in (
            asyncio.TimeoutError(),
            PriceFeedError("CoinGecko API error: 429"),
            KeyError("bitcoin"),
            InvalidPriceError(0),
        ):
            with self.subTest(error=type(error).__name__):
                self.feed._fetch = AsyncMock(side_effect=error)
                snapshot = await self.feed.get_current_price()

                self.assertTrue(snapshot.is_placeholder)
                self.assertGreaterEqual(snapshot.price, Decimal("95000"))
                self.assertLessEqual(snapshot.price, Decimal("97000"))
                self.assertLessEqual(abs(snapshot.change_24h), 5.0)
                self.assertIsNone(self.feed.cached_snapshot)

    async def test_placeholder_not_cached(self):
        self.feed._fetch = AsyncMock(side_effect=aiohttp.ClientError("down"))
        await self.feed.get_current_price()

        real = self.snapshot(94000)
        self.feed._fetch = AsyncMock(return_value=real)
        self.assertIs(await self.feed.get_current_price(), real)

    async def test_concurrent_misses_fetch_once(self):
        result = self.snapshot(95000)

        async def slow_fetch():
            await asyncio.sleep(0.01)
            return result

        self.feed._fetch = AsyncMock(side_effect=slow_fetch)
        snapshots = await asyncio.gather(*(self.feed.get_current_price() for _ in range(10)))

        self.assertTrue(all(s is result for s in snapshots))
        self.feed._fetch.assert_awaited_once()

    async def test_stats(self):
        self.feed._fetch = AsyncMock(return_value=self.snapshot(95000))
        await self.feed.get_current_price()
        await self.feed.get_current_price()
        stats = self.feed.get_stats()
        self.assertEqual(stats["cached_price"], "95000")
        self.assertEqual(stats["cache_hits"], 1)
        self.assertEqual(stats["failure_count"], 0)


class TestParseResponse(unittest.TestCase):
    def test_parse(self):
        observed = datetime(2025, 1, 1, tzinfo=timezone.utc)
        snapshot = PriceFeed.parse_response(
            {"bitcoin": {"usd": 95123.45, "usd_24h_change": -2.5}},
            observed
        )
        self.assertEqual(snapshot.price, Decimal("95123.45"))
        self.assertEqual(snapshot.change_24h, -2.5)
        self.assertEqual(snapshot.observed_at, observed)
        self.assertFalse(snapshot.is_placeholder)

    def test_missing_change_defaults_to_zero(self):
        snapshot = PriceFeed.parse_response({"bitcoin": {"usd": 1}}, datetime.now(timezone.utc))
        self.assertEqual(snapshot.change_24h, 0.0)

    def test_malformed(self):
        now = datetime.now(timezone.utc)
        with self.assertRaises(KeyError):
            PriceFeed.parse_response({"ethereum": {"usd": 1}}, now)
        with self.assertRaises(InvalidPriceError):
            PriceFeed.parse_response({"bitcoin": {"usd": 0}}, now)

    def test_price_url(self):
        feed = PriceFeed(api_url="https://example.test/api/v3/")
        self.assertEqual(feed.price_url, "https://example.test/api/v3/simple/price")


class TestFormatting(unittest.TestCase):
    def test_format_price(self):
        self.assertEqual(format_price(Decimal("95000.7")), "$95,001")
        self.assertEqual(format_price(95000.4), "$95,000")
        self.assertEqual(format_price(0), "$0")
        self.assertEqual(format_price(999), "$999")
        self.assertEqual(format_price(1234567.5), "$1,234,568")
        self.assertEqual(format_price(-12.4), "-$12")

    def test_format_price_large_values(self):
        """Values beyond the default decimal precision still format"""
        self.assertEqual(format_price(1e27), "$1," + ",".join(["000"] * 9))
        self.assertEqual(format_price(1e30), "$1," + ",".join(["000"] * 10))
        self.assertEqual(format_price(-1e30), "-$1," + ",".join(["000"] * 10))
        self.assertEqual(format_price(Decimal("123456789012345678901234567890.6")),
                         "$123,456,789,012,345,678,901,234,567,891")

    def test_format_price_change(self):
        self.assertEqual(format_price_change(1.234), "+1.23%")
        self.assertEqual(format_price_change(0), "+0.00%")
        self.assertEqual(format_price_change(-0.5), "-0.50%")
        self.assertEqual(format_price_change(-12.346), "-12.35%")

    def test_format_price_change_negative_zero(self):
        self.assertEqual(format_price_change(-0.0), "+0.00%")
        self.assertEqual(format_price_change(-0.001), "-0.00%")

    def test_snapshot_display(self):
        snapshot = PriceSnapshot(
            price=Decimal("95000"),
            change_24h=-1.0,
            observed_at=datetime(2025, 1, 1, tzinfo=timezone.utc)
        )
        display = snapshot_display(snapshot)
        self.assertEqual(display["price"], "$95,000")
        self.assertEqual(display["change_24h"], "-1.00%")
        self.assertFalse(display["is_up"])
        self.assertFalse(display["is_placeholder"])


if __name__ == "__main__":
    unittest.main()
