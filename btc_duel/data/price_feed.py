"""
CoinGecko Price Feed
====================

BTC spot price and 24h change from the CoinGecko REST API,
cached for a short window so bursts of game requests share one fetch.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Optional, Union

import aiohttp
import numpy as np
import structlog

from btc_duel.errors import PriceFeedError
from btc_duel.models import PriceSnapshot
from btc_duel.utils.clock import get_clock

logger = structlog.get_logger()


# Errors that count as a transient upstream failure
_FETCH_ERRORS = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    PriceFeedError,
    KeyError,
    TypeError,
    ValueError,
)


class PriceFeed:
    """
    Fetches and caches the current BTC price from CoinGecko.

    Freshness policy:
    - A snapshot younger than the cache TTL is returned as-is,
      with no network call.
    - On a miss, exactly one request goes upstream. Concurrent misses
      wait on the same lock and reuse its result.

    Failure policy (availability over freshness, deliberately):
    - If the fetch fails and a snapshot was ever cached, the stale
      snapshot is returned.
    - If nothing was ever cached, a placeholder snapshot marked
      `is_placeholder=True` is synthesized. It is not cached.
    Callers never see an exception from get_current_price().
    """

    PRICE_PATH = "/simple/price"
    PARAMS = {
        "ids": "bitcoin",
        "vs_currencies": "usd",
        "include_24hr_change": "true",
    }

    def __init__(
        self,
        api_url: str = "https://api.coingecko.com/api/v3",
        cache_ttl_seconds: float = 10.0,
        timeout_seconds: float = 5.0,
        clock=None,
        rng: Optional[np.random.Generator] = None
    ):
        """
        Args:
            api_url: CoinGecko API base URL
            cache_ttl_seconds: Freshness window for the cached snapshot
            timeout_seconds: Total timeout for one upstream request
            clock: Object with now() -> datetime (defaults to system clock)
            rng: Random source for placeholder values
        """
        self.api_url = api_url.rstrip("/")
        self.cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.clock = clock or get_clock()
        self.rng = rng or np.random.default_rng()

        # State
        self._cached: Optional[PriceSnapshot] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

        # Stats
        self.fetch_count = 0
        self.failure_count = 0
        self.cache_hits = 0

    @property
    def price_url(self) -> str:
        return f"{self.api_url}{self.PRICE_PATH}"

    @property
    def cached_snapshot(self) -> Optional[PriceSnapshot]:
        return self._cached

    def _fresh_cached(self) -> Optional[PriceSnapshot]:
        if self._cached is None:
            return None
        if self.clock.now() - self._cached.observed_at < self.cache_ttl:
            return self._cached
        return None

    async def get_current_price(self) -> PriceSnapshot:
        """Return the current BTC snapshot (cached, fresh, stale or placeholder)."""
        fresh = self._fresh_cached()
        if fresh is not None:
            self.cache_hits += 1
            return fresh

        async with self._lock:
            # Another caller may have refreshed while we waited
            fresh = self._fresh_cached()
            if fresh is not None:
                self.cache_hits += 1
                return fresh

            try:
                snapshot = await self._fetch()
            except _FETCH_ERRORS as e:
                self.failure_count += 1
                return self._fallback(e)

            self._cached = snapshot
            logger.debug(
                "price_updated",
                price=str(snapshot.price),
                change_24h=f"{snapshot.change_24h:.2f}%"
            )
            return snapshot

    async def _fetch(self) -> PriceSnapshot:
        """Single upstream request. Raises on any unusable response."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

        self.fetch_count += 1
        async with self._session.get(
            self.price_url,
            params=self.PARAMS,
            headers={"Accept": "application/json"}
        ) as response:
            if response.status != 200:
                raise PriceFeedError(f"CoinGecko API error: {response.status}")
            data = await response.json()

        return self.parse_response(data, self.clock.now())

    @staticmethod
    def parse_response(data: dict, observed_at) -> PriceSnapshot:
        """
        Parse a /simple/price payload.

        Format: {"bitcoin": {"usd": 95000.12, "usd_24h_change": -1.23}}
        """
        btc = data["bitcoin"]
        return PriceSnapshot(
            price=Decimal(str(btc["usd"])),
            change_24h=float(btc.get("usd_24h_change") or 0.0),
            observed_at=observed_at,
        )

    def _fallback(self, error: Exception) -> PriceSnapshot:
        if self._cached is not None:
            logger.warning(
                "price_fetch_failed_using_stale",
                error=str(error),
                error_type=type(error).__name__,
                stale_price=str(self._cached.price),
                observed_at=self._cached.observed_at.isoformat()
            )
            return self._cached

        placeholder = PriceSnapshot(
            price=Decimal(str(round(95000 + self.rng.random() * 2000, 2))),
            change_24h=(self.rng.random() - 0.5) * 10,
            observed_at=self.clock.now(),
            is_placeholder=True,
        )
        logger.warning(
            "price_fetch_failed_using_placeholder",
            error=str(error),
            error_type=type(error).__name__,
            placeholder_price=str(placeholder.price)
        )
        return placeholder

    async def close(self):
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    def get_stats(self) -> dict:
        """Return feed statistics."""
        return {
            "cached_price": str(self._cached.price) if self._cached else None,
            "fetch_count": self.fetch_count,
            "failure_count": self.failure_count,
            "cache_hits": self.cache_hits,
        }


# ==========================================
# FORMATTING
# ==========================================

def format_price(price: Union[Decimal, float, int]) -> str:
    """USD with thousands separators and no cents, e.g. "$95,001"."""
    value = Decimal(str(price))
    # Enough precision for every integer digit of large values
    with localcontext() as ctx:
        ctx.prec = max(28, value.adjusted() + 2)
        value = value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    return f"{sign}${value.copy_abs():,}"


def format_price_change(change: float) -> str:
    """Signed percent with two decimals, e.g. "+1.23%"."""
    sign = "+" if change >= 0 else "-"
    return f"{sign}{abs(change):.2f}%"


def snapshot_display(snapshot: PriceSnapshot) -> dict:
    """Formatted variants of a snapshot for rendering."""
    return {
        "price": format_price(snapshot.price),
        "change_24h": format_price_change(snapshot.change_24h),
        "is_up": snapshot.change_24h >= 0,
        "is_placeholder": snapshot.is_placeholder,
        "observed_at": snapshot.observed_at.isoformat(),
    }
