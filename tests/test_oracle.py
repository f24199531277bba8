import asyncio
import unittest
import sys
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from btc_duel.game.oracle import (
    SettlementOracle,
    calculate_winnings,
    format_time_remaining,
    reward_paid,
)
from btc_duel.game.session_store import SessionStore
from btc_duel.models import GameStatus, OracleResult, Prediction, PriceSnapshot, Winner
from btc_duel.utils.clock import ManualClock

UP = Prediction.UP
DOWN = Prediction.DOWN


def make_feed(clock, *prices, placeholder=False):
    """Feed stub returning the given prices in order."""
    feed = AsyncMock()
    feed.get_current_price.side_effect = [
        PriceSnapshot(
            price=Decimal(str(p)),
            change_24h=0.0,
            observed_at=clock.now(),
            is_placeholder=placeholder
        )
        for p in prices
    ]
    return feed


class TestSettlementOracle(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.clock = ManualClock(datetime(2025, 1, 1, tzinfo=timezone.utc))
        self.store = SessionStore(clock=self.clock)

    def make_oracle(self, *prices, delay=60):
        self.feed = make_feed(self.clock, *prices)
        return SettlementOracle(
            store=self.store,
            price_feed=self.feed,
            clock=self.clock,
            settlement_delay=timedelta(seconds=delay)
        )

    async def test_unknown_session(self):
        oracle = self.make_oracle(100)
        self.assertIsNone(await oracle.check_and_settle("game_0_missing"))
        self.feed.get_current_price.assert_not_awaited()

    async def test_not_ready(self):
        oracle = self.make_oracle(110)
        session = self.store.create_session(1, UP, DOWN, 100, 10)
        self.clock.advance(59)

        self.assertIsNone(await oracle.check_and_settle(session.id))
        self.feed.get_current_price.assert_not_awaited()
        self.assertEqual(self.store.get_session(session.id).status, GameStatus.ACTIVE)

    async def test_settles_after_delay(self):
        oracle = self.make_oracle(110)
        session = self.store.create_session(1, UP, DOWN, 100, 10)
        self.clock.advance(60)

        result = await oracle.check_and_settle(session.id)

        self.assertEqual(result.entry_price, Decimal("100"))
        self.assertEqual(result.settlement_price, Decimal("110"))
        self.assertAlmostEqual(result.price_change, 10.0)
        self.assertEqual(result.direction, UP)
        stored = self.store.get_session(session.id)
        self.assertEqual(stored.winner, Winner.USER)
        self.assertEqual(stored.settled_at, self.clock.now())

    async def test_second_check_reuses_stored_outcome(self):
        oracle = self.make_oracle(90, 150)
        session = self.store.create_session(1, UP, DOWN, 100, 10)
        self.clock.advance(120)

        first = await oracle.check_and_settle(session.id)
        self.clock.advance(600)
        second = await oracle.check_and_settle(session.id)

        self.assertEqual(first, second)
        self.assertEqual(second.direction, DOWN)
        self.feed.get_current_price.assert_awaited_once()
        self.assertEqual(self.store.get_session(session.id).winner, Winner.OPPONENT)

    async def test_concurrent_checks_agree(self):
        oracle = self.make_oracle(120, 80, 80)
        session = self.store.create_session(1, DOWN, UP, 100, 10)
        self.clock.advance(61)

        results = await asyncio.gather(
            oracle.check_and_settle(session.id),
            oracle.check_and_settle(session.id),
            oracle.check_and_settle(session.id)
        )

        stored = OracleResult.from_session(self.store.get_session(session.id))
        for result in results:
            self.assertEqual(result, stored)
        self.assertEqual(self.store.sessions_settled, 1)

    async def test_flat_price_settles_down(self):
        oracle = self.make_oracle(100)
        session = self.store.create_session(1, DOWN, DOWN, 100, 10)
        self.clock.advance(60)

        result = await oracle.check_and_settle(session.id)
        self.assertEqual(result.direction, DOWN)
        self.assertEqual(result.price_change, 0.0)
        self.assertEqual(self.store.get_session(session.id).winner, Winner.TIE)

    def test_time_until_settlement(self):
        oracle = self.make_oracle(delay=60)
        session = self.store.create_session(1, UP, DOWN, 100, 10)

        self.assertEqual(oracle.time_until_settlement(session), timedelta(seconds=60))
        self.clock.advance(45)
        self.assertEqual(oracle.time_until_settlement(session), timedelta(seconds=15))
        self.assertFalse(oracle.is_ready(session))
        self.clock.advance(days=3)
        self.assertEqual(oracle.time_until_settlement(session), timedelta(0))
        self.assertTrue(oracle.is_ready(session))

    async def test_health(self):
        oracle = self.make_oracle(95000)
        self.assertTrue(await oracle.check_health())

        oracle.price_feed = make_feed(self.clock, 95000, placeholder=True)
        self.assertFalse(await oracle.check_health())


class TestOracleHelpers(unittest.TestCase):
    def test_format_time_remaining(self):
        self.assertEqual(format_time_remaining(timedelta(0)), "Ready to settle")
        self.assertEqual(format_time_remaining(timedelta(seconds=-5)), "Ready to settle")
        self.assertEqual(format_time_remaining(timedelta(milliseconds=1)), "1s")
        self.assertEqual(format_time_remaining(timedelta(seconds=42.2)), "43s")
        self.assertEqual(format_time_remaining(timedelta(seconds=60)), "1m 0s")
        self.assertEqual(format_time_remaining(timedelta(seconds=125)), "2m 5s")

    def test_winnings_and_reward_paid(self):
        clock = ManualClock()
        store = SessionStore(clock=clock)
        win = store.create_session(1, UP, DOWN, 100, 25)
        loss = store.create_session(1, UP, DOWN, 100, 25)

        self.assertEqual(calculate_winnings(win), (25, 0))
        self.assertEqual(reward_paid(win), 0)

        self.assertEqual(reward_paid(store.settle_session(win.id, 101)), 25)
        self.assertEqual(reward_paid(store.settle_session(loss.id, 99)), 0)


if __name__ == "__main__":
    unittest.main()
