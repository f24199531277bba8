"""
Settlement Oracle
=================

Settles a session once its waiting period is over, using a fresh
price from the feed.

Per-session state machine:
    ACTIVE,  elapsed < delay   -> ACTIVE   (None, nothing fetched)
    ACTIVE,  elapsed >= delay  -> SETTLED  (price fetched, outcome committed)
    SETTLED, any call          -> SETTLED  (result rebuilt from stored prices)
"""

import math
from datetime import timedelta
from typing import Optional, Tuple

import structlog

from btc_duel.models import GameSession, GameStatus, OracleResult, Winner
from btc_duel.utils.clock import get_clock

logger = structlog.get_logger()


class SettlementOracle:
    """
    Time-gated settlement of game sessions.

    check_and_settle() returns None both for an unknown id and for a
    session that is not ready yet. Callers that need to tell the two
    apart check existence first (GameService.check_result does).
    """

    DEFAULT_DELAY = timedelta(seconds=60)

    def __init__(
        self,
        store,
        price_feed,
        clock=None,
        settlement_delay: timedelta = DEFAULT_DELAY
    ):
        """
        Args:
            store: SessionStore holding the sessions
            price_feed: PriceFeed used for the settlement price
            clock: Object with now() -> datetime (defaults to system clock)
            settlement_delay: Wait between creation and settlement
        """
        self.store = store
        self.price_feed = price_feed
        self.clock = clock or get_clock()
        self.settlement_delay = settlement_delay

        # Stats
        self.settlements = 0
        self.not_ready_checks = 0

    def time_until_settlement(self, session: GameSession) -> timedelta:
        """Remaining wait, never negative."""
        remaining = self.settlement_delay - (self.clock.now() - session.created_at)
        return max(timedelta(0), remaining)

    def is_ready(self, session: GameSession) -> bool:
        return self.time_until_settlement(session) == timedelta(0)

    async def check_and_settle(self, game_id: str) -> Optional[OracleResult]:
        """
        Settle the session if its delay has elapsed.

        Returns:
            OracleResult for a settled session, None if the session does
            not exist or is not ready yet
        """
        session = self.store.get_session(game_id)

        if session is None:
            logger.warning("oracle_session_not_found", game_id=game_id)
            return None

        if session.status == GameStatus.SETTLED:
            return OracleResult.from_session(session)

        if not self.is_ready(session):
            self.not_ready_checks += 1
            return None

        snapshot = await self.price_feed.get_current_price()
        settled = self.store.settle_session(game_id, snapshot.price)

        if settled is None:
            # Settled by a concurrent check, or cleaned up meanwhile
            current = self.store.get_session(game_id)
            if current is not None and current.is_settled:
                return OracleResult.from_session(current)
            return None

        self.settlements += 1
        result = OracleResult.from_session(settled)

        logger.info(
            "oracle_settled",
            game_id=game_id,
            entry_price=str(result.entry_price),
            settlement_price=str(result.settlement_price),
            price_change=f"{result.price_change:.4f}%",
            direction=result.direction.value,
            winner=settled.winner.value,
            placeholder_price=snapshot.is_placeholder
        )
        return result

    async def check_health(self) -> bool:
        """True when the feed yields a real, positive price."""
        snapshot = await self.price_feed.get_current_price()
        return snapshot.price > 0 and not snapshot.is_placeholder

    def get_stats(self) -> dict:
        """Return oracle statistics."""
        return {
            "settlement_delay_seconds": self.settlement_delay.total_seconds(),
            "settlements": self.settlements,
            "not_ready_checks": self.not_ready_checks,
        }


def format_time_remaining(remaining: timedelta) -> str:
    """Wait time for display: "Ready to settle", "42s" or "1m 5s"."""
    total = remaining.total_seconds()
    if total <= 0:
        return "Ready to settle"

    seconds = math.ceil(total)
    if seconds < 60:
        return f"{seconds}s"

    minutes, seconds = divmod(seconds, 60)
    return f"{minutes}m {seconds}s"


def calculate_winnings(session: GameSession) -> Tuple[int, int]:
    """
    Potential payout for each side.

    Returns:
        (user_win_amount, opponent_win_amount); the user risks nothing
    """
    return (session.reward, 0)


def reward_paid(session: GameSession) -> int:
    """Reward actually credited: the session reward on a USER win, else 0."""
    if session.is_settled and session.winner == Winner.USER:
        return session.reward
    return 0
