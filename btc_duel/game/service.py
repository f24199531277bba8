"""
Game Service
============

Facade the presentation layer drives: start a game, check its result,
read stats, and get the current price for display.
"""

from datetime import timedelta
from typing import Optional, Tuple

import structlog

from btc_duel.data.price_feed import snapshot_display
from btc_duel.models import (
    GameCheck,
    GameNotFound,
    GameNotReady,
    GameSession,
    GameSettled,
    GameStart,
    Prediction,
    PriceSnapshot,
    UserStats,
)
from btc_duel.game.oracle import reward_paid

logger = structlog.get_logger()


class GameService:
    """
    Wires the feed, decision engine, store and oracle together.

    Unlike SettlementOracle.check_and_settle(), check_result() tells
    "not found" and "not ready" apart.
    """

    def __init__(
        self,
        price_feed,
        engine,
        store,
        oracle,
        reward: int = 10,
        session_max_age: timedelta = timedelta(hours=24)
    ):
        """
        Args:
            price_feed: PriceFeed for entry prices
            engine: DecisionEngine for the opponent's call
            store: SessionStore owning the sessions
            oracle: SettlementOracle for result checks
            reward: Reward attached to each new session
            session_max_age: Default age for cleanup()
        """
        self.price_feed = price_feed
        self.engine = engine
        self.store = store
        self.oracle = oracle
        self.reward = reward
        self.session_max_age = session_max_age

    async def current_price(self) -> Tuple[PriceSnapshot, dict]:
        """Fresh snapshot and its formatted display variants."""
        snapshot = await self.price_feed.get_current_price()
        return snapshot, snapshot_display(snapshot)

    async def start_game(self, user_id: int, user_prediction: Prediction) -> GameStart:
        """
        Open a session: the opponent calls against the current price.

        Raises:
            InvalidInputError: user_id malformed
            ValueError: user_prediction is not UP or DOWN
        """
        user_prediction = Prediction(user_prediction)
        snapshot = await self.price_feed.get_current_price()

        opponent_prediction = self.engine.predict(snapshot)
        confidence = self.engine.confidence(snapshot)
        rationale = self.engine.rationale(snapshot, opponent_prediction)

        session = self.store.create_session(
            user_id,
            user_prediction,
            opponent_prediction,
            snapshot.price,
            self.reward
        )

        return GameStart(
            session=session,
            snapshot=snapshot,
            confidence=confidence,
            rationale=rationale,
            display=snapshot_display(snapshot),
        )

    async def check_result(self, game_id: str) -> GameCheck:
        """Outcome of a game, settling it if the delay has elapsed."""
        session = self.store.get_session(game_id)
        if session is None:
            return GameNotFound(game_id=game_id)

        if not session.is_settled and not self.oracle.is_ready(session):
            return GameNotReady(
                session=session,
                remaining=self.oracle.time_until_settlement(session),
            )

        result = await self.oracle.check_and_settle(game_id)
        session = self.store.get_session(game_id)

        if result is None or session is None:
            # Removed by a cleanup sweep between the two reads
            return GameNotFound(game_id=game_id)

        return GameSettled(
            session=session,
            result=result,
            reward_paid=reward_paid(session),
        )

    def get_session(self, game_id: str) -> Optional[GameSession]:
        return self.store.get_session(game_id)

    def get_active_game(self, user_id: int) -> Optional[GameSession]:
        return self.store.get_user_active_session(user_id)

    def get_user_stats(self, user_id: int) -> UserStats:
        return self.store.get_user_stats(user_id)

    def cleanup(self, max_age: Optional[timedelta] = None) -> int:
        """Drop sessions older than max_age (the configured age by default)."""
        return self.store.cleanup_expired(
            self.session_max_age if max_age is None else max_age
        )
