"""
Session Store
=============

In-memory registry of game sessions with a per-user index.

The store is the only writer of sessions. Every read and write holds
one lock, so the ACTIVE -> SETTLED check-and-set in settle_session()
commits at most once per session even with concurrent callers.
"""

import dataclasses
import math
import secrets
import string
import threading
from datetime import timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Union

import structlog

from btc_duel.errors import InvalidInputError
from btc_duel.models import (
    GameSession,
    GameStatus,
    Prediction,
    UserStats,
    Winner,
    direction_between,
    to_price,
)
from btc_duel.utils.clock import get_clock

logger = structlog.get_logger()

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_game_id(now_ms: int) -> str:
    """Game id of the form game_<epoch ms>_<7 base36 chars>."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"game_{now_ms}_{suffix}"


def determine_winner(user_correct: bool, opponent_correct: bool) -> Winner:
    """Only a call that is right while the other is wrong wins."""
    if user_correct and not opponent_correct:
        return Winner.USER
    if opponent_correct and not user_correct:
        return Winner.OPPONENT
    return Winner.TIE


class SessionStore:
    """
    Owns the lifecycle of every GameSession in the process.

    Sessions live until cleanup_expired() removes them by age.
    """

    def __init__(self, clock=None):
        """
        Args:
            clock: Object with now() -> datetime (defaults to system clock)
        """
        self.clock = clock or get_clock()

        self._sessions: Dict[str, GameSession] = {}
        self._user_index: Dict[int, List[str]] = {}
        self._lock = threading.Lock()

        # Stats
        self.sessions_created = 0
        self.sessions_settled = 0
        self.sessions_removed = 0

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, game_id: str) -> bool:
        return game_id in self._sessions

    def _new_id(self, now_ms: int) -> str:
        game_id = generate_game_id(now_ms)
        while game_id in self._sessions:
            game_id = generate_game_id(now_ms)
        return game_id

    def create_session(
        self,
        user_id: int,
        user_prediction: Prediction,
        opponent_prediction: Prediction,
        entry_price: Union[Decimal, float, int, str],
        reward: int
    ) -> GameSession:
        """
        Register a new ACTIVE session.

        Args:
            user_id: Numeric id of the participant (pre-validated upstream)
            user_prediction: User's call
            opponent_prediction: Opponent's call
            entry_price: BTC price at creation
            reward: Amount paid out if the user wins

        Raises:
            InvalidInputError: user_id or reward malformed
            InvalidPriceError: entry_price not positive
        """
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            raise InvalidInputError(f"user_id must be an integer, got {user_id!r}")
        if isinstance(reward, bool) or not isinstance(reward, int) or reward < 0:
            raise InvalidInputError(f"reward must be a non-negative integer, got {reward!r}")

        price = to_price(entry_price)
        user_prediction = Prediction(user_prediction)
        opponent_prediction = Prediction(opponent_prediction)

        with self._lock:
            now = self.clock.now()
            session = GameSession(
                id=self._new_id(int(now.timestamp() * 1000)),
                user_id=user_id,
                user_prediction=user_prediction,
                opponent_prediction=opponent_prediction,
                entry_price=price,
                reward=reward,
                created_at=now,
            )
            self._sessions[session.id] = session
            self._user_index.setdefault(user_id, []).append(session.id)
            self.sessions_created += 1

        logger.info(
            "session_created",
            game_id=session.id,
            user_id=user_id,
            user_prediction=user_prediction.value,
            opponent_prediction=opponent_prediction.value,
            entry_price=str(price)
        )
        return session

    def get_session(self, game_id: str) -> Optional[GameSession]:
        with self._lock:
            return self._sessions.get(game_id)

    def settle_session(
        self,
        game_id: str,
        settlement_price: Union[Decimal, float, int, str]
    ) -> Optional[GameSession]:
        """
        Settle an ACTIVE session against the observed price.

        Returns:
            The settled session, or None if the session is unknown or
            was already settled (nothing is changed in that case).

        Raises:
            InvalidPriceError: settlement_price not positive
        """
        price = to_price(settlement_price)

        with self._lock:
            session = self._sessions.get(game_id)
            if session is None or session.status != GameStatus.ACTIVE:
                return None

            actual = direction_between(session.entry_price, price)
            winner = determine_winner(
                session.user_prediction == actual,
                session.opponent_prediction == actual
            )
            settled = dataclasses.replace(
                session,
                status=GameStatus.SETTLED,
                settlement_price=price,
                winner=winner,
                settled_at=self.clock.now(),
            )
            self._sessions[game_id] = settled
            self.sessions_settled += 1

        logger.info(
            "session_settled",
            game_id=game_id,
            user_id=settled.user_id,
            entry_price=str(settled.entry_price),
            settlement_price=str(price),
            actual_direction=actual.value,
            winner=winner.value
        )
        return settled

    def get_user_sessions(self, user_id: int) -> List[GameSession]:
        """User's sessions still in the store, oldest first."""
        with self._lock:
            ids = list(self._user_index.get(user_id, ()))
            return [self._sessions[i] for i in ids if i in self._sessions]

    def get_user_active_session(self, user_id: int) -> Optional[GameSession]:
        """Most recently created session of the user that is still ACTIVE."""
        for session in reversed(self.get_user_sessions(user_id)):
            if session.status == GameStatus.ACTIVE:
                return session
        return None

    def get_user_stats(self, user_id: int) -> UserStats:
        """Wins, losses and ties over SETTLED sessions; reward summed on wins."""
        wins = losses = ties = reward_won = 0

        for session in self.get_user_sessions(user_id):
            if session.status != GameStatus.SETTLED:
                continue
            if session.winner == Winner.USER:
                wins += 1
                reward_won += session.reward
            elif session.winner == Winner.OPPONENT:
                losses += 1
            else:
                ties += 1

        return UserStats(
            wins=wins,
            losses=losses,
            ties=ties,
            total_reward_won=reward_won,
        )

    def cleanup_expired(self, max_age: Union[timedelta, float]) -> int:
        """
        Remove sessions created at least `max_age` ago, whatever their status.

        Args:
            max_age: timedelta, or seconds (float("inf") keeps everything)

        Returns:
            Number of sessions removed
        """
        if not isinstance(max_age, timedelta):
            if math.isinf(max_age) and max_age > 0:
                return 0
            max_age = timedelta(seconds=max(0.0, max_age))

        with self._lock:
            now = self.clock.now()
            expired = set()
            for game_id, session in self._sessions.items():
                if now - session.created_at >= max_age:
                    expired.add(game_id)

            for game_id in expired:
                del self._sessions[game_id]

            if expired:
                for user_id in list(self._user_index):
                    remaining = [i for i in self._user_index[user_id] if i not in expired]
                    if remaining:
                        self._user_index[user_id] = remaining
                    else:
                        del self._user_index[user_id]

            self.sessions_removed += len(expired)

        if expired:
            logger.info(
                "sessions_cleaned_up",
                removed=len(expired),
                remaining=len(self._sessions),
                max_age_seconds=max_age.total_seconds()
            )
        return len(expired)

    def get_stats(self) -> dict:
        """Return store statistics."""
        with self._lock:
            active = sum(1 for s in self._sessions.values() if s.status == GameStatus.ACTIVE)
            return {
                "sessions": len(self._sessions),
                "active": active,
                "users": len(self._user_index),
                "sessions_created": self.sessions_created,
                "sessions_settled": self.sessions_settled,
                "sessions_removed": self.sessions_removed,
            }
