"""
Game Data Models
================

Value types shared by the price feed, decision engine, session store
and settlement oracle.

Snapshots, sessions and results are frozen dataclasses. Settling a
session produces a new GameSession; the old instance is never mutated.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Union

from btc_duel.errors import InvalidPriceError


class Prediction(str, Enum):
    """Direction call for the BTC price."""
    UP = "UP"
    DOWN = "DOWN"


class Winner(str, Enum):
    """Outcome of a settled session."""
    USER = "USER"
    OPPONENT = "OPPONENT"
    TIE = "TIE"


class GameStatus(str, Enum):
    """Session lifecycle. Only ACTIVE -> SETTLED is allowed."""
    ACTIVE = "ACTIVE"
    SETTLED = "SETTLED"


# Used for a decision score of exactly 0 and for settlement == entry
TIE_BREAK_DIRECTION = Prediction.DOWN


def to_price(value: Union[Decimal, int, float, str]) -> Decimal:
    """
    Convert a numeric value to a positive Decimal price.

    Raises:
        InvalidPriceError: value is not a finite positive number
    """
    try:
        price = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidPriceError(value)

    if not price.is_finite() or price <= 0:
        raise InvalidPriceError(value)

    return price


def direction_between(entry_price: Decimal, settlement_price: Decimal) -> Prediction:
    """Actual direction of a move; an unchanged price resolves to the tie-break."""
    if settlement_price > entry_price:
        return Prediction.UP
    if settlement_price < entry_price:
        return Prediction.DOWN
    return TIE_BREAK_DIRECTION


@dataclass(frozen=True)
class PriceSnapshot:
    """Immutable BTC price reading."""
    price: Decimal
    change_24h: float  # percent, signed
    observed_at: datetime
    is_placeholder: bool = False  # synthesized, no upstream data

    def __post_init__(self):
        object.__setattr__(self, "price", to_price(self.price))
        object.__setattr__(self, "change_24h", float(self.change_24h))


@dataclass(frozen=True)
class GameSession:
    """One round of the game, from creation to settlement."""
    id: str
    user_id: int
    user_prediction: Prediction
    opponent_prediction: Prediction
    entry_price: Decimal
    reward: int
    created_at: datetime
    status: GameStatus = GameStatus.ACTIVE
    settlement_price: Optional[Decimal] = None
    winner: Optional[Winner] = None
    settled_at: Optional[datetime] = None

    @property
    def is_settled(self) -> bool:
        return self.status == GameStatus.SETTLED

    @property
    def actual_direction(self) -> Optional[Prediction]:
        """Observed direction, or None while the session is ACTIVE."""
        if self.settlement_price is None:
            return None
        return direction_between(self.entry_price, self.settlement_price)

    def age(self, now: datetime) -> timedelta:
        return now - self.created_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_prediction": self.user_prediction.value,
            "opponent_prediction": self.opponent_prediction.value,
            "entry_price": str(self.entry_price),
            "reward": self.reward,
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "settlement_price": (
                str(self.settlement_price) if self.settlement_price is not None else None
            ),
            "winner": self.winner.value if self.winner else None,
            "settled_at": self.settled_at.isoformat() if self.settled_at else None,
        }


@dataclass(frozen=True)
class OracleResult:
    """Settlement outcome derived from a session's stored prices."""
    entry_price: Decimal
    settlement_price: Decimal
    price_change: float  # percent
    direction: Prediction

    @classmethod
    def from_session(cls, session: GameSession) -> "OracleResult":
        """
        Build the result from a SETTLED session.

        Raises:
            ValueError: session has no settlement price yet
        """
        if session.settlement_price is None:
            raise ValueError(f"Session {session.id} is not settled")

        entry = session.entry_price
        settlement = session.settlement_price
        return cls(
            entry_price=entry,
            settlement_price=settlement,
            price_change=float((settlement - entry) / entry * 100),
            direction=direction_between(entry, settlement),
        )


@dataclass(frozen=True)
class UserStats:
    """Aggregate results over a user's settled sessions."""
    wins: int = 0
    losses: int = 0
    ties: int = 0
    total_reward_won: int = 0

    @property
    def games_played(self) -> int:
        return self.wins + self.losses + self.ties


# ==========================================
# RESULT VARIANTS (service layer)
# ==========================================

@dataclass(frozen=True)
class GameNotFound:
    """No session with the requested id (unknown or cleaned up)."""
    game_id: str


@dataclass(frozen=True)
class GameNotReady:
    """Session exists but the settlement delay has not elapsed."""
    session: GameSession
    remaining: timedelta


@dataclass(frozen=True)
class GameSettled:
    """Final outcome of a session."""
    session: GameSession
    result: OracleResult
    reward_paid: int = 0


GameCheck = Union[GameNotFound, GameNotReady, GameSettled]


@dataclass(frozen=True)
class GameStart:
    """Everything the caller needs to render a freshly created game."""
    session: GameSession
    snapshot: PriceSnapshot
    confidence: int
    rationale: str
    display: dict = field(default_factory=dict)
