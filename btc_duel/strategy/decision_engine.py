"""
Opponent Decision Engine
========================

Picks the opponent's UP/DOWN call from the 24h price change,
blending trend-following, mean reversion and a random component.
"""

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np
import structlog

from btc_duel.models import Prediction, PriceSnapshot, TIE_BREAK_DIRECTION

logger = structlog.get_logger()


def round_half_up(value: float) -> int:
    """Nearest integer, .5 always rounding up (64.5 -> 65)."""
    return math.floor(value + 0.5)


@dataclass(frozen=True)
class DecisionFactors:
    """Signals derived from one snapshot."""
    momentum: float     # (-1, 1)
    volatility: float   # [0, 1]
    contrarian: float   # [-0.5, 0.5]
    randomness: float   # [0, 1)


class DecisionEngine:
    """
    Algorithmic opponent.

    Score:
        momentum * 0.35 + contrarian * 0.25 + (randomness - 0.5) * 2 * 0.40

    scaled down by (1 - (volatility - 0.5)) when volatility > 0.5.
    A positive score predicts UP; zero or below predicts DOWN.

    The only non-deterministic input is the random draw, taken from the
    injected generator. Pass `randomness` explicitly to pin it.
    """

    MOMENTUM_WEIGHT = 0.35
    CONTRARIAN_WEIGHT = 0.25
    RANDOMNESS_WEIGHT = 0.40

    # Mean reversion kicks in beyond this 24h move (percent)
    CONTRARIAN_THRESHOLD = 3.0
    CONTRARIAN_CAP = 0.5

    MIN_CONFIDENCE = 50
    MAX_CONFIDENCE = 85

    def __init__(self, rng: Optional[np.random.Generator] = None):
        """
        Args:
            rng: Random source (defaults to an OS-seeded generator)
        """
        self.rng = rng or np.random.default_rng()

        # Stats
        self.predictions_made = 0
        self.up_calls = 0
        self.down_calls = 0

    @staticmethod
    def volatility(change_24h: float) -> float:
        return min(abs(change_24h) / 10, 1.0)

    def calculate_factors(
        self,
        snapshot: PriceSnapshot,
        randomness: Optional[float] = None
    ) -> DecisionFactors:
        """
        Derive the decision signals.

        Args:
            snapshot: Current price reading
            randomness: Fixed draw in [0, 1); a fresh one is drawn if None
        """
        change = snapshot.change_24h

        momentum = math.tanh(change / 5)

        contrarian = 0.0
        if abs(change) > self.CONTRARIAN_THRESHOLD:
            contrarian = -math.copysign(1.0, change) * min(
                (abs(change) - self.CONTRARIAN_THRESHOLD) / 5,
                self.CONTRARIAN_CAP
            )

        if randomness is None:
            randomness = float(self.rng.random())

        return DecisionFactors(
            momentum=momentum,
            volatility=self.volatility(change),
            contrarian=contrarian,
            randomness=randomness,
        )

    def compute_score(self, factors: DecisionFactors) -> float:
        score = factors.momentum * self.MOMENTUM_WEIGHT
        score += factors.contrarian * self.CONTRARIAN_WEIGHT
        # Map [0, 1) onto [-1, 1)
        score += (factors.randomness - 0.5) * 2 * self.RANDOMNESS_WEIGHT

        # Dampen in turbulent markets
        if factors.volatility > 0.5:
            score *= 1 - (factors.volatility - 0.5)

        return score

    def predict(
        self,
        snapshot: PriceSnapshot,
        randomness: Optional[float] = None
    ) -> Prediction:
        """Opponent's call for the given snapshot."""
        factors = self.calculate_factors(snapshot, randomness)
        score = self.compute_score(factors)
        prediction = Prediction.UP if score > 0 else TIE_BREAK_DIRECTION

        self.predictions_made += 1
        if prediction == Prediction.UP:
            self.up_calls += 1
        else:
            self.down_calls += 1

        logger.debug(
            "opponent_prediction",
            prediction=prediction.value,
            score=round(score, 4),
            momentum=round(factors.momentum, 4),
            contrarian=round(factors.contrarian, 4),
            volatility=round(factors.volatility, 4)
        )
        return prediction

    def confidence(
        self,
        snapshot: PriceSnapshot,
        noise: Optional[float] = None
    ) -> int:
        """
        Display-only confidence percentage in [50, 85].

        Independent of the decision score; says nothing about accuracy.

        Args:
            snapshot: Current price reading
            noise: Fixed draw in [0, 1); a fresh one is drawn if None
        """
        if noise is None:
            noise = float(self.rng.random())

        volatility = self.volatility(snapshot.change_24h)
        raw = round_half_up((0.5 + noise * 0.3 - volatility * 0.2) * 100)
        return max(self.MIN_CONFIDENCE, min(self.MAX_CONFIDENCE, raw))

    @staticmethod
    def rationale(snapshot: PriceSnapshot, prediction: Prediction) -> str:
        """Short human-readable reason for the opponent's call."""
        change = snapshot.change_24h
        is_up = prediction == Prediction.UP

        if abs(change) < 1:
            return (
                "Market is stable, expecting slight upward momentum" if is_up
                else "Market is stable, anticipating minor correction"
            )

        if change > 3:
            return (
                "Strong bullish momentum, riding the trend" if is_up
                else "Overbought conditions, expecting pullback"
            )

        if change < -3:
            return "Oversold bounce expected" if is_up else "Bearish momentum continues"

        return (
            "Technical indicators suggest upside" if is_up
            else "Technical indicators point to downside"
        )

    def get_stats(self) -> dict:
        """Return engine statistics."""
        return {
            "predictions_made": self.predictions_made,
            "up_calls": self.up_calls,
            "down_calls": self.down_calls,
        }
