"""ManipulationDetector: Volatility scoring over a time-ordered price series.

This looks at successive accepted prices of a feed, not at a single round.
The suspicion score (0-10000) is the sum of:

    - volatility: mean absolute relative change (bps) times a multiplier
    - reversals: share of consecutive significant changes that flip direction,
      times a fixed weight

Steady, small moves stay well under 2000. Large jumps or see-saw swings push
the score past the threshold.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from fractions import Fraction

from .errors import Reason

logger = logging.getLogger(__name__)

BPS = 10_000

MIN_POINTS = 3


@dataclass
class ManipulationAnalysis:
    """Outcome of a manipulation analysis.

    :ivar score: Suspicion score in bps.
    :ivar is_manipulation: True once score reaches the detector threshold.
    :ivar average_change_bps: Mean absolute relative change between samples.
    :ivar max_change_bps: Largest absolute relative change between samples.
    :ivar reversals: Number of significant direction reversals.
    :ivar reason: INVALID_INPUT when the series could not be analyzed,
        MANIPULATION_SUSPECTED when flagged, otherwise None.
    :ivar detail: Human-readable explanation for a non-None reason.
    """

    score: int = 0
    is_manipulation: bool = False
    average_change_bps: int = 0
    max_change_bps: int = 0
    reversals: int = 0
    reason: Reason | None = None
    detail: str = ""

    @property
    def success(self) -> bool:
        """Check if the input was analyzable."""
        return self.reason != Reason.INVALID_INPUT


class ManipulationDetector:
    """Scores price series for manipulation patterns.

    :ivar threshold: Score at or above which a series is flagged.
    :ivar volatility_multiplier: Score points per bps of mean absolute change.
    :ivar reversal_weight: Score contributed when every step reverses.
    :ivar reversal_floor_bps: Changes smaller than this never count as reversals.

    .. code-block:: python

        >>> detector = ManipulationDetector()
        >>> detector.analyze([100, 110, 100, 110], [1, 2, 3, 4]).is_manipulation
        True
        >>> detector.analyze([1000, 1001, 1002], [1, 2, 3]).score < 2000
        True
    """

    def __init__(
        self,
        threshold: int = 5000,
        volatility_multiplier: int = 10,
        reversal_weight: int = 5000,
        reversal_floor_bps: int = 50,
    ) -> None:
        if not 0 < threshold <= BPS:
            raise ValueError("threshold must be in (0, 10000]")
        if volatility_multiplier < 0 or reversal_weight < 0 or reversal_floor_bps < 0:
            raise ValueError("detector weights must not be negative")
        self.threshold = threshold
        self.volatility_multiplier = volatility_multiplier
        self.reversal_weight = reversal_weight
        self.reversal_floor_bps = reversal_floor_bps

    def analyze(self, prices: Sequence[int], timestamps: Sequence[int]) -> ManipulationAnalysis:
        """Analyze a time-ordered price series.

        :param prices: Prices in time order.
        :param timestamps: Observation time of each price, strictly increasing.
        :returns: ManipulationAnalysis; invalid input is reported through
            ``reason`` rather than raised.
        """
        if len(prices) != len(timestamps):
            return ManipulationAnalysis(
                reason=Reason.INVALID_INPUT,
                detail=f"length mismatch: {len(prices)} prices, {len(timestamps)} timestamps",
            )
        if len(prices) < MIN_POINTS:
            return ManipulationAnalysis(
                reason=Reason.INVALID_INPUT,
                detail=f"need at least {MIN_POINTS} points, got {len(prices)}",
            )
        if any(p <= 0 for p in prices):
            return ManipulationAnalysis(
                reason=Reason.INVALID_INPUT, detail="prices must be positive"
            )
        if any(b <= a for a, b in zip(timestamps, timestamps[1:])):
            return ManipulationAnalysis(
                reason=Reason.INVALID_INPUT, detail="timestamps must be strictly increasing"
            )

        changes = [
            Fraction((curr - prev) * BPS, prev) for prev, curr in zip(prices, prices[1:])
        ]
        magnitudes = [abs(c) for c in changes]
        average_change = sum(magnitudes) / len(magnitudes)

        reversals = 0
        for prev, curr in zip(changes, changes[1:]):
            significant = (
                abs(prev) >= self.reversal_floor_bps and abs(curr) >= self.reversal_floor_bps
            )
            if significant and (prev > 0) != (curr > 0):
                reversals += 1

        volatility = average_change * self.volatility_multiplier
        reversal_ratio = Fraction(reversals, len(changes) - 1)
        score = min(BPS, math.floor(volatility + reversal_ratio * self.reversal_weight))
        flagged = score >= self.threshold

        analysis = ManipulationAnalysis(
            score=score,
            is_manipulation=flagged,
            average_change_bps=math.floor(average_change),
            max_change_bps=math.floor(max(magnitudes)),
            reversals=reversals,
        )
        if flagged:
            analysis.reason = Reason.MANIPULATION_SUSPECTED
            analysis.detail = (
                f"score {score} >= {self.threshold} "
                f"(avg change {analysis.average_change_bps} bps, {reversals} reversals)"
            )
            logger.warning(f"Manipulation suspected: {analysis.detail}")
        return analysis
