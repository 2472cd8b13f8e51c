"""ConsensusCalculator: Stake-weighted price, convergence and confidence.

Algorithm:
    1. weighted price = sum(price * stake) / sum(stake)
    2. convergence = 10000 * 100 / (100 + average deviation in bps)
    3. confidence = blend(convergence, stake evenness, operator count,
       average reliability) * stake / (stake + stake_reference)
    4. Commit only if at least 3 attestations and confidence >= threshold

All intermediate math is exact (``fractions.Fraction``); scores are floored
to whole basis points at the end.

.. code-block:: python

    >>> calculate_deviation(100, 100)
    0
    >>> calculate_deviation(105, 100)
    500
    >>> calculate_deviation(100, 0)
    10000
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from fractions import Fraction

from .Attestation import Attestation
from .errors import Reason

BPS = 10_000

MIN_ATTESTATIONS = 3

INITIAL_RELIABILITY = 5000

# One whole token at 18 decimals.
DEFAULT_STAKE_REFERENCE = 10 ** 18

# Confidence contribution by number of distinct operators (index = count).
OPERATOR_COUNT_SCORES = (0, 2000, 4000, 6000, 7500, 10000)


def relative_deviation(price: int | Fraction, reference: int | Fraction) -> Fraction:
    """Exact deviation of ``price`` from ``reference`` in basis points.

    A non-positive reference is undefined and reported as 10000.
    """
    if reference <= 0:
        return Fraction(BPS)
    return Fraction(abs(price - reference) * BPS) / reference


def calculate_deviation(price: int, reference: int) -> int:
    """Deviation of ``price`` from ``reference`` in whole basis points.

    :param price: Observed price.
    :param reference: Reference price the deviation is measured against.
    :returns: ``|price - reference| * 10000 / reference`` rounded down, or
        10000 when reference is 0.
    """
    return math.floor(relative_deviation(price, reference))


@dataclass(frozen=True)
class ConfidenceWeights:
    """Blend weights for the confidence score, in basis points.

    Weights must sum to 10000. ``ConfidenceWeights(10000, 0, 0, 0)`` gives the
    basic variant where confidence depends only on convergence and stake.
    """

    convergence: int = 4000
    stake_evenness: int = 2000
    operator_count: int = 2000
    reliability: int = 2000

    def __post_init__(self) -> None:
        weights = (self.convergence, self.stake_evenness, self.operator_count, self.reliability)
        if any(w < 0 for w in weights):
            raise ValueError("confidence weights must not be negative")
        if sum(weights) != BPS:
            raise ValueError("confidence weights must sum to 10000")


@dataclass(frozen=True)
class ConsensusResult:
    """Aggregate of one consensus round.

    :ivar weighted_price: Stake-weighted price, 0 when no stake.
    :ivar total_stake: Stake backing the included attestations.
    :ivar participating_stake: Stake left after outlier filtering; equals
        ``total_stake``.
    :ivar attestation_count: Number of participating attestations.
    :ivar confidence_level: Composite confidence in bps.
    :ivar convergence_score: Clustering score in bps.
    :ivar consensus_timestamp: Time the round was computed.
    :ivar valid: True when the round met the commit rule.
    :ivar attestation_ids: Ids of the participating attestations.
    """

    weighted_price: int
    total_stake: int
    participating_stake: int
    attestation_count: int
    confidence_level: int
    convergence_score: int
    consensus_timestamp: int
    valid: bool
    attestation_ids: tuple[str, ...] = ()


@dataclass
class RoundOutcome:
    """Candidate result of a round and whether it may be committed.

    :ivar result: Candidate consensus result.
    :ivar reason: Why the round cannot commit, or None.
    """

    result: ConsensusResult
    reason: Reason | None = None

    @property
    def committed(self) -> bool:
        """Check if the round met the commit rule."""
        return self.reason is None


def weighted_price(attestations: Sequence[Attestation]) -> int:
    """Stake-weighted average price, rounded down; 0 when total stake is 0."""
    total_stake = sum(a.stake for a in attestations)
    if total_stake == 0:
        return 0
    return sum(a.price * a.stake for a in attestations) // total_stake


def convergence_score(attestations: Sequence[Attestation], price: int) -> int:
    """Score how tightly attestations cluster around ``price``.

    :returns: 10000 when the average deviation is exactly 0, decaying
        hyperbolically as it grows; 0 for an empty set.
    """
    if not attestations:
        return 0
    avg_dev = sum(relative_deviation(a.price, price) for a in attestations) / len(attestations)
    if avg_dev == 0:
        return BPS
    return min(BPS, math.floor(Fraction(BPS * 100) / (100 + avg_dev)))


def stake_evenness_score(attestations: Sequence[Attestation]) -> int:
    """Normalized ``1 - HHI`` over per-operator stake shares, in bps.

    One operator (or no stake) scores 0; perfectly equal stake across
    operators scores 10000.
    """
    stakes: dict[str, int] = {}
    for a in attestations:
        stakes[a.operator_id] = stakes.get(a.operator_id, 0) + a.stake
    total = sum(stakes.values())
    n = len(stakes)
    if n < 2 or total == 0:
        return 0
    hhi = sum(Fraction(s, total) ** 2 for s in stakes.values())
    evenness = (1 - hhi) / (1 - Fraction(1, n))
    return max(0, min(BPS, math.floor(evenness * BPS)))


def operator_count_score(operator_count: int) -> int:
    """Step score for the number of distinct operators."""
    if operator_count <= 0:
        return 0
    return OPERATOR_COUNT_SCORES[min(operator_count, len(OPERATOR_COUNT_SCORES) - 1)]


class ConsensusCalculator:
    """Computes consensus rounds from filtered attestations.

    :ivar weights: Confidence blend weights.
    :ivar stake_reference: Stake at which the stake factor reaches one half.
    :ivar min_attestations: Attestations required to commit.

    .. code-block:: python

        >>> calc = ConsensusCalculator()
        >>> outcome = calc.calculate(attestations, {}, now=1000, threshold_bps=6600)
        >>> outcome.committed
        True
    """

    def __init__(
        self,
        weights: ConfidenceWeights | None = None,
        stake_reference: int = DEFAULT_STAKE_REFERENCE,
        min_attestations: int = MIN_ATTESTATIONS,
    ) -> None:
        if stake_reference < 0:
            raise ValueError("stake_reference must not be negative")
        if min_attestations < 1:
            raise ValueError("min_attestations must be at least 1")
        self.weights = weights or ConfidenceWeights()
        self.stake_reference = stake_reference
        self.min_attestations = min_attestations

    def stake_factor(self, stake: int) -> Fraction:
        """Saturating factor ``stake / (stake + stake_reference)``."""
        if stake <= 0:
            return Fraction(0)
        return Fraction(stake, stake + self.stake_reference)

    def confidence_level(
        self,
        attestations: Sequence[Attestation],
        convergence: int,
        reliability: Mapping[str, int],
    ) -> int:
        """Blend the confidence components and dampen by backing stake.

        :param attestations: Participating attestations.
        :param convergence: Convergence score of the round.
        :param reliability: Reliability score per operator id; operators not
            present count as the initial score.
        :returns: Confidence in bps, non-decreasing in each component.
        """
        if not attestations:
            return 0
        operators = {a.operator_id for a in attestations}
        avg_reliability = Fraction(
            sum(reliability.get(op, INITIAL_RELIABILITY) for op in operators), len(operators)
        )
        w = self.weights
        blend = Fraction(
            w.convergence * convergence
            + w.stake_evenness * stake_evenness_score(attestations)
            + w.operator_count * operator_count_score(len(operators)),
            BPS,
        ) + w.reliability * avg_reliability / BPS
        factor = self.stake_factor(sum(a.stake for a in attestations))
        return max(0, min(BPS, math.floor(blend * factor)))

    def calculate(
        self,
        attestations: Sequence[Attestation],
        reliability: Mapping[str, int],
        now: int,
        threshold_bps: int,
    ) -> RoundOutcome:
        """Compute a consensus round.

        :param attestations: Recency- and outlier-filtered attestations.
        :param reliability: Reliability score per operator id.
        :param now: Round timestamp.
        :param threshold_bps: Confidence needed to commit.
        :returns: RoundOutcome with the candidate result.
        """
        participating_stake = sum(a.stake for a in attestations)
        price = weighted_price(attestations)
        convergence = convergence_score(attestations, price)
        confidence = self.confidence_level(attestations, convergence, reliability)

        reason: Reason | None = None
        if len(attestations) < self.min_attestations:
            reason = Reason.NO_CONSENSUS
        elif confidence < threshold_bps:
            reason = Reason.LOW_CONFIDENCE

        result = ConsensusResult(
            weighted_price=price,
            total_stake=participating_stake,
            participating_stake=participating_stake,
            attestation_count=len(attestations),
            confidence_level=confidence,
            convergence_score=convergence,
            consensus_timestamp=now,
            valid=reason is None,
            attestation_ids=tuple(a.attestation_id for a in attestations),
        )
        return RoundOutcome(result=result, reason=reason)
