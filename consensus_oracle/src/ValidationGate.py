"""ValidationGate: Fail-closed allow/deny decision for the gated action.

Checks, in order:
    1. Oracle disabled for the feed -> allow
    2. No committed consensus, or not valid -> deny (no_consensus)
    3. Consensus older than max_staleness -> deny (stale_consensus)
    4. Total stake below min_stake_required -> deny (insufficient_stake)
    5. Confidence below consensus_threshold_bps -> deny (low_confidence)
    6. Requested price deviating more than max_price_deviation_bps from the
       consensus price -> deny (manipulation_suspected)
"""

from __future__ import annotations

from dataclasses import dataclass

from .ConsensusCalculator import ConsensusResult, calculate_deviation
from .errors import Reason
from .FeedConfig import FeedConfig


@dataclass(frozen=True)
class GateDecision:
    """Outcome of a gate check.

    :ivar allowed: Whether the gated action may proceed.
    :ivar reason: Denial reason, None when allowed.
    :ivar detail: Human-readable explanation.
    """

    allowed: bool
    reason: Reason | None = None
    detail: str = ""

    @classmethod
    def allow(cls, detail: str = "") -> GateDecision:
        return cls(allowed=True, detail=detail)

    @classmethod
    def deny(cls, reason: Reason, detail: str) -> GateDecision:
        return cls(allowed=False, reason=reason, detail=detail)


def is_fresh(result: ConsensusResult | None, config: FeedConfig, now: int) -> bool:
    """Check a committed result is valid and within max_staleness of ``now``."""
    return (
        result is not None
        and result.valid
        and now - result.consensus_timestamp <= config.max_staleness
    )


def validate(
    result: ConsensusResult | None,
    config: FeedConfig,
    now: int,
    requested_price: int | None = None,
) -> GateDecision:
    """Decide whether the gated action may proceed.

    :param result: Feed's committed consensus, or None.
    :param config: Feed configuration.
    :param now: Current time.
    :param requested_price: Price the caller intends to act at, if any.
    :returns: GateDecision.
    """
    if not config.oracle_enabled:
        return GateDecision.allow("oracle disabled for feed")

    if result is None or not result.valid:
        return GateDecision.deny(Reason.NO_CONSENSUS, "no fresh consensus")

    age = now - result.consensus_timestamp
    if age > config.max_staleness:
        return GateDecision.deny(
            Reason.STALE_CONSENSUS,
            f"no fresh consensus: age {age} > max staleness {config.max_staleness}",
        )

    if result.total_stake < config.min_stake_required:
        return GateDecision.deny(
            Reason.INSUFFICIENT_STAKE,
            f"insufficient backing: {result.total_stake} < {config.min_stake_required}",
        )

    if result.confidence_level < config.consensus_threshold_bps:
        return GateDecision.deny(
            Reason.LOW_CONFIDENCE,
            f"weak consensus: {result.confidence_level} < {config.consensus_threshold_bps}",
        )

    if requested_price is not None:
        deviation = calculate_deviation(requested_price, result.weighted_price)
        if requested_price <= 0 or deviation > config.max_price_deviation_bps:
            return GateDecision.deny(
                Reason.MANIPULATION_SUSPECTED,
                f"requested price {requested_price} deviates {deviation} bps "
                f"from consensus {result.weighted_price}",
            )

    return GateDecision.allow()
