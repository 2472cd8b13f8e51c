"""FeedConfig: Per-feed thresholds consumed by consensus, settlement and the gate."""

from __future__ import annotations

from dataclasses import dataclass

BPS = 10_000

DEFAULT_MAX_STALENESS = 300


@dataclass
class FeedConfig:
    """Configuration of a single price feed.

    :ivar oracle_enabled: When False the gate allows every action.
    :ivar max_price_deviation_bps: Accuracy threshold for settlement and the
        requested-price check in the gate.
    :ivar min_stake_required: Minimum operator balance to attest, and minimum
        total stake behind a consensus the gate accepts.
    :ivar consensus_threshold_bps: Confidence needed to commit and to pass the gate.
    :ivar max_staleness: Age after which a committed consensus is unusable.
    :ivar outlier_deviation_bps: Deviation from the provisional reference above
        which an attestation is excluded before aggregation.
    """

    oracle_enabled: bool = True
    max_price_deviation_bps: int = 500
    min_stake_required: int = 0
    consensus_threshold_bps: int = 6600
    max_staleness: int = DEFAULT_MAX_STALENESS
    outlier_deviation_bps: int = 1000

    def __post_init__(self) -> None:
        if not 0 < self.max_price_deviation_bps <= BPS:
            raise ValueError("max_price_deviation_bps must be in (0, 10000]")
        if not 0 < self.outlier_deviation_bps <= BPS:
            raise ValueError("outlier_deviation_bps must be in (0, 10000]")
        if not 0 <= self.consensus_threshold_bps <= BPS:
            raise ValueError("consensus_threshold_bps must be in [0, 10000]")
        if self.min_stake_required < 0:
            raise ValueError("min_stake_required must not be negative")
        if self.max_staleness <= 0:
            raise ValueError("max_staleness must be positive")
