"""SettlementEngine: Rewards accurate attestations and slashes inaccurate ones.

Every settled attestation ends up in exactly one bucket:

    - deviation <= max_price_deviation_bps: reward, count as accurate,
      reliability + increment (capped at 10000)
    - otherwise: slash slash_bps of the attestation's stake from the
      operator's balance, reliability - penalty (floored at 0)

Stake custody is external; the report carries the ledger instructions the
custody collaborator executes.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from .Attestation import Attestation
from .ConsensusCalculator import ConsensusResult, calculate_deviation
from .EventSink import OPERATOR_REWARDED, OPERATOR_SLASHED, EventSink, OracleEvent
from .FeedConfig import FeedConfig
from .OperatorRegistry import OperatorRegistry

logger = logging.getLogger(__name__)

BPS = 10_000

REWARD = "reward"
SLASH = "slash"


@dataclass(frozen=True)
class SettlementPolicy:
    """Reward and penalty constants.

    :ivar reward_amount: Fixed reward per accurate attestation.
    :ivar slash_bps: Share of an inaccurate attestation's stake slashed.
    :ivar reliability_increment: Reliability gain per accurate attestation.
    :ivar reliability_penalty: Reliability loss per slash.
    """

    reward_amount: int = 10 ** 16
    slash_bps: int = 100
    reliability_increment: int = 100
    reliability_penalty: int = 500

    def __post_init__(self) -> None:
        if self.reward_amount < 0:
            raise ValueError("reward_amount must not be negative")
        if not 0 <= self.slash_bps <= BPS:
            raise ValueError("slash_bps must be in [0, 10000]")
        if self.reliability_increment < 0 or self.reliability_penalty < 0:
            raise ValueError("reliability adjustments must not be negative")


@dataclass(frozen=True)
class LedgerInstruction:
    """Instruction for the stake custody collaborator."""

    kind: str
    operator_id: str
    amount: int


@dataclass
class SettlementEntry:
    """Settlement outcome of one attestation."""

    attestation_id: str
    operator_id: str
    deviation_bps: int
    accurate: bool
    amount: int


@dataclass
class SettlementReport:
    """Outcome of settling a round.

    :ivar entries: One entry per settled attestation.
    :ivar instructions: Reward/slash instructions for the ledger.
    """

    entries: list[SettlementEntry] = field(default_factory=list)
    instructions: list[LedgerInstruction] = field(default_factory=list)

    @property
    def rewarded(self) -> list[SettlementEntry]:
        return [e for e in self.entries if e.accurate]

    @property
    def slashed(self) -> list[SettlementEntry]:
        return [e for e in self.entries if not e.accurate]


class SettlementEngine:
    """Applies a :class:`SettlementPolicy` to committed rounds."""

    def __init__(
        self,
        registry: OperatorRegistry,
        policy: SettlementPolicy | None = None,
        event_sink: EventSink | None = None,
    ) -> None:
        self.registry = registry
        self.policy = policy or SettlementPolicy()
        self.event_sink = event_sink

    def settle(
        self,
        attestations: Sequence[Attestation],
        result: ConsensusResult,
        config: FeedConfig,
    ) -> SettlementReport:
        """Settle attestations against a committed consensus.

        :param attestations: Attestations to settle; each is settled once.
        :param result: Committed consensus result.
        :param config: Feed configuration supplying the accuracy threshold.
        :returns: SettlementReport.
        :raises ValueError: If the result is not a committed consensus.
        """
        if not result.valid:
            raise ValueError("cannot settle against an invalid consensus")

        report = SettlementReport()
        policy = self.policy
        for attestation in attestations:
            deviation = calculate_deviation(attestation.price, result.weighted_price)
            if deviation <= config.max_price_deviation_bps:
                self.registry.reward(
                    attestation.operator_id,
                    policy.reward_amount,
                    policy.reliability_increment,
                )
                entry = SettlementEntry(
                    attestation.attestation_id,
                    attestation.operator_id,
                    deviation,
                    accurate=True,
                    amount=policy.reward_amount,
                )
                kind = REWARD
            else:
                slashed = self.registry.slash(
                    attestation.operator_id,
                    attestation.stake * policy.slash_bps // BPS,
                    policy.reliability_penalty,
                )
                entry = SettlementEntry(
                    attestation.attestation_id,
                    attestation.operator_id,
                    deviation,
                    accurate=False,
                    amount=slashed,
                )
                kind = SLASH
                logger.warning(
                    f"{attestation.feed_id}: slashed {attestation.operator_id} by {slashed} "
                    f"(deviation {deviation} bps > {config.max_price_deviation_bps} bps)"
                )

            report.entries.append(entry)
            if entry.amount:
                report.instructions.append(
                    LedgerInstruction(kind, attestation.operator_id, entry.amount)
                )
            self._emit(attestation, entry)

        logger.info(
            f"Settled {len(report.entries)} attestations: "
            f"{len(report.rewarded)} rewarded, {len(report.slashed)} slashed"
        )
        return report

    def _emit(self, attestation: Attestation, entry: SettlementEntry) -> None:
        if self.event_sink is None:
            return
        event = OracleEvent(
            kind=OPERATOR_REWARDED if entry.accurate else OPERATOR_SLASHED,
            feed_id=attestation.feed_id,
            operator_id=entry.operator_id,
            data={
                "attestation_id": entry.attestation_id,
                "deviation_bps": entry.deviation_bps,
                "amount": entry.amount,
            },
        )
        try:
            self.event_sink.emit(event)
        except Exception:
            logger.exception(f"Event sink failed on {event.kind}")
