"""OracleEngine: Coordinator for per-feed attestation consensus.

The engine owns an explicit keyed store ``feed_id -> FeedState`` and exposes
the submission, registration, query and gate APIs. Each feed has its own
lock; a consensus round runs under that lock so it always sees a consistent
snapshot of the feed's attestations. Operator state lives in the
:class:`OperatorRegistry`, whose lock is always taken after a feed lock.

Round pipeline:
    1. Select attestations observed within the recency window
    2. Keep the latest attestation per operator
    3. Drop outliers against the provisional reference price
    4. Compute weighted price, convergence and confidence
    5. If committable: replace the feed's result, settle every round
       attestation not settled before, record the price in the feed history
    6. Prune attestations older than the window that the result does not
       reference

Outlier stake never counts towards ``total_stake``. A round that does not commit leaves the previous result in place; it ages
out through ``max_staleness`` at query time.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field, fields, replace

from .Attestation import Attestation, signing_payload
from .AttestationStore import DEFAULT_RECENCY_WINDOW, AttestationStore
from .clock import Clock
from .ConsensusCalculator import ConsensusCalculator, ConsensusResult
from .errors import InvalidInput, OracleError, Reason, Unauthorized
from .EventSink import (
    ACTION_DENIED,
    CONSENSUS_REACHED,
    OPERATOR_SLASHED,
    EventSink,
    LoggingEventSink,
    OracleEvent,
)
from .FeedConfig import FeedConfig
from .ManipulationDetector import ManipulationAnalysis, ManipulationDetector
from .OperatorRegistry import OperatorRecord, OperatorRegistry
from .OutlierFilter import ReferenceMethod, filter_outliers
from .SettlementEngine import (
    SLASH,
    LedgerInstruction,
    SettlementEngine,
    SettlementPolicy,
    SettlementReport,
)
from .SignatureVerifier import EthSignatureVerifier, SignatureVerifier
from .ValidationGate import GateDecision, is_fresh, validate

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 64


@dataclass
class FeedState:
    """Mutable state of one feed. Only touched while ``lock`` is held.

    :ivar config: Feed configuration.
    :ivar result: Latest committed consensus, or None.
    :ivar history: Committed (price, timestamp) pairs, oldest first.
    :ivar settled_ids: Ids of attestations already settled.
    """

    config: FeedConfig
    result: ConsensusResult | None = None
    history: deque[tuple[int, int]] = field(
        default_factory=lambda: deque(maxlen=DEFAULT_HISTORY_SIZE)
    )
    settled_ids: set[str] = field(default_factory=set)
    lock: threading.Lock = field(default_factory=threading.Lock)


@dataclass
class RoundReport:
    """Outcome of a consensus round.

    :ivar result: Candidate result computed by the round.
    :ivar reason: Why the round did not commit, or None.
    :ivar dropped: Attestations excluded as outliers.
    :ivar settlement: Settlement of the round, present only when committed.
    """

    result: ConsensusResult
    reason: Reason | None = None
    dropped: list[Attestation] = field(default_factory=list)
    settlement: SettlementReport | None = None

    @property
    def committed(self) -> bool:
        return self.reason is None


@dataclass
class SubmissionResult:
    """Outcome of an attestation submission.

    :ivar attestation: Stored attestation when accepted.
    :ivar reason: Rejection reason, None when accepted.
    :ivar detail: Human-readable explanation of a rejection.
    :ivar round: Consensus round triggered by the submission, if any.
    """

    attestation: Attestation | None = None
    reason: Reason | None = None
    detail: str = ""
    round: RoundReport | None = None

    @property
    def accepted(self) -> bool:
        return self.reason is None


@dataclass(frozen=True)
class ConsensusView:
    """Query view of a feed's consensus.

    :ivar has_consensus: True only for a valid, non-stale consensus.
    :ivar price: Committed weighted price (0 when none).
    :ivar total_stake: Stake behind the committed result.
    :ivar confidence: Confidence level in bps.
    :ivar as_of: Consensus timestamp, None when never committed.
    """

    has_consensus: bool
    price: int = 0
    total_stake: int = 0
    confidence: int = 0
    as_of: int | None = None


class OracleEngine:
    """Attestation consensus and settlement engine.

    :ivar clock: Injected time source.
    :ivar registry: Operator registry.
    :ivar store: Attestation store.
    :ivar recency_window: Age after which attestations stop participating.
    :ivar auto_consensus: Run a round after every accepted submission.

    .. code-block:: python

        >>> engine = OracleEngine(ManualClock(1000), configurers=["admin"])
        >>> engine.activate_feed("admin", "eth/usd")
        >>> engine.register("op1", 100 * 10**18)
        >>> engine.get_consensus("eth/usd").has_consensus
        False
    """

    def __init__(
        self,
        clock: Clock,
        *,
        configurers: Iterable[str] = (),
        registry: OperatorRegistry | None = None,
        verifier: SignatureVerifier | None = None,
        event_sink: EventSink | None = None,
        calculator: ConsensusCalculator | None = None,
        settlement_policy: SettlementPolicy | None = None,
        detector: ManipulationDetector | None = None,
        recency_window: int = DEFAULT_RECENCY_WINDOW,
        outlier_method: ReferenceMethod = ReferenceMethod.MEDIAN,
        auto_consensus: bool = True,
    ) -> None:
        if recency_window <= 0:
            raise ValueError("recency_window must be positive")
        self.clock = clock
        self.configurers = set(configurers)
        self.registry = registry or OperatorRegistry()
        self.verifier = verifier or EthSignatureVerifier()
        self.event_sink = event_sink or LoggingEventSink()
        self.calculator = calculator or ConsensusCalculator()
        self.settlement = SettlementEngine(self.registry, settlement_policy, self.event_sink)
        self.detector = detector or ManipulationDetector()
        self.store = AttestationStore()
        self.recency_window = recency_window
        self.outlier_method = outlier_method
        self.auto_consensus = auto_consensus

        self._feeds: dict[str, FeedState] = {}
        self._feeds_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Feed configuration
    # ------------------------------------------------------------------

    def _require_configurer(self, caller: str) -> None:
        if caller not in self.configurers:
            raise Unauthorized(f"{caller!r} may not configure feeds")

    def _feed(self, feed_id: str) -> FeedState:
        with self._feeds_lock:
            state = self._feeds.get(feed_id)
        if state is None:
            raise InvalidInput(f"Unknown feed {feed_id!r}")
        return state

    def activate_feed(self, caller: str, feed_id: str, config: FeedConfig | None = None) -> None:
        """Activate a feed with its configuration.

        :raises Unauthorized: If caller is not a configurer.
        :raises InvalidInput: If the feed id is empty or already active.
        """
        self._require_configurer(caller)
        if not feed_id:
            raise InvalidInput("feed_id must not be empty")
        with self._feeds_lock:
            if feed_id in self._feeds:
                raise InvalidInput(f"Feed {feed_id!r} is already active")
            self._feeds[feed_id] = FeedState(config=config or FeedConfig())
        logger.info(f"{feed_id}: activated with {self._feeds[feed_id].config}")

    def configure_feed(self, caller: str, feed_id: str, **changes: object) -> FeedConfig:
        """Update fields of a feed's configuration.

        :returns: The new configuration.
        :raises Unauthorized: If caller is not a configurer.
        :raises InvalidInput: If the feed is unknown or a value is invalid.
        """
        self._require_configurer(caller)
        known = {f.name for f in fields(FeedConfig)}
        unknown = set(changes) - known
        if unknown:
            raise InvalidInput(f"Unknown feed config fields: {sorted(unknown)}")
        state = self._feed(feed_id)
        with state.lock:
            try:
                state.config = replace(state.config, **changes)
            except (TypeError, ValueError) as e:
                raise InvalidInput(str(e)) from e
            config = replace(state.config)
        logger.info(f"{feed_id}: configuration updated {changes}")
        return config

    def set_oracle_enabled(self, caller: str, feed_id: str, enabled: bool) -> FeedConfig:
        """Turn the gate on or off for a feed."""
        return self.configure_feed(caller, feed_id, oracle_enabled=enabled)

    def feed_config(self, feed_id: str) -> FeedConfig:
        """Return a copy of a feed's configuration."""
        state = self._feed(feed_id)
        with state.lock:
            return replace(state.config)

    def feeds(self) -> list[str]:
        with self._feeds_lock:
            return list(self._feeds)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, operator_id: str, stake: int) -> None:
        self.registry.register(operator_id, stake)

    def add_stake(self, operator_id: str, amount: int) -> int:
        return self.registry.add_stake(operator_id, amount)

    def deregister(self, operator_id: str) -> int:
        return self.registry.deregister(operator_id)

    def get_operator(self, operator_id: str) -> OperatorRecord | None:
        return self.registry.get(operator_id)

    def slash_operator(
        self, caller: str, operator_id: str, amount: int, reason: str = ""
    ) -> LedgerInstruction:
        """Apply an authorized manual slash outside of round settlement.

        :raises Unauthorized: If caller is not a configurer.
        :raises InvalidInput: If amount is not positive or operator unknown.
        """
        self._require_configurer(caller)
        if amount <= 0:
            raise InvalidInput("slash amount must be positive")
        slashed = self.registry.slash(
            operator_id, amount, self.settlement.policy.reliability_penalty
        )
        logger.warning(f"Manual slash of {operator_id}: {slashed} ({reason or 'no reason'})")
        self._emit(
            OracleEvent(
                kind=OPERATOR_SLASHED,
                operator_id=operator_id,
                data={"amount": slashed, "reason": reason},
            )
        )
        return LedgerInstruction(SLASH, operator_id, slashed)

    # ------------------------------------------------------------------
    # Submission and rounds
    # ------------------------------------------------------------------

    def submit(
        self,
        operator_id: str,
        feed_id: str,
        price: int,
        stake: int,
        provenance: str = "",
        signature: bytes = b"",
        observed_at: int | None = None,
    ) -> SubmissionResult:
        """Submit one attestation.

        :param operator_id: Submitting operator.
        :param feed_id: Feed the price is for.
        :param price: Fixed-point price.
        :param stake: Stake backing the observation.
        :param provenance: Opaque source tag.
        :param signature: Signature over the canonical payload.
        :param observed_at: Observation time, defaults to now.
        :returns: SubmissionResult; rejections carry a reason.
        """
        now = self.clock()
        if observed_at is None:
            observed_at = now

        try:
            state = self._feed(feed_id)
        except InvalidInput as e:
            return SubmissionResult(reason=e.reason, detail=str(e))

        if price <= 0:
            return SubmissionResult(reason=Reason.INVALID_INPUT, detail="price must be positive")
        if stake <= 0:
            return SubmissionResult(reason=Reason.INVALID_INPUT, detail="stake must be positive")
        if observed_at > now:
            return SubmissionResult(
                reason=Reason.INVALID_INPUT, detail=f"observation {observed_at} is in the future"
            )
        if observed_at < now - self.recency_window:
            return SubmissionResult(
                reason=Reason.INVALID_INPUT, detail=f"observation {observed_at} is stale"
            )

        payload = signing_payload(operator_id, feed_id, price, stake, observed_at, provenance)
        if not self.verifier.verify(operator_id, payload, signature):
            logger.warning(f"{feed_id}: rejected attestation from {operator_id}: bad signature")
            return SubmissionResult(reason=Reason.INVALID_SIGNATURE, detail="invalid signature")

        attestation = Attestation(
            operator_id=operator_id,
            feed_id=feed_id,
            price=price,
            observed_at=observed_at,
            stake=stake,
            provenance=provenance,
            signature=signature,
        )

        with state.lock:
            if self.store.contains(feed_id, attestation.attestation_id):
                logger.info(f"{feed_id}: rejected duplicate attestation from {operator_id}")
                return SubmissionResult(
                    reason=Reason.INVALID_INPUT,
                    detail=f"duplicate attestation {attestation.attestation_id}",
                )
            try:
                self.registry.record_attestation(
                    operator_id, stake, state.config.min_stake_required, now
                )
            except OracleError as e:
                logger.info(f"{feed_id}: rejected attestation from {operator_id}: {e}")
                return SubmissionResult(reason=e.reason, detail=str(e))

            self.store.append(attestation)
            logger.debug(f"{feed_id}: accepted {operator_id} price={price} stake={stake}")

            round_report = None
            if self.auto_consensus:
                round_report = self._run_round(feed_id, state, now)

        return SubmissionResult(attestation=attestation, round=round_report)

    def compute_consensus(self, feed_id: str) -> RoundReport:
        """Run a consensus round for a feed now.

        :raises InvalidInput: If the feed is unknown.
        """
        state = self._feed(feed_id)
        with state.lock:
            return self._run_round(feed_id, state, self.clock())

    def _round_candidates(self, feed_id: str, now: int) -> list[Attestation]:
        latest: dict[str, Attestation] = {}
        for attestation in self.store.recent(feed_id, now, self.recency_window):
            current = latest.get(attestation.operator_id)
            if current is None or attestation.observed_at >= current.observed_at:
                latest[attestation.operator_id] = attestation
        return list(latest.values())

    def _run_round(self, feed_id: str, state: FeedState, now: int) -> RoundReport:
        report = self._compute_round(feed_id, state, now)
        self._prune_locked(feed_id, state, now)
        return report

    def _compute_round(self, feed_id: str, state: FeedState, now: int) -> RoundReport:
        config = state.config
        candidates = self._round_candidates(feed_id, now)
        filtered = filter_outliers(candidates, config.outlier_deviation_bps, self.outlier_method)
        retained = list(filtered.retained)

        reliability = self.registry.reliability_scores({a.operator_id for a in retained})
        outcome = self.calculator.calculate(
            retained,
            reliability,
            now,
            config.consensus_threshold_bps,
        )
        report = RoundReport(result=outcome.result, reason=outcome.reason, dropped=filtered.dropped)

        if not outcome.committed:
            logger.info(
                f"{feed_id}: no commit ({outcome.reason.value}): "
                f"count={outcome.result.attestation_count} "
                f"confidence={outcome.result.confidence_level}"
            )
            return report

        result = outcome.result
        state.result = result
        if state.history and state.history[-1][1] == now:
            state.history.pop()
        state.history.append((result.weighted_price, now))

        unsettled = [a for a in candidates if a.attestation_id not in state.settled_ids]
        report.settlement = self.settlement.settle(unsettled, result, config)
        state.settled_ids.update(a.attestation_id for a in unsettled)

        dropped_ops = [a.operator_id for a in filtered.dropped]
        log_msg = (
            f"{feed_id}: consensus {result.weighted_price} "
            f"(count={result.attestation_count}, confidence={result.confidence_level}, "
            f"convergence={result.convergence_score}"
        )
        if dropped_ops:
            log_msg += f", dropped: [{', '.join(dropped_ops)}]"
        logger.info(log_msg + ")")

        self._emit(
            OracleEvent(
                kind=CONSENSUS_REACHED,
                feed_id=feed_id,
                data={
                    "price": result.weighted_price,
                    "total_stake": result.total_stake,
                    "confidence": result.confidence_level,
                    "timestamp": result.consensus_timestamp,
                },
            )
        )
        return report

    # ------------------------------------------------------------------
    # Queries and gate
    # ------------------------------------------------------------------

    def get_consensus(self, feed_id: str) -> ConsensusView:
        """Return the feed's consensus with staleness evaluated now."""
        try:
            state = self._feed(feed_id)
        except InvalidInput:
            return ConsensusView(has_consensus=False)
        now = self.clock()
        with state.lock:
            result, config = state.result, state.config
        if result is None:
            return ConsensusView(has_consensus=False)
        return ConsensusView(
            has_consensus=is_fresh(result, config, now),
            price=result.weighted_price,
            total_stake=result.total_stake,
            confidence=result.confidence_level,
            as_of=result.consensus_timestamp,
        )

    def validate_action(self, feed_id: str, requested_price: int | None = None) -> GateDecision:
        """Decide whether the gated action on ``feed_id`` may proceed."""
        try:
            state = self._feed(feed_id)
        except InvalidInput as e:
            decision = GateDecision.deny(e.reason, str(e))
        else:
            with state.lock:
                result, config = state.result, state.config
            decision = validate(result, config, self.clock(), requested_price)

        if not decision.allowed:
            logger.warning(f"{feed_id}: action denied ({decision.reason.value}): {decision.detail}")
            self._emit(
                OracleEvent(
                    kind=ACTION_DENIED,
                    feed_id=feed_id,
                    data={"reason": decision.reason.value, "detail": decision.detail},
                )
            )
        return decision

    def analyze_feed(self, feed_id: str) -> ManipulationAnalysis:
        """Run the manipulation detector over the feed's committed history."""
        state = self._feed(feed_id)
        with state.lock:
            history = list(state.history)
        return self.detector.analyze([p for p, _ in history], [t for _, t in history])

    def prune(self, feed_id: str) -> int:
        """Garbage-collect attestations older than the recency window.

        Attestations referenced by the committed result are kept. Every round
        already prunes its feed; this is for feeds that stopped receiving
        submissions.

        :returns: Number of attestations removed.
        """
        state = self._feed(feed_id)
        with state.lock:
            return self._prune_locked(feed_id, state, self.clock())

    def _prune_locked(self, feed_id: str, state: FeedState, now: int) -> int:
        keep = state.result.attestation_ids if state.result else ()
        removed = self.store.prune(feed_id, now - self.recency_window, keep)
        if removed:
            state.settled_ids &= self.store.ids(feed_id)
        return removed

    def _emit(self, event: OracleEvent) -> None:
        try:
            self.event_sink.emit(event)
        except Exception:
            logger.exception(f"Event sink failed on {event.kind}")
