"""
Consensus Oracle - Attestation Consensus and Settlement Engine

This module gates sensitive actions on a stake-backed consensus price:
- AttestationStore: Per-feed attestation log with recency filtering
- OutlierFilter: Pre-aggregation removal of implausible attestations
- ConsensusCalculator: Stake-weighted price, convergence and confidence
- ManipulationDetector: Volatility scoring over consensus history
- SettlementEngine: Rewards and slashes against committed consensus
- ValidationGate: Fail-closed allow/deny decision
- OracleEngine: Per-feed state, locking and the public APIs
- TaskPerformer: Typed task dispatch onto the engine
"""

from .Attestation import PRICE_DECIMALS, Attestation, to_fixed_point
from .AttestationStore import AttestationStore
from .clock import ManualClock, MonotonicClock
from .ConsensusCalculator import (
    ConfidenceWeights,
    ConsensusCalculator,
    ConsensusResult,
    calculate_deviation,
)
from .errors import InsufficientStake, InvalidInput, OracleError, Reason, Unauthorized
from .EventSink import LoggingEventSink, OracleEvent, RecordingEventSink
from .FeedConfig import FeedConfig
from .ManipulationDetector import ManipulationAnalysis, ManipulationDetector
from .OperatorRegistry import OperatorRecord, OperatorRegistry
from .OracleEngine import ConsensusView, OracleEngine, RoundReport, SubmissionResult
from .OutlierFilter import OutlierFilterResult, ReferenceMethod, filter_outliers
from .SettlementEngine import SettlementEngine, SettlementPolicy, SettlementReport
from .SignatureVerifier import EthSignatureVerifier, SignatureVerifier
from .TaskPerformer import TaskPerformer, TaskRequest, TaskResponse
from .ValidationGate import GateDecision

__all__ = [
    "Attestation",
    "AttestationStore",
    "ConfidenceWeights",
    "ConsensusCalculator",
    "ConsensusResult",
    "ConsensusView",
    "EthSignatureVerifier",
    "FeedConfig",
    "GateDecision",
    "InsufficientStake",
    "InvalidInput",
    "LoggingEventSink",
    "ManipulationAnalysis",
    "ManipulationDetector",
    "ManualClock",
    "MonotonicClock",
    "OperatorRecord",
    "OperatorRegistry",
    "OracleEngine",
    "OracleError",
    "OracleEvent",
    "OutlierFilterResult",
    "PRICE_DECIMALS",
    "Reason",
    "RecordingEventSink",
    "ReferenceMethod",
    "RoundReport",
    "SettlementEngine",
    "SettlementPolicy",
    "SettlementReport",
    "SignatureVerifier",
    "SubmissionResult",
    "TaskPerformer",
    "TaskRequest",
    "TaskResponse",
    "Unauthorized",
    "calculate_deviation",
    "filter_outliers",
    "to_fixed_point",
]
