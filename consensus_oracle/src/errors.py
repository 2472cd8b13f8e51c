"""Error taxonomy shared by the consensus engine.

Library-level checks (submission, outlier filtering, manipulation detection,
the validation gate) report failures as a :class:`Reason` inside a structured
result. Registration, staking and configuration failures are immediate and
raise an :class:`OracleError` subclass instead.
"""

from __future__ import annotations

from enum import Enum


class Reason(str, Enum):
    """Why a check failed."""

    INVALID_INPUT = "invalid_input"
    INSUFFICIENT_STAKE = "insufficient_stake"
    NO_CONSENSUS = "no_consensus"
    STALE_CONSENSUS = "stale_consensus"
    LOW_CONFIDENCE = "low_confidence"
    EXCESSIVE_DEVIATION = "excessive_deviation"
    MANIPULATION_SUSPECTED = "manipulation_suspected"
    INVALID_SIGNATURE = "invalid_signature"


class OracleError(Exception):
    """Base exception for engine errors.

    :ivar reason: Taxonomy entry for this error.
    """

    reason: Reason = Reason.INVALID_INPUT


class InvalidInput(OracleError):
    """Raised for malformed input or an unknown/unregistered operator."""

    reason = Reason.INVALID_INPUT


class InsufficientStake(OracleError):
    """Raised when a stake amount or balance is below what is required."""

    reason = Reason.INSUFFICIENT_STAKE


class Unauthorized(OracleError):
    """Raised when a caller may not change feed configuration."""

    reason = Reason.INVALID_INPUT
