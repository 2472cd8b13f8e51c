"""OperatorRegistry: Per-operator stake balances, counters and reliability.

Registration and staking failures raise immediately. Every mutation holds the
registry lock, so stake debits from settlement never interleave with
registration or top-ups of the same operator.

.. code-block:: python

    >>> registry = OperatorRegistry()
    >>> registry.register("op1", 100)
    >>> registry.slash("op1", 1, penalty=500)
    1
    >>> registry.get("op1").stake_balance
    99
    >>> registry.get("op1").reliability_score
    4500
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace

from .errors import InsufficientStake, InvalidInput

logger = logging.getLogger(__name__)

BPS = 10_000

INITIAL_RELIABILITY = 5000


@dataclass
class OperatorRecord:
    """State of a single operator.

    :ivar operator_id: Operator identifier.
    :ivar registered: Whether the operator may attest.
    :ivar stake_balance: Logical stake balance.
    :ivar total_attestations: Accepted attestations.
    :ivar accurate_attestations: Attestations settled as accurate.
    :ivar reliability_score: Long-run accuracy indicator in bps.
    :ivar last_attestation_time: Time of the latest accepted attestation.
    :ivar total_stake_slashed: Cumulative stake slashed.
    :ivar total_rewards: Cumulative rewards credited.
    """

    operator_id: str
    registered: bool = True
    stake_balance: int = 0
    total_attestations: int = 0
    accurate_attestations: int = 0
    reliability_score: int = INITIAL_RELIABILITY
    last_attestation_time: int | None = None
    total_stake_slashed: int = 0
    total_rewards: int = 0

    @property
    def accuracy_rate(self) -> int:
        """Accurate share of all attestations in bps, 0 with no attestations."""
        if self.total_attestations == 0:
            return 0
        return self.accurate_attestations * BPS // self.total_attestations


class OperatorRegistry:
    """Tracks operators with a single re-entrant lock.

    :ivar min_registration_stake: Smallest stake accepted by :meth:`register`.
    """

    def __init__(self, min_registration_stake: int = 1) -> None:
        if min_registration_stake < 1:
            raise ValueError("min_registration_stake must be at least 1")
        self.min_registration_stake = min_registration_stake
        self.lock = threading.RLock()
        self._operators: dict[str, OperatorRecord] = {}

    def _require_registered(self, operator_id: str) -> OperatorRecord:
        record = self._operators.get(operator_id)
        if record is None or not record.registered:
            raise InvalidInput(f"Operator {operator_id!r} is not registered")
        return record

    def register(self, operator_id: str, stake: int) -> None:
        """Register an operator with an initial stake.

        A previously deregistered operator keeps its history.

        :raises InvalidInput: If the id is empty or already registered.
        :raises InsufficientStake: If stake is below the registration minimum.
        """
        if not operator_id:
            raise InvalidInput("operator_id must not be empty")
        if stake < self.min_registration_stake:
            raise InsufficientStake(
                f"Stake {stake} below minimum {self.min_registration_stake}"
            )
        with self.lock:
            record = self._operators.get(operator_id)
            if record is not None and record.registered:
                raise InvalidInput(f"Operator {operator_id!r} is already registered")
            if record is None:
                record = OperatorRecord(operator_id=operator_id)
                self._operators[operator_id] = record
            record.registered = True
            record.stake_balance += stake
        logger.info(f"Registered operator {operator_id} with stake {stake}")

    def add_stake(self, operator_id: str, amount: int) -> int:
        """Increase a registered operator's stake.

        :returns: New stake balance.
        :raises InvalidInput: If amount is not positive or operator unknown.
        """
        if amount <= 0:
            raise InvalidInput("Stake amount must be positive")
        with self.lock:
            record = self._require_registered(operator_id)
            record.stake_balance += amount
            return record.stake_balance

    def deregister(self, operator_id: str) -> int:
        """Deregister an operator and release its balance.

        :returns: Released stake, for the custody ledger to return.
        :raises InvalidInput: If the operator is not registered.
        """
        with self.lock:
            record = self._require_registered(operator_id)
            released = record.stake_balance
            record.registered = False
            record.stake_balance = 0
        logger.info(f"Deregistered operator {operator_id}, released {released}")
        return released

    def get(self, operator_id: str) -> OperatorRecord | None:
        """Return a snapshot copy of an operator record, or None."""
        with self.lock:
            record = self._operators.get(operator_id)
            return replace(record) if record is not None else None

    def is_registered(self, operator_id: str) -> bool:
        with self.lock:
            record = self._operators.get(operator_id)
            return record is not None and record.registered

    def reliability_scores(self, operator_ids: set[str] | list[str]) -> dict[str, int]:
        """Current reliability score of each known operator in ``operator_ids``."""
        with self.lock:
            return {
                op: self._operators[op].reliability_score
                for op in operator_ids
                if op in self._operators
            }

    def record_attestation(
        self, operator_id: str, stake: int, min_balance: int, now: int
    ) -> None:
        """Check an operator may back an attestation and count it.

        :param operator_id: Submitting operator.
        :param stake: Stake backing the attestation.
        :param min_balance: Feed minimum the balance must meet.
        :param now: Submission time.
        :raises InvalidInput: If the operator is not registered.
        :raises InsufficientStake: If the balance is below ``min_balance`` or
            below the stake claimed.
        """
        with self.lock:
            record = self._require_registered(operator_id)
            if record.stake_balance < min_balance:
                raise InsufficientStake(
                    f"Balance {record.stake_balance} below feed minimum {min_balance}"
                )
            if record.stake_balance < stake:
                raise InsufficientStake(
                    f"Balance {record.stake_balance} cannot back stake {stake}"
                )
            record.total_attestations += 1
            record.last_attestation_time = now

    def reward(self, operator_id: str, amount: int, increment: int) -> None:
        """Count an accurate attestation, credit a reward, raise reliability."""
        with self.lock:
            record = self._operators[operator_id]
            record.accurate_attestations += 1
            record.total_rewards += amount
            record.reliability_score = min(BPS, record.reliability_score + increment)

    def slash(self, operator_id: str, amount: int, penalty: int) -> int:
        """Debit stake and lower reliability.

        :param operator_id: Operator to slash.
        :param amount: Requested slash; capped at the current balance.
        :param penalty: Reliability reduction in bps.
        :returns: Stake actually slashed.
        :raises InvalidInput: If the operator is unknown.
        """
        with self.lock:
            record = self._operators.get(operator_id)
            if record is None:
                raise InvalidInput(f"Unknown operator {operator_id!r}")
            slashed = min(amount, record.stake_balance)
            record.stake_balance -= slashed
            record.total_stake_slashed += slashed
            record.reliability_score = max(0, record.reliability_score - penalty)
            return slashed
