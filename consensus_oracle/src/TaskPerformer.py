"""TaskPerformer: Typed task dispatch onto the oracle engine.

Tasks arrive as a JSON envelope ``{"type": ..., "parameters": {...}}``.
Each task type has its own parameter validation and handler:

    price_attestation       submit an operator's price attestation
    consensus_validation    run a round and report consensus + gate decision
    manipulation_challenge  score a price series for manipulation
    operator_slashing       apply an authorized manual slash

.. code-block:: python

    >>> performer = TaskPerformer(engine, authority="admin")
    >>> request = TaskRequest("t1", json.dumps(
    ...     {"type": "consensus_validation", "parameters": {"pool_id": "eth/usd"}}
    ... ).encode())
    >>> json.loads(performer.handle_task(request).result)["has_consensus"]
    False
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from .Attestation import to_fixed_point
from .errors import OracleError
from .OracleEngine import OracleEngine

logger = logging.getLogger(__name__)


class TaskType(str, Enum):
    PRICE_ATTESTATION = "price_attestation"
    CONSENSUS_VALIDATION = "consensus_validation"
    MANIPULATION_CHALLENGE = "manipulation_challenge"
    OPERATOR_SLASHING = "operator_slashing"


class TaskError(Exception):
    """Base exception for task failures."""

    pass


class TaskValidationError(TaskError):
    """Raised when a task request is malformed."""

    pass


@dataclass(frozen=True)
class TaskRequest:
    """Task as delivered by the executor.

    :ivar task_id: Task identifier.
    :ivar payload: JSON-encoded task envelope.
    """

    task_id: str
    payload: bytes


@dataclass(frozen=True)
class TaskResponse:
    """Task result returned to the executor.

    :ivar task_id: Identifier of the handled task.
    :ivar result: JSON-encoded result object.
    """

    task_id: str
    result: bytes


@dataclass(frozen=True)
class TaskPayload:
    type: TaskType
    parameters: dict[str, Any]


def parse_task_payload(request: TaskRequest) -> TaskPayload:
    """Parse the JSON envelope of a task request.

    :raises TaskValidationError: If the payload is not a valid envelope.
    """
    try:
        raw = json.loads(request.payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise TaskValidationError(f"failed to parse task payload: {e}") from e
    if not isinstance(raw, dict):
        raise TaskValidationError("task payload must be a JSON object")

    try:
        task_type = TaskType(raw.get("type"))
    except ValueError as e:
        raise TaskValidationError(f"unknown task type: {raw.get('type')}") from e

    parameters = raw.get("parameters") or {}
    if not isinstance(parameters, dict):
        raise TaskValidationError("task parameters must be a JSON object")
    return TaskPayload(type=task_type, parameters=parameters)


def _require_str(params: dict[str, Any], key: str) -> str:
    value = params.get(key)
    if not isinstance(value, str) or not value:
        raise TaskValidationError(f"missing or invalid {key}")
    return value


def _require_positive(params: dict[str, Any], key: str) -> Decimal:
    value = params.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise TaskValidationError(f"missing or invalid {key}")
    try:
        number = Decimal(str(value))
    except InvalidOperation as e:
        raise TaskValidationError(f"missing or invalid {key}") from e
    if not number.is_finite() or number <= 0:
        raise TaskValidationError(f"missing or invalid {key}")
    return number


def _optional_int(params: dict[str, Any], key: str) -> int | None:
    value = params.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise TaskValidationError(f"invalid {key}")
    return value


def _price_series(params: dict[str, Any]) -> tuple[list[int], list[int]]:
    prices = params.get("prices")
    timestamps = params.get("timestamps")
    if not isinstance(prices, list) or not isinstance(timestamps, list):
        raise TaskValidationError("prices and timestamps must be lists")
    try:
        return [to_fixed_point(p) for p in prices], [int(t) for t in timestamps]
    except (TypeError, ValueError) as e:
        raise TaskValidationError(f"invalid price series: {e}") from e


class TaskPerformer:
    """Validates and executes oracle tasks against an engine.

    :ivar engine: Engine the tasks operate on.
    :ivar authority: Caller identity used for privileged tasks.
    """

    def __init__(self, engine: OracleEngine, authority: str) -> None:
        self.engine = engine
        self.authority = authority
        self._validators: dict[TaskType, Callable[[dict[str, Any]], None]] = {
            TaskType.PRICE_ATTESTATION: self._validate_price_attestation,
            TaskType.CONSENSUS_VALIDATION: self._validate_consensus_validation,
            TaskType.MANIPULATION_CHALLENGE: self._validate_manipulation_challenge,
            TaskType.OPERATOR_SLASHING: self._validate_operator_slashing,
        }
        self._handlers: dict[TaskType, Callable[[dict[str, Any]], dict[str, Any]]] = {
            TaskType.PRICE_ATTESTATION: self._handle_price_attestation,
            TaskType.CONSENSUS_VALIDATION: self._handle_consensus_validation,
            TaskType.MANIPULATION_CHALLENGE: self._handle_manipulation_challenge,
            TaskType.OPERATOR_SLASHING: self._handle_operator_slashing,
        }

    def validate_task(self, request: TaskRequest) -> TaskPayload:
        """Check a task request is well-formed for its type.

        :returns: Parsed payload.
        :raises TaskValidationError: If the request is malformed.
        """
        if not request.task_id:
            raise TaskValidationError("task ID cannot be empty")
        if not request.payload:
            raise TaskValidationError("task payload cannot be empty")

        payload = parse_task_payload(request)
        try:
            self._validators[payload.type](payload.parameters)
        except TaskValidationError as e:
            raise TaskValidationError(f"{payload.type.value} validation failed: {e}") from e
        logger.info(f"Task validation successful: {request.task_id}")
        return payload

    def handle_task(self, request: TaskRequest) -> TaskResponse:
        """Validate and execute a task.

        :returns: TaskResponse with a JSON-encoded result.
        :raises TaskValidationError: If the request is malformed.
        :raises TaskError: If the engine rejects the operation.
        """
        payload = self.validate_task(request)
        logger.info(f"Handling {payload.type.value} task {request.task_id}")
        try:
            result = self._handlers[payload.type](payload.parameters)
        except OracleError as e:
            logger.error(f"Task processing failed: {request.task_id}: {e}")
            raise TaskError(f"{payload.type.value} failed: {e}") from e

        encoded = json.dumps(result, sort_keys=True).encode("utf-8")
        logger.info(f"Task {request.task_id} completed (resultSize={len(encoded)})")
        return TaskResponse(task_id=request.task_id, result=encoded)

    # Validation ---------------------------------------------------------

    def _validate_price_attestation(self, params: dict[str, Any]) -> None:
        _require_str(params, "pool_id")
        _require_positive(params, "price")
        _require_str(params, "source_hash")
        _require_str(params, "operator")
        _require_positive(params, "stake")
        _optional_int(params, "observed_at")
        signature = params.get("signature", "")
        if not isinstance(signature, str):
            raise TaskValidationError("invalid signature")
        try:
            bytes.fromhex(signature.removeprefix("0x"))
        except ValueError as e:
            raise TaskValidationError("invalid signature") from e

    def _validate_consensus_validation(self, params: dict[str, Any]) -> None:
        _require_str(params, "pool_id")
        if params.get("requested_price") is not None:
            _require_positive(params, "requested_price")

    def _validate_manipulation_challenge(self, params: dict[str, Any]) -> None:
        _require_str(params, "operator")
        _require_str(params, "evidence")
        if "prices" in params or "timestamps" in params:
            _price_series(params)
        elif not params.get("pool_id"):
            raise TaskValidationError("either pool_id or prices/timestamps is required")

    def _validate_operator_slashing(self, params: dict[str, Any]) -> None:
        _require_str(params, "operator")
        _require_positive(params, "slash_amount")

    # Handlers -----------------------------------------------------------

    def _handle_price_attestation(self, params: dict[str, Any]) -> dict[str, Any]:
        submission = self.engine.submit(
            operator_id=params["operator"],
            feed_id=params["pool_id"],
            price=to_fixed_point(params["price"]),
            stake=int(_require_positive(params, "stake")),
            provenance=params["source_hash"],
            signature=bytes.fromhex(params.get("signature", "").removeprefix("0x")),
            observed_at=params.get("observed_at"),
        )
        result: dict[str, Any] = {"accepted": submission.accepted}
        if submission.accepted:
            result["attestation_id"] = submission.attestation.attestation_id
            if submission.round is not None:
                result["consensus_committed"] = submission.round.committed
        else:
            result["reason"] = submission.reason.value
            result["detail"] = submission.detail
        return result

    def _handle_consensus_validation(self, params: dict[str, Any]) -> dict[str, Any]:
        feed_id = params["pool_id"]
        round_report = self.engine.compute_consensus(feed_id)
        requested = params.get("requested_price")
        decision = self.engine.validate_action(
            feed_id, to_fixed_point(requested) if requested is not None else None
        )
        result = asdict(self.engine.get_consensus(feed_id))
        result["round_committed"] = round_report.committed
        result["allowed"] = decision.allowed
        if not decision.allowed:
            result["reason"] = decision.reason.value
            result["detail"] = decision.detail
        return result

    def _handle_manipulation_challenge(self, params: dict[str, Any]) -> dict[str, Any]:
        if "prices" in params or "timestamps" in params:
            prices, timestamps = _price_series(params)
            analysis = self.engine.detector.analyze(prices, timestamps)
        else:
            analysis = self.engine.analyze_feed(params["pool_id"])
        logger.info(
            f"Challenge against {params['operator']} ({params['evidence']}): "
            f"score={analysis.score} manipulation={analysis.is_manipulation}"
        )
        return {
            "operator": params["operator"],
            "evidence": params["evidence"],
            "score": analysis.score,
            "is_manipulation": analysis.is_manipulation,
            "reason": analysis.reason.value if analysis.reason else None,
            "detail": analysis.detail,
        }

    def _handle_operator_slashing(self, params: dict[str, Any]) -> dict[str, Any]:
        instruction = self.engine.slash_operator(
            self.authority,
            params["operator"],
            int(_require_positive(params, "slash_amount")),
            reason=params.get("reason", ""),
        )
        return asdict(instruction)
