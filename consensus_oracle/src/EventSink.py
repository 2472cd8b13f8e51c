"""EventSink: Fire-and-forget notifications of engine state transitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)

CONSENSUS_REACHED = "consensus-reached"
OPERATOR_SLASHED = "operator-slashed"
OPERATOR_REWARDED = "operator-rewarded"
ACTION_DENIED = "action-denied"


@dataclass(frozen=True)
class OracleEvent:
    """A notification emitted after a state transition.

    :ivar kind: One of the event kind constants in this module.
    :ivar feed_id: Feed the event concerns, if any.
    :ivar operator_id: Operator the event concerns, if any.
    :ivar data: Event-specific fields.
    """

    kind: str
    feed_id: str | None = None
    operator_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


class EventSink(Protocol):
    """Receiver of engine events."""

    def emit(self, event: OracleEvent) -> None: ...


class LoggingEventSink:
    """Writes every event to the log. Used when no sink is injected."""

    def emit(self, event: OracleEvent) -> None:
        logger.info(
            f"{event.kind}: feed={event.feed_id} operator={event.operator_id} {event.data}"
        )


class RecordingEventSink:
    """Keeps every event in memory, in emission order.

    :ivar events: Emitted events.
    """

    def __init__(self) -> None:
        self.events: list[OracleEvent] = []

    def emit(self, event: OracleEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: str) -> list[OracleEvent]:
        """Return the recorded events of one kind."""
        return [e for e in self.events if e.kind == kind]
