"""Shared fixtures for engine-level tests."""

import pytest

from consensus_oracle.src.clock import ManualClock
from consensus_oracle.src.EventSink import RecordingEventSink
from consensus_oracle.src.FeedConfig import FeedConfig
from consensus_oracle.src.OracleEngine import OracleEngine
from consensus_oracle.src.SignatureVerifier import SignatureVerifier

ETHER = 10 ** 18
FEED = "eth/usd"


class AcceptAllVerifier(SignatureVerifier):
    """Stub verifier for tests that are not about signatures."""

    def verify(self, operator_id: str, payload: bytes, signature: bytes) -> bool:
        return True


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(10_000)


@pytest.fixture
def sink() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def engine(clock: ManualClock, sink: RecordingEventSink) -> OracleEngine:
    """Engine with one active feed and an accept-all verifier."""
    engine = OracleEngine(
        clock,
        configurers=["admin"],
        verifier=AcceptAllVerifier(),
        event_sink=sink,
    )
    engine.activate_feed("admin", FEED, FeedConfig(min_stake_required=10 * ETHER))
    return engine
