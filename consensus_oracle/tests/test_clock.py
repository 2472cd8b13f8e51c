"""Unit tests for clock sources."""

import pytest

from consensus_oracle.src.clock import ManualClock, MonotonicClock


class TestManualClock:
    def test_advance(self) -> None:
        clock = ManualClock(100)

        assert clock.advance(5) == 105
        assert clock() == 105

    def test_set(self) -> None:
        clock = ManualClock(100)
        clock.set(100)

        assert clock.set(250) == 250

    def test_backwards(self) -> None:
        clock = ManualClock(100)

        with pytest.raises(ValueError):
            clock.advance(-1)
        with pytest.raises(ValueError):
            clock.set(99)


class TestMonotonicClock:
    def test_starts_at_epoch(self) -> None:
        clock = MonotonicClock(epoch=1_000)
        assert 1_000 <= clock() <= 1_001
