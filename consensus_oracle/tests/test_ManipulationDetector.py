"""Unit tests for ManipulationDetector."""

import pytest

from consensus_oracle.src.errors import Reason
from consensus_oracle.src.ManipulationDetector import ManipulationDetector


class TestManipulationDetectorInput:
    """Invalid series are reported, not raised."""

    def test_too_few_points(self) -> None:
        analysis = ManipulationDetector().analyze([100, 101], [1, 2])

        assert not analysis.success
        assert analysis.reason == Reason.INVALID_INPUT
        assert not analysis.is_manipulation

    def test_mismatched_lengths(self) -> None:
        analysis = ManipulationDetector().analyze([100, 101, 102], [1, 2])

        assert analysis.reason == Reason.INVALID_INPUT
        assert "length mismatch" in analysis.detail

    def test_non_positive_price(self) -> None:
        analysis = ManipulationDetector().analyze([100, 0, 102], [1, 2, 3])
        assert analysis.reason == Reason.INVALID_INPUT

    def test_unordered_timestamps(self) -> None:
        analysis = ManipulationDetector().analyze([100, 101, 102], [1, 3, 2])
        assert analysis.reason == Reason.INVALID_INPUT

    def test_invalid_threshold(self) -> None:
        with pytest.raises(ValueError, match="threshold"):
            ManipulationDetector(threshold=0)


class TestManipulationDetectorScoring:
    """Test suspicion scoring."""

    def test_flat_series(self) -> None:
        analysis = ManipulationDetector().analyze([1000, 1000, 1000, 1000], [1, 2, 3, 4])

        assert analysis.success
        assert analysis.score == 0
        assert not analysis.is_manipulation
        assert analysis.reason is None

    def test_steady_small_moves(self) -> None:
        """0.1% steps in one direction stay well below 2000."""
        prices = [100_000, 100_100, 100_200, 100_300, 100_400]
        analysis = ManipulationDetector().analyze(prices, [10, 20, 30, 40, 50])

        assert analysis.score < 2000
        assert not analysis.is_manipulation
        assert analysis.reversals == 0
        assert analysis.average_change_bps == 9

    def test_small_jitter_is_not_reversal(self) -> None:
        """Direction flips below the noise floor do not count."""
        prices = [100_000, 100_100, 100_000, 100_100, 100_000]
        analysis = ManipulationDetector().analyze(prices, [1, 2, 3, 4, 5])

        assert analysis.reversals == 0
        assert not analysis.is_manipulation

    def test_see_saw_swings(self) -> None:
        prices = [100, 110, 100, 110, 100]
        analysis = ManipulationDetector().analyze(prices, [1, 2, 3, 4, 5])

        assert analysis.is_manipulation
        assert analysis.reason == Reason.MANIPULATION_SUSPECTED
        assert analysis.reversals == 3
        assert analysis.score == 10000

    def test_single_large_jump(self) -> None:
        prices = [1000, 1000, 1200, 1200]
        analysis = ManipulationDetector().analyze(prices, [1, 2, 3, 4])

        assert analysis.max_change_bps == 2000
        assert analysis.is_manipulation

    def test_custom_threshold(self) -> None:
        prices = [1000, 1010, 1020]
        lenient = ManipulationDetector(threshold=10000).analyze(prices, [1, 2, 3])
        strict = ManipulationDetector(threshold=1).analyze(prices, [1, 2, 3])

        assert not lenient.is_manipulation
        assert strict.is_manipulation
