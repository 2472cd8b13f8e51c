"""Unit tests for OutlierFilter."""

from fractions import Fraction

import pytest

from consensus_oracle.src.Attestation import Attestation
from consensus_oracle.src.OutlierFilter import (
    ReferenceMethod,
    filter_outliers,
    reference_price,
)


def att(operator: str, price: int, stake: int = 10) -> Attestation:
    return Attestation(operator, "eth/usd", price, observed_at=0, stake=stake)


class TestOutlierFilterSmallSets:
    """Sets below three attestations are never filtered."""

    def test_empty_set(self) -> None:
        """Empty input should come back unchanged."""
        attestations: list[Attestation] = []
        result = filter_outliers(attestations, max_deviation_bps=500)

        assert result.retained is attestations
        assert result.dropped == []
        assert result.reference_price is None

    def test_two_wildly_different_prices(self) -> None:
        """Two attestations are returned as-is regardless of spread."""
        attestations = [att("a", 100), att("b", 1_000_000)]
        result = filter_outliers(attestations, max_deviation_bps=1)

        assert result.retained is attestations
        assert list(result.retained) == [att("a", 100), att("b", 1_000_000)]
        assert result.dropped == []


class TestOutlierFilterExclusion:
    """Test exclusion of deviating attestations."""

    def test_single_outlier_excluded(self) -> None:
        """Exactly the non-deviating subset should remain."""
        honest = [att("a", 100_000), att("b", 100_100), att("c", 99_900)]
        rogue = att("rogue", 200_000)
        result = filter_outliers(honest + [rogue], max_deviation_bps=500)

        assert result.retained == honest
        assert result.dropped == [rogue]

    def test_retains_input_order(self) -> None:
        """Retained attestations keep their input order."""
        attestations = [att("c", 101), att("rogue", 50), att("a", 100), att("b", 102)]
        result = filter_outliers(attestations, max_deviation_bps=500)

        assert [a.operator_id for a in result.retained] == ["c", "a", "b"]

    def test_borderline_deviation_retained(self) -> None:
        """A price exactly at the threshold is kept."""
        # median = 100_000; 105_000 deviates exactly 500 bps
        attestations = [att("a", 100_000), att("b", 100_000), att("c", 105_000)]
        result = filter_outliers(attestations, max_deviation_bps=500)

        assert len(result.retained) == 3
        assert result.dropped == []

    def test_all_agreeing(self) -> None:
        """Identical prices drop nothing."""
        attestations = [att(str(i), 2_105) for i in range(5)]
        result = filter_outliers(attestations, max_deviation_bps=1)

        assert result.retained == attestations
        assert result.reference_price == 2_105

    def test_invalid_threshold(self) -> None:
        """Non-positive threshold should raise ValueError."""
        with pytest.raises(ValueError, match="max_deviation_bps must be positive"):
            filter_outliers([att("a", 1)], max_deviation_bps=0)


class TestReferencePrice:
    """Test provisional reference price methods."""

    def test_median_odd(self) -> None:
        assert reference_price([att("a", 1), att("b", 3), att("c", 100)]) == 3

    def test_median_even(self) -> None:
        prices = [att("a", 1), att("b", 2), att("c", 3), att("d", 100)]
        assert reference_price(prices) == Fraction(5, 2)

    def test_mean(self) -> None:
        prices = [att("a", 1), att("b", 2), att("c", 6)]
        assert reference_price(prices, ReferenceMethod.MEAN) == 3

    def test_weighted_mean(self) -> None:
        prices = [att("a", 100, stake=1), att("b", 200, stake=3)]
        assert reference_price(prices, ReferenceMethod.WEIGHTED_MEAN) == 175

    def test_empty_raises(self) -> None:
        with pytest.raises(ValueError):
            reference_price([])

    def test_mean_is_pulled_by_outlier(self) -> None:
        """With the mean reference an extreme report also drags honest prices out."""
        attestations = [att("a", 100), att("b", 100), att("c", 100), att("rogue", 200)]

        by_median = filter_outliers(attestations, 500, ReferenceMethod.MEDIAN)
        by_mean = filter_outliers(attestations, 500, ReferenceMethod.MEAN)

        assert [a.operator_id for a in by_median.dropped] == ["rogue"]
        assert len(by_mean.dropped) == 4
