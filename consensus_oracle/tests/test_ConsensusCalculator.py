"""Unit tests for ConsensusCalculator."""

import pytest

from consensus_oracle.src.Attestation import Attestation, to_fixed_point
from consensus_oracle.src.ConsensusCalculator import (
    ConfidenceWeights,
    ConsensusCalculator,
    calculate_deviation,
    convergence_score,
    operator_count_score,
    stake_evenness_score,
    weighted_price,
)
from consensus_oracle.src.errors import Reason

ETHER = 10 ** 18


def att(operator: str, price: int, stake: int = ETHER) -> Attestation:
    return Attestation(operator, "eth/usd", price, observed_at=0, stake=stake)


class TestCalculateDeviation:
    """Test the deviation helper."""

    @pytest.mark.parametrize("price", [1, 99, 2_105 * 10 ** 8, 10 ** 30])
    def test_identical_prices(self, price: int) -> None:
        assert calculate_deviation(price, price) == 0

    def test_zero_reference_sentinel(self) -> None:
        assert calculate_deviation(12345, 0) == 10000

    def test_symmetric_in_direction(self) -> None:
        """Up and down moves of equal size deviate equally from the reference."""
        assert calculate_deviation(105, 100) == 500
        assert calculate_deviation(95, 100) == 500

    def test_divides_by_reference(self) -> None:
        assert calculate_deviation(100, 105) == 476

    def test_double_price(self) -> None:
        assert calculate_deviation(200, 100) == 10000


class TestWeightedPrice:
    """Test stake-weighted averaging."""

    @pytest.mark.parametrize("stakes", [[1, 1, 1], [1, 50, 10 ** 20], [7, 3, 900, 2]])
    def test_uniform_price_is_exact(self, stakes: list[int]) -> None:
        price = to_fixed_point("2105.12345678")
        attestations = [att(str(i), price, s) for i, s in enumerate(stakes)]
        assert weighted_price(attestations) == price

    def test_weighting(self) -> None:
        attestations = [att("a", 100, stake=1), att("b", 200, stake=3)]
        assert weighted_price(attestations) == 175

    def test_zero_stake_reports_zero(self) -> None:
        assert weighted_price([att("a", 100, stake=0)]) == 0
        assert weighted_price([]) == 0


class TestConvergenceScore:
    """Test the hyperbolic convergence score."""

    def test_no_deviation(self) -> None:
        attestations = [att("a", 500), att("b", 500), att("c", 500)]
        assert convergence_score(attestations, 500) == 10000

    def test_hundred_bps_halves_score(self) -> None:
        attestations = [att("a", 99), att("b", 101)]
        assert convergence_score(attestations, 100) == 5000

    def test_tiny_deviation_below_max(self) -> None:
        """Any non-zero deviation, however small, keeps the score below 10000."""
        base = 10 ** 8
        attestations = [att("a", base), att("b", base + 1), att("c", base)]
        price = weighted_price(attestations)

        assert price == base
        assert convergence_score(attestations, price) == 9999

    def test_large_deviation_collapses(self) -> None:
        attestations = [att("a", 100), att("b", 300)]
        assert convergence_score(attestations, 200) < 200

    def test_empty(self) -> None:
        assert convergence_score([], 100) == 0


class TestConfidenceComponents:
    """Test stake evenness and operator count scores."""

    def test_single_operator_evenness(self) -> None:
        assert stake_evenness_score([att("a", 1), att("a", 1)]) == 0

    def test_equal_stakes_evenness(self) -> None:
        assert stake_evenness_score([att("a", 1), att("b", 1), att("c", 1)]) == 10000

    def test_uneven_stakes(self) -> None:
        attestations = [att("a", 1, 50), att("b", 1, 70), att("c", 1, 80)]
        assert stake_evenness_score(attestations) == 9825

    @pytest.mark.parametrize(
        "count,score",
        [(0, 0), (1, 2000), (2, 4000), (3, 6000), (4, 7500), (5, 10000), (12, 10000)],
    )
    def test_operator_count_steps(self, count: int, score: int) -> None:
        assert operator_count_score(count) == score


class TestConfidenceWeights:
    """Test weight validation."""

    def test_defaults_sum(self) -> None:
        w = ConfidenceWeights()
        assert w.convergence + w.stake_evenness + w.operator_count + w.reliability == 10000

    def test_bad_sum(self) -> None:
        with pytest.raises(ValueError, match="sum to 10000"):
            ConfidenceWeights(5000, 2000, 2000, 2000)

    def test_negative(self) -> None:
        with pytest.raises(ValueError, match="must not be negative"):
            ConfidenceWeights(12000, -2000, 0, 0)


class TestConsensusCalculator:
    """Test full round calculation."""

    def test_scenario_three_operators(self) -> None:
        """2105/2107/2104 with stakes 50/70/80 commits above 66% confidence."""
        attestations = [
            att("a", to_fixed_point(2105), 50 * ETHER),
            att("b", to_fixed_point(2107), 70 * ETHER),
            att("c", to_fixed_point(2104), 80 * ETHER),
        ]
        outcome = ConsensusCalculator().calculate(attestations, {}, now=500, threshold_bps=6600)

        assert outcome.committed
        result = outcome.result
        assert result.valid
        assert result.weighted_price == to_fixed_point("2105.3")
        assert result.total_stake == 200 * ETHER
        assert result.attestation_count == 3
        assert 6600 <= result.confidence_level <= 10000
        assert 0 <= result.convergence_score <= 10000
        assert result.consensus_timestamp == 500
        assert result.attestation_ids == tuple(a.attestation_id for a in attestations)

    def test_two_attestations_never_commit(self) -> None:
        attestations = [att("a", 100), att("b", 100)]
        outcome = ConsensusCalculator().calculate(attestations, {}, now=1, threshold_bps=0)

        assert not outcome.committed
        assert outcome.reason == Reason.NO_CONSENSUS
        assert not outcome.result.valid

    def test_threshold_not_met(self) -> None:
        attestations = [att("a", 100), att("b", 100), att("c", 100)]
        outcome = ConsensusCalculator().calculate(attestations, {}, now=1, threshold_bps=9000)

        assert outcome.reason == Reason.LOW_CONFIDENCE

    def test_total_stake_is_included_stake(self) -> None:
        attestations = [att("a", 100), att("b", 100, 2 * ETHER), att("c", 100)]
        outcome = ConsensusCalculator().calculate(attestations, {}, now=1, threshold_bps=0)

        assert outcome.result.total_stake == 4 * ETHER
        assert outcome.result.participating_stake == 4 * ETHER

    def test_basic_variant_matches_convergence(self) -> None:
        """Convergence-only weights with no stake dampening give convergence."""
        calc = ConsensusCalculator(ConfidenceWeights(10000, 0, 0, 0), stake_reference=0)
        attestations = [att("a", 99), att("b", 101), att("c", 100)]
        outcome = calc.calculate(attestations, {}, now=1, threshold_bps=0)

        assert outcome.result.confidence_level == outcome.result.convergence_score

    def test_thin_stake_dampens_confidence(self) -> None:
        attestations = [att("a", 100, 1), att("b", 100, 1), att("c", 100, 1)]
        outcome = ConsensusCalculator().calculate(attestations, {}, now=1, threshold_bps=0)

        assert outcome.result.confidence_level == 0

    def test_confidence_increases_with_reliability(self) -> None:
        calc = ConsensusCalculator()
        attestations = [att("a", 100), att("b", 100), att("c", 100)]
        low = calc.calculate(attestations, {"a": 0, "b": 0, "c": 0}, 1, 0)
        high = calc.calculate(attestations, {"a": 10000, "b": 10000, "c": 10000}, 1, 0)

        assert high.result.confidence_level > low.result.confidence_level

    def test_confidence_increases_with_operator_count(self) -> None:
        calc = ConsensusCalculator(stake_reference=0)
        three = [att(str(i), 100) for i in range(3)]
        five = [att(str(i), 100) for i in range(5)]

        assert (
            calc.calculate(five, {}, 1, 0).result.confidence_level
            > calc.calculate(three, {}, 1, 0).result.confidence_level
        )

    def test_invalid_stake_reference(self) -> None:
        with pytest.raises(ValueError, match="stake_reference"):
            ConsensusCalculator(stake_reference=-1)
