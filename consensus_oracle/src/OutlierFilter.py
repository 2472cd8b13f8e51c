"""OutlierFilter: Removes implausible attestations before aggregation.

Algorithm:
    1. Return the input unchanged if it holds fewer than 3 attestations
    2. Compute a provisional reference price (median by default)
    3. Exclude attestations deviating > max_deviation_bps from the reference
    4. Return the retained subset in input order

.. code-block:: python

    >>> result = filter_outliers(attestations, max_deviation_bps=500)
    >>> [a.operator_id for a in result.dropped]
    ['rogue']
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction

from .Attestation import Attestation
from .ConsensusCalculator import relative_deviation

MIN_FILTER_SIZE = 3


class ReferenceMethod(str, Enum):
    """How the provisional reference price is computed."""

    MEDIAN = "median"
    MEAN = "mean"
    WEIGHTED_MEAN = "weighted_mean"


@dataclass
class OutlierFilterResult:
    """Result of outlier filtering.

    :ivar retained: Attestations kept for aggregation.
    :ivar dropped: Attestations excluded as outliers.
    :ivar reference_price: Provisional reference, or None when the input was
        too small to filter.
    """

    retained: Sequence[Attestation]
    dropped: list[Attestation] = field(default_factory=list)
    reference_price: Fraction | None = None


def reference_price(
    attestations: Sequence[Attestation],
    method: ReferenceMethod = ReferenceMethod.MEDIAN,
) -> Fraction:
    """Compute the provisional reference price of a non-empty set.

    :raises ValueError: If attestations is empty.
    """
    if not attestations:
        raise ValueError("reference price of an empty set is undefined")

    if method == ReferenceMethod.MEAN:
        return Fraction(sum(a.price for a in attestations), len(attestations))

    if method == ReferenceMethod.WEIGHTED_MEAN:
        total_stake = sum(a.stake for a in attestations)
        if total_stake == 0:
            return Fraction(sum(a.price for a in attestations), len(attestations))
        return Fraction(sum(a.price * a.stake for a in attestations), total_stake)

    prices = sorted(a.price for a in attestations)
    mid = len(prices) // 2
    if len(prices) % 2:
        return Fraction(prices[mid])
    return Fraction(prices[mid - 1] + prices[mid], 2)


def filter_outliers(
    attestations: Sequence[Attestation],
    max_deviation_bps: int,
    method: ReferenceMethod = ReferenceMethod.MEDIAN,
) -> OutlierFilterResult:
    """Drop attestations whose price is implausible relative to the group.

    :param attestations: Candidate attestations.
    :param max_deviation_bps: Maximum allowed deviation from the reference.
        Deviation exactly at the threshold is retained.
    :param method: Reference price method.
    :returns: OutlierFilterResult. Inputs smaller than 3 are returned as the
        same sequence object with nothing dropped.
    :raises ValueError: If max_deviation_bps is not positive.
    """
    if max_deviation_bps <= 0:
        raise ValueError("max_deviation_bps must be positive")

    if len(attestations) < MIN_FILTER_SIZE:
        return OutlierFilterResult(retained=attestations)

    reference = reference_price(attestations, method)

    retained: list[Attestation] = []
    dropped: list[Attestation] = []
    for attestation in attestations:
        if relative_deviation(attestation.price, reference) <= max_deviation_bps:
            retained.append(attestation)
        else:
            dropped.append(attestation)

    return OutlierFilterResult(
        retained=retained, dropped=dropped, reference_price=reference
    )
