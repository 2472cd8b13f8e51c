"""Attestation: One operator's stake-backed price observation for a feed.

Prices are fixed-point integers with ``PRICE_DECIMALS`` decimals, matching how
consensus prices are stored and compared. The canonical payload an operator
signs is the CBOR encoding returned by :func:`signing_payload`.

.. code-block:: python

    >>> to_fixed_point("2105.25")
    210525000000
    >>> from_fixed_point(210525000000)
    Decimal('2105.25')
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation

import cbor2
from web3 import Web3

# Number of decimals in a fixed-point price.
PRICE_DECIMALS = 8
PRICE_SCALE = 10 ** PRICE_DECIMALS


def to_fixed_point(value: Decimal | str | float | int) -> int:
    """Convert a decimal price to its fixed-point integer representation.

    :param value: Price as Decimal, string, float or int.
    :returns: Price scaled by ``10 ** PRICE_DECIMALS``.
    :raises ValueError: If value is not a finite number.
    """
    try:
        scaled = Decimal(str(value)) * PRICE_SCALE
        return int(scaled.to_integral_value(rounding=ROUND_HALF_EVEN))
    except (InvalidOperation, ValueError, OverflowError) as e:
        raise ValueError(f"Invalid price value: {value!r}") from e


def from_fixed_point(price: int) -> Decimal:
    """Convert a fixed-point price back to a Decimal."""
    return Decimal(price) / PRICE_SCALE


def signing_payload(
    operator_id: str,
    feed_id: str,
    price: int,
    stake: int,
    observed_at: int,
    provenance: str,
) -> bytes:
    """Build the canonical byte payload an operator signs.

    The encoding is a CBOR array so field order is fixed and independent of
    any mapping key ordering.
    """
    return cbor2.dumps([feed_id, operator_id, price, stake, observed_at, provenance])


@dataclass(frozen=True)
class Attestation:
    """A stored attestation. Immutable once created.

    :ivar operator_id: Operator that submitted the observation.
    :ivar feed_id: Feed the observation is for.
    :ivar price: Fixed-point price.
    :ivar observed_at: Observation time in clock units.
    :ivar stake: Stake backing this observation.
    :ivar provenance: Opaque source tag or hash.
    :ivar signature: Signature over :func:`signing_payload`.
    :ivar accepted: Whether the engine accepted the attestation.
    """

    operator_id: str
    feed_id: str
    price: int
    observed_at: int
    stake: int
    provenance: str = ""
    signature: bytes = b""
    accepted: bool = True
    attestation_id: str = field(init=False)

    def __post_init__(self) -> None:
        # Frozen dataclass: derived field is set through object.__setattr__.
        object.__setattr__(self, "attestation_id", Web3.to_hex(Web3.keccak(self.payload())))

    def payload(self) -> bytes:
        """Return the canonical signing payload for this attestation."""
        return signing_payload(
            self.operator_id,
            self.feed_id,
            self.price,
            self.stake,
            self.observed_at,
            self.provenance,
        )
