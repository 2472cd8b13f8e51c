"""AttestationStore: Per-feed append log of accepted attestations.

The store is a plain data holder. Callers serialize access per feed (see
:class:`~consensus_oracle.src.OracleEngine.OracleEngine`). Staleness is a
read-time filter: stale attestations stay in the log for audit until
:meth:`AttestationStore.prune` removes them.

.. code-block:: python

    >>> store = AttestationStore()
    >>> store.append(Attestation("op1", "eth/usd", 100, observed_at=10, stake=5))
    >>> [a.operator_id for a in store.recent("eth/usd", now=400)]
    []
    >>> len(store.all("eth/usd"))
    1
"""

from __future__ import annotations

import logging
from collections.abc import Collection

from .Attestation import Attestation

logger = logging.getLogger(__name__)

DEFAULT_RECENCY_WINDOW = 300


class AttestationStore:
    """Append-only attestation log keyed by feed id."""

    def __init__(self) -> None:
        self._logs: dict[str, list[Attestation]] = {}
        self._ids: dict[str, set[str]] = {}

    def append(self, attestation: Attestation) -> None:
        """Append an attestation to its feed's log."""
        self._logs.setdefault(attestation.feed_id, []).append(attestation)
        self._ids.setdefault(attestation.feed_id, set()).add(attestation.attestation_id)

    def contains(self, feed_id: str, attestation_id: str) -> bool:
        return attestation_id in self._ids.get(feed_id, ())

    def ids(self, feed_id: str) -> set[str]:
        """Return the ids of every stored attestation for a feed."""
        return set(self._ids.get(feed_id, ()))

    def all(self, feed_id: str) -> list[Attestation]:
        """Return a copy of every stored attestation for a feed."""
        return list(self._logs.get(feed_id, ()))

    def feeds(self) -> list[str]:
        """Return feed ids with at least one stored attestation."""
        return [f for f, log in self._logs.items() if log]

    def recent(
        self, feed_id: str, now: int, window: int = DEFAULT_RECENCY_WINDOW
    ) -> list[Attestation]:
        """Select attestations observed within ``window`` of ``now``.

        :param feed_id: Feed to read.
        :param now: Current time.
        :param window: Staleness window; attestations with
            ``observed_at >= now - window`` are kept.
        :returns: Recent attestations in submission order.
        """
        cutoff = now - window
        return [a for a in self._logs.get(feed_id, ()) if a.observed_at >= cutoff]

    def prune(self, feed_id: str, cutoff: int, keep_ids: Collection[str] = ()) -> int:
        """Drop attestations observed before ``cutoff``.

        :param feed_id: Feed to prune.
        :param cutoff: Attestations with ``observed_at < cutoff`` are removed.
        :param keep_ids: Attestation ids still referenced by a committed result.
        :returns: Number of attestations removed.
        """
        log = self._logs.get(feed_id)
        if not log:
            return 0
        kept = [a for a in log if a.observed_at >= cutoff or a.attestation_id in keep_ids]
        removed = len(log) - len(kept)
        if removed:
            self._logs[feed_id] = kept
            self._ids[feed_id] = {a.attestation_id for a in kept}
            logger.debug(f"{feed_id}: pruned {removed} stale attestations")
        return removed
