"""Clock sources injected into the engine.

The engine never reads the system clock directly. Production wiring passes a
:class:`MonotonicClock`; tests and replays drive a :class:`ManualClock`.
"""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Callable returning the current time in whole time units."""

    def __call__(self) -> int: ...


class MonotonicClock:
    """Seconds elapsed on ``time.monotonic`` offset by a fixed epoch.

    :ivar epoch: Value reported at construction time.
    """

    def __init__(self, epoch: int | None = None) -> None:
        self.epoch = int(time.time()) if epoch is None else epoch
        self._start = time.monotonic()

    def __call__(self) -> int:
        return self.epoch + int(time.monotonic() - self._start)


class ManualClock:
    """Clock that only moves when told to.

    .. code-block:: python

        >>> clock = ManualClock(1000)
        >>> clock.advance(300)
        1300
        >>> clock()
        1300
    """

    def __init__(self, now: int = 0) -> None:
        self._now = now

    def __call__(self) -> int:
        return self._now

    def advance(self, delta: int) -> int:
        """Move the clock forward by ``delta`` time units.

        :raises ValueError: If ``delta`` is negative.
        """
        if delta < 0:
            raise ValueError("clock cannot move backwards")
        self._now += delta
        return self._now

    def set(self, now: int) -> int:
        """Move the clock to an absolute time that is not in the past."""
        if now < self._now:
            raise ValueError("clock cannot move backwards")
        self._now = now
        return self._now
