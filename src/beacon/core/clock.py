# src/beacon/core/clock.py
"""Clock abstraction for testable time-dependent logic.

Event timestamps, screen durations and error de-duplication windows all
read time through a Clock so tests can control it.

Production code uses SystemClock (the default).
Tests inject MockClock to control time advancement.
"""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Abstract clock.

    Implementations:
    - SystemClock: Uses time.time() / time.monotonic() (production)
    - MockClock: Returns controllable times (testing)
    """

    def now_ms(self) -> int:
        """Return wall-clock time in epoch milliseconds."""
        ...

    def monotonic(self) -> float:
        """Return monotonic time in seconds, for elapsed-time calculations."""
        ...


class SystemClock:
    """Production clock backed by the system clocks."""

    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000

    def monotonic(self) -> float:
        return time.monotonic()


class MockClock:
    """Controllable clock for deterministic testing.

    Both readings advance together, so elapsed-time and wall-clock
    calculations stay consistent.

    Example:
        clock = MockClock(start_ms=1_700_000_000_000)
        dispatcher = Dispatcher(settings, consent, sink_factory, clock=clock)

        dispatcher.track_screen("home")
        clock.advance(2.5)
        dispatcher.track_screen("search")  # screen_exited duration_ms == 2500
    """

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self._now_ms = start_ms
        self._monotonic = 0.0

    def now_ms(self) -> int:
        return self._now_ms

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, seconds: float) -> None:
        """Advance both clocks.

        Raises:
            ValueError: If seconds is negative (time cannot go backwards)
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance by negative seconds: {seconds}")
        self._monotonic += seconds
        self._now_ms += round(seconds * 1000)
