# src/beacon/pipeline/error_tracking.py
"""Error report construction with fingerprint de-duplication.

Identical errors (same type, message and context) inside the
de-duplication window are counted rather than resent. The next report
after the window carries the number of occurrences it stands for.

Expired windows are released on the next report. A suppressed count
from an expired window is carried in a bounded, oldest-first map until
the same error recurs; beyond the bound the oldest counts are forgotten.
"""

from __future__ import annotations

import threading
import traceback
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from beacon.contracts.defaults import get_internal_default
from beacon.contracts.enums import ErrorSeverity
from beacon.contracts.events import property_to_wire
from beacon.core.canonical import DROPPED, normalize_property, stable_hash
from beacon.core.clock import Clock, SystemClock

logger = structlog.get_logger(__name__)

# Stack traces are truncated to keep error events under collector limits
_MAX_STACK_LENGTH = 1000


@dataclass
class _Window:
    opened_at_ms: int
    suppressed: int = 0


def error_fingerprint(error_type: str, message: str, context: Mapping[str, Any] | None = None) -> str:
    """Stable 16-hex-digit fingerprint of an error and its context."""
    wire_context: dict[str, Any] = {}
    for key, value in (context or {}).items():
        normalized = normalize_property(value)
        if normalized is DROPPED:
            continue
        wire_context[str(key)] = property_to_wire(normalized)  # type: ignore[arg-type]
    return stable_hash({"type": error_type, "message": message, "context": wire_context})[:16]


class ErrorTracker:
    """Builds error event properties and suppresses repeats.

    Thread Safety:
        record() may be called from any thread.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        *,
        dedup_window_ms: int | None = None,
        max_carried: int | None = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self._window_ms = (
            dedup_window_ms
            if dedup_window_ms is not None
            else int(get_internal_default("error_tracking", "dedup_window_ms"))
        )
        self._max_carried = (
            max_carried if max_carried is not None else int(get_internal_default("error_tracking", "max_carried_counts"))
        )
        self._windows: dict[str, _Window] = {}
        self._carried: OrderedDict[str, int] = OrderedDict()
        self._lock = threading.Lock()
        self.suppressed_total = 0

    def record(
        self,
        error: BaseException | str,
        context: Mapping[str, Any] | None = None,
        severity: ErrorSeverity | str = ErrorSeverity.MEDIUM,
    ) -> dict[str, Any] | None:
        """Register an occurrence.

        Returns:
            Properties for an "error" event, or None when the occurrence
            falls inside the window of an identical error already reported
        """
        severity = ErrorSeverity(severity)
        if isinstance(error, BaseException):
            error_type = type(error).__name__
            message = str(error)
        else:
            error_type = "Error"
            message = str(error)
        fingerprint = error_fingerprint(error_type, message, context)
        now_ms = self._clock.now_ms()

        with self._lock:
            window = self._windows.get(fingerprint)
            if window is not None and now_ms - window.opened_at_ms < self._window_ms:
                window.suppressed += 1
                self.suppressed_total += 1
                logger.debug("Duplicate error suppressed", fingerprint=fingerprint, suppressed=window.suppressed)
                return None
            occurrences = 1 + (window.suppressed if window is not None else 0) + self._carried.pop(fingerprint, 0)
            self._windows[fingerprint] = _Window(opened_at_ms=now_ms)
            self._expire_locked(now_ms)

        properties: dict[str, Any] = {
            "error_type": error_type,
            "message": message,
            "fingerprint": fingerprint,
            "severity": severity.value,
            "occurrences": occurrences,
        }
        if context:
            properties["context"] = dict(context)
        if isinstance(error, BaseException) and error.__traceback__ is not None:
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
            properties["stack"] = stack[-_MAX_STACK_LENGTH:]
        return properties

    def _expire_locked(self, now_ms: int) -> None:
        expired = [
            fingerprint
            for fingerprint, window in self._windows.items()
            if now_ms - window.opened_at_ms >= self._window_ms
        ]
        for fingerprint in expired:
            window = self._windows.pop(fingerprint)
            if window.suppressed:
                self._carried[fingerprint] = window.suppressed
        while len(self._carried) > self._max_carried:
            fingerprint, count = self._carried.popitem(last=False)
            logger.debug("Forgetting suppressed error count", fingerprint=fingerprint, suppressed=count)

    @property
    def open_windows(self) -> int:
        with self._lock:
            return len(self._windows)

    @property
    def carried_counts(self) -> int:
        with self._lock:
            return len(self._carried)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._carried.clear()
            self.suppressed_total = 0
