# src/beacon/contracts/results.py
"""Result types returned across component boundaries."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from beacon.contracts.enums import FunnelStage


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of validating an event name and its properties.

    Validation is advisory: an invalid result is logged by the Dispatcher
    but the event is still forwarded (only an empty name is skipped).
    """

    valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SendResult:
    """Outcome of one transport send.

    Attributes:
        success: Collector acknowledged the payload
        retryable: Failure is transient (network, 5xx, 408, 429)
        status_code: HTTP-like status when one was received
        error: Human-readable failure description
    """

    success: bool
    retryable: bool = True
    status_code: int | None = None
    error: str | None = None

    @classmethod
    def ok(cls, status_code: int | None = None) -> SendResult:
        return cls(success=True, retryable=False, status_code=status_code)

    @classmethod
    def failed(cls, error: str, *, retryable: bool = True, status_code: int | None = None) -> SendResult:
        return cls(success=False, retryable=retryable, status_code=status_code, error=error)


@dataclass(frozen=True, slots=True)
class DrainResult:
    """Summary of one DurableQueue processing pass."""

    delivered: int = 0
    retried: int = 0
    dropped: int = 0
    remaining: int = 0


@dataclass
class DeliveryStats:
    """Running delivery counters for one sink, persisted across restarts."""

    total_events: int = 0
    sent_events: int = 0
    failed_attempts: int = 0
    dropped_events: int = 0
    pending_events: int = 0
    last_sent_ms: int | None = None

    @property
    def success_rate(self) -> float:
        """Percentage of tracked events confirmed delivered (0 when none tracked)."""
        if self.total_events == 0:
            return 0.0
        return self.sent_events / self.total_events * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_events": self.total_events,
            "sent_events": self.sent_events,
            "failed_attempts": self.failed_attempts,
            "dropped_events": self.dropped_events,
            "pending_events": self.pending_events,
            "last_sent_ms": self.last_sent_ms,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DeliveryStats:
        last_sent = data.get("last_sent_ms")
        return cls(
            total_events=int(data.get("total_events", 0)),
            sent_events=int(data.get("sent_events", 0)),
            failed_attempts=int(data.get("failed_attempts", 0)),
            dropped_events=int(data.get("dropped_events", 0)),
            pending_events=int(data.get("pending_events", 0)),
            last_sent_ms=int(last_sent) if last_sent is not None else None,
        )


@dataclass(frozen=True, slots=True)
class FunnelSnapshot:
    """Derived funnel metrics at a point in time.

    Attributes:
        counts: Lifetime count per stage, in funnel order
        session_counts: Current-session count per stage, in funnel order
        conversion_rate: Last stage / first stage * 100 (lifetime)
        session_conversion_rate: Same ratio over session counts
        drop_off_rates: "<stage>_to_<next>" -> percentage lost between them
    """

    counts: Mapping[FunnelStage, int]
    session_counts: Mapping[FunnelStage, int]
    conversion_rate: float
    session_conversion_rate: float
    drop_off_rates: Mapping[str, float] = field(default_factory=dict)
