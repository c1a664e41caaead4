# src/beacon/contracts/enums.py
"""Enumerations shared across the analytics pipeline.

All enums use StrEnum so values serialize directly into persisted JSON
and collector payloads.
"""

from enum import StrEnum


class Platform(StrEnum):
    """Client platform attached to every event during enrichment."""

    IOS = "ios"
    ANDROID = "android"
    WEB = "web"


class ConsentCategory(StrEnum):
    """Privacy consent categories.

    NECESSARY is fixed to granted and can never be revoked. The remaining
    categories are independently toggleable.
    """

    NECESSARY = "necessary"
    ANALYTICS = "analytics"
    MARKETING = "marketing"
    PERSONALIZATION = "personalization"


# Categories the user may toggle. ConsentRecord.granted is the OR of these.
MUTABLE_CONSENT_CATEGORIES: tuple[ConsentCategory, ...] = (
    ConsentCategory.ANALYTICS,
    ConsentCategory.MARKETING,
    ConsentCategory.PERSONALIZATION,
)


class DispatcherState(StrEnum):
    """Lifecycle of the Dispatcher's enabled flag.

    UNINITIALIZED transitions once to ENABLED (analytics consent present at
    initialize) or DISABLED; afterwards ENABLED and DISABLED alternate with
    consent changes.
    """

    UNINITIALIZED = "uninitialized"
    ENABLED = "enabled"
    DISABLED = "disabled"


class FunnelStage(StrEnum):
    """Ordered conversion funnel stages.

    Declaration order is the funnel order; ordinal is 1-based.
    """

    DISCOVERY = "discovery"
    VIEW = "view"
    ADD_TO_CART = "add_to_cart"
    BEGIN_CHECKOUT = "begin_checkout"
    PAYMENT = "payment"
    COMPLETE = "complete"

    @property
    def ordinal(self) -> int:
        """1-based position of the stage in the funnel."""
        return list(FunnelStage).index(self) + 1


class ErrorSeverity(StrEnum):
    """Severity attached to tracked errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DropReason(StrEnum):
    """Why an event left a queue without being delivered."""

    RETRIES_EXHAUSTED = "retries_exhausted"
    PERMANENT_FAILURE = "permanent_failure"
    QUEUE_OVERFLOW = "queue_overflow"
