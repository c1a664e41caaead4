# src/beacon/contracts/__init__.py
"""Shared contracts: enums, event records and result types.

Contracts have no dependencies on the rest of beacon so every subsystem
can import them without cycles.
"""

from beacon.contracts.consent import ConsentCategories, ConsentRecord
from beacon.contracts.enums import (
    MUTABLE_CONSENT_CATEGORIES,
    ConsentCategory,
    DispatcherState,
    DropReason,
    ErrorSeverity,
    FunnelStage,
    Platform,
)
from beacon.contracts.events import (
    Event,
    OpaqueValue,
    PropertyValue,
    PurchaseItem,
    QueuedEvent,
    SessionContext,
    Transaction,
)
from beacon.contracts.results import (
    DeliveryStats,
    DrainResult,
    FunnelSnapshot,
    SendResult,
    ValidationResult,
)
from beacon.contracts.runtime import RuntimeQueueConfig

__all__ = [
    "MUTABLE_CONSENT_CATEGORIES",
    "ConsentCategories",
    "ConsentCategory",
    "ConsentRecord",
    "DeliveryStats",
    "DispatcherState",
    "DrainResult",
    "DropReason",
    "ErrorSeverity",
    "Event",
    "FunnelSnapshot",
    "FunnelStage",
    "OpaqueValue",
    "Platform",
    "PropertyValue",
    "PurchaseItem",
    "QueuedEvent",
    "RuntimeQueueConfig",
    "SendResult",
    "SessionContext",
    "Transaction",
    "ValidationResult",
]
