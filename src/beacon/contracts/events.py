# src/beacon/contracts/events.py
"""Event records that flow through the analytics pipeline.

Property values form a closed union of scalar kinds. Anything that is not
a scalar is carried as an OpaqueValue holding its serialized text, so
sinks and storage never see a value they cannot encode.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Any

from beacon.contracts.enums import Platform


@dataclass(frozen=True, slots=True)
class OpaqueValue:
    """A property value that was not a scalar, kept as serialized text.

    Attributes:
        text: JSON text when the original value was JSON-compatible,
            otherwise its string representation
    """

    text: str


PropertyValue = str | int | float | bool | datetime | OpaqueValue | None


def property_to_wire(value: PropertyValue) -> Any:
    """Convert a property value to a JSON-compatible primitive."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, OpaqueValue):
        return value.text
    return value


@dataclass(frozen=True, slots=True)
class Event:
    """A single tracked occurrence, immutable once created.

    Created by the Dispatcher on every tracking call after enrichment.

    Attributes:
        name: Event name (e.g. "screen_view")
        properties: Normalized property values (read-only mapping)
        timestamp_ms: Wall-clock creation time in epoch milliseconds
        session_id: Session the event belongs to
        platform: Client platform
        app_version: Application version, empty when suppressed by privacy mode
        user_id: Identified user, if any
        event_id: Unique id collectors can use to de-duplicate redelivery
    """

    name: str
    properties: Mapping[str, PropertyValue]
    timestamp_ms: int
    session_id: str
    platform: Platform
    app_version: str
    event_id: str
    user_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.properties, MappingProxyType):
            object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))

    def to_wire(self) -> dict[str, Any]:
        """Collector-facing representation of the event."""
        return {
            "event_id": self.event_id,
            "name": self.name,
            "properties": {key: property_to_wire(value) for key, value in self.properties.items()},
            "timestamp_ms": self.timestamp_ms,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "platform": self.platform.value,
            "app_version": self.app_version,
        }


@dataclass(frozen=True, slots=True)
class QueuedEvent:
    """An Event awaiting delivery in a DurableQueue.

    Owned exclusively by one queue. retry_count grows by exactly one per
    failed delivery attempt.

    Attributes:
        id: Unique, roughly time-ordered queue entry id
        event: The wrapped event
        retry_count: Failed delivery attempts so far
        queued_at_ms: Epoch milliseconds when the entry was created
    """

    id: str
    event: Event
    retry_count: int
    queued_at_ms: int

    def with_failure(self) -> QueuedEvent:
        """Copy of this entry with one more failed attempt recorded."""
        return replace(self, retry_count=self.retry_count + 1)


@dataclass
class SessionContext:
    """Per-process session state used for enrichment.

    One live instance per process lifetime. session_id never changes;
    user_id and user_properties may be updated any number of times.
    """

    session_id: str
    started_at_ms: int
    user_id: str | None = None
    user_properties: dict[str, PropertyValue] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PurchaseItem:
    """One line item of a purchase."""

    item_id: str
    name: str
    price: float
    quantity: int = 1


@dataclass(frozen=True, slots=True)
class Transaction:
    """Structured purchase passed to Dispatcher.track_purchase().

    Attributes:
        transaction_id: Merchant-side transaction identifier
        amount: Total charged amount
        currency: ISO 4217 currency code
        items: Purchased line items
        coupon: Applied coupon code, if any
    """

    transaction_id: str
    amount: float
    currency: str
    items: tuple[PurchaseItem, ...] = ()
    coupon: str | None = None

    def to_properties(self) -> dict[str, Any]:
        """Generic event properties equivalent to this transaction."""
        properties: dict[str, Any] = {
            "transaction_id": self.transaction_id,
            "amount": self.amount,
            "currency": self.currency,
            "item_count": sum(item.quantity for item in self.items),
        }
        if self.items:
            properties["items"] = [
                {"item_id": item.item_id, "name": item.name, "price": item.price, "quantity": item.quantity}
                for item in self.items
            ]
        if self.coupon is not None:
            properties["coupon"] = self.coupon
        return properties
