# src/beacon/core/serialization.py
"""Type-preserving JSON serialization for persisted pipeline state.

Queue entries must round-trip through durable storage with full type
fidelity: a datetime property must come back as a datetime and an
OpaqueValue as an OpaqueValue, not as the bare strings collectors see.

Non-scalar property values are wrapped in collision-safe type envelopes
with ``__beacon_type__`` and ``__beacon_value__`` keys. Normalized
properties never contain dicts, so an envelope is unambiguous.

This is distinct from canonical_json() which:
1. Is designed for collector payloads and hashing
2. Converts datetime and OpaqueValue to bare strings (no type tags)
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from beacon.contracts.enums import Platform
from beacon.contracts.events import Event, OpaqueValue, PropertyValue, QueuedEvent

_ENVELOPE_TYPE_KEY = "__beacon_type__"
_ENVELOPE_VALUE_KEY = "__beacon_value__"


class SerializationError(ValueError):
    """Raised when persisted bytes cannot be decoded into pipeline records."""


def _encode_property(value: PropertyValue) -> Any:
    if isinstance(value, datetime):
        return {_ENVELOPE_TYPE_KEY: "datetime", _ENVELOPE_VALUE_KEY: value.isoformat()}
    if isinstance(value, OpaqueValue):
        return {_ENVELOPE_TYPE_KEY: "opaque", _ENVELOPE_VALUE_KEY: value.text}
    return value


def _decode_property(value: Any) -> PropertyValue:
    if isinstance(value, dict):
        type_tag = value.get(_ENVELOPE_TYPE_KEY)
        raw = value.get(_ENVELOPE_VALUE_KEY)
        if type_tag == "datetime" and isinstance(raw, str):
            return datetime.fromisoformat(raw)
        if type_tag == "opaque" and isinstance(raw, str):
            return OpaqueValue(raw)
        raise SerializationError(f"Unknown property envelope: {value!r}")
    if value is None or isinstance(value, str | int | float | bool):
        return value
    raise SerializationError(f"Unexpected persisted property type: {type(value).__name__}")


def event_to_record(event: Event) -> dict[str, Any]:
    """Encode an Event as a JSON-compatible dict with type envelopes."""
    return {
        "event_id": event.event_id,
        "name": event.name,
        "properties": {key: _encode_property(value) for key, value in event.properties.items()},
        "timestamp_ms": event.timestamp_ms,
        "session_id": event.session_id,
        "user_id": event.user_id,
        "platform": event.platform.value,
        "app_version": event.app_version,
    }


def event_from_record(record: Mapping[str, Any]) -> Event:
    """Decode a dict produced by event_to_record().

    Raises:
        SerializationError: If the record is malformed
    """
    try:
        properties = record["properties"]
        if not isinstance(properties, Mapping):
            raise SerializationError("properties must be a mapping")
        return Event(
            name=str(record["name"]),
            properties={str(key): _decode_property(value) for key, value in properties.items()},
            timestamp_ms=int(record["timestamp_ms"]),
            session_id=str(record["session_id"]),
            platform=Platform(record["platform"]),
            app_version=str(record["app_version"]),
            event_id=str(record["event_id"]),
            user_id=record.get("user_id"),
        )
    except SerializationError:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise SerializationError(f"Malformed event record: {e}") from e


def queued_to_record(entry: QueuedEvent) -> dict[str, Any]:
    return {
        "id": entry.id,
        "retry_count": entry.retry_count,
        "queued_at_ms": entry.queued_at_ms,
        "event": event_to_record(entry.event),
    }


def queued_from_record(record: Mapping[str, Any]) -> QueuedEvent:
    """Decode a dict produced by queued_to_record().

    Raises:
        SerializationError: If the record is malformed
    """
    try:
        return QueuedEvent(
            id=str(record["id"]),
            event=event_from_record(record["event"]),
            retry_count=int(record["retry_count"]),
            queued_at_ms=int(record["queued_at_ms"]),
        )
    except SerializationError:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise SerializationError(f"Malformed queue record: {e}") from e


def dumps(obj: Any) -> bytes:
    """Encode JSON-compatible data for storage.

    NaN and Infinity are rejected; normalized properties never contain them.
    """
    return json.dumps(obj, allow_nan=False, separators=(",", ":")).encode("utf-8")


def loads(data: bytes) -> Any:
    """Decode bytes written by dumps().

    Raises:
        SerializationError: If data is not valid UTF-8 JSON
    """
    try:
        return json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SerializationError(f"Corrupt persisted data: {e}") from e
