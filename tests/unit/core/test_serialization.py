# tests/unit/core/test_serialization.py
"""Tests for type-preserving persistence encoding."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from beacon.contracts.events import OpaqueValue, QueuedEvent
from beacon.core.serialization import (
    SerializationError,
    dumps,
    event_from_record,
    event_to_record,
    loads,
    queued_from_record,
    queued_to_record,
)
from tests.fixtures.fakes import make_event


class TestEventRecords:
    def test_datetime_and_opaque_values_keep_their_types(self) -> None:
        when = datetime(2024, 3, 4, 5, 6, 7, tzinfo=UTC)
        event = make_event(properties={"at": when, "blob": OpaqueValue("[1,2]"), "n": 1.5, "flag": False})

        restored = event_from_record(loads(dumps(event_to_record(event))))

        assert restored == event
        assert isinstance(restored.properties["at"], datetime)
        assert isinstance(restored.properties["blob"], OpaqueValue)

    def test_unknown_envelope_is_rejected(self) -> None:
        record = event_to_record(make_event())
        record["properties"] = {"x": {"__beacon_type__": "complex", "__beacon_value__": "1+2j"}}

        with pytest.raises(SerializationError, match="Unknown property envelope"):
            event_from_record(record)

    def test_missing_field_is_reported_as_serialization_error(self) -> None:
        record = event_to_record(make_event())
        del record["session_id"]

        with pytest.raises(SerializationError, match="Malformed event record"):
            event_from_record(record)

    def test_unknown_platform_is_reported_as_serialization_error(self) -> None:
        record = event_to_record(make_event())
        record["platform"] = "smart-fridge"

        with pytest.raises(SerializationError):
            event_from_record(record)


class TestQueuedRecords:
    def test_queued_entry_round_trip(self) -> None:
        entry = QueuedEvent(id="0001-x", event=make_event(user_id="u-1"), retry_count=2, queued_at_ms=42)

        assert queued_from_record(loads(dumps(queued_to_record(entry)))) == entry

    def test_malformed_queue_record(self) -> None:
        with pytest.raises(SerializationError, match="Malformed queue record"):
            queued_from_record({"id": "x", "retry_count": 0})


class TestBytes:
    def test_loads_rejects_corrupt_bytes(self) -> None:
        with pytest.raises(SerializationError, match="Corrupt persisted data"):
            loads(b"\xff\xfe not json")

    def test_dumps_rejects_nan(self) -> None:
        with pytest.raises(ValueError):
            dumps({"x": float("nan")})
