# tests/unit/core/test_canonical.py
"""Tests for property normalization and canonical JSON."""

from __future__ import annotations

import math
from datetime import UTC, datetime

import pytest

from beacon.contracts.events import OpaqueValue
from beacon.core.canonical import (
    DROPPED,
    canonical_json,
    is_json_serializable,
    normalize_properties,
    normalize_property,
    stable_hash,
)


class TestCanonicalJson:
    def test_keys_are_sorted_without_whitespace(self) -> None:
        assert canonical_json({"b": 1, "a": [1, 2]}) == b'{"a":[1,2],"b":1}'

    def test_datetimes_serialize_as_iso_strings(self) -> None:
        when = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

        assert canonical_json({"at": when}) == b'{"at":"2024-05-01T12:00:00+00:00"}'

    def test_naive_datetimes_are_taken_as_utc(self) -> None:
        assert canonical_json(datetime(2024, 5, 1)) == canonical_json(datetime(2024, 5, 1, tzinfo=UTC))

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_floats_are_rejected(self, value: float) -> None:
        with pytest.raises(ValueError, match="non-finite"):
            canonical_json({"x": value})

    def test_unserializable_objects_are_rejected(self) -> None:
        with pytest.raises(TypeError, match="not JSON serializable"):
            canonical_json({"x": object()})

    def test_oversized_integers_become_strings(self) -> None:
        assert canonical_json(2**60) == b'"1152921504606846976"'

    def test_stable_hash_ignores_key_order(self) -> None:
        assert stable_hash({"a": 1, "b": 2}) == stable_hash({"b": 2, "a": 1})
        assert len(stable_hash("x")) == 64

    def test_lone_surrogates_are_rejected_as_value_error(self) -> None:
        with pytest.raises(ValueError, match="Cannot canonicalize"):
            canonical_json({"s": "\ud800"})


class TestNormalizeProperty:
    @pytest.mark.parametrize("value", ["text", 1, 2.5, True, None])
    def test_scalars_are_unchanged(self, value: object) -> None:
        assert normalize_property(value) == value

    def test_collections_become_opaque_json(self) -> None:
        assert normalize_property({"b": 1, "a": 2}) == OpaqueValue('{"a":2,"b":1}')
        assert normalize_property([1, "x"]) == OpaqueValue('[1,"x"]')

    def test_unserializable_collections_fall_back_to_repr(self) -> None:
        marker = object()
        result = normalize_property([marker])

        assert isinstance(result, OpaqueValue)
        assert result.text == repr([marker])

    def test_callables_are_dropped(self) -> None:
        assert normalize_property(lambda: None) is DROPPED

    def test_non_finite_float_becomes_opaque(self) -> None:
        assert normalize_property(math.nan) == OpaqueValue("nan")

    def test_naive_datetime_gains_utc(self) -> None:
        result = normalize_property(datetime(2024, 1, 1))

        assert isinstance(result, datetime)
        assert result.tzinfo is UTC

    def test_other_objects_are_stringified(self) -> None:
        class Thing:
            def __str__(self) -> str:
                return "thing!"

        assert normalize_property(Thing()) == OpaqueValue("thing!")

    def test_normalize_properties_drops_callables_and_stringifies_keys(self) -> None:
        result = normalize_properties({1: "one", "fn": print, "ok": True})

        assert result == {"1": "one", "ok": True}

    def test_normalize_properties_handles_none(self) -> None:
        assert normalize_properties(None) == {}

    def test_lone_surrogates_are_replaced(self) -> None:
        assert normalize_property("bad\ud800text") == "bad\ufffdtext"
        assert normalize_property(OpaqueValue("\udfff")) == OpaqueValue("\ufffd")

    def test_normalized_surrogate_properties_serialize(self) -> None:
        result = normalize_properties({"key\ud83d": "\ud800", "nested": ["\udc00"]})

        assert result["key\ufffd"] == "\ufffd"
        assert isinstance(result["nested"], OpaqueValue)
        canonical_json(result)

    def test_valid_astral_characters_are_kept(self) -> None:
        assert normalize_property("rocket \U0001f680") == "rocket \U0001f680"


class TestIsJsonSerializable:
    def test_plain_data(self) -> None:
        assert is_json_serializable({"a": [1, 2, {"b": None}]})

    def test_rejects_objects_and_nan(self) -> None:
        assert not is_json_serializable(object())
        assert not is_json_serializable(math.nan)
