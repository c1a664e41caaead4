# tests/property/test_canonical_properties.py
"""Property-based tests for canonical JSON and property normalization.

Batch payloads and error fingerprints are built from canonical_json()
and stable_hash(); both must be byte-stable for equal inputs regardless
of dict insertion order.
"""

from __future__ import annotations

import json
from typing import Any

from hypothesis import given
from hypothesis import strategies as st

from beacon.contracts.events import OpaqueValue
from beacon.core.canonical import DROPPED, canonical_json, normalize_properties, normalize_property, stable_hash
from tests.property.settings import DETERMINISM_SETTINGS, STANDARD_SETTINGS

_MAX_SAFE_INT = 2**53 - 1

# Surrogates cannot be encoded as UTF-8
safe_text = st.text(alphabet=st.characters(blacklist_categories=("Cs",)), max_size=50)

json_primitives = (
    st.none()
    | st.booleans()
    | st.integers(min_value=-_MAX_SAFE_INT, max_value=_MAX_SAFE_INT)
    | st.floats(allow_nan=False, allow_infinity=False)
    | safe_text
)

json_values = st.recursive(
    json_primitives,
    lambda children: st.lists(children, max_size=5) | st.dictionaries(safe_text, children, max_size=5),
    max_leaves=30,
)

# Anything a caller might pass as a property value
arbitrary_values = (
    json_values
    | st.integers()
    | st.floats()
    | st.lists(st.floats(), max_size=5)
    | st.sets(st.integers(), max_size=5)
    | st.binary(max_size=10)
)


class TestCanonicalJson:
    @given(data=json_values)
    @DETERMINISM_SETTINGS
    def test_deterministic(self, data: Any) -> None:
        assert canonical_json(data) == canonical_json(data)
        assert stable_hash(data) == stable_hash(data)

    @given(data=st.dictionaries(safe_text, json_primitives, min_size=2, max_size=10))
    @DETERMINISM_SETTINGS
    def test_insertion_order_is_irrelevant(self, data: dict[str, Any]) -> None:
        reversed_data = dict(reversed(list(data.items())))

        assert canonical_json(reversed_data) == canonical_json(data)
        assert stable_hash(reversed_data) == stable_hash(data)

    @given(data=json_values)
    @STANDARD_SETTINGS
    def test_output_is_compact_json(self, data: Any) -> None:
        encoded = canonical_json(data)

        assert json.loads(encoded) == data
        assert b"\n" not in encoded


class TestNormalization:
    @given(value=arbitrary_values)
    @STANDARD_SETTINGS
    def test_normalized_values_always_serialize(self, value: Any) -> None:
        normalized = normalize_property(value)

        assert normalized is not DROPPED
        canonical_json({"value": normalized})

    @given(value=json_primitives)
    @STANDARD_SETTINGS
    def test_json_scalars_pass_through(self, value: Any) -> None:
        assert normalize_property(value) == value

    @given(value=st.integers().filter(lambda v: abs(v) > _MAX_SAFE_INT))
    @STANDARD_SETTINGS
    def test_unsafe_integers_become_opaque(self, value: int) -> None:
        assert normalize_property(value) == OpaqueValue(str(value))

    @given(properties=st.dictionaries(st.integers() | safe_text, arbitrary_values, max_size=8))
    @STANDARD_SETTINGS
    def test_property_keys_become_strings(self, properties: dict[Any, Any]) -> None:
        normalized = normalize_properties(properties)

        assert all(isinstance(key, str) for key in normalized)
        assert set(normalized) == {str(key) for key in properties}
