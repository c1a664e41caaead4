# src/beacon/core/canonical.py
"""
Property normalization and canonical JSON serialization.

Two-phase approach:
1. Normalize: Convert arbitrary caller values into the closed PropertyValue
   union (scalars, datetimes, OpaqueValue) - never raises
2. Serialize: Produce deterministic JSON per RFC 8785/JCS (rfc8785 package)
   for collector payloads and fingerprints

NOTE: Values that cannot be expressed as JSON are stringified into an
OpaqueValue rather than rejected, so one bad property never aborts the
whole event. Callables are the exception: they carry no data and are
dropped.
"""

from __future__ import annotations

import hashlib
import math
import re
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import rfc8785
import structlog

from beacon.contracts.events import OpaqueValue, PropertyValue

logger = structlog.get_logger(__name__)

# RFC 8785 serializes numbers as IEEE 754 doubles; larger integers lose precision
_MAX_SAFE_INTEGER = 2**53 - 1

_SURROGATES = re.compile("[\ud800-\udfff]")


class _Dropped:
    """Marker for a property removed during normalization."""


DROPPED = _Dropped()


def _to_json_compatible(obj: Any) -> Any:
    """Recursively convert a nested structure to JSON primitives.

    Raises:
        TypeError: If a value has no JSON representation
        ValueError: If a float is NaN or Infinity
    """
    if obj is None or isinstance(obj, str | bool):
        return obj
    if isinstance(obj, int):
        if abs(obj) > _MAX_SAFE_INTEGER:
            return str(obj)
        return obj
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise ValueError(f"Cannot serialize non-finite float: {obj}")
        return obj
    if isinstance(obj, datetime):
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=UTC)
        return obj.isoformat()
    if isinstance(obj, OpaqueValue):
        return obj.text
    if isinstance(obj, Mapping):
        return {str(key): _to_json_compatible(value) for key, value in obj.items()}
    if isinstance(obj, list | tuple):
        return [_to_json_compatible(item) for item in obj]
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonical_json(obj: Any) -> bytes:
    """Serialize to canonical JSON bytes (RFC 8785: sorted keys, no whitespace).

    Raises:
        TypeError: If obj contains a value with no JSON representation
        ValueError: If obj contains NaN or Infinity, or a string with no
            UTF-8 encoding (lone surrogates)
    """
    try:
        result: bytes = rfc8785.dumps(_to_json_compatible(obj))
    except rfc8785.CanonicalizationError as e:
        raise ValueError(f"Cannot canonicalize: {e}") from e
    return result


def stable_hash(obj: Any) -> str:
    """SHA-256 hex digest of the canonical JSON form of obj."""
    return hashlib.sha256(canonical_json(obj)).hexdigest()


def scrub_text(text: str) -> str:
    """Replace lone surrogates, which have no UTF-8 encoding, with U+FFFD."""
    return _SURROGATES.sub("\ufffd", text)


def normalize_property(value: Any) -> PropertyValue | _Dropped:
    """Map an arbitrary value into the PropertyValue union.

    - bool, finite float, safe-range int, datetime, None: unchanged
      (naive datetimes are taken as UTC)
    - str: unchanged apart from lone surrogates, which become U+FFFD
    - oversized int, non-finite float: OpaqueValue of its repr
    - list, tuple, mapping: OpaqueValue of its canonical JSON, or of its
      repr when it contains something unserializable
    - callables: DROPPED
    - anything else: OpaqueValue of str(value)
    """
    if isinstance(value, str):
        return scrub_text(value)
    if isinstance(value, OpaqueValue):
        return OpaqueValue(scrub_text(value.text))
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value if abs(value) <= _MAX_SAFE_INTEGER else OpaqueValue(str(value))
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return OpaqueValue(repr(value))
        return value
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if callable(value):
        return DROPPED
    if isinstance(value, Mapping | list | tuple):
        try:
            return OpaqueValue(canonical_json(value).decode("utf-8"))
        except (TypeError, ValueError):
            return OpaqueValue(scrub_text(repr(value)))
    return OpaqueValue(scrub_text(str(value)))


def normalize_properties(properties: Mapping[Any, Any] | None) -> dict[str, PropertyValue]:
    """Normalize a caller-supplied property bag.

    Keys are coerced to str. Dropped properties are logged and omitted.
    """
    if not properties:
        return {}
    normalized: dict[str, PropertyValue] = {}
    for key, value in properties.items():
        result = normalize_property(value)
        if isinstance(result, _Dropped):
            logger.debug("Dropped unserializable property", key=str(key), value_type=type(value).__name__)
            continue
        normalized[scrub_text(str(key))] = result
    return normalized


def is_json_serializable(value: Any) -> bool:
    """Whether value can be represented as JSON without stringification."""
    try:
        _to_json_compatible(value)
    except (TypeError, ValueError):
        return False
    return True
