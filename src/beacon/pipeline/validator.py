# src/beacon/pipeline/validator.py
"""Advisory validation of event names and properties.

Validation never blocks delivery: the Dispatcher logs the result and
forwards the event anyway. Only an empty name is treated as a hard skip,
and that decision belongs to the Dispatcher.

Rules, in order:
- name: non-empty, no whitespace, only [A-Za-z0-9_], lower-case
  recommended, at most 40 characters recommended
- known schemas: required keys present, unknown keys warned
- values: JSON-serializable, strings up to 1000 characters recommended,
  nested objects warned
- per-name call counter: warns on a possible tracking loop
"""

from __future__ import annotations

import re
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from beacon.contracts.defaults import get_internal_default
from beacon.contracts.enums import FunnelStage
from beacon.contracts.events import OpaqueValue
from beacon.contracts.results import ValidationResult
from beacon.core.canonical import is_json_serializable

_WHITESPACE = re.compile(r"\s")
_ALLOWED_CHARACTERS = re.compile(r"^[A-Za-z0-9_]+$")


@dataclass(frozen=True, slots=True)
class EventSchema:
    """Known property keys for an event name."""

    required: frozenset[str] = frozenset()
    optional: frozenset[str] = frozenset()

    @classmethod
    def of(cls, required: tuple[str, ...] = (), optional: tuple[str, ...] = ()) -> EventSchema:
        return cls(required=frozenset(required), optional=frozenset(optional))


_FUNNEL_SCHEMA = EventSchema.of(required=("funnel_stage",), optional=("stage_name", "item_id", "value", "source"))

EVENT_SCHEMAS: dict[str, EventSchema] = {
    "screen_view": EventSchema.of(required=("screen_name",), optional=("previous_screen", "screen_class")),
    "screen_exited": EventSchema.of(required=("screen_name", "duration_ms")),
    "purchase": EventSchema.of(
        required=("transaction_id", "amount", "currency"),
        optional=("items", "item_count", "coupon"),
    ),
    "error": EventSchema.of(
        required=("error_type", "message", "fingerprint", "severity"),
        optional=("context", "occurrences", "stack"),
    ),
    "session_started": EventSchema.of(optional=("started_at_ms",)),
    "user_properties_updated": EventSchema.of(optional=("property_count", "property_keys")),
    "user_identified": EventSchema.of(optional=("has_user_id",)),
    **{f"funnel_{stage.value}": _FUNNEL_SCHEMA for stage in FunnelStage},
}


def validate_event_name(name: str) -> ValidationResult:
    """Check an event name against the naming rules."""
    errors: list[str] = []
    warnings: list[str] = []

    if not name:
        return ValidationResult(valid=False, errors=("Event name must not be empty",))

    max_length = int(get_internal_default("validator", "max_name_length"))
    if len(name) > max_length:
        warnings.append(f"Event name exceeds {max_length} characters ({len(name)})")

    if _WHITESPACE.search(name):
        errors.append("Event name must not contain whitespace")
    elif not _ALLOWED_CHARACTERS.match(name):
        errors.append("Event name may only contain letters, digits and underscores")
    elif name != name.lower():
        warnings.append(f"Event name should be lower-case: use '{name.lower()}'")

    return ValidationResult(valid=not errors, errors=tuple(errors), warnings=tuple(warnings))


class Validator:
    """Event validator with a per-instance call counter.

    Thread Safety:
        validate_event() may be called from any thread; the counter is
        protected by a lock.

    Example:
        validator = Validator()
        result = validator.validate_event("screen_view", {"screen_name": "home"})
        assert result.valid
    """

    def __init__(
        self,
        schemas: Mapping[str, EventSchema] | None = None,
        *,
        loop_threshold: int | None = None,
    ) -> None:
        self._schemas = dict(EVENT_SCHEMAS if schemas is None else schemas)
        self._loop_threshold = (
            loop_threshold if loop_threshold is not None else int(get_internal_default("validator", "loop_threshold"))
        )
        self._max_string_length = int(get_internal_default("validator", "max_string_length"))
        self._call_counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def validate_event(self, name: str, properties: Mapping[str, Any] | None = None) -> ValidationResult:
        name_result = validate_event_name(name)
        errors = list(name_result.errors)
        warnings = list(name_result.warnings)
        if not name:
            return name_result

        properties = properties or {}

        schema = self._schemas.get(name)
        if schema is not None:
            for key in sorted(schema.required):
                if key not in properties:
                    errors.append(f"Missing required property '{key}' for event '{name}'")
            known = schema.required | schema.optional
            for key in properties:
                if key not in known:
                    warnings.append(f"Unknown property '{key}' for event '{name}'")

        for key, value in properties.items():
            errors.extend(self._check_value_errors(key, value))
            warnings.extend(self._check_value_warnings(key, value))

        count = self._count_call(name)
        if count > self._loop_threshold:
            warnings.append(f"Event '{name}' tracked {count} times: possible tracking loop")

        return ValidationResult(valid=not errors, errors=tuple(errors), warnings=tuple(warnings))

    def _check_value_errors(self, key: str, value: Any) -> list[str]:
        if callable(value):
            return [f"Property '{key}' is a function and cannot be serialized"]
        if isinstance(value, OpaqueValue):
            return []
        if not is_json_serializable(value):
            return [f"Property '{key}' of type {type(value).__name__} is not JSON-serializable"]
        return []

    def _check_value_warnings(self, key: str, value: Any) -> list[str]:
        if isinstance(value, str) and len(value) > self._max_string_length:
            return [f"Property '{key}' exceeds {self._max_string_length} characters ({len(value)})"]
        if isinstance(value, Mapping):
            return [f"Property '{key}' is a nested object; some sinks may not support it"]
        return []

    def _count_call(self, name: str) -> int:
        with self._lock:
            count = self._call_counts.get(name, 0) + 1
            self._call_counts[name] = count
            return count

    def call_count(self, name: str) -> int:
        with self._lock:
            return self._call_counts.get(name, 0)

    def reset(self) -> None:
        """Clear the per-name call counters."""
        with self._lock:
            self._call_counts.clear()
