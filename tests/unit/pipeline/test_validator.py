# tests/unit/pipeline/test_validator.py
"""Tests for event name and property validation."""

from __future__ import annotations

import pytest

from beacon.contracts.events import OpaqueValue
from beacon.pipeline.validator import EVENT_SCHEMAS, EventSchema, Validator, validate_event_name


class TestValidateEventName:
    def test_simple_name_is_clean(self) -> None:
        result = validate_event_name("button_clicked")

        assert result.valid
        assert result.errors == ()
        assert result.warnings == ()

    def test_empty_name_is_an_error(self) -> None:
        result = validate_event_name("")

        assert not result.valid
        assert "empty" in result.errors[0]

    @pytest.mark.parametrize("name", ["button clicked", "tab\tname", "line\nbreak"])
    def test_whitespace_is_an_error(self, name: str) -> None:
        result = validate_event_name(name)

        assert not result.valid
        assert any("whitespace" in error for error in result.errors)

    @pytest.mark.parametrize("name", ["button-clicked", "price$", "café", "a.b"])
    def test_disallowed_characters_are_errors(self, name: str) -> None:
        result = validate_event_name(name)

        assert not result.valid
        assert any("letters, digits and underscores" in error for error in result.errors)

    def test_mixed_case_is_only_a_warning(self) -> None:
        result = validate_event_name("ButtonClicked")

        assert result.valid
        assert "buttonclicked" in result.warnings[0]

    def test_long_name_is_only_a_warning(self) -> None:
        result = validate_event_name("a" * 41)

        assert result.valid
        assert "exceeds 40 characters" in result.warnings[0]

    def test_forty_characters_is_fine(self) -> None:
        assert validate_event_name("a" * 40).warnings == ()


class TestValidator:
    def test_known_schema_missing_required_property(self) -> None:
        result = Validator().validate_event("screen_view", {})

        assert not result.valid
        assert "Missing required property 'screen_name'" in result.errors[0]

    def test_known_schema_unknown_property_warns(self) -> None:
        result = Validator().validate_event("screen_view", {"screen_name": "home", "colour": "red"})

        assert result.valid
        assert any("Unknown property 'colour'" in warning for warning in result.warnings)

    def test_unknown_event_names_skip_schema_checks(self) -> None:
        assert Validator().validate_event("custom_thing", {"anything": 1}).valid

    def test_function_values_are_errors(self) -> None:
        result = Validator().validate_event("custom", {"callback": print})

        assert not result.valid
        assert "is a function" in result.errors[0]

    def test_unserializable_values_are_errors(self) -> None:
        result = Validator().validate_event("custom", {"thing": object()})

        assert not result.valid
        assert "not JSON-serializable" in result.errors[0]

    def test_opaque_values_are_accepted(self) -> None:
        assert Validator().validate_event("custom", {"blob": OpaqueValue("x")}).valid

    def test_long_strings_warn(self) -> None:
        result = Validator().validate_event("custom", {"text": "x" * 1001})

        assert result.valid
        assert "exceeds 1000 characters" in result.warnings[0]

    def test_nested_objects_warn(self) -> None:
        result = Validator().validate_event("custom", {"nested": {"a": 1}})

        assert result.valid
        assert "nested object" in result.warnings[0]

    def test_loop_detection_warns_past_threshold(self) -> None:
        validator = Validator(loop_threshold=3)
        results = [validator.validate_event("tap") for _ in range(4)]

        assert all("possible tracking loop" not in " ".join(r.warnings) for r in results[:3])
        assert "possible tracking loop" in results[3].warnings[-1]
        assert validator.call_count("tap") == 4

    def test_reset_clears_counters(self) -> None:
        validator = Validator()
        validator.validate_event("tap")
        validator.reset()

        assert validator.call_count("tap") == 0

    def test_custom_schemas_replace_defaults(self) -> None:
        validator = Validator({"signup": EventSchema.of(required=("method",))})

        assert not validator.validate_event("signup", {}).valid
        assert validator.validate_event("screen_view", {}).valid

    def test_funnel_events_have_schemas(self) -> None:
        assert "funnel_discovery" in EVENT_SCHEMAS
        assert Validator().validate_event("funnel_view", {"funnel_stage": 2, "stage_name": "view"}).valid
