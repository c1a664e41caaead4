# src/beacon/sinks/console.py
"""Console sink for analytics events.

Writes events to stdout or stderr in JSON or human-readable form.
Primarily used for local debugging of instrumentation.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal, TextIO, TypeGuard

import structlog

from beacon.sinks.errors import SinkConfigurationError

if TYPE_CHECKING:
    from beacon.contracts.events import Event, PropertyValue, Transaction
    from beacon.sinks.protocols import SinkContext

logger = structlog.get_logger(__name__)


def _is_valid_format(v: str) -> TypeGuard[Literal["json", "pretty"]]:
    return v in {"json", "pretty"}


def _is_valid_output(v: str) -> TypeGuard[Literal["stdout", "stderr"]]:
    return v in {"stdout", "stderr"}


class ConsoleSink:
    """Print events for debugging.

    Configuration options:
        format: "json" (default) or "pretty"
        output: "stdout" (default) or "stderr"

    Example configuration:
        providers:
          - name: console
            config:
              format: pretty
              output: stderr
    """

    _name = "console"

    _VALID_FORMATS: frozenset[str] = frozenset({"json", "pretty"})
    _VALID_OUTPUTS: frozenset[str] = frozenset({"stdout", "stderr"})

    def __init__(self) -> None:
        self._format: Literal["json", "pretty"] = "json"
        self._output: Literal["stdout", "stderr"] = "stdout"
        self._stream: TextIO = sys.stdout
        self._user_id: str | None = None
        self.lines_written = 0

    @property
    def name(self) -> str:
        return self._name

    def configure(self, config: Mapping[str, Any], context: SinkContext) -> None:
        """Validate format and output options.

        Raises:
            SinkConfigurationError: If configuration values are invalid
        """
        format_value = config.get("format", "json")
        if not isinstance(format_value, str):
            raise SinkConfigurationError(
                self._name,
                f"'format' must be a string, got {type(format_value).__name__}",
            )
        if _is_valid_format(format_value):
            self._format = format_value
        else:
            raise SinkConfigurationError(
                self._name,
                f"Invalid format '{format_value}'. Must be one of: {', '.join(sorted(self._VALID_FORMATS))}",
            )

        output_value = config.get("output", "stdout")
        if not isinstance(output_value, str):
            raise SinkConfigurationError(
                self._name,
                f"'output' must be a string, got {type(output_value).__name__}",
            )
        if _is_valid_output(output_value):
            self._output = output_value
        else:
            raise SinkConfigurationError(
                self._name,
                f"Invalid output '{output_value}'. Must be one of: {', '.join(sorted(self._VALID_OUTPUTS))}",
            )
        self._stream = sys.stdout if self._output == "stdout" else sys.stderr

        logger.debug("Console sink configured", format=self._format, output=self._output)

    def initialize(self) -> None:
        pass

    def track(self, event: Event) -> None:
        try:
            if self._format == "json":
                line = json.dumps(event.to_wire(), sort_keys=True)
            else:
                line = self._format_pretty(event)
            print(line, file=self._stream)
            self.lines_written += 1
        except Exception as e:
            logger.warning("Failed to write event to console", sink=self._name, event_name=event.name, error=str(e))

    def _format_pretty(self, event: Event) -> str:
        """Format: [TIMESTAMP] name: session (key=value, ...)"""
        timestamp = datetime.fromtimestamp(event.timestamp_ms / 1000, tz=UTC).isoformat()
        wire = event.to_wire()["properties"]
        details = ", ".join(f"{key}={wire[key]}" for key in sorted(wire) if wire[key] is not None)
        user = f" user={event.user_id}" if event.user_id else ""
        if details:
            return f"[{timestamp}] {event.name}: {event.session_id}{user} ({details})"
        return f"[{timestamp}] {event.name}: {event.session_id}{user}"

    def track_screen(self, event: Event) -> None:
        self.track(event)

    def set_user_id(self, user_id: str | None) -> None:
        self._user_id = user_id

    def set_user_properties(self, properties: Mapping[str, PropertyValue]) -> None:
        pass

    def track_purchase(self, transaction: Transaction, event: Event) -> None:
        pass

    def track_error(self, event: Event) -> None:
        self.track(event)

    def flush(self) -> bool:
        try:
            self._stream.flush()
        except Exception as e:
            logger.warning("Failed to flush console stream", sink=self._name, error=str(e))
            return False
        return True

    def purge(self) -> None:
        pass

    def close(self) -> None:
        """No-op: the console sink does not own stdout/stderr."""
        pass
