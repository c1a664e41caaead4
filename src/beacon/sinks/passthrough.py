# src/beacon/sinks/passthrough.py
"""Passthrough sink: accepts every call and delivers nothing.

Stands in for a third-party analytics SDK that is not configured in this
build, so the rest of the pipeline behaves exactly as it would with the
SDK present. Calls are counted for diagnostics.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from beacon.contracts.events import Event, PropertyValue, Transaction
    from beacon.sinks.protocols import SinkContext

logger = structlog.get_logger(__name__)


class PassthroughSink:
    """No-op sink.

    Configuration options:
        label: Name of the SDK this sink stands in for (logging only)
    """

    _name = "passthrough"

    def __init__(self) -> None:
        self.label = self._name
        self.calls: Counter[str] = Counter()

    @property
    def name(self) -> str:
        return self._name

    def configure(self, config: Mapping[str, Any], context: SinkContext) -> None:
        self.label = str(config.get("label", self._name))

    def initialize(self) -> None:
        logger.info("Passthrough sink active; events are not delivered", label=self.label)

    def track(self, event: Event) -> None:
        self.calls["track"] += 1

    def track_screen(self, event: Event) -> None:
        self.calls["track_screen"] += 1

    def set_user_id(self, user_id: str | None) -> None:
        self.calls["set_user_id"] += 1

    def set_user_properties(self, properties: Mapping[str, PropertyValue]) -> None:
        self.calls["set_user_properties"] += 1

    def track_purchase(self, transaction: Transaction, event: Event) -> None:
        self.calls["track_purchase"] += 1

    def track_error(self, event: Event) -> None:
        self.calls["track_error"] += 1

    def flush(self) -> bool:
        return True

    def purge(self) -> None:
        self.calls.clear()

    def close(self) -> None:
        pass
