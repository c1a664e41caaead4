# src/beacon/sinks/protocols.py
"""Protocol definitions for analytics sinks.

A sink is one delivery target: a custom HTTP collector, a third-party
analytics SDK, a console for local debugging.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from beacon.connectivity import ConnectivityObserver
    from beacon.contracts.events import Event, PropertyValue, Transaction
    from beacon.core.clock import Clock
    from beacon.core.config import BeaconSettings
    from beacon.storage.protocols import DurableStore
    from beacon.transport.protocols import Transport


@dataclass(frozen=True, slots=True)
class SinkContext:
    """Shared collaborators handed to every sink at configure time."""

    store: DurableStore
    transport: Transport
    connectivity: ConnectivityObserver
    clock: Clock
    settings: BeaconSettings


@runtime_checkable
class Sink(Protocol):
    """Protocol for analytics sinks.

    Lifecycle:
        1. Discovery: beacon_get_sinks hook returns sink classes
        2. Instantiation: create_sinks() creates one instance per provider
        3. Configuration: configure() called with provider config
        4. Initialization: initialize() restores persisted state, starts workers
        5. Operation: track*() / set_*() called by the Dispatcher
        6. Shutdown: flush() then close()

    Error handling:
        - configure() and initialize() MUST raise SinkConfigurationError on
          invalid config
        - track*() and set_*() MAY raise; the Dispatcher isolates failures
          per sink, but implementations should not rely on it
        - flush() reports failure through its return value
        - close() MUST be idempotent

    Thread Safety:
        Tracking calls arrive on the host's threads. Implementations that
        deliver in the background own their worker threads.
    """

    @property
    def name(self) -> str:
        """Sink name matching ProviderSettings.name."""
        ...

    def configure(self, config: Mapping[str, Any], context: SinkContext) -> None:
        ...

    def initialize(self) -> None:
        ...

    def track(self, event: Event) -> None:
        ...

    def track_screen(self, event: Event) -> None:
        """Receive a screen_view event (sinks with screen semantics may map it)."""
        ...

    def set_user_id(self, user_id: str | None) -> None:
        ...

    def set_user_properties(self, properties: Mapping[str, PropertyValue]) -> None:
        ...

    def track_purchase(self, transaction: Transaction, event: Event) -> None:
        """Purchase-specific API.

        The Dispatcher also calls track() with the equivalent generic event,
        so sinks without purchase semantics can ignore this.
        """
        ...

    def track_error(self, event: Event) -> None:
        """Receive an error event. Called regardless of analytics consent."""
        ...

    def flush(self) -> bool:
        """Deliver buffered events. Returns True when nothing is left undelivered."""
        ...

    def purge(self) -> None:
        """Discard all buffered and persisted events (consent revocation)."""
        ...

    def close(self) -> None:
        ...
