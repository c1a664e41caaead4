# src/beacon/factory.py
"""Wire the pipeline together from settings.

Usage:
    from beacon.core.config import load_settings
    from beacon.factory import create_analytics

    analytics = create_analytics(load_settings(Path("analytics.yaml")))
    analytics.dispatcher.track_event("app_opened")
    analytics.funnel.track_discovery(source="home")
    ...
    analytics.close()
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from beacon.connectivity import ConnectivityObserver, ManualConnectivity
from beacon.core.clock import Clock, SystemClock
from beacon.core.config import BeaconSettings
from beacon.pipeline.consent import ConsentStore
from beacon.pipeline.dispatcher import Dispatcher
from beacon.pipeline.funnel import FunnelTracker
from beacon.pipeline.validator import Validator
from beacon.sinks.factory import create_sinks
from beacon.sinks.protocols import SinkContext
from beacon.storage import create_store
from beacon.storage.protocols import DurableStore
from beacon.transport.http import HttpxTransport
from beacon.transport.protocols import Transport

logger = structlog.get_logger(__name__)


@dataclass
class Analytics:
    """The assembled pipeline. One instance per process, owned by app startup."""

    settings: BeaconSettings
    store: DurableStore
    transport: Transport
    connectivity: ConnectivityObserver
    clock: Clock
    consent: ConsentStore
    dispatcher: Dispatcher
    funnel: FunnelTracker
    _owned: list[Any] = field(default_factory=list, repr=False)

    def close(self) -> None:
        """Close the funnel and dispatcher, then collaborators this object created."""
        self.funnel.close()
        self.dispatcher.close()
        for resource in self._owned:
            try:
                resource.close()
            except Exception as e:
                logger.warning("Failed to close resource", resource=type(resource).__name__, error=str(e))
        self._owned.clear()


def create_analytics(
    settings: BeaconSettings,
    *,
    store: DurableStore | None = None,
    transport: Transport | None = None,
    connectivity: ConnectivityObserver | None = None,
    clock: Clock | None = None,
    sink_plugins: Iterable[Any] = (),
) -> Analytics:
    """Build and initialize the pipeline.

    Collaborators not supplied are created from settings and closed by
    Analytics.close().

    Raises:
        SinkConfigurationError: If a configured sink is unknown or misconfigured
    """
    owned: list[Any] = []
    if store is None:
        store = create_store(settings.storage)
        owned.append(store)
    if transport is None:
        transport = HttpxTransport(timeout=settings.transport.timeout_seconds, headers=settings.transport.headers)
        owned.append(transport)
    connectivity = connectivity or ManualConnectivity()
    clock = clock or SystemClock()

    context = SinkContext(store=store, transport=transport, connectivity=connectivity, clock=clock, settings=settings)
    consent = ConsentStore(store, version=settings.consent_version, clock=clock)
    dispatcher = Dispatcher(
        settings,
        consent,
        lambda: create_sinks(settings, context, sink_plugins=sink_plugins),
        validator=Validator(),
        clock=clock,
    )
    try:
        dispatcher.initialize()
    except Exception:
        for resource in owned:
            resource.close()
        raise
    funnel = FunnelTracker(dispatcher, store, consent)

    return Analytics(
        settings=settings,
        store=store,
        transport=transport,
        connectivity=connectivity,
        clock=clock,
        consent=consent,
        dispatcher=dispatcher,
        funnel=funnel,
        _owned=owned,
    )
