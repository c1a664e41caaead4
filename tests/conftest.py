# tests/conftest.py
"""Shared test fixtures.

Fixtures build pipeline components from in-memory collaborators: an
InMemoryStore, a MockClock, ManualConnectivity and a FakeTransport. No
test touches the network.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

from __future__ import annotations

import os
from collections.abc import Iterator, Sequence
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from beacon.connectivity import ManualConnectivity
from beacon.core.clock import MockClock
from beacon.core.config import BeaconSettings
from beacon.pipeline.consent import ConsentStore
from beacon.pipeline.dispatcher import Dispatcher
from beacon.sinks.protocols import Sink, SinkContext
from beacon.storage.memory import InMemoryStore
from tests.fixtures.factories import DispatcherFactory, make_settings
from tests.fixtures.fakes import FakeTransport

# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def clock() -> MockClock:
    return MockClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def connectivity() -> ManualConnectivity:
    return ManualConnectivity(online=True)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def beacon_settings() -> BeaconSettings:
    return make_settings()


@pytest.fixture
def sink_context(
    store: InMemoryStore,
    transport: FakeTransport,
    connectivity: ManualConnectivity,
    clock: MockClock,
    beacon_settings: BeaconSettings,
) -> SinkContext:
    return SinkContext(
        store=store,
        transport=transport,
        connectivity=connectivity,
        clock=clock,
        settings=beacon_settings,
    )


@pytest.fixture
def consent(store: InMemoryStore, clock: MockClock) -> ConsentStore:
    return ConsentStore(store, version="1.0", clock=clock)


@pytest.fixture
def make_dispatcher(consent: ConsentStore, clock: MockClock) -> Iterator[DispatcherFactory]:
    """Build initialized Dispatchers over the given sinks; closed at teardown.

    Usage:
        dispatcher = make_dispatcher([sink], granted=True, privacy_mode=True)
    """
    created: list[Dispatcher] = []

    def _make(sinks: Sequence[Sink], *, granted: bool = True, **setting_overrides: Any) -> Dispatcher:
        if granted:
            consent.grant_all()
        dispatcher = Dispatcher(
            make_settings(**setting_overrides),
            consent,
            lambda: list(sinks),
            clock=clock,
        )
        dispatcher.initialize()
        created.append(dispatcher)
        return dispatcher

    yield _make
    for dispatcher in created:
        dispatcher.close()
