# tests/fixtures/factories.py
"""Builders for settings and pipeline components used across tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from beacon.core.config import BeaconSettings, ProviderSettings
from beacon.pipeline.dispatcher import Dispatcher

DispatcherFactory = Callable[..., Dispatcher]


def make_settings(**overrides: Any) -> BeaconSettings:
    """BeaconSettings with test-friendly defaults (no providers, memory storage)."""
    return BeaconSettings(**overrides)


def http_provider(endpoint: str = "https://collector.example.com/batch", **options: Any) -> ProviderSettings:
    """Provider entry for the buffered HTTP sink with worker threads off."""
    return ProviderSettings(name="http", config={"endpoint": endpoint, "background": False, **options})
