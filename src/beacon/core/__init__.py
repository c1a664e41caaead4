# src/beacon/core/__init__.py
"""Core infrastructure: canonical JSON, clock, configuration, logging, serialization."""

from beacon.core.canonical import canonical_json, normalize_properties, normalize_property, stable_hash
from beacon.core.clock import Clock, MockClock, SystemClock
from beacon.core.config import (
    BeaconSettings,
    ProviderSettings,
    QueueSettings,
    StorageSettings,
    TransportSettings,
    load_settings,
)
from beacon.core.logging import configure_logging

__all__ = [
    "BeaconSettings",
    "Clock",
    "MockClock",
    "ProviderSettings",
    "QueueSettings",
    "StorageSettings",
    "SystemClock",
    "TransportSettings",
    "canonical_json",
    "configure_logging",
    "load_settings",
    "normalize_properties",
    "normalize_property",
    "stable_hash",
]
