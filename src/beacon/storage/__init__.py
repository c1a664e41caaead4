# src/beacon/storage/__init__.py
"""Durable key-value storage for persisted analytics state.

Usage:
    from beacon.storage import create_store

    store = create_store(settings.storage)
"""

from beacon.core.config import StorageSettings
from beacon.storage.keys import (
    ANALYTICS_DATA_PREFIXES,
    BUFFER_PREFIX,
    CONSENT_KEY,
    FUNNEL_KEY,
    QUEUE_PREFIX,
    STATS_PREFIX,
    buffer_key,
    queue_key,
    stats_key,
)
from beacon.storage.memory import InMemoryStore
from beacon.storage.protocols import DurableStore
from beacon.storage.sqlite import SQLiteStore


def create_store(settings: StorageSettings) -> DurableStore:
    """Build the store selected by configuration."""
    if settings.backend == "sqlite":
        return SQLiteStore(settings.url)
    return InMemoryStore()


__all__ = [
    "ANALYTICS_DATA_PREFIXES",
    "BUFFER_PREFIX",
    "CONSENT_KEY",
    "FUNNEL_KEY",
    "QUEUE_PREFIX",
    "STATS_PREFIX",
    "DurableStore",
    "InMemoryStore",
    "SQLiteStore",
    "buffer_key",
    "create_store",
    "queue_key",
    "stats_key",
]
