# src/beacon/storage/keys.py
"""Namespaced keys for persisted analytics state.

Every key has exactly one owning component. Revocation deletes everything
under ANALYTICS_DATA_PREFIXES; the consent record itself is kept so the
opt-out decision survives.
"""

CONSENT_KEY = "analytics:consent"
FUNNEL_KEY = "analytics:funnel"

QUEUE_PREFIX = "analytics:queue:"
BUFFER_PREFIX = "analytics:buffer:"
STATS_PREFIX = "analytics:stats:"

ANALYTICS_DATA_PREFIXES: tuple[str, ...] = (QUEUE_PREFIX, BUFFER_PREFIX, STATS_PREFIX, FUNNEL_KEY)


def queue_key(sink_name: str) -> str:
    return f"{QUEUE_PREFIX}{sink_name}"


def buffer_key(sink_name: str) -> str:
    return f"{BUFFER_PREFIX}{sink_name}"


def stats_key(sink_name: str) -> str:
    return f"{STATS_PREFIX}{sink_name}"
