# src/beacon/contracts/defaults.py
"""Internal default values for the analytics pipeline.

INTERNAL_DEFAULTS holds constants hardcoded in runtime code that are NOT
exposed in BeaconSettings. They are documented here so there is a single
place to see what the pipeline actually uses.
"""

from typing import Final

INTERNAL_DEFAULTS: Final[dict[str, dict[str, int | float | bool | str]]] = {
    "validator": {
        # Names longer than this produce a warning, not an error
        "max_name_length": 40,
        # String property values longer than this produce a warning
        "max_string_length": 1000,
        # Calls per event name before "possible tracking loop" warnings
        "loop_threshold": 100,
    },
    "error_tracking": {
        # Identical error fingerprints inside this window are counted, not resent
        "dedup_window_ms": 60_000,
        # Suppressed counts kept for expired windows until the error recurs
        "max_carried_counts": 500,
    },
    "consent": {
        # Policy version; a persisted record with a different version forces re-prompt
        "version": "1.0",
    },
    "http_sink": {
        # Seconds to wait for a sink worker thread to exit on close()
        "shutdown_timeout": 5.0,
    },
}


def get_internal_default(subsystem: str, field: str) -> int | float | bool | str:
    """Get an internal default value.

    Raises:
        KeyError: If subsystem or field not found (a bug - documented
            internal defaults should always be present)
    """
    return INTERNAL_DEFAULTS[subsystem][field]
