# src/beacon/pipeline/__init__.py
"""The analytics event pipeline.

Components, leaf to root:
- Validator: advisory name/property checks
- ConsentStore: persisted consent decision gating everything else
- DurableQueue: persisted retry queue used inside sinks
- Dispatcher: consent-gated, enriched fan-out to sinks
- FunnelTracker: stage counters built on the Dispatcher
"""

from beacon.pipeline.consent import ConsentStore
from beacon.pipeline.dispatcher import Dispatcher
from beacon.pipeline.error_tracking import ErrorTracker, error_fingerprint
from beacon.pipeline.funnel import FunnelTracker, clear_funnel_state, compute_funnel_metrics, load_funnel_state
from beacon.pipeline.queue import DurableQueue
from beacon.pipeline.validator import EVENT_SCHEMAS, EventSchema, Validator, validate_event_name

__all__ = [
    "EVENT_SCHEMAS",
    "ConsentStore",
    "Dispatcher",
    "DurableQueue",
    "ErrorTracker",
    "EventSchema",
    "FunnelTracker",
    "Validator",
    "clear_funnel_state",
    "compute_funnel_metrics",
    "error_fingerprint",
    "load_funnel_state",
    "validate_event_name",
]
