# src/beacon/pipeline/funnel.py
"""Conversion funnel built on the Dispatcher's public tracking calls.

Stage counts are monotonic counters kept at two scopes: lifetime
(persisted) and current session. Every stage call updates both counters
and emits a ``funnel_<stage>`` event carrying the stage ordinal; the
counters and the event are independent records of the same occurrence.
reset_funnel() is the only way counts go down.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

import structlog

from beacon.contracts.consent import ConsentRecord
from beacon.contracts.enums import FunnelStage
from beacon.contracts.results import FunnelSnapshot
from beacon.core.serialization import SerializationError, dumps, loads
from beacon.storage.keys import FUNNEL_KEY
from beacon.storage.protocols import DurableStore

if TYPE_CHECKING:
    from beacon.pipeline.consent import ConsentStore
    from beacon.pipeline.dispatcher import Dispatcher

logger = structlog.get_logger(__name__)


def rate(numerator: int, denominator: int) -> float:
    """numerator / denominator * 100, or 0.0 when the denominator is 0."""
    if denominator == 0:
        return 0.0
    return numerator / denominator * 100


def conversion_rate(counts: Sequence[tuple[str, int]]) -> float:
    """Last stage count as a percentage of the first."""
    if not counts:
        return 0.0
    return rate(counts[-1][1], counts[0][1])


def drop_off_rates(counts: Sequence[tuple[str, int]]) -> dict[str, float]:
    """Percentage lost between each adjacent stage pair, keyed "<a>_to_<b>".

    A later stage with more occurrences than the one before it yields a
    negative value; it is reported as computed.
    """
    return {
        f"{first}_to_{second}": rate(first_count - second_count, first_count)
        for (first, first_count), (second, second_count) in zip(counts, counts[1:], strict=False)
    }


def compute_funnel_metrics(
    counts: Mapping[FunnelStage, int],
    session_counts: Mapping[FunnelStage, int] | None = None,
) -> FunnelSnapshot:
    """Derive conversion and drop-off rates. Pure; missing stages count as 0."""
    ordered = [(stage.value, int(counts.get(stage, 0))) for stage in FunnelStage]
    session_source = session_counts or {}
    session_ordered = [(stage.value, int(session_source.get(stage, 0))) for stage in FunnelStage]
    return FunnelSnapshot(
        counts={FunnelStage(name): count for name, count in ordered},
        session_counts={FunnelStage(name): count for name, count in session_ordered},
        conversion_rate=conversion_rate(ordered),
        session_conversion_rate=conversion_rate(session_ordered),
        drop_off_rates=drop_off_rates(ordered),
    )


def _zero_counts() -> dict[FunnelStage, int]:
    return {stage: 0 for stage in FunnelStage}


def _parse_counts(raw: Any) -> dict[FunnelStage, int]:
    if not isinstance(raw, Mapping):
        raise SerializationError(f"funnel counts must be a mapping, got {type(raw).__name__}")
    counts = _zero_counts()
    for key, value in raw.items():
        try:
            stage = FunnelStage(key)
        except ValueError:
            # Stage removed in a newer release
            continue
        if type(value) is not int or value < 0:
            raise SerializationError(f"funnel count for {key!r} must be a non-negative integer")
        counts[stage] = value
    return counts


def _read_persisted(store: DurableStore) -> tuple[str | None, dict[FunnelStage, int], dict[FunnelStage, int]]:
    """Return (session_id, lifetime, session) from the store; zeros when absent or corrupt."""
    try:
        raw = store.get(FUNNEL_KEY)
    except Exception as e:
        logger.error("Failed to read funnel state", error=str(e))
        return None, _zero_counts(), _zero_counts()
    if raw is None:
        return None, _zero_counts(), _zero_counts()
    try:
        data = loads(raw)
        if not isinstance(data, Mapping):
            raise SerializationError("funnel state must be a mapping")
        session_id = data.get("session_id")
        return (
            str(session_id) if session_id is not None else None,
            _parse_counts(data.get("lifetime", {})),
            _parse_counts(data.get("session", {})),
        )
    except SerializationError as e:
        logger.warning("Discarding corrupt funnel state", error=str(e))
        return None, _zero_counts(), _zero_counts()


def load_funnel_state(store: DurableStore) -> FunnelSnapshot:
    """Snapshot of persisted funnel state without a live Dispatcher."""
    _, lifetime, session = _read_persisted(store)
    return compute_funnel_metrics(lifetime, session)


def clear_funnel_state(store: DurableStore) -> None:
    """Delete persisted funnel counters. Store errors propagate."""
    store.delete(FUNNEL_KEY)


class FunnelTracker:
    """Stage counters plus funnel events.

    Stage calls are skipped entirely while the Dispatcher is disabled, so
    counters never record behavior the user has not consented to.

    Example:
        funnel = FunnelTracker(dispatcher, store, consent)
        funnel.track_discovery(source="search")
        funnel.track_view(item_id="sku-1")
        snapshot = funnel.get_funnel_state()
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        store: DurableStore,
        consent: ConsentStore | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._store = store
        self._lock = threading.Lock()

        persisted_session, lifetime, session = _read_persisted(store)
        self._lifetime = lifetime
        # Session counts only carry over within the same session
        self._session = session if persisted_session == dispatcher.session_id else _zero_counts()

        self._remove_listener = consent.add_listener(self._on_consent_change) if consent is not None else None

    def track_stage(self, stage: FunnelStage | str, properties: Mapping[str, Any] | None = None) -> bool:
        """Count a stage occurrence and emit its event.

        Returns:
            True if recorded, False when tracking is disabled
        """
        try:
            stage = FunnelStage(stage)
            if not self._dispatcher.is_enabled:
                logger.debug("Funnel stage skipped while tracking is disabled", stage=stage.value)
                return False
            with self._lock:
                self._lifetime[stage] += 1
                self._session[stage] += 1
                self._persist_locked()
            event_properties: dict[str, Any] = dict(properties or {})
            event_properties["funnel_stage"] = stage.ordinal
            event_properties["stage_name"] = stage.value
            self._dispatcher.track_event(f"funnel_{stage.value}", event_properties)
            return True
        except Exception as e:
            logger.error("Funnel tracking failed", stage=str(stage), error=str(e))
            return False

    def track_discovery(self, **properties: Any) -> bool:
        return self.track_stage(FunnelStage.DISCOVERY, properties)

    def track_view(self, **properties: Any) -> bool:
        return self.track_stage(FunnelStage.VIEW, properties)

    def track_add_to_cart(self, **properties: Any) -> bool:
        return self.track_stage(FunnelStage.ADD_TO_CART, properties)

    def track_begin_checkout(self, **properties: Any) -> bool:
        return self.track_stage(FunnelStage.BEGIN_CHECKOUT, properties)

    def track_payment(self, **properties: Any) -> bool:
        return self.track_stage(FunnelStage.PAYMENT, properties)

    def track_complete(self, **properties: Any) -> bool:
        return self.track_stage(FunnelStage.COMPLETE, properties)

    def get_funnel_state(self) -> FunnelSnapshot:
        with self._lock:
            return compute_funnel_metrics(dict(self._lifetime), dict(self._session))

    def reset_funnel(self) -> None:
        """Clear lifetime and session counters, in memory and persisted."""
        with self._lock:
            self._lifetime = _zero_counts()
            self._session = _zero_counts()
            try:
                clear_funnel_state(self._store)
            except Exception as e:
                logger.error("Failed to delete funnel state", error=str(e))
        logger.info("Funnel reset")

    def close(self) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None

    def _persist_locked(self) -> None:
        data = {
            "session_id": self._dispatcher.session_id,
            "lifetime": {stage.value: count for stage, count in self._lifetime.items()},
            "session": {stage.value: count for stage, count in self._session.items()},
        }
        try:
            self._store.set(FUNNEL_KEY, dumps(data))
        except Exception as e:
            logger.error("Failed to persist funnel state", error=str(e))

    def _on_consent_change(self, record: ConsentRecord) -> None:
        if not record.granted:
            # Persisted copy is deleted by the consent store
            with self._lock:
                self._lifetime = _zero_counts()
                self._session = _zero_counts()
