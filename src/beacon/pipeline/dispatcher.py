# src/beacon/pipeline/dispatcher.py
"""Dispatcher: the single entry point for tracking calls.

The Dispatcher:
1. Gates every behavioral call on analytics consent
2. Validates names and properties (advisory; only an empty name is skipped)
3. Enriches events with session, user, platform and timestamp context
4. Fans each event out to every sink with per-sink failure isolation

Design principles:
- Tracking methods never raise into host code and never touch the network
- One sink's failure never prevents delivery to another sink
- Errors bypass the consent gate; they are operational, not behavioral
- Revoking consent purges every sink (destructive, not just suppressive)

State machine:
    UNINITIALIZED -> ENABLED   (analytics consent present at initialize)
    UNINITIALIZED -> DISABLED  (consent absent or revoked)
    ENABLED <-> DISABLED       (consent changes at any time)
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

import structlog

from beacon.contracts.consent import ConsentRecord
from beacon.contracts.enums import ConsentCategory, DispatcherState, ErrorSeverity
from beacon.contracts.events import Event, SessionContext, Transaction
from beacon.core.canonical import normalize_properties, scrub_text
from beacon.core.clock import Clock, SystemClock
from beacon.core.config import BeaconSettings
from beacon.core.identifiers import new_event_id, new_session_id
from beacon.pipeline.consent import ConsentStore
from beacon.pipeline.error_tracking import ErrorTracker
from beacon.pipeline.validator import Validator

if TYPE_CHECKING:
    from beacon.sinks.protocols import Sink

logger = structlog.get_logger(__name__)

SinkFactory = Callable[[], Sequence["Sink"]]
_SinkCall = Callable[["Sink", Event], None]


def _track(sink: Sink, event: Event) -> None:
    sink.track(event)


def _track_screen(sink: Sink, event: Event) -> None:
    sink.track_screen(event)


def _track_error(sink: Sink, event: Event) -> None:
    sink.track_error(event)


class Dispatcher:
    """Consent-gated, validated, enriched fan-out of analytics events.

    Thread Safety:
        Tracking methods may be called from any thread. Session and
        counters are guarded by an internal lock; sinks are responsible
        for their own thread safety.

    Example:
        dispatcher = Dispatcher(settings, consent, lambda: create_sinks(settings, context))
        dispatcher.initialize()
        dispatcher.track_event("button_clicked", {"button": "checkout"})
        dispatcher.flush()
        dispatcher.close()
    """

    def __init__(
        self,
        settings: BeaconSettings,
        consent: ConsentStore,
        sink_factory: SinkFactory,
        *,
        validator: Validator | None = None,
        clock: Clock | None = None,
        error_tracker: ErrorTracker | None = None,
    ) -> None:
        self._settings = settings
        self._consent = consent
        self._sink_factory = sink_factory
        self._validator = validator or Validator()
        self._clock = clock or SystemClock()
        self._error_tracker = error_tracker or ErrorTracker(self._clock)

        self._state = DispatcherState.UNINITIALIZED
        self._session = SessionContext(session_id=new_session_id(), started_at_ms=self._clock.now_ms())
        self._sinks: list[Sink] = []
        self._current_screen: tuple[str, float] | None = None
        self._session_started = False
        self._closed = False
        self._remove_consent_listener: Callable[[], None] | None = None
        self._lock = threading.RLock()

        # Health metrics
        self._events_forwarded = 0
        self._events_suppressed = 0
        self._events_invalid = 0
        self._sink_failures: dict[str, int] = {}

    # -- lifecycle ---------------------------------------------------------

    def initialize(self) -> None:
        """Load consent, build and initialize sinks, and start the session.

        Sinks are built whenever analytics is enabled in settings, so error
        tracking works before consent is given; behavioral events still
        require analytics consent.

        Raises:
            SinkConfigurationError: If a sink cannot be configured or initialized
        """
        with self._lock:
            if self._state is not DispatcherState.UNINITIALIZED:
                logger.debug("Dispatcher already initialized", state=self._state.value)
                return

        self._consent.load()

        sinks: list[Sink] = []
        if self._settings.enabled:
            sinks = list(self._sink_factory())
            initialized: list[Sink] = []
            try:
                for sink in sinks:
                    sink.initialize()
                    initialized.append(sink)
            except Exception:
                for sink in initialized:
                    self._close_sink(sink)
                raise

        enabled = self._analytics_allowed(self._consent.get_consent())
        with self._lock:
            self._sinks = sinks
            self._state = DispatcherState.ENABLED if enabled else DispatcherState.DISABLED
        self._remove_consent_listener = self._consent.add_listener(self._on_consent_change)

        logger.info(
            "Dispatcher initialized",
            state=self._state.value,
            session_id=self._session.session_id,
            sinks=[sink.name for sink in sinks],
            consent_required=self._consent.is_consent_required(),
        )
        if enabled:
            self._forward_identity()
            self._emit_session_started()

    def close(self) -> None:
        """End the current screen, then flush and close every sink. Idempotent."""
        if self._closed:
            return
        self.end_screen()
        if self._remove_consent_listener is not None:
            self._remove_consent_listener()
            self._remove_consent_listener = None
        self._closed = True
        with self._lock:
            sinks = list(self._sinks)
        logger.info("Dispatcher closing", **self.health_metrics)
        for sink in sinks:
            self._close_sink(sink)

    def _close_sink(self, sink: Sink) -> None:
        try:
            sink.close()
        except Exception as e:
            logger.warning("Sink close failed", sink=sink.name, error=str(e))

    # -- consent -----------------------------------------------------------

    def _analytics_allowed(self, record: ConsentRecord) -> bool:
        return self._settings.enabled and record.categories.get(ConsentCategory.ANALYTICS)

    def set_consent(self, granted: bool) -> ConsentRecord:
        """Grant or revoke every mutable category.

        Revocation purges all sinks and deletes persisted analytics data.
        """
        if granted:
            return self._consent.grant_all()
        return self._consent.revoke_all()

    def get_consent(self) -> ConsentRecord:
        return self._consent.get_consent()

    def _on_consent_change(self, record: ConsentRecord) -> None:
        enabled = self._analytics_allowed(record)
        with self._lock:
            if self._closed or self._state is DispatcherState.UNINITIALIZED:
                return
            previous = self._state
            self._state = DispatcherState.ENABLED if enabled else DispatcherState.DISABLED
            if not enabled:
                self._current_screen = None
            sinks = list(self._sinks)

        if previous is not self._state:
            logger.info("Dispatcher state changed", previous=previous.value, state=self._state.value)

        if not record.granted:
            for sink in sinks:
                try:
                    sink.purge()
                except Exception as e:
                    self._record_sink_failure(sink, "purge", e)

        if enabled and previous is DispatcherState.DISABLED:
            self._forward_identity()
            self._emit_session_started()

    def _forward_identity(self) -> None:
        """Hand sinks the identity set while tracking was disabled."""
        if self._settings.privacy_mode:
            return
        with self._lock:
            user_id = self._session.user_id
            user_properties = dict(self._session.user_properties)
        if user_id is not None:
            self._for_each_sink("set_user_id", lambda sink: sink.set_user_id(user_id))
        if user_properties:
            self._for_each_sink("set_user_properties", lambda sink: sink.set_user_properties(user_properties))

    # -- tracking ----------------------------------------------------------

    @property
    def is_enabled(self) -> bool:
        return self._state is DispatcherState.ENABLED and not self._closed

    def track_event(self, name: str, properties: Mapping[str, Any] | None = None) -> None:
        """Track a named event. No-op without analytics consent. Never raises."""
        try:
            self._dispatch(name, properties, _track)
        except Exception as e:
            logger.error("Tracking call failed", event_name=name, error=str(e))

    def track_screen(self, screen_name: str, properties: Mapping[str, Any] | None = None) -> None:
        """Track a screen view, closing the previous screen with a screen_exited event."""
        try:
            if not self._gate("screen_view"):
                return
            now = self._clock.monotonic()
            with self._lock:
                previous = self._current_screen
                self._current_screen = (screen_name, now)
            if previous is not None:
                self._emit_screen_exited(previous, now)

            screen_properties: dict[str, Any] = dict(properties or {})
            screen_properties["screen_name"] = screen_name
            if previous is not None:
                screen_properties.setdefault("previous_screen", previous[0])
            self._dispatch("screen_view", screen_properties, _track_screen)
        except Exception as e:
            logger.error("Tracking call failed", event_name="screen_view", error=str(e))

    def end_screen(self) -> None:
        """Emit screen_exited for the current screen (process teardown, backgrounding)."""
        try:
            with self._lock:
                previous = self._current_screen
                self._current_screen = None
            if previous is not None and self.is_enabled:
                self._emit_screen_exited(previous, self._clock.monotonic())
        except Exception as e:
            logger.error("Tracking call failed", event_name="screen_exited", error=str(e))

    def _emit_screen_exited(self, screen: tuple[str, float], now: float) -> None:
        name, started = screen
        duration_ms = max(0, round((now - started) * 1000))
        self._dispatch("screen_exited", {"screen_name": name, "duration_ms": duration_ms}, _track)

    def set_user_id(self, user_id: str | None) -> None:
        """Update the session's user and forward it to every sink."""
        try:
            if user_id is not None:
                user_id = scrub_text(user_id)
            with self._lock:
                self._session.user_id = user_id
            if not self.is_enabled or self._settings.privacy_mode:
                return
            self._for_each_sink("set_user_id", lambda sink: sink.set_user_id(user_id))
            self._dispatch("user_identified", {"has_user_id": user_id is not None}, _track)
        except Exception as e:
            logger.error("Tracking call failed", event_name="user_identified", error=str(e))

    def set_user_properties(self, properties: Mapping[str, Any]) -> None:
        """Merge user properties into the session and forward them to every sink."""
        try:
            normalized = normalize_properties(properties)
            with self._lock:
                self._session.user_properties.update(normalized)
            if not self.is_enabled or self._settings.privacy_mode:
                return
            self._for_each_sink("set_user_properties", lambda sink: sink.set_user_properties(normalized))
            self._dispatch(
                "user_properties_updated",
                {"property_count": len(normalized), "property_keys": ",".join(sorted(normalized))},
                _track,
            )
        except Exception as e:
            logger.error("Tracking call failed", event_name="user_properties_updated", error=str(e))

    def track_purchase(self, transaction: Transaction) -> None:
        """Track a purchase on both paths: the generic event and each sink's purchase API."""
        try:
            event = self._dispatch("purchase", transaction.to_properties(), _track)
            if event is None:
                return
            self._for_each_sink("track_purchase", lambda sink: sink.track_purchase(transaction, event))
        except Exception as e:
            logger.error("Tracking call failed", event_name="purchase", error=str(e))

    def track_error(
        self,
        error: BaseException | str,
        context: Mapping[str, Any] | None = None,
        severity: ErrorSeverity | str = ErrorSeverity.MEDIUM,
    ) -> None:
        """Report an error. Bypasses the consent gate; repeats inside the window are counted."""
        try:
            if self._closed or self._state is DispatcherState.UNINITIALIZED or not self._sinks:
                return
            properties = self._error_tracker.record(error, context, severity)
            if properties is None:
                return
            self._dispatch("error", properties, _track_error, bypass_consent=True)
        except Exception as e:
            logger.error("Error tracking failed", error=str(e))

    def _gate(self, name: str) -> bool:
        if self.is_enabled:
            return True
        with self._lock:
            self._events_suppressed += 1
        logger.debug("Event suppressed", event_name=name, state=self._state.value)
        return False

    def _dispatch(
        self,
        name: str,
        properties: Mapping[str, Any] | None,
        call: _SinkCall,
        *,
        bypass_consent: bool = False,
    ) -> Event | None:
        if not name:
            logger.warning("Skipping event with empty name")
            return None
        if not bypass_consent and not self._gate(name):
            return None

        validation = self._validator.validate_event(name, properties)
        if not validation.valid:
            with self._lock:
                self._events_invalid += 1

        event = self._enrich(name, properties)
        if self._settings.debug:
            logger.info(
                "Event tracked",
                event_name=name,
                event_id=event.event_id,
                properties=event.to_wire()["properties"],
                valid=validation.valid,
                errors=list(validation.errors),
                warnings=list(validation.warnings),
            )
        elif not validation.valid:
            logger.debug("Event failed validation", event_name=name, errors=list(validation.errors))

        self._fan_out(event, call)
        return event

    def _enrich(self, name: str, properties: Mapping[str, Any] | None) -> Event:
        privacy = self._settings.privacy_mode
        with self._lock:
            # User identity only travels with behavioral consent
            user_id = None if privacy or not self.is_enabled else self._session.user_id
        return Event(
            name=scrub_text(name),
            properties=normalize_properties(properties),
            timestamp_ms=self._clock.now_ms(),
            session_id=self._session.session_id,
            platform=self._settings.platform,
            app_version="" if privacy else self._settings.app_version,
            event_id=new_event_id(),
            user_id=user_id,
        )

    def _fan_out(self, event: Event, call: _SinkCall) -> None:
        with self._lock:
            sinks = list(self._sinks)
        delivered = 0
        for sink in sinks:
            try:
                call(sink, event)
                delivered += 1
            except Exception as e:
                self._record_sink_failure(sink, event.name, e)
        if delivered:
            with self._lock:
                self._events_forwarded += 1

    def _for_each_sink(self, operation: str, call: Callable[[Sink], None]) -> None:
        with self._lock:
            sinks = list(self._sinks)
        for sink in sinks:
            try:
                call(sink)
            except Exception as e:
                self._record_sink_failure(sink, operation, e)

    def _record_sink_failure(self, sink: Sink, operation: str, error: Exception) -> None:
        with self._lock:
            self._sink_failures[sink.name] = self._sink_failures.get(sink.name, 0) + 1
        logger.warning("Sink call failed", sink=sink.name, operation=operation, error=str(error))

    def _emit_session_started(self) -> None:
        with self._lock:
            if self._session_started:
                return
            self._session_started = True
        self._dispatch("session_started", {"started_at_ms": self._session.started_at_ms}, _track)

    # -- delivery ----------------------------------------------------------

    def flush(self) -> dict[str, bool]:
        """Flush every sink concurrently.

        Failures are logged, not raised.

        Returns:
            Sink name -> True when that sink has nothing left undelivered
        """
        with self._lock:
            sinks = list(self._sinks)
        if not sinks:
            return {}

        results: dict[str, bool] = {}
        with ThreadPoolExecutor(max_workers=len(sinks), thread_name_prefix="beacon-flush") as pool:
            futures = [(sink, pool.submit(sink.flush)) for sink in sinks]
            for sink, future in futures:
                try:
                    results[sink.name] = bool(future.result())
                except Exception as e:
                    self._record_sink_failure(sink, "flush", e)
                    results[sink.name] = False

        incomplete = sorted(name for name, ok in results.items() if not ok)
        if incomplete:
            logger.warning("Sink flush incomplete", sinks=incomplete)
        return results

    # -- inspection --------------------------------------------------------

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def session(self) -> SessionContext:
        """Copy of the current session context."""
        with self._lock:
            return SessionContext(
                session_id=self._session.session_id,
                started_at_ms=self._session.started_at_ms,
                user_id=self._session.user_id,
                user_properties=dict(self._session.user_properties),
            )

    @property
    def session_id(self) -> str:
        return self._session.session_id

    @property
    def sinks(self) -> tuple[Sink, ...]:
        with self._lock:
            return tuple(self._sinks)

    @property
    def validator(self) -> Validator:
        return self._validator

    @property
    def health_metrics(self) -> dict[str, Any]:
        """Snapshot of dispatcher health.

        - events_forwarded: Reached at least one sink
        - events_suppressed: Skipped by the consent gate
        - events_invalid: Failed validation (still forwarded)
        - sink_failures: Per-sink exception counts
        - errors_deduplicated: Error reports folded into an earlier one
        """
        with self._lock:
            return {
                "state": self._state.value,
                "events_forwarded": self._events_forwarded,
                "events_suppressed": self._events_suppressed,
                "events_invalid": self._events_invalid,
                "sink_failures": self._sink_failures.copy(),
                "errors_deduplicated": self._error_tracker.suppressed_total,
            }
