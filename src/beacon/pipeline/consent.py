# src/beacon/pipeline/consent.py
"""Consent gate for the analytics pipeline.

The store is privacy-by-default: until the user answers, the effective
record is opt-out (only "necessary" granted). Any change that leaves
``granted`` false is destructive: persisted queues, buffers, delivery
stats and funnel state are deleted, not merely ignored.

Thread Safety:
    Consent changes are serialized end to end: a change holds _change_lock
    while it swaps the record, persists it, notifies listeners (in
    registration order) and deletes analytics data, so listeners observe
    changes in the same order as the stored record. The lock is reentrant
    so a listener may itself change consent. Reads only take _lock.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping

import structlog

from beacon.contracts.consent import ConsentCategories, ConsentRecord
from beacon.contracts.defaults import get_internal_default
from beacon.contracts.enums import MUTABLE_CONSENT_CATEGORIES, ConsentCategory
from beacon.core.clock import Clock, SystemClock
from beacon.core.serialization import SerializationError, dumps, loads
from beacon.storage.keys import ANALYTICS_DATA_PREFIXES, CONSENT_KEY
from beacon.storage.protocols import DurableStore

logger = structlog.get_logger(__name__)

ConsentListener = Callable[[ConsentRecord], None]


class ConsentStore:
    """Holds, persists and applies the installation's consent decision."""

    def __init__(
        self,
        store: DurableStore,
        *,
        version: str | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._version = version if version is not None else str(get_internal_default("consent", "version"))
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._change_lock = threading.RLock()
        self._listeners: list[ConsentListener] = []
        self._record = ConsentRecord.opt_out(version=self._version, timestamp_ms=self._clock.now_ms())
        self._persisted_version: str | None = None

    @property
    def version(self) -> str:
        return self._version

    def load(self) -> ConsentRecord:
        """Read the persisted record, falling back to opt-out.

        A corrupt or unreadable record is logged and treated as absent,
        which keeps the privacy-by-default state and forces a re-prompt.
        """
        with self._lock:
            try:
                raw = self._store.get(CONSENT_KEY)
            except Exception as e:
                logger.error("Failed to read consent record", error=str(e))
                return self._record
            if raw is None:
                return self._record
            try:
                record = ConsentRecord.from_dict(loads(raw))
            except (SerializationError, KeyError, TypeError, ValueError) as e:
                logger.warning("Discarding corrupt consent record", error=str(e))
                return self._record
            self._record = record
            self._persisted_version = record.version
            logger.debug("Consent loaded", granted=record.granted, version=record.version)
            return record

    def add_listener(self, listener: ConsentListener) -> Callable[[], None]:
        """Register a callback invoked with the new record on every change."""
        with self._lock:
            self._listeners.append(listener)

        def remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return remove

    def request_consent(self, categories: ConsentCategories | Mapping[ConsentCategory | str, bool]) -> ConsentRecord:
        """Record the user's answer to the consent prompt and apply it."""
        if not isinstance(categories, ConsentCategories):
            categories = ConsentCategories.from_mapping(categories)
        record = ConsentRecord(categories=categories, timestamp_ms=self._clock.now_ms(), version=self._version)
        self._apply(record)
        return record

    def grant_all(self) -> ConsentRecord:
        return self.request_consent(ConsentCategories.all_granted())

    def revoke_all(self) -> ConsentRecord:
        return self.request_consent(ConsentCategories())

    def update_category(self, category: ConsentCategory | str, granted: bool) -> ConsentRecord:
        """Change one category; "necessary" cannot be changed.

        Returns:
            The effective record after the update
        """
        category = ConsentCategory(category)
        if category not in MUTABLE_CONSENT_CATEGORIES:
            logger.warning("Ignoring attempt to change necessary consent", granted=granted)
            return self.get_consent()

        with self._change_lock:
            current = self.get_consent().categories.to_dict()
            current[category.value] = granted
            return self.request_consent(current)

    def get_consent(self) -> ConsentRecord:
        with self._lock:
            return self._record

    def has_consent(self) -> bool:
        return self.get_consent().granted

    def has_category_consent(self, category: ConsentCategory | str) -> bool:
        return self.get_consent().categories.get(ConsentCategory(category))

    def is_consent_required(self) -> bool:
        """True when the user was never asked, or was asked under an older policy."""
        with self._lock:
            return self._persisted_version is None or self._persisted_version != self._version

    def _apply(self, record: ConsentRecord) -> None:
        with self._change_lock:
            with self._lock:
                previous = self._record
                self._record = record
                try:
                    self._store.set(CONSENT_KEY, dumps(record.to_dict()))
                    self._persisted_version = record.version
                except Exception as e:
                    # The in-memory decision still applies for this process
                    logger.error("Failed to persist consent record", error=str(e))
                listeners = list(self._listeners)

            logger.info(
                "Consent updated",
                granted=record.granted,
                analytics=record.categories.analytics,
                previously_granted=previous.granted,
            )

            for listener in listeners:
                if self.get_consent() is not record:
                    # A listener changed consent; the newer change has notified everyone
                    return
                try:
                    listener(record)
                except Exception as e:
                    logger.warning("Consent listener failed", listener=getattr(listener, "__qualname__", repr(listener)), error=str(e))

            if not record.granted and self.get_consent() is record:
                self._delete_analytics_data()

    def _delete_analytics_data(self) -> None:
        removed = 0
        for prefix in ANALYTICS_DATA_PREFIXES:
            try:
                removed += self._store.delete_prefix(prefix)
            except Exception as e:
                logger.error("Failed to delete analytics data", prefix=prefix, error=str(e))
        logger.info("Analytics data deleted after consent revocation", keys_removed=removed)
