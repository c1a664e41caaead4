# src/beacon/sinks/buffered_http.py
"""Buffered HTTP sink: batches events and delivers them to a collector.

Flow:
    track() -> in-memory buffer -> flush() -> transport.send(batch)
        success: persisted in-flight copy cleared
        retryable failure, offline queue enabled: batch handed to DurableQueue
        retryable failure, no offline queue: batch prepended to the buffer
        permanent failure (4xx other than 408/429): batch dropped
    Events that cannot be serialized are dropped one by one and counted in
    dropped_events; the rest of the batch is still sent.

flush() atomically swaps the buffer for an empty one before sending, so
tracking continues while a send is in flight. A failed batch goes back in
front of the buffer so newer events are not starved behind it. The buffer
(including the in-flight batch) is persisted before every send, so a crash
mid-flush loses nothing; initialize() restores it.

Collector payload (canonical JSON, RFC 8785):
    {"batch_id": ..., "sent_at_ms": ..., "events": [...],
     "user_id": ... (when set), "user_properties": {...} (when set)}

Thread Safety:
    One worker thread per sink (started by initialize()) flushes on the
    interval timer and on batch-size requests. Flushes are single-flight:
    the worker skips its tick when a flush is already running, while an
    explicit flush() waits for it. Buffer, stats and identity are guarded
    by _lock; the network send happens without holding it.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Literal

import structlog

from beacon.contracts.defaults import get_internal_default
from beacon.contracts.enums import DropReason
from beacon.contracts.results import DeliveryStats, SendResult
from beacon.contracts.runtime import RuntimeQueueConfig
from beacon.core.canonical import canonical_json, normalize_properties, scrub_text
from beacon.core.identifiers import new_batch_id
from beacon.core.serialization import SerializationError, dumps, event_from_record, event_to_record, loads
from beacon.pipeline.queue import DurableQueue
from beacon.sinks.errors import SinkConfigurationError
from beacon.storage.keys import buffer_key, stats_key

if TYPE_CHECKING:
    from beacon.contracts.events import Event, PropertyValue, QueuedEvent, Transaction
    from beacon.sinks.protocols import SinkContext

logger = structlog.get_logger(__name__)

_Message = Literal["flush"]


def _positive_int(sink_name: str, config: Mapping[str, Any], key: str, default: int) -> int:
    value = config.get(key, default)
    if type(value) is not int or value <= 0:
        raise SinkConfigurationError(sink_name, f"'{key}' must be a positive integer, got {value!r}")
    return value


class BufferedHTTPSink:
    """Batching HTTP sink with durable retry.

    Configuration options:
        endpoint: Collector URL (required, http:// or https://)
        headers: Extra request headers
        batch_size: Buffered events that trigger a flush (default: settings.batch_size)
        flush_interval_ms: Timer flush interval (default: settings.flush_interval_ms)
        offline_queue_enabled: Hand failed batches to a DurableQueue
            (default: settings.offline_queue_enabled)
        max_buffer_size: Buffered events kept before the oldest are dropped
            (default: settings.queue.max_size)
        background: Start worker threads (default: true). When false,
            delivery happens only on explicit flush() and batch-size triggers.

    Example configuration:
        providers:
          - name: http
            config:
              endpoint: https://collector.example.com/v1/batch
              headers:
                X-Api-Key: ${COLLECTOR_KEY}
    """

    _name = "http"

    # Log aggregate buffer overflow every N drops
    _LOG_INTERVAL = 100

    def __init__(self) -> None:
        self._context: SinkContext | None = None
        self._endpoint = ""
        self._headers: dict[str, str] = {}
        self._batch_size = 50
        self._flush_interval = 30.0
        self._offline_queue_enabled = True
        self._max_buffer_size = 1000
        self._background = True

        self._buffer: list[Event] = []
        self._stats = DeliveryStats()
        self._user_id: str | None = None
        self._user_properties: dict[str, PropertyValue] = {}
        self._generation = 0
        self._overflow_count = 0
        self._last_logged_overflow_count = 0

        # Reentrant: queue drop callbacks can fire while a flush holds it
        self._lock = threading.RLock()
        self._flush_lock = threading.Lock()
        self._offline_queue: DurableQueue | None = None
        self._messages: queue.Queue[_Message | None] = queue.Queue()
        self._worker: threading.Thread | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._initialized = False
        self._closed = False

    @property
    def name(self) -> str:
        return self._name

    # -- setup -------------------------------------------------------------

    def configure(self, config: Mapping[str, Any], context: SinkContext) -> None:
        """Validate options and bind collaborators.

        Raises:
            SinkConfigurationError: If endpoint is missing or options are invalid
        """
        endpoint = config.get("endpoint")
        if not isinstance(endpoint, str) or not endpoint:
            raise SinkConfigurationError(self._name, "'endpoint' is required")
        if not endpoint.startswith(("http://", "https://")):
            raise SinkConfigurationError(self._name, f"'endpoint' must be an http(s) URL, got {endpoint!r}")

        headers = config.get("headers", {})
        if not isinstance(headers, Mapping) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in headers.items()
        ):
            raise SinkConfigurationError(self._name, "'headers' must be a mapping of strings")

        settings = context.settings
        self._batch_size = _positive_int(self._name, config, "batch_size", settings.batch_size)
        self._flush_interval = _positive_int(self._name, config, "flush_interval_ms", settings.flush_interval_ms) / 1000
        self._max_buffer_size = _positive_int(self._name, config, "max_buffer_size", settings.queue.max_size)

        offline_queue_enabled = config.get("offline_queue_enabled", settings.offline_queue_enabled)
        background = config.get("background", True)
        for key, value in (("offline_queue_enabled", offline_queue_enabled), ("background", background)):
            if not isinstance(value, bool):
                raise SinkConfigurationError(self._name, f"'{key}' must be a boolean, got {value!r}")

        self._endpoint = endpoint
        self._headers = dict(headers)
        self._offline_queue_enabled = offline_queue_enabled
        self._background = background
        self._context = context

        logger.debug(
            "HTTP sink configured",
            endpoint=endpoint,
            batch_size=self._batch_size,
            flush_interval_s=self._flush_interval,
            offline_queue_enabled=offline_queue_enabled,
        )

    def _require_context(self) -> SinkContext:
        if self._context is None:
            raise SinkConfigurationError(self._name, "configure() must be called before use")
        return self._context

    def initialize(self) -> None:
        """Restore persisted buffer and stats, then start background delivery.

        Raises:
            SinkConfigurationError: If configure() was not called
        """
        context = self._require_context()
        if self._initialized:
            return

        restored = self._load_buffer(context)
        self._stats = self._load_stats(context)

        if self._offline_queue_enabled:
            queue_config = RuntimeQueueConfig.from_settings(context.settings.queue)
            self._offline_queue = DurableQueue(
                self._name,
                context.store,
                self._deliver_queued,
                connectivity=context.connectivity,
                clock=context.clock,
                max_size=queue_config.max_size,
                max_retries=queue_config.max_retries,
                retry_delay_seconds=queue_config.retry_delay,
                process_interval_seconds=queue_config.process_interval,
                on_drop=self._on_queue_drop,
            )
            self._offline_queue.load()

        self._unsubscribe = context.connectivity.on_connectivity_change(self._on_connectivity_change)
        self._initialized = True

        if self._background:
            self._start_worker()
            if self._offline_queue is not None:
                self._offline_queue.start()

        logger.info(
            "HTTP sink initialized",
            endpoint=self._endpoint,
            restored_buffer=restored,
            queued=len(self._offline_queue) if self._offline_queue is not None else 0,
        )

    def _load_buffer(self, context: SinkContext) -> int:
        try:
            raw = context.store.get(buffer_key(self._name))
        except Exception as e:
            logger.error("Failed to read persisted buffer", sink=self._name, error=str(e))
            return 0
        if raw is None:
            return 0
        try:
            records = loads(raw)
            if not isinstance(records, list):
                raise SerializationError(f"expected list, got {type(records).__name__}")
            events = [event_from_record(record) for record in records]
        except SerializationError as e:
            logger.error("Discarding corrupt persisted buffer", sink=self._name, error=str(e))
            return 0
        with self._lock:
            self._buffer = events + self._buffer
            self._trim_buffer_locked()
        return len(events)

    def _load_stats(self, context: SinkContext) -> DeliveryStats:
        try:
            raw = context.store.get(stats_key(self._name))
            if raw is None:
                return DeliveryStats()
            data = loads(raw)
            if not isinstance(data, Mapping):
                raise SerializationError(f"expected mapping, got {type(data).__name__}")
            return DeliveryStats.from_dict(data)
        except (SerializationError, TypeError, ValueError) as e:
            logger.warning("Discarding corrupt delivery stats", sink=self._name, error=str(e))
            return DeliveryStats()
        except Exception as e:
            logger.error("Failed to read delivery stats", sink=self._name, error=str(e))
            return DeliveryStats()

    # -- tracking ----------------------------------------------------------

    def track(self, event: Event) -> None:
        if self._closed:
            logger.debug("Ignoring event on closed sink", sink=self._name, event_name=event.name)
            return
        with self._lock:
            self._buffer.append(event)
            self._stats.total_events += 1
            self._trim_buffer_locked()
            should_flush = len(self._buffer) >= self._batch_size
        if should_flush:
            self._request_flush()

    def track_screen(self, event: Event) -> None:
        self.track(event)

    def track_error(self, event: Event) -> None:
        self.track(event)

    def track_purchase(self, transaction: Transaction, event: Event) -> None:
        """No purchase-specific collector API; the generic event carries the data."""

    def set_user_id(self, user_id: str | None) -> None:
        with self._lock:
            self._user_id = scrub_text(user_id) if user_id is not None else None

    def set_user_properties(self, properties: Mapping[str, PropertyValue]) -> None:
        with self._lock:
            self._user_properties.update(normalize_properties(properties))

    def _trim_buffer_locked(self) -> None:
        overflow = len(self._buffer) - self._max_buffer_size
        if overflow <= 0:
            return
        del self._buffer[:overflow]
        self._stats.dropped_events += overflow
        self._overflow_count += overflow
        if self._overflow_count - self._last_logged_overflow_count >= self._LOG_INTERVAL:
            logger.warning(
                "HTTP sink buffer overflow - oldest events dropped",
                sink=self._name,
                dropped_since_last_log=self._overflow_count - self._last_logged_overflow_count,
                dropped_total=self._overflow_count,
                buffer_size=self._max_buffer_size,
            )
            self._last_logged_overflow_count = self._overflow_count

    # -- delivery ----------------------------------------------------------

    def _request_flush(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            self._messages.put("flush")
        else:
            self.flush()

    def flush(self) -> bool:
        """Send the buffered batch now, waiting for any in-flight flush first.

        Returns:
            True if nothing tracked so far is left undelivered in this sink
        """
        if self._context is None or not self._initialized:
            return True
        with self._flush_lock:
            return self._flush_locked()

    def _flush_locked(self) -> bool:
        context = self._require_context()
        with self._lock:
            batch = self._buffer
            self._buffer = []
            generation = self._generation

        if not batch:
            return self._drain_offline_queue()

        if not context.connectivity.is_online:
            return self._defer_offline(batch)

        with self._lock:
            payload, batch = self._encode_batch_locked(batch)
            if payload is None:
                self._persist_buffer_locked(self._buffer)
                self._persist_stats_locked()
                return self._drain_offline_queue()
            # In-flight copy: survives a crash during the send
            self._persist_buffer_locked(batch + self._buffer)

        result = self._send(payload)

        handoff: list[Event] = []
        with self._lock:
            if generation != self._generation:
                logger.info("Sink purged during flush; discarding flush result", sink=self._name)
                return False
            if result.success:
                self._stats.sent_events += len(batch)
                self._stats.last_sent_ms = context.clock.now_ms()
            else:
                self._stats.failed_attempts += 1
                if not result.retryable:
                    self._stats.dropped_events += len(batch)
                    logger.warning(
                        "Collector rejected batch permanently - events dropped",
                        sink=self._name,
                        count=len(batch),
                        status_code=result.status_code,
                        error=result.error,
                    )
                elif self._offline_queue is not None:
                    handoff = batch
                else:
                    self._buffer = batch + self._buffer
                    self._trim_buffer_locked()
            if handoff:
                # The queue owns these from here; persist it before dropping the in-flight copy
                self._offline_queue.enqueue_many(handoff)  # type: ignore[union-attr]
            self._persist_buffer_locked(self._buffer)
            self._persist_stats_locked()

        if not result.success:
            logger.info(
                "Batch delivery failed",
                sink=self._name,
                count=len(batch),
                retryable=result.retryable,
                status_code=result.status_code,
                error=result.error,
                queued=bool(handoff),
            )
            return False

        logger.debug("Batch delivered", sink=self._name, count=len(batch))
        return self._drain_offline_queue()

    def _defer_offline(self, batch: list[Event]) -> bool:
        with self._lock:
            if self._offline_queue is not None:
                self._offline_queue.enqueue_many(batch)
            else:
                self._buffer = batch + self._buffer
                self._trim_buffer_locked()
            self._persist_buffer_locked(self._buffer)
            self._persist_stats_locked()
        logger.debug("Offline; batch deferred", sink=self._name, count=len(batch))
        return False

    def _drain_offline_queue(self) -> bool:
        if self._offline_queue is None or len(self._offline_queue) == 0:
            return True
        if self._offline_queue.is_running:
            self._offline_queue.request_processing()
            return False
        result = self._offline_queue.process_queue()
        return result is not None and result.remaining == 0

    def _build_payload(self, events: list[Event]) -> bytes:
        """Must be called while holding _lock (reads identity)."""
        context = self._require_context()
        body: dict[str, Any] = {
            "batch_id": new_batch_id(),
            "sent_at_ms": context.clock.now_ms(),
            "events": [event.to_wire() for event in events],
        }
        if self._user_id is not None:
            body["user_id"] = self._user_id
        if self._user_properties:
            body["user_properties"] = dict(self._user_properties)
        return canonical_json(body)

    def _encode_batch_locked(self, batch: list[Event]) -> tuple[bytes | None, list[Event]]:
        """Build the batch payload, dropping events that cannot be serialized.

        Must be called while holding _lock.

        Returns:
            (payload, events it carries); payload is None when no event survives
        """
        try:
            return self._build_payload(batch), batch
        except (TypeError, ValueError):
            pass

        kept: list[Event] = []
        for event in batch:
            try:
                canonical_json(event.to_wire())
            except (TypeError, ValueError) as e:
                logger.warning(
                    "Dropping event that cannot be serialized",
                    sink=self._name,
                    event_name=event.name,
                    event_id=event.event_id,
                    error=str(e),
                )
                continue
            kept.append(event)
        self._stats.dropped_events += len(batch) - len(kept)
        if not kept:
            return None, kept
        return self._build_payload(kept), kept

    def _send(self, payload: bytes) -> SendResult:
        context = self._require_context()
        try:
            return context.transport.send(self._endpoint, payload, self._headers)
        except Exception as e:
            logger.warning("Transport raised during send", sink=self._name, error=str(e))
            return SendResult.failed(f"{type(e).__name__}: {e}", retryable=True)

    def _deliver_queued(self, entry: QueuedEvent) -> SendResult:
        """DurableQueue delivery callback: one entry per request."""
        with self._lock:
            try:
                payload = self._build_payload([entry.event])
            except (TypeError, ValueError) as e:
                # Dropped as permanent; the queue's drop callback counts it
                return SendResult.failed(f"unserializable event: {e}", retryable=False)
        result = self._send(payload)
        with self._lock:
            if result.success:
                self._stats.sent_events += 1
                self._stats.last_sent_ms = self._require_context().clock.now_ms()
            else:
                self._stats.failed_attempts += 1
            self._persist_stats_locked()
        return result

    def _on_queue_drop(self, entries: list[QueuedEvent], reason: DropReason) -> None:
        with self._lock:
            self._stats.dropped_events += len(entries)
            self._persist_stats_locked()

    # -- persistence -------------------------------------------------------

    def _persist_buffer_locked(self, events: list[Event]) -> None:
        store = self._require_context().store
        key = buffer_key(self._name)
        try:
            if events:
                store.set(key, dumps([event_to_record(event) for event in events]))
            else:
                store.delete(key)
        except Exception as e:
            logger.error("Failed to persist sink buffer", sink=self._name, events=len(events), error=str(e))

    def _persist_stats_locked(self) -> None:
        self._stats.pending_events = len(self._buffer) + (
            len(self._offline_queue) if self._offline_queue is not None else 0
        )
        try:
            self._require_context().store.set(stats_key(self._name), dumps(self._stats.to_dict()))
        except Exception as e:
            logger.error("Failed to persist delivery stats", sink=self._name, error=str(e))

    # -- worker ------------------------------------------------------------

    def _start_worker(self) -> None:
        ready = threading.Event()
        # Host process exit must not wait on analytics delivery
        self._worker = threading.Thread(
            target=self._worker_loop,
            args=(ready,),
            name=f"beacon-sink-{self._name}",
            daemon=True,
        )
        self._worker.start()
        ready.wait(timeout=5.0)

    def _worker_loop(self, ready: threading.Event) -> None:
        ready.set()
        while True:
            try:
                message = self._messages.get(timeout=self._flush_interval)
            except queue.Empty:
                message = "flush"
            if message is None:
                break
            if not self._flush_lock.acquire(blocking=False):
                continue
            try:
                self._flush_locked()
            except Exception as e:
                logger.error("Sink worker flush failed unexpectedly", sink=self._name, error=str(e))
            finally:
                self._flush_lock.release()

    def _on_connectivity_change(self, online: bool) -> None:
        if online and self.pending_count:
            self._request_flush()

    # -- lifecycle & inspection -------------------------------------------

    def purge(self) -> None:
        """Discard buffered, queued and persisted events and reset stats."""
        context = self._require_context()
        with self._lock:
            discarded = len(self._buffer)
            self._buffer = []
            self._generation += 1
            self._stats = DeliveryStats()
            for key in (buffer_key(self._name), stats_key(self._name)):
                try:
                    context.store.delete(key)
                except Exception as e:
                    logger.error("Failed to delete sink state", sink=self._name, key=key, error=str(e))
        if self._offline_queue is not None:
            discarded += self._offline_queue.purge()
        logger.info("HTTP sink purged", sink=self._name, discarded=discarded)

    def close(self) -> None:
        """Final flush, then stop workers. Idempotent.

        Undelivered events stay persisted for the next process.
        """
        if self._closed:
            return
        if self._initialized and self._context is not None and self._context.connectivity.is_online:
            try:
                self.flush()
            except Exception as e:
                logger.warning("Final flush failed", sink=self._name, error=str(e))
        self._closed = True

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._worker is not None:
            self._messages.put(None)
            timeout = float(get_internal_default("http_sink", "shutdown_timeout"))
            self._worker.join(timeout=timeout)
            if self._worker.is_alive():
                logger.error("Sink worker did not exit cleanly within timeout", sink=self._name)
            self._worker = None
        if self._offline_queue is not None:
            self._offline_queue.close()

        logger.info("HTTP sink closed", sink=self._name, **self.stats.to_dict())

    @property
    def stats(self) -> DeliveryStats:
        """Copy of the current delivery stats."""
        with self._lock:
            pending = len(self._buffer) + (len(self._offline_queue) if self._offline_queue is not None else 0)
            return DeliveryStats(
                total_events=self._stats.total_events,
                sent_events=self._stats.sent_events,
                failed_attempts=self._stats.failed_attempts,
                dropped_events=self._stats.dropped_events,
                pending_events=pending,
                last_sent_ms=self._stats.last_sent_ms,
            )

    @property
    def pending_count(self) -> int:
        with self._lock:
            buffered = len(self._buffer)
        return buffered + (len(self._offline_queue) if self._offline_queue is not None else 0)

    @property
    def buffered_events(self) -> list[Event]:
        with self._lock:
            return list(self._buffer)

    @property
    def offline_queue(self) -> DurableQueue | None:
        return self._offline_queue
