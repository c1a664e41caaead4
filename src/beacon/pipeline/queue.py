# src/beacon/pipeline/queue.py
"""Durable FIFO of events awaiting delivery.

DurableQueue persists every change to its DurableStore key so pending
events survive process death and offline periods. Delivery is driven by
processing passes:

- Each pass snapshots the queue and attempts entries in enqueue order.
- A failed entry has retry_count incremented by exactly one. It is dropped
  once retry_count reaches max_retries, or immediately when the failure is
  permanent.
- Entries enqueued while a pass is running are kept behind the entries
  still pending from that pass. A retried entry can therefore be overtaken
  by newer entries in later passes; there is no global ordering guarantee
  across retries.
- The queue is bounded: beyond max_size the oldest entries are evicted.

Delivery is at-least-once. A crash between a successful send and the
persisted removal resends the entry; collectors de-duplicate by event_id.

Thread Safety:
    One worker thread per queue (started by start()) receives "process"
    messages from connectivity changes and its own timers. Passes are
    single-flight: process_queue() returns None without doing anything if
    a pass is already running. _entries is guarded by _lock; delivery
    happens without holding it so enqueue() never waits on the network.
"""

from __future__ import annotations

import math
import queue
import threading
import time
from collections.abc import Callable, Iterable
from typing import Literal

import structlog

from beacon.connectivity import ConnectivityObserver
from beacon.contracts.enums import DropReason
from beacon.contracts.events import Event, QueuedEvent
from beacon.contracts.results import DrainResult, SendResult
from beacon.core.clock import Clock, SystemClock
from beacon.core.identifiers import new_queue_entry_id
from beacon.core.serialization import SerializationError, dumps, loads, queued_from_record, queued_to_record
from beacon.storage.keys import queue_key
from beacon.storage.protocols import DurableStore

logger = structlog.get_logger(__name__)

DeliverFn = Callable[[QueuedEvent], SendResult]
DropCallback = Callable[[list[QueuedEvent], DropReason], None]

_Message = Literal["process", "reschedule"]


class DurableQueue:
    """Persisted retry queue owned by exactly one sink.

    Example:
        q = DurableQueue("http", store, deliver=send_one, connectivity=connectivity)
        q.load()
        q.start()
        q.enqueue(event)
        ...
        q.close()
    """

    # Log aggregate overflow metrics every N evictions
    _LOG_INTERVAL = 100

    def __init__(
        self,
        name: str,
        store: DurableStore,
        deliver: DeliverFn,
        *,
        connectivity: ConnectivityObserver | None = None,
        clock: Clock | None = None,
        max_size: int = 1000,
        max_retries: int = 3,
        retry_delay_seconds: float = 5.0,
        process_interval_seconds: float = 60.0,
        on_drop: DropCallback | None = None,
        storage_key: str | None = None,
    ) -> None:
        """Create the queue. Call load() before use to restore persisted entries.

        Args:
            name: Owner name used in logs and the default storage key
            store: Durable store the queue persists into
            deliver: Sends one entry; must report failures via SendResult
            connectivity: Observer gating passes and triggering them on reconnect
            clock: Clock for queued_at_ms
            max_size: Entries kept before the oldest are evicted
            max_retries: Failed attempts after which an entry is dropped
            retry_delay_seconds: Delay before another pass while entries remain online
            process_interval_seconds: Periodic safety-net pass interval
            on_drop: Called with entries leaving the queue undelivered
            storage_key: Override for the persisted key

        Raises:
            ValueError: If max_size or max_retries < 1
        """
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")

        self.name = name
        self._store = store
        self._deliver = deliver
        self._connectivity = connectivity
        self._clock = clock or SystemClock()
        self._max_size = max_size
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._process_interval = process_interval_seconds
        self._on_drop = on_drop
        self._key = storage_key or queue_key(name)

        self._entries: list[QueuedEvent] = []
        self._lock = threading.Lock()
        self._drain_lock = threading.Lock()
        self._generation = 0

        self._dropped_count = 0
        self._overflow_count = 0
        self._last_logged_overflow_count = 0

        self._messages: queue.Queue[_Message | None] = queue.Queue()
        self._worker: threading.Thread | None = None
        self._retry_due: float | None = None
        self._unsubscribe: Callable[[], None] | None = None
        if connectivity is not None:
            self._unsubscribe = connectivity.on_connectivity_change(self._on_connectivity_change)

    # -- persistence -------------------------------------------------------

    def load(self) -> int:
        """Restore persisted entries, replacing in-memory state.

        Unreadable data is logged and discarded; the next persist overwrites it.

        Returns:
            Number of entries restored
        """
        try:
            raw = self._store.get(self._key)
        except Exception as e:
            logger.error("Failed to read persisted queue", queue=self.name, error=str(e))
            return 0

        entries: list[QueuedEvent] = []
        if raw is not None:
            try:
                records = loads(raw)
                if not isinstance(records, list):
                    raise SerializationError(f"expected list, got {type(records).__name__}")
                entries = [queued_from_record(record) for record in records]
            except SerializationError as e:
                logger.error("Discarding corrupt persisted queue", queue=self.name, error=str(e))
                entries = []

        with self._lock:
            self._entries = entries
            evicted = self._evict_overflow_locked()
        self._report_drops(evicted, DropReason.QUEUE_OVERFLOW)
        if entries:
            logger.info("Restored persisted queue", queue=self.name, entries=len(entries))
        return len(entries)

    def _persist_locked(self) -> None:
        """Write the current entries. Must be called while holding _lock."""
        try:
            if self._entries:
                self._store.set(self._key, dumps([queued_to_record(entry) for entry in self._entries]))
            else:
                self._store.delete(self._key)
        except Exception as e:
            logger.error("Failed to persist queue", queue=self.name, entries=len(self._entries), error=str(e))

    # -- producers ---------------------------------------------------------

    def enqueue(self, event: Event) -> QueuedEvent:
        """Append an event with retry_count 0 and persist."""
        return self.enqueue_many([event])[0]

    def enqueue_many(self, events: Iterable[Event]) -> list[QueuedEvent]:
        """Append events in order with a single persist."""
        now_ms = self._clock.now_ms()
        wrapped = [
            QueuedEvent(id=new_queue_entry_id(now_ms), event=event, retry_count=0, queued_at_ms=now_ms)
            for event in events
        ]
        if not wrapped:
            return []
        with self._lock:
            self._entries.extend(wrapped)
            evicted = self._evict_overflow_locked()
            self._persist_locked()
        self._report_drops(evicted, DropReason.QUEUE_OVERFLOW)
        return wrapped

    def _evict_overflow_locked(self) -> list[QueuedEvent]:
        overflow = len(self._entries) - self._max_size
        if overflow <= 0:
            return []
        evicted = self._entries[:overflow]
        del self._entries[:overflow]
        self._overflow_count += overflow
        if self._overflow_count - self._last_logged_overflow_count >= self._LOG_INTERVAL:
            logger.warning(
                "Offline queue overflow - oldest events dropped",
                queue=self.name,
                dropped_since_last_log=self._overflow_count - self._last_logged_overflow_count,
                dropped_total=self._overflow_count,
                max_size=self._max_size,
            )
            self._last_logged_overflow_count = self._overflow_count
        return evicted

    # -- processing --------------------------------------------------------

    def _is_online(self) -> bool:
        return self._connectivity is None or self._connectivity.is_online

    def process_queue(self) -> DrainResult | None:
        """Run one delivery pass over a snapshot of the queue.

        Returns:
            Summary of the pass, or None if another pass was already running
        """
        if not self._drain_lock.acquire(blocking=False):
            logger.debug("Queue pass already in progress", queue=self.name)
            return None
        try:
            return self._run_pass()
        finally:
            self._drain_lock.release()

    def _run_pass(self) -> DrainResult:
        with self._lock:
            snapshot = list(self._entries)
            generation = self._generation

        if not snapshot:
            return DrainResult()
        if not self._is_online():
            logger.debug("Skipping queue pass while offline", queue=self.name, entries=len(snapshot))
            return DrainResult(remaining=len(snapshot))

        delivered = 0
        retried = 0
        still_pending: list[QueuedEvent] = []
        exhausted: list[QueuedEvent] = []
        permanent: list[QueuedEvent] = []

        for index, entry in enumerate(snapshot):
            if not self._is_online():
                # Unattempted entries keep their retry budget
                still_pending.extend(snapshot[index:])
                break
            result = self._attempt(entry)
            if result.success:
                delivered += 1
                continue
            failed = entry.with_failure()
            if not result.retryable:
                permanent.append(failed)
            elif failed.retry_count >= self._max_retries:
                exhausted.append(failed)
            else:
                still_pending.append(failed)
                retried += 1

        with self._lock:
            if self._generation != generation:
                logger.info("Queue purged during pass; discarding pass results", queue=self.name)
                return DrainResult(delivered=delivered, remaining=len(self._entries))
            snapshot_ids = {entry.id for entry in snapshot}
            arrived = [entry for entry in self._entries if entry.id not in snapshot_ids]
            self._entries = still_pending + arrived
            evicted = self._evict_overflow_locked()
            self._persist_locked()
            remaining = len(self._entries)

        self._report_drops(exhausted, DropReason.RETRIES_EXHAUSTED)
        self._report_drops(permanent, DropReason.PERMANENT_FAILURE)
        self._report_drops(evicted, DropReason.QUEUE_OVERFLOW)

        result = DrainResult(
            delivered=delivered,
            retried=retried,
            dropped=len(exhausted) + len(permanent) + len(evicted),
            remaining=remaining,
        )
        logger.debug(
            "Queue pass complete",
            queue=self.name,
            delivered=result.delivered,
            retried=result.retried,
            dropped=result.dropped,
            remaining=result.remaining,
        )
        if remaining and self._is_online():
            self._schedule_retry()
        return result

    def _attempt(self, entry: QueuedEvent) -> SendResult:
        try:
            return self._deliver(entry)
        except Exception as e:
            logger.warning("Queue delivery raised", queue=self.name, entry_id=entry.id, error=str(e))
            return SendResult.failed(f"{type(e).__name__}: {e}", retryable=True)

    def _report_drops(self, entries: list[QueuedEvent], reason: DropReason) -> None:
        if not entries:
            return
        self._dropped_count += len(entries)
        if reason is not DropReason.QUEUE_OVERFLOW:
            logger.warning(
                "Events permanently dropped",
                queue=self.name,
                reason=reason.value,
                count=len(entries),
                dropped_total=self._dropped_count,
            )
        if self._on_drop is not None:
            try:
                self._on_drop(entries, reason)
            except Exception as e:
                logger.warning("Queue drop callback failed", queue=self.name, error=str(e))

    # -- worker ------------------------------------------------------------

    def start(self) -> None:
        """Start the background worker. Idempotent."""
        if self._worker is not None and self._worker.is_alive():
            return
        ready = threading.Event()
        # Host process exit must not wait on analytics delivery
        self._worker = threading.Thread(
            target=self._worker_loop,
            args=(ready,),
            name=f"beacon-queue-{self.name}",
            daemon=True,
        )
        self._worker.start()
        ready.wait(timeout=5.0)

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def request_processing(self) -> None:
        """Ask for a pass: on the worker when running, otherwise inline."""
        if self.is_running:
            self._messages.put("process")
        else:
            self.process_queue()

    def _schedule_retry(self) -> None:
        if not self.is_running:
            return
        self._retry_due = time.monotonic() + self._retry_delay
        self._messages.put("reschedule")

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            logger.info("Connectivity restored; processing queue", queue=self.name, entries=len(self))
            self.request_processing()
        else:
            self._retry_due = None

    def _worker_loop(self, ready: threading.Event) -> None:
        ready.set()
        next_periodic = time.monotonic() + self._process_interval
        while True:
            due = min(next_periodic, self._retry_due if self._retry_due is not None else math.inf)
            timeout = max(0.0, due - time.monotonic())
            try:
                message = self._messages.get(timeout=timeout)
            except queue.Empty:
                message = "process"
                now = time.monotonic()
                if now >= next_periodic:
                    next_periodic = now + self._process_interval
                if self._retry_due is not None and now >= self._retry_due:
                    self._retry_due = None
            if message is None:
                break
            if message == "reschedule":
                continue
            try:
                self.process_queue()
            except Exception as e:
                # The worker must survive anything a pass throws
                logger.error("Queue worker pass failed unexpectedly", queue=self.name, error=str(e))

    # -- lifecycle & inspection -------------------------------------------

    def purge(self) -> int:
        """Delete every entry, in memory and persisted.

        A pass running concurrently discards its results.

        Returns:
            Number of entries removed
        """
        with self._lock:
            removed = len(self._entries)
            self._entries = []
            self._generation += 1
            self._retry_due = None
            try:
                self._store.delete(self._key)
            except Exception as e:
                logger.error("Failed to delete persisted queue", queue=self.name, error=str(e))
        if removed:
            logger.info("Queue purged", queue=self.name, entries=removed)
        return removed

    def close(self) -> None:
        """Stop the worker and unsubscribe from connectivity. Idempotent.

        Entries stay persisted for the next process.
        """
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._worker is not None:
            self._messages.put(None)
            self._worker.join(timeout=5.0)
            if self._worker.is_alive():
                logger.error("Queue worker did not exit cleanly within timeout", queue=self.name)
            self._worker = None

    def entries(self) -> list[QueuedEvent]:
        """Snapshot of pending entries in queue order."""
        with self._lock:
            return list(self._entries)

    @property
    def dropped_count(self) -> int:
        """Entries dropped since construction (retries, permanent failures, overflow)."""
        return self._dropped_count

    @property
    def storage_key(self) -> str:
        return self._key

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
