# tests/unit/pipeline/test_queue.py
"""Tests for DurableQueue persistence, retry bounds, eviction and passes."""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterable

import pytest

from beacon.connectivity import ManualConnectivity
from beacon.contracts.enums import DropReason
from beacon.contracts.events import QueuedEvent
from beacon.contracts.results import DrainResult, SendResult
from beacon.core.clock import MockClock
from beacon.pipeline.queue import DurableQueue
from beacon.storage.keys import queue_key
from beacon.storage.memory import InMemoryStore
from tests.fixtures.fakes import make_event, wait_until


class ScriptedDelivery:
    """deliver() callback returning scripted results, then ``default``."""

    def __init__(self, results: Iterable[SendResult] = (), default: SendResult | None = None) -> None:
        self.script: deque[SendResult] = deque(results)
        self.default = default or SendResult.ok()
        self.attempts: list[QueuedEvent] = []

    def __call__(self, entry: QueuedEvent) -> SendResult:
        self.attempts.append(entry)
        return self.script.popleft() if self.script else self.default

    @property
    def attempted_names(self) -> list[str]:
        return [entry.event.name for entry in self.attempts]


def _queue(
    store: InMemoryStore,
    deliver: ScriptedDelivery,
    *,
    connectivity: ManualConnectivity | None = None,
    drops: list[tuple[list[QueuedEvent], DropReason]] | None = None,
    **kwargs: object,
) -> DurableQueue:
    def on_drop(entries: list[QueuedEvent], reason: DropReason) -> None:
        if drops is not None:
            drops.append((entries, reason))

    q = DurableQueue(
        "http",
        store,
        deliver,
        connectivity=connectivity,
        clock=MockClock(),
        on_drop=on_drop,
        **kwargs,  # type: ignore[arg-type]
    )
    q.load()
    return q


RETRYABLE = SendResult.failed("HTTP 503", retryable=True, status_code=503)
PERMANENT = SendResult.failed("HTTP 400", retryable=False, status_code=400)


class TestConstruction:
    @pytest.mark.parametrize("kwargs", [{"max_size": 0}, {"max_retries": 0}])
    def test_rejects_non_positive_bounds(self, store: InMemoryStore, kwargs: dict[str, int]) -> None:
        with pytest.raises(ValueError):
            DurableQueue("http", store, ScriptedDelivery(), **kwargs)  # type: ignore[arg-type]


class TestPersistence:
    def test_enqueued_entries_survive_a_new_instance(self, store: InMemoryStore) -> None:
        first = _queue(store, ScriptedDelivery())
        events = [make_event(f"event_{i}") for i in range(3)]
        first.enqueue_many(events)

        second = _queue(store, ScriptedDelivery())

        restored = second.entries()
        assert [entry.event for entry in restored] == events
        assert [entry.id for entry in restored] == [entry.id for entry in first.entries()]
        assert all(entry.retry_count == 0 for entry in restored)

    def test_retry_counts_survive_a_new_instance(self, store: InMemoryStore) -> None:
        first = _queue(store, ScriptedDelivery(default=RETRYABLE))
        first.enqueue(make_event())
        first.process_queue()

        second = _queue(store, ScriptedDelivery())

        assert second.entries()[0].retry_count == 1

    def test_empty_queue_removes_persisted_key(self, store: InMemoryStore) -> None:
        q = _queue(store, ScriptedDelivery())
        q.enqueue(make_event())
        assert store.get(queue_key("http")) is not None

        q.process_queue()

        assert store.get(queue_key("http")) is None

    def test_corrupt_persisted_queue_is_discarded(self, store: InMemoryStore) -> None:
        store.set(queue_key("http"), b"{not json")

        q = _queue(store, ScriptedDelivery())

        assert len(q) == 0

    def test_custom_storage_key(self, store: InMemoryStore) -> None:
        q = _queue(store, ScriptedDelivery(), storage_key="custom:key")
        q.enqueue(make_event())

        assert q.storage_key == "custom:key"
        assert store.keys() == ["custom:key"]


class TestRetryBound:
    def test_entry_dropped_after_max_retries_failures(self, store: InMemoryStore) -> None:
        drops: list[tuple[list[QueuedEvent], DropReason]] = []
        deliver = ScriptedDelivery(default=RETRYABLE)
        q = _queue(store, deliver, drops=drops, max_retries=3)
        q.enqueue(make_event())

        results = [q.process_queue() for _ in range(3)]

        assert len(deliver.attempts) == 3
        assert [entry.retry_count for entry in deliver.attempts] == [0, 1, 2]
        assert results[-1] == DrainResult(delivered=0, retried=0, dropped=1, remaining=0)
        assert len(q) == 0
        (dropped, reason), = drops
        assert reason is DropReason.RETRIES_EXHAUSTED
        assert dropped[0].retry_count == 3
        assert q.dropped_count == 1

    def test_entry_delivered_after_max_retries_minus_one_failures(self, store: InMemoryStore) -> None:
        drops: list[tuple[list[QueuedEvent], DropReason]] = []
        deliver = ScriptedDelivery([RETRYABLE, RETRYABLE])
        q = _queue(store, deliver, drops=drops, max_retries=3)
        q.enqueue(make_event())

        results = [q.process_queue() for _ in range(3)]

        assert [r.delivered for r in results if r is not None] == [0, 0, 1]
        assert len(q) == 0
        assert drops == []

    def test_permanent_failure_drops_immediately(self, store: InMemoryStore) -> None:
        drops: list[tuple[list[QueuedEvent], DropReason]] = []
        q = _queue(store, ScriptedDelivery([PERMANENT]), drops=drops)
        q.enqueue(make_event())

        result = q.process_queue()

        assert result == DrainResult(dropped=1)
        assert drops[0][1] is DropReason.PERMANENT_FAILURE

    def test_raising_delivery_counts_as_retryable_failure(self, store: InMemoryStore) -> None:
        def explode(entry: QueuedEvent) -> SendResult:
            raise RuntimeError("boom")

        q = DurableQueue("http", store, explode, clock=MockClock())
        q.enqueue(make_event())

        result = q.process_queue()

        assert result == DrainResult(retried=1, remaining=1)
        assert q.entries()[0].retry_count == 1


class TestEviction:
    def test_oldest_entries_evicted_beyond_capacity(self, store: InMemoryStore) -> None:
        drops: list[tuple[list[QueuedEvent], DropReason]] = []
        q = _queue(store, ScriptedDelivery(), drops=drops, max_size=5)
        events = [make_event(f"event_{i}") for i in range(8)]

        for event in events:
            q.enqueue(event)

        assert [entry.event for entry in q.entries()] == events[3:]
        evicted = [entry.event for batch, reason in drops for entry in batch]
        assert evicted == events[:3]
        assert {reason for _, reason in drops} == {DropReason.QUEUE_OVERFLOW}

    def test_enqueue_many_evicts_in_one_step(self, store: InMemoryStore) -> None:
        q = _queue(store, ScriptedDelivery(), max_size=2)
        events = [make_event(f"event_{i}") for i in range(5)]

        q.enqueue_many(events)

        assert [entry.event for entry in q.entries()] == events[3:]
        assert q.dropped_count == 3

    def test_load_trims_to_current_capacity(self, store: InMemoryStore) -> None:
        big = _queue(store, ScriptedDelivery(), max_size=10)
        big.enqueue_many([make_event(f"event_{i}") for i in range(6)])

        small = _queue(store, ScriptedDelivery(), max_size=4)

        assert [entry.event.name for entry in small.entries()] == ["event_2", "event_3", "event_4", "event_5"]


class TestProcessing:
    def test_entries_attempted_in_enqueue_order(self, store: InMemoryStore) -> None:
        deliver = ScriptedDelivery()
        q = _queue(store, deliver)
        q.enqueue_many([make_event("first"), make_event("second"), make_event("third")])

        result = q.process_queue()

        assert deliver.attempted_names == ["first", "second", "third"]
        assert result == DrainResult(delivered=3)

    def test_offline_pass_is_skipped(self, store: InMemoryStore) -> None:
        connectivity = ManualConnectivity(online=False)
        deliver = ScriptedDelivery()
        q = _queue(store, deliver, connectivity=connectivity)
        q.enqueue(make_event())

        assert q.process_queue() == DrainResult(remaining=1)
        assert deliver.attempts == []

    def test_reconnect_triggers_processing(self, store: InMemoryStore) -> None:
        connectivity = ManualConnectivity(online=False)
        deliver = ScriptedDelivery()
        q = _queue(store, deliver, connectivity=connectivity)
        q.enqueue(make_event())

        connectivity.set_online(True)

        assert len(deliver.attempts) == 1
        assert len(q) == 0

    def test_going_offline_mid_pass_keeps_retry_budget(self, store: InMemoryStore) -> None:
        connectivity = ManualConnectivity(online=True)

        def deliver(entry: QueuedEvent) -> SendResult:
            connectivity.set_online(False)
            return RETRYABLE

        q = DurableQueue("http", store, deliver, connectivity=connectivity, clock=MockClock())
        q.enqueue_many([make_event("a"), make_event("b"), make_event("c")])

        result = q.process_queue()

        assert result == DrainResult(retried=1, remaining=3)
        assert [entry.retry_count for entry in q.entries()] == [1, 0, 0]

    def test_entries_arriving_during_pass_stay_behind_pending(self, store: InMemoryStore) -> None:
        q: DurableQueue

        def deliver(entry: QueuedEvent) -> SendResult:
            if entry.event.name == "old":
                q.enqueue(make_event("new"))
            return RETRYABLE

        q = DurableQueue("http", store, deliver, clock=MockClock())
        q.enqueue(make_event("old"))

        q.process_queue()

        assert [entry.event.name for entry in q.entries()] == ["old", "new"]
        assert [entry.retry_count for entry in q.entries()] == [1, 0]

    def test_concurrent_pass_returns_none(self, store: InMemoryStore) -> None:
        entered = threading.Event()
        release = threading.Event()
        results: list[DrainResult | None] = []

        def slow(entry: QueuedEvent) -> SendResult:
            entered.set()
            release.wait(timeout=5)
            return SendResult.ok()

        q = DurableQueue("http", store, slow, clock=MockClock())
        q.enqueue(make_event())
        worker = threading.Thread(target=lambda: results.append(q.process_queue()))
        worker.start()
        entered.wait(timeout=5)

        assert q.process_queue() is None

        release.set()
        worker.join(timeout=5)
        assert results == [DrainResult(delivered=1)]

    def test_purge_during_pass_discards_results(self, store: InMemoryStore) -> None:
        q: DurableQueue

        def deliver(entry: QueuedEvent) -> SendResult:
            q.purge()
            return RETRYABLE

        q = DurableQueue("http", store, deliver, clock=MockClock())
        q.enqueue(make_event())

        q.process_queue()

        assert len(q) == 0
        assert store.get(queue_key("http")) is None


class TestWorker:
    def test_request_processing_runs_inline_without_worker(self, store: InMemoryStore) -> None:
        deliver = ScriptedDelivery()
        q = _queue(store, deliver)
        q.enqueue(make_event())

        q.request_processing()

        assert len(deliver.attempts) == 1

    def test_worker_processes_requests_and_stops(self, store: InMemoryStore) -> None:
        delivered = threading.Event()

        def deliver(entry: QueuedEvent) -> SendResult:
            delivered.set()
            return SendResult.ok()

        q = DurableQueue("http", store, deliver, clock=MockClock(), process_interval_seconds=60)
        q.start()
        try:
            assert q.is_running
            q.enqueue(make_event())
            q.request_processing()
            assert delivered.wait(timeout=5)
        finally:
            q.close()

        assert not q.is_running

    def test_periodic_pass_runs_without_request(self, store: InMemoryStore) -> None:
        deliver = ScriptedDelivery()
        q = _queue(store, deliver, process_interval_seconds=0.2, retry_delay_seconds=60.0)
        q.enqueue(make_event("waiting"))
        q.start()
        try:
            assert wait_until(lambda: len(q) == 0)
        finally:
            q.close()

        assert deliver.attempted_names == ["waiting"]

    def test_failed_pass_is_retried_after_delay_while_online(self, store: InMemoryStore) -> None:
        deliver = ScriptedDelivery([RETRYABLE])
        connectivity = ManualConnectivity(online=True)
        q = _queue(
            store,
            deliver,
            connectivity=connectivity,
            process_interval_seconds=60.0,
            retry_delay_seconds=0.1,
        )
        q.start()
        try:
            q.enqueue(make_event("flaky"))
            q.request_processing()
            assert wait_until(lambda: len(q) == 0)
        finally:
            q.close()

        assert deliver.attempted_names == ["flaky", "flaky"]

    def test_no_retry_pass_scheduled_while_offline(self, store: InMemoryStore) -> None:
        connectivity = ManualConnectivity(online=False)
        deliver = ScriptedDelivery()
        q = _queue(
            store,
            deliver,
            connectivity=connectivity,
            process_interval_seconds=60.0,
            retry_delay_seconds=0.05,
        )
        q.start()
        try:
            q.enqueue(make_event("offline"))
            q.request_processing()
            assert not wait_until(lambda: bool(deliver.attempts), timeout=0.3)
        finally:
            q.close()

        assert len(q) == 1

    def test_close_keeps_entries_persisted(self, store: InMemoryStore) -> None:
        q = _queue(store, ScriptedDelivery())
        q.enqueue(make_event())
        q.close()
        q.close()

        assert store.get(queue_key("http")) is not None
