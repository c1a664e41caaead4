# src/beacon/core/identifiers.py
"""Identifier generation for events, queue entries, sessions and batches."""

import itertools
import threading
import uuid

_sequence = itertools.count()
_sequence_lock = threading.Lock()


def new_event_id() -> str:
    """Random id collectors use to de-duplicate redelivered events."""
    return uuid.uuid4().hex


def new_session_id() -> str:
    return uuid.uuid4().hex


def new_batch_id() -> str:
    return uuid.uuid4().hex


def new_queue_entry_id(now_ms: int) -> str:
    """Roughly time-ordered queue entry id.

    Lexicographic order follows creation order within one process: the
    millisecond timestamp is zero-padded and a process-wide sequence breaks
    ties inside the same millisecond.
    """
    with _sequence_lock:
        sequence = next(_sequence)
    return f"{now_ms:013d}-{sequence:08d}-{uuid.uuid4().hex[:8]}"
