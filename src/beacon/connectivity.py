# src/beacon/connectivity.py
"""Connectivity observation.

The host application knows when the network comes and goes; it reports
that through ManualConnectivity.set_online(). Durable queues and sinks
subscribe to transitions.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)

ConnectivityCallback = Callable[[bool], None]


@runtime_checkable
class ConnectivityObserver(Protocol):
    """Subscription interface for online/offline transitions."""

    @property
    def is_online(self) -> bool:
        ...

    def on_connectivity_change(self, callback: ConnectivityCallback) -> Callable[[], None]:
        """Register callback(is_online). Returns an unsubscribe function."""
        ...


class ManualConnectivity:
    """Connectivity state driven explicitly by the host.

    Callbacks fire only on actual transitions, outside the internal lock.
    A raising callback is logged and does not stop the others.
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._callbacks: list[ConnectivityCallback] = []
        self._lock = threading.Lock()

    @property
    def is_online(self) -> bool:
        return self._online

    def on_connectivity_change(self, callback: ConnectivityCallback) -> Callable[[], None]:
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        with self._lock:
            if online == self._online:
                return
            self._online = online
            callbacks = list(self._callbacks)

        logger.info("Connectivity changed", online=online, subscribers=len(callbacks))
        for callback in callbacks:
            try:
                callback(online)
            except Exception as e:
                logger.warning("Connectivity callback failed", error=str(e))
