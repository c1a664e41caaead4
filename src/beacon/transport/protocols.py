# src/beacon/transport/protocols.py
"""Protocol for the network transport that reaches a collector."""

from collections.abc import Mapping
from typing import Protocol, runtime_checkable

from beacon.contracts.results import SendResult


@runtime_checkable
class Transport(Protocol):
    """Sends one payload to a collector endpoint.

    send() MUST NOT raise for network or HTTP failures; they are reported
    through SendResult so sinks can decide between retry and drop.
    Timeouts are enforced by the transport; there is no caller-side
    cancellation of an in-flight send.
    """

    def send(self, url: str, payload: bytes, headers: Mapping[str, str]) -> SendResult:
        ...

    def close(self) -> None:
        """Release connections. Idempotent."""
        ...
