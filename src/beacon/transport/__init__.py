# src/beacon/transport/__init__.py
"""Network transports used by HTTP sinks."""

from beacon.transport.http import HttpxTransport, is_retryable_status
from beacon.transport.protocols import Transport

__all__ = ["HttpxTransport", "Transport", "is_retryable_status"]
