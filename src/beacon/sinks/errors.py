# src/beacon/sinks/errors.py
"""Sink-specific exceptions."""


class SinkConfigurationError(Exception):
    """Raised when a sink cannot be discovered, configured or initialized.

    Raised during setup only. Tracking operations never raise; they log
    instead.

    Attributes:
        sink_name: Name of the sink that failed
        message: Human-readable error description
    """

    def __init__(self, sink_name: str, message: str) -> None:
        self.sink_name = sink_name
        self.message = message
        super().__init__(f"Sink '{sink_name}' failed: {message}")
