# src/beacon/sinks/__init__.py
"""Built-in analytics sinks.

Sinks are discovered via pluggy hooks. BuiltinSinksPlugin registers:
- BufferedHTTPSink ("http"): batches events to a collector with durable retry
- PassthroughSink ("passthrough"): stand-in for an unconfigured third-party SDK
- ConsoleSink ("console"): prints events for local debugging
"""

from beacon.sinks.buffered_http import BufferedHTTPSink
from beacon.sinks.console import ConsoleSink
from beacon.sinks.errors import SinkConfigurationError
from beacon.sinks.hookspecs import hookimpl
from beacon.sinks.passthrough import PassthroughSink
from beacon.sinks.protocols import Sink, SinkContext


class BuiltinSinksPlugin:
    """Plugin that registers built-in sinks."""

    @hookimpl
    def beacon_get_sinks(self) -> list[type]:
        return [BufferedHTTPSink, PassthroughSink, ConsoleSink]


__all__ = [
    "BufferedHTTPSink",
    "BuiltinSinksPlugin",
    "ConsoleSink",
    "PassthroughSink",
    "Sink",
    "SinkConfigurationError",
    "SinkContext",
]
