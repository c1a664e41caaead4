# src/beacon/sinks/hookspecs.py
"""pluggy hook specifications for analytics sinks.

Usage (implementing a sink plugin):
    from beacon.sinks.hookspecs import hookimpl

    class MySinkPlugin:
        @hookimpl
        def beacon_get_sinks(self):
            return [MySink]
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from beacon.sinks.protocols import Sink

PROJECT_NAME = "beacon"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class BeaconSinkSpec:
    """Hook specifications for sink plugins."""

    @hookspec
    def beacon_get_sinks(self) -> list[type["Sink"]]:  # type: ignore[empty-body]
        """Return sink classes (not instances).

        Called by create_sinks() to build the name -> class registry.
        """
