# src/beacon/sinks/factory.py
"""Factory functions for building sinks from configuration.

Handles:
1. Discovering sink classes via pluggy hooks
2. Instantiating and configuring one sink per enabled provider

Usage:
    from beacon.sinks.factory import create_sinks

    sinks = create_sinks(settings, context)
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import pluggy
import structlog

from beacon.core.config import BeaconSettings
from beacon.sinks import BuiltinSinksPlugin
from beacon.sinks.errors import SinkConfigurationError
from beacon.sinks.hookspecs import PROJECT_NAME, BeaconSinkSpec
from beacon.sinks.protocols import Sink, SinkContext

logger = structlog.get_logger(__name__)


def _resolve_sink_name(sink_class: type[Sink]) -> str:
    """Resolve a sink's name from its class attribute or a temporary instance.

    Raises:
        SinkConfigurationError: If the name is invalid or the class cannot be
            instantiated for name resolution
    """
    try:
        class_name = sink_class.__name__
    except AttributeError as e:  # pragma: no cover - plugin code boundary
        raise SinkConfigurationError("sink_plugins", f"Invalid sink declaration without __name__: {sink_class!r}") from e

    # Prefer class-level _name to avoid instantiation
    class_dict = sink_class.__dict__
    if "_name" in class_dict:
        name_hint = class_dict["_name"]
        if type(name_hint) is str and name_hint != "":
            return name_hint
        raise SinkConfigurationError(
            class_name,
            f"Sink class attribute _name must be a non-empty string, got {name_hint!r}",
        )

    try:
        instance = sink_class()
    except Exception as e:  # pragma: no cover - plugin code boundary
        raise SinkConfigurationError(class_name, f"Failed to instantiate sink class during discovery: {e}") from e

    resolved = instance.name
    if type(resolved) is not str or resolved == "":
        raise SinkConfigurationError(class_name, f"Sink name must be a non-empty string, got {resolved!r}")
    return resolved


def discover_sink_registry(sink_plugins: Iterable[Any] = ()) -> dict[str, type[Sink]]:
    """Discover sinks via pluggy hooks.

    Registers built-in sinks plus any plugin objects provided by the caller,
    then calls ``beacon_get_sinks`` to build the name -> class registry.

    Raises:
        SinkConfigurationError: If plugin registration fails, a hook returns
            something other than an iterable of classes, or names collide
    """
    plugin_manager = pluggy.PluginManager(PROJECT_NAME)
    plugin_manager.add_hookspecs(BeaconSinkSpec)

    for plugin in [BuiltinSinksPlugin(), *list(sink_plugins)]:
        try:
            plugin_manager.register(plugin)
            plugin_manager.check_pending()
        except (pluggy.PluginValidationError, ValueError) as e:
            # PluginValidationError: hook spec mismatch
            # ValueError: plugin object or name already registered
            if isinstance(e, pluggy.PluginValidationError):
                plugin_manager.unregister(plugin=plugin)
            raise SinkConfigurationError(
                "sink_plugins",
                f"Invalid sink plugin {type(plugin).__name__}: {e}",
            ) from e

    registry: dict[str, type[Sink]] = {}
    for hook_impl in plugin_manager.hook.beacon_get_sinks.get_hookimpls():
        plugin_name = type(hook_impl.plugin).__name__
        try:
            sinks = hook_impl.function()
        except Exception as e:
            raise SinkConfigurationError(
                "sink_plugins",
                f"Sink plugin {plugin_name} failed in beacon_get_sinks: {e}",
            ) from e

        if sinks is None or type(sinks) in (str, bytes):
            raise SinkConfigurationError(
                "sink_plugins",
                f"beacon_get_sinks in plugin {plugin_name} returned {type(sinks).__name__}; expected iterable of sink classes",
            )
        try:
            sink_iter = iter(sinks)
        except TypeError as e:
            raise SinkConfigurationError(
                "sink_plugins",
                f"beacon_get_sinks in plugin {plugin_name} returned {type(sinks).__name__}; expected iterable of sink classes",
            ) from e

        for sink_class in sink_iter:
            sink_name = _resolve_sink_name(sink_class)
            if sink_name in registry:
                raise SinkConfigurationError(
                    sink_name,
                    f"Duplicate sink name '{sink_name}' discovered: {registry[sink_name].__name__} and {sink_class.__name__}",
                )
            registry[sink_name] = sink_class

    return registry


def create_sinks(
    settings: BeaconSettings,
    context: SinkContext,
    *,
    sink_plugins: Iterable[Any] = (),
) -> list[Sink]:
    """Instantiate and configure a sink for every enabled provider.

    Sinks are configured but not initialized; the Dispatcher initializes them.

    Raises:
        SinkConfigurationError: If discovery fails, a provider name is unknown,
            or a sink rejects its configuration
    """
    if not settings.enabled:
        logger.debug("analytics_disabled", reason="settings.enabled=False")
        return []

    registry = discover_sink_registry(sink_plugins)

    sinks: list[Sink] = []
    for provider in settings.enabled_providers:
        try:
            sink_class = registry[provider.name]
        except KeyError:
            raise SinkConfigurationError(
                provider.name,
                f"Unknown sink. Available sinks: {sorted(registry)}",
            ) from None

        sink = sink_class()
        sink.configure(provider.config, context)
        sinks.append(sink)
        logger.debug("sink_configured", sink=provider.name, options_keys=sorted(provider.config))

    if not sinks:
        logger.warning("analytics_enabled_no_sinks", message="Analytics enabled but no sinks configured")

    return sinks
