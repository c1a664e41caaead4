# src/beacon/core/config.py
"""Configuration schema and loading for beacon.

Settings are frozen Pydantic models. load_settings() reads a YAML file via
Dynaconf, applies BEACON_* environment overrides and expands ${VAR} and
${VAR:-default} patterns before validation.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from beacon.contracts.defaults import get_internal_default
from beacon.contracts.enums import Platform


class ProviderSettings(BaseModel):
    """One configured sink.

    Example YAML:
        providers:
          - name: http
            config:
              endpoint: https://collector.example.com/v1/batch
          - name: passthrough
            enabled: false
    """

    model_config = {"frozen": True}

    name: str = Field(description="Sink name registered through the beacon_get_sinks hook")
    enabled: bool = Field(default=True, description="Disabled providers are not constructed")
    config: dict[str, Any] = Field(
        default_factory=dict,
        description="Sink-specific options passed to Sink.configure()",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("provider name must not be empty")
        return v.strip()


class QueueSettings(BaseModel):
    """Offline retry queue configuration."""

    model_config = {"frozen": True}

    max_size: int = Field(default=1000, gt=0, description="Entries kept before the oldest are evicted")
    max_retries: int = Field(default=3, gt=0, description="Failed attempts before an entry is dropped")
    retry_delay_ms: int = Field(
        default=5_000,
        ge=0,
        description="Delay before another pass while entries remain and the device is online",
    )
    process_interval_ms: int = Field(
        default=60_000,
        gt=0,
        description="Periodic safety-net pass interval, independent of connectivity signals",
    )


class StorageSettings(BaseModel):
    """Durable key-value store configuration."""

    model_config = {"frozen": True}

    backend: Literal["memory", "sqlite"] = Field(default="memory", description="Store implementation")
    # NOTE: str rather than Path so SQLAlchemy URLs are passed through untouched
    url: str = Field(
        default="sqlite:///./beacon.db",
        description="SQLAlchemy URL used by the sqlite backend",
    )


class TransportSettings(BaseModel):
    """HTTP transport configuration shared by HTTP sinks."""

    model_config = {"frozen": True}

    timeout_seconds: float = Field(default=10.0, gt=0, description="Per-request timeout")
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Headers added to every request (sink headers take precedence)",
    )


class BeaconSettings(BaseModel):
    """Top-level analytics configuration."""

    model_config = {"frozen": True}

    enabled: bool = Field(default=True, description="Master switch; when False no sinks are created")
    debug: bool = Field(default=False, description="Log every tracked event with its validation result")
    providers: list[ProviderSettings] = Field(default_factory=list, description="Configured sinks")
    batch_size: int = Field(default=50, gt=0, description="Buffered events that trigger an immediate flush")
    flush_interval_ms: int = Field(default=30_000, gt=0, description="Background flush interval")
    offline_queue_enabled: bool = Field(
        default=True,
        description="Route failed batches through the durable retry queue",
    )
    privacy_mode: bool = Field(
        default=False,
        description="Strip user_id, user properties and app_version from enrichment",
    )
    app_version: str = Field(default="0.0.0", description="Application version attached to events")
    platform: Platform = Field(default=Platform.WEB, description="Client platform attached to events")
    consent_version: str = Field(
        default_factory=lambda: str(get_internal_default("consent", "version")),
        description="Consent policy version; a different persisted version forces a re-prompt",
    )
    queue: QueueSettings = Field(default_factory=QueueSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    transport: TransportSettings = Field(default_factory=TransportSettings)

    @model_validator(mode="after")
    def validate_unique_providers(self) -> BeaconSettings:
        seen: set[str] = set()
        duplicates: list[str] = []
        for provider in self.providers:
            if provider.name in seen:
                duplicates.append(provider.name)
            seen.add(provider.name)
        if duplicates:
            raise ValueError(f"Duplicate provider names: {sorted(set(duplicates))}")
        return self

    @property
    def enabled_providers(self) -> list[ProviderSettings]:
        return [provider for provider in self.providers if provider.enabled]


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values."""

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            default = match.group(2)
            if default is not None:
                return default
            # Unset without default: leave as-is so validation reports it
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    """Dynaconf upper-cases keys; Pydantic fields are lower-case.

    Only mapping keys of the settings tree are lowered. Provider ``config``
    dicts and header names keep their original case.
    """
    if isinstance(value, dict):
        lowered: dict[str, Any] = {}
        for key, item in value.items():
            name = str(key).lower()
            if name in ("config", "headers"):
                lowered[name] = item
            else:
                lowered[name] = _lower_keys(item)
        return lowered
    if isinstance(value, list):
        return [_lower_keys(item) for item in value]
    return value


def load_settings(config_path: Path) -> BeaconSettings:
    """Load settings from YAML file with environment variable overrides.

    Precedence:
    1. Environment variables (BEACON_*) - highest priority
    2. Config file
    3. Defaults from the Pydantic schema - lowest priority

    Environment variable format: BEACON_QUEUE__MAX_SIZE for nested keys.

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="BEACON",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _lower_keys(raw_config)
    raw_config = _expand_env_vars(raw_config)

    return BeaconSettings(**raw_config)
