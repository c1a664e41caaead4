# src/beacon/cli.py
"""beacon Command Line Interface.

Inspects and manages persisted analytics state (consent, queues, delivery
stats, funnel counters) in the store configured by a settings file.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from beacon import __version__
from beacon.contracts.enums import ConsentCategory
from beacon.contracts.results import DeliveryStats, FunnelSnapshot
from beacon.core.config import BeaconSettings, load_settings
from beacon.core.serialization import SerializationError, loads
from beacon.pipeline.consent import ConsentStore
from beacon.pipeline.funnel import clear_funnel_state, load_funnel_state
from beacon.storage import BUFFER_PREFIX, QUEUE_PREFIX, STATS_PREFIX, create_store
from beacon.storage.protocols import DurableStore

__all__ = ["app"]

app = typer.Typer(
    name="beacon",
    help="beacon: inspect and manage client analytics state.",
    no_args_is_help=True,
)
consent_app = typer.Typer(help="Show or change the stored consent decision.", no_args_is_help=True)
funnel_app = typer.Typer(help="Show or reset funnel counters.", no_args_is_help=True)
app.add_typer(consent_app, name="consent")
app.add_typer(funnel_app, name="funnel")

SettingsOption = typer.Option(
    "beacon.yaml",
    "--settings",
    "-s",
    help="Path to settings YAML file.",
)
FormatOption = typer.Option(
    "console",
    "--format",
    "-f",
    help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"beacon version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file.

    Raises:
        typer.Exit: If an explicit env_file path doesn't exist
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    # Searches current dir and parents; never overrides existing env vars
    return load_dotenv(override=False)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(False, "--no-dotenv", help="Skip loading .env file."),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose/debug logging."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Output structured JSON logs."),
) -> None:
    """beacon: inspect and manage client analytics state."""
    from beacon.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "WARNING")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


def _load_config(settings: str) -> BeaconSettings:
    """Load settings, exiting 1 with a readable message on any config error."""
    settings_path = Path(settings).expanduser()
    try:
        return load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        typer.echo(f"YAML syntax error in {settings}: {e.problem}", err=True)
        raise typer.Exit(1) from None
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None


def _open_store(config: BeaconSettings) -> DurableStore:
    if config.storage.backend == "memory":
        typer.secho(
            "Warning: storage backend is 'memory'; there is no persisted state to inspect.",
            fg=typer.colors.YELLOW,
            err=True,
        )
    return create_store(config.storage)


def _open_consent(config: BeaconSettings, store: DurableStore) -> ConsentStore:
    consent = ConsentStore(store, version=config.consent_version)
    consent.load()
    return consent


def _count_records(store: DurableStore, key: str) -> int:
    raw = store.get(key)
    if raw is None:
        return 0
    try:
        records = loads(raw)
    except SerializationError:
        return 0
    return len(records) if isinstance(records, list) else 0


def _consent_summary(consent: ConsentStore) -> dict[str, Any]:
    record = consent.get_consent()
    return {
        "granted": record.granted,
        "version": record.version,
        "timestamp_ms": record.timestamp_ms,
        "consent_required": consent.is_consent_required(),
        "categories": record.categories.to_dict(),
    }


def _sink_summaries(store: DurableStore) -> dict[str, dict[str, Any]]:
    sinks: dict[str, dict[str, Any]] = {}

    def entry(name: str) -> dict[str, Any]:
        return sinks.setdefault(name, {"queued": 0, "buffered": 0, "stats": DeliveryStats().to_dict()})

    for key in store.keys(QUEUE_PREFIX):
        entry(key.removeprefix(QUEUE_PREFIX))["queued"] = _count_records(store, key)
    for key in store.keys(BUFFER_PREFIX):
        entry(key.removeprefix(BUFFER_PREFIX))["buffered"] = _count_records(store, key)
    for key in store.keys(STATS_PREFIX):
        raw = store.get(key)
        if raw is None:
            continue
        try:
            data = loads(raw)
            stats = DeliveryStats.from_dict(data)
        except (SerializationError, AttributeError, TypeError, ValueError):
            continue
        summary = stats.to_dict()
        summary["success_rate"] = round(stats.success_rate, 2)
        entry(key.removeprefix(STATS_PREFIX))["stats"] = summary
    return dict(sorted(sinks.items()))


def _funnel_summary(snapshot: FunnelSnapshot) -> dict[str, Any]:
    return {
        "counts": {stage.value: count for stage, count in snapshot.counts.items()},
        "session_counts": {stage.value: count for stage, count in snapshot.session_counts.items()},
        "conversion_rate": round(snapshot.conversion_rate, 2),
        "session_conversion_rate": round(snapshot.session_conversion_rate, 2),
        "drop_off_rates": {pair: round(value, 2) for pair, value in snapshot.drop_off_rates.items()},
    }


def _echo_consent(summary: dict[str, Any]) -> None:
    state = "granted" if summary["granted"] else "not granted"
    typer.echo(f"Consent: {state} (version {summary['version']})")
    if summary["consent_required"]:
        typer.echo("  Consent prompt required")
    for category, value in summary["categories"].items():
        typer.echo(f"  {category}: {'yes' if value else 'no'}")


def _echo_funnel(summary: dict[str, Any]) -> None:
    typer.echo("Funnel:")
    for stage, count in summary["counts"].items():
        typer.echo(f"  {stage}: {count} (session {summary['session_counts'][stage]})")
    typer.echo(f"  conversion_rate: {summary['conversion_rate']}%")
    for pair, value in summary["drop_off_rates"].items():
        typer.echo(f"  drop_off {pair}: {value}%")


@app.command()
def status(
    settings: str = SettingsOption,
    output_format: Literal["console", "json"] = FormatOption,
) -> None:
    """Show consent, pending deliveries per sink, and funnel counters."""
    config = _load_config(settings)
    store = _open_store(config)
    try:
        consent = _consent_summary(_open_consent(config, store))
        sinks = _sink_summaries(store)
        funnel = _funnel_summary(load_funnel_state(store))
    finally:
        store.close()

    if output_format == "json":
        typer.echo(json.dumps({"consent": consent, "sinks": sinks, "funnel": funnel}, indent=2))
        return

    _echo_consent(consent)
    typer.echo("Sinks:")
    if not sinks:
        typer.echo("  (no persisted sink state)")
    for name, summary in sinks.items():
        stats = summary["stats"]
        typer.echo(
            f"  {name}: queued={summary['queued']} buffered={summary['buffered']} "
            f"sent={stats['sent_events']} dropped={stats['dropped_events']} failed_attempts={stats['failed_attempts']}"
        )
    _echo_funnel(funnel)


@consent_app.command("show")
def consent_show(
    settings: str = SettingsOption,
    output_format: Literal["console", "json"] = FormatOption,
) -> None:
    """Show the stored consent decision."""
    config = _load_config(settings)
    store = _open_store(config)
    try:
        summary = _consent_summary(_open_consent(config, store))
    finally:
        store.close()
    if output_format == "json":
        typer.echo(json.dumps(summary, indent=2))
    else:
        _echo_consent(summary)


@consent_app.command("grant")
def consent_grant(
    settings: str = SettingsOption,
    category: list[str] | None = typer.Option(
        None,
        "--category",
        "-c",
        help="Grant only this category (repeatable). Default: all categories.",
    ),
) -> None:
    """Grant consent for all categories, or only the given ones."""
    config = _load_config(settings)
    categories: list[ConsentCategory] = []
    for name in category or []:
        try:
            categories.append(ConsentCategory(name))
        except ValueError:
            valid = ", ".join(c.value for c in ConsentCategory)
            typer.echo(f"Error: Unknown consent category '{name}'. Valid: {valid}", err=True)
            raise typer.Exit(1) from None

    store = _open_store(config)
    try:
        consent = _open_consent(config, store)
        if categories:
            for item in categories:
                consent.update_category(item, True)
        else:
            consent.grant_all()
        summary = _consent_summary(consent)
    finally:
        store.close()
    _echo_consent(summary)


@consent_app.command("revoke")
def consent_revoke(
    settings: str = SettingsOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Revoke all consent and delete persisted analytics data."""
    config = _load_config(settings)
    if not yes:
        typer.confirm("Revoking deletes queued events, delivery stats and funnel state. Continue?", abort=True)
    store = _open_store(config)
    try:
        consent = _open_consent(config, store)
        consent.revoke_all()
        summary = _consent_summary(consent)
    finally:
        store.close()
    _echo_consent(summary)
    typer.echo("Persisted analytics data deleted.")


@funnel_app.command("show")
def funnel_show(
    settings: str = SettingsOption,
    output_format: Literal["console", "json"] = FormatOption,
) -> None:
    """Show funnel counts, conversion rate and drop-off rates."""
    config = _load_config(settings)
    store = _open_store(config)
    try:
        summary = _funnel_summary(load_funnel_state(store))
    finally:
        store.close()
    if output_format == "json":
        typer.echo(json.dumps(summary, indent=2))
    else:
        _echo_funnel(summary)


@funnel_app.command("reset")
def funnel_reset(
    settings: str = SettingsOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Clear lifetime and session funnel counters."""
    config = _load_config(settings)
    if not yes:
        typer.confirm("Reset all funnel counters?", abort=True)
    store = _open_store(config)
    try:
        clear_funnel_state(store)
    finally:
        store.close()
    typer.echo("Funnel counters reset.")


if __name__ == "__main__":
    app()
