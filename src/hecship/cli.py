"""hecship Command Line Interface.

Entry point for the hecship CLI tool. The CLI stands in for an enclosing
application: it loads settings from YAML, feeds JSON-lines records to an
ExporterController and stops it when the input ends.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import BinaryIO

import structlog
import typer
import yaml
from pydantic import ValidationError

from hecship import __version__
from hecship.contracts import Record
from hecship.core.config import ExporterSettings, load_store
from hecship.errors import FilterCompileError, HecshipError
from hecship.exporter import ExporterController, HostIntegration, StaticHostPlugin
from hecship.filter import RecordFilter

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="hecship",
    help="hecship: Buffered exporter for Splunk HTTP Event Collector.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"hecship version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file.

    Raises:
        typer.Exit: If an explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)
    return load_dotenv(override=False)


def _fail(message: str) -> typer.Exit:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    return typer.Exit(1)


def _format_validation_error(error: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in error.errors())


def _load_settings_or_exit(settings: str) -> ExporterSettings:
    try:
        return ExporterSettings.from_store(load_store(Path(settings)))
    except FileNotFoundError as e:
        raise _fail(str(e)) from e
    except ValidationError as e:
        raise _fail(f"invalid settings: {_format_validation_error(e)}") from e


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
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
    ),
    log_level: str = typer.Option(
        "INFO",
        "--log-level",
        "-l",
        help="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """hecship: Buffered exporter for Splunk HTTP Event Collector."""
    from hecship.core.logging import configure_logging

    try:
        configure_logging(json_output=json_logs, level=log_level)
    except ValueError as e:
        raise _fail(str(e)) from e

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


def _feed_records(stream: BinaryIO, controller: ExporterController) -> tuple[int, int]:
    """Feed JSON-lines records to the controller.

    Lines are decoded one at a time, so a line that is not valid UTF-8 is
    rejected like any other malformed line.

    Returns:
        (records read, lines rejected as malformed)
    """
    read = 0
    rejected = 0
    for line_number, raw_line in enumerate(stream, start=1):
        if not raw_line.strip():
            continue
        try:
            data = json.loads(raw_line.decode("utf-8"))
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
            record = Record.from_dict(data)
        except ValueError as e:
            rejected += 1
            logger.warning("Skipping malformed record line", line=line_number, error=str(e))
            continue
        read += 1
        controller.on_record(record)
    return read, rejected


@app.command()
def run(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    input_path: str = typer.Option(
        "-",
        "--input",
        "-i",
        help="JSON-lines record file ('-' for stdin).",
    ),
    project: str | None = typer.Option(
        None,
        "--project",
        "-p",
        help="Project name written into every event.",
    ),
    scope_prefix: list[str] = typer.Option(
        [],
        "--scope-prefix",
        help="URL prefix considered in scope (repeatable).",
    ),
    flush_on_exit: bool = typer.Option(
        True,
        "--flush-on-exit/--discard-on-exit",
        help="Flush pending records when the input ends, or discard them.",
    ),
) -> None:
    """Export records read from a JSON-lines stream until it ends."""
    try:
        store = load_store(Path(settings))
        host = HostIntegration([StaticHostPlugin(project, scope_prefix)])
        controller = ExporterController(store, host=host, strict_start=True)
    except FileNotFoundError as e:
        raise _fail(str(e)) from e
    except ValidationError as e:
        raise _fail(f"invalid settings: {_format_validation_error(e)}") from e

    try:
        controller.start()
    except HecshipError as e:
        raise _fail(f"could not start exporter: {e}") from e

    stream: BinaryIO
    if input_path == "-":
        stream = sys.stdin.buffer
    else:
        try:
            stream = Path(input_path).open("rb")
        except OSError as e:
            controller.close()
            raise _fail(f"cannot read input: {e}") from e

    read = rejected = 0
    try:
        read, rejected = _feed_records(stream, controller)
    except KeyboardInterrupt:
        typer.secho("Interrupted, shutting down.", fg=typer.colors.YELLOW, err=True)
    finally:
        if input_path != "-":
            stream.close()
        if flush_on_exit:
            controller.on_tick()
        try:
            controller.close()
        except HecshipError as e:
            typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)

    metrics = controller.health_metrics
    typer.echo(
        f"Read {read} records ({rejected} malformed): "
        f"{metrics['events_sent']} sent, {metrics['events_failed']} failed, "
        f"{metrics['records_discarded_on_stop']} discarded at stop"
    )
    if metrics["events_failed"]:
        raise typer.Exit(1)


@app.command("check-filter")
def check_filter(
    expression: str = typer.Argument(..., help="Filter expression to validate."),
    record_json: str | None = typer.Option(
        None,
        "--record",
        "-r",
        help="Sample record as a JSON object to evaluate the filter against.",
    ),
) -> None:
    """Validate a filter expression, optionally against a sample record."""
    try:
        record_filter = RecordFilter.compile(expression)
    except FilterCompileError as e:
        raise _fail(e.reason) from e

    if record_json is None:
        typer.secho("Filter OK", fg=typer.colors.GREEN)
        return

    try:
        data = json.loads(record_json)
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        record = Record.from_dict(data)
    except ValueError as e:
        raise _fail(f"invalid sample record: {e}") from e

    typer.echo("admitted" if record_filter.should_admit(record) else "rejected")


@app.command("show-config")
def show_config(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Show the effective settings (token masked)."""
    exporter_settings = _load_settings_or_exit(settings)
    typer.echo(yaml.safe_dump(exporter_settings.to_display_dict(), sort_keys=False), nl=False)
    missing = exporter_settings.missing_required()
    if missing:
        typer.secho(f"Incomplete: missing {', '.join(missing)}", fg=typer.colors.YELLOW, err=True)
