from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from typing import Iterator, Optional, TextIO

import typer
from loguru import logger
from prometheus_client import REGISTRY

from crate_client.client import CrateClient
from crate_client.errors import CrateOperationalError
from crate_client.sql import create_table_statement
from crate_client.utils import iter_ndjson

from .config import ConfigurationError, EventSinkSettings, MetricSinkSettings, SinkSettings
from .pipeline import build_event_pipeline, build_metric_pipeline

app = typer.Typer(help="Ship monitoring events and metrics to Crate.IO in batches")

# ---------------------------
# Common options
# ---------------------------


def hostname_opt() -> Optional[str]:
    return typer.Option(None, "--hostname", help="Crate host (or CRATE_<KIND>_HOSTNAME)")


def port_opt() -> Optional[int]:
    return typer.Option(None, "--port", help="Crate HTTP port (default 4200)")


def table_opt() -> Optional[str]:
    return typer.Option(None, "--table", help="Destination table")


def buffer_size_opt() -> Optional[int]:
    return typer.Option(None, "--buffer-size", help="Flush when this many rows are buffered")


def log_level_opt() -> str:
    return typer.Option("INFO", "--log-level", help="Loguru level for stderr output")


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def _settings(cls: type[SinkSettings], **overrides) -> SinkSettings:
    given = {k: v for k, v in overrides.items() if v is not None}
    try:
        return cls.from_mapping(given)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)


@contextmanager
def _open(path: str) -> Iterator[TextIO]:
    if path == "-":
        yield sys.stdin
        return
    try:
        f = open(path, "r", encoding="utf-8")
    except OSError as e:
        logger.error(f"Cannot read {path}: {e}")
        sys.exit(1)
    with f:
        yield f


def _summary(kind: str) -> dict:
    def value(name: str, **labels) -> float:
        return REGISTRY.get_sample_value(name, {"pipeline": kind, **labels}) or 0.0

    return {
        "rows_buffered": value("crate_sink_rows_buffered_total"),
        "skipped": value("crate_sink_records_skipped_total"),
        "flushes": value("crate_sink_flush_total", outcome="success"),
        "failed_flushes": value("crate_sink_flush_total", outcome="failure"),
        "rows_dropped": value("crate_sink_rows_dropped_total"),
    }


def _replay(pipeline, path: str) -> int:
    records = 0
    with pipeline, _open(path) as stream:
        for line in iter_ndjson(stream):
            pipeline.ingest(line)
            records += 1
    return records


# ---------------------------
# Replay commands
# ---------------------------


@app.command("events")
def events(
    path: str = typer.Argument(..., help="NDJSON file of events, '-' for stdin"),
    hostname: Optional[str] = hostname_opt(),
    port: Optional[int] = port_opt(),
    table: Optional[str] = table_opt(),
    buffer_size: Optional[int] = buffer_size_opt(),
    log_level: str = log_level_opt(),
):
    """Replay NDJSON events through the events pipeline, then flush."""
    _configure_logging(log_level)
    settings = _settings(
        EventSinkSettings, hostname=hostname, port=port, table=table, buffer_size=buffer_size
    )
    records = _replay(build_event_pipeline(settings), path)
    typer.echo(json.dumps({"records": records, **_summary("events")}, indent=2))


@app.command("metrics")
def metrics(
    path: str = typer.Argument(..., help="NDJSON file of metric check results, '-' for stdin"),
    hostname: Optional[str] = hostname_opt(),
    port: Optional[int] = port_opt(),
    table: Optional[str] = table_opt(),
    buffer_size: Optional[int] = buffer_size_opt(),
    source: Optional[str] = typer.Option(None, "--source", help="Tag stored on every row"),
    log_level: str = log_level_opt(),
):
    """Replay NDJSON check results through the metrics pipeline, then flush."""
    _configure_logging(log_level)
    settings = _settings(
        MetricSinkSettings,
        hostname=hostname,
        port=port,
        table=table,
        buffer_size=buffer_size,
        source=source,
    )
    records = _replay(build_metric_pipeline(settings), path)
    typer.echo(json.dumps({"records": records, **_summary("metrics")}, indent=2))


# ---------------------------
# Admin
# ---------------------------


@app.command("create-table")
def create_table(
    kind: str = typer.Argument(..., help="'events' or 'metrics'"),
    hostname: Optional[str] = hostname_opt(),
    port: Optional[int] = port_opt(),
    table: Optional[str] = table_opt(),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the DDL only"),
):
    """Create the destination table for events or metrics."""
    if kind not in ("events", "metrics"):
        logger.error(f"Unknown table kind: {kind}")
        sys.exit(2)
    cls = EventSinkSettings if kind == "events" else MetricSinkSettings
    settings = _settings(cls, hostname=hostname, port=port, table=table)
    stmt = create_table_statement(kind, settings.table)
    if dry_run:
        typer.echo(stmt)
        return

    try:
        with CrateClient(settings.client_config()) as client:
            client.execute(stmt)
    except CrateOperationalError as e:
        logger.error(f"Failed to create table {settings.table}: {e}")
        sys.exit(1)
    logger.success(f"Table {settings.table} is ready")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
