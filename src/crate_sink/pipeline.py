"""
Buffered batch-shipping pipelines for monitoring events and metrics.

A Pipeline is what the host talks to: ``ingest`` once per record and
``shutdown`` once on graceful termination. Neither call raises; failures are
logged and counted.
"""

from __future__ import annotations

import threading
from time import monotonic
from typing import Any, Callable, Optional, Sequence

from loguru import logger

from crate_client.client import CrateClient, ShipResult

from .buffer import BatchConfig, FlushController, FlushState
from .config import EventSinkSettings, MetricSinkSettings, SinkSettings
from .metrics import MetricsRegistry, metrics_registry
from .transform import EventTransformer, MetricTransformer, RawRecord, Transformer


class Pipeline:
    """Transform -> buffer -> flush, serialized behind one lock."""

    def __init__(
        self,
        name: str,
        transform: Transformer,
        controller: FlushController,
        *,
        on_close: Optional[Callable[[], None]] = None,
    ):
        self.name = name
        self._transform = transform
        self._ctl = controller
        self._on_close = on_close
        self._lock = threading.Lock()
        self._closed = False

    @property
    def controller(self) -> FlushController:
        return self._ctl

    @property
    def state(self) -> FlushState:
        return self._ctl.state

    def __len__(self) -> int:
        return len(self._ctl.buffer)

    def ingest(self, raw: RawRecord) -> None:
        with self._lock:
            try:
                rows = self._transform(raw)
                self._ctl.add(rows)
            except Exception as exc:
                logger.opt(exception=exc).error(
                    f"{self.name}: unable to buffer record: {type(exc).__name__}: {exc}"
                )

    def shutdown(self) -> None:
        with self._lock:
            try:
                self._ctl.force_flush()
            except Exception as exc:
                logger.opt(exception=exc).error(
                    f"{self.name}: shutdown flush raised: {type(exc).__name__}: {exc}"
                )
            if self._on_close and not self._closed:
                self._closed = True
                try:
                    self._on_close()
                except Exception as exc:
                    logger.warning(f"{self.name}: error closing transport: {exc}")

    def __enter__(self) -> "Pipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()


# --------------------------- factories


def _batch_config(settings: SinkSettings) -> BatchConfig:
    return BatchConfig(
        capacity=settings.buffer_size,
        max_age=settings.buffer_max_age,
        max_retries=settings.buffer_max_try,
        retry_delay=settings.buffer_max_try_delay,
    )


def _build(
    kind: str,
    settings: SinkSettings,
    transform: Transformer,
    client: Optional[Any],
    clock: Callable[[], float],
    metrics: MetricsRegistry,
) -> Pipeline:
    on_close = None
    if client is None:
        client = CrateClient(settings.client_config())
        on_close = client.close

    table = settings.table

    def ship(rows: Sequence[Any]) -> ShipResult:
        return client.ship_preset(kind, table, rows)

    controller: FlushController = FlushController(
        ship, _batch_config(settings), name=kind, clock=clock, metrics=metrics
    )
    logger.info(
        f"{kind}: initialized hostname={settings.hostname} port={settings.port} "
        f"table={table} ssl={settings.ssl} buffer_size={settings.buffer_size} "
        f"buffer_max_age={settings.buffer_max_age}s buffer_max_try={settings.buffer_max_try} "
        f"buffer_max_try_delay={settings.buffer_max_try_delay}s "
        f"http_timeout={settings.http_timeout}s http_compression={settings.http_compression}"
    )
    return Pipeline(kind, transform, controller, on_close=on_close)


def build_event_pipeline(
    settings: EventSinkSettings,
    client: Optional[Any] = None,
    *,
    clock: Callable[[], float] = monotonic,
    metrics: MetricsRegistry = metrics_registry,
) -> Pipeline:
    """Events pipeline; ``client`` needs ``ship_preset(kind, table, rows)``."""
    on_skip = metrics.records_skipped_total.labels(pipeline="events").inc
    return _build("events", settings, EventTransformer(on_skip), client, clock, metrics)


def build_metric_pipeline(
    settings: MetricSinkSettings,
    client: Optional[Any] = None,
    *,
    clock: Callable[[], float] = monotonic,
    metrics: MetricsRegistry = metrics_registry,
) -> Pipeline:
    on_skip = metrics.records_skipped_total.labels(pipeline="metrics").inc
    transform = MetricTransformer(settings.source, on_skip)
    return _build("metrics", settings, transform, client, clock, metrics)
