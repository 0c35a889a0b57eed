"""
Accumulation buffer and flush controller.

The controller owns the retry state machine:

    idle -> accumulating -> flushing -> idle | backoff
    backoff -> flushing      (once retry_delay has elapsed)
    backoff -> idle          (retry budget exhausted, buffer dropped)

Flushes are only evaluated when a record arrives; there is no timer thread.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from time import monotonic
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar

from loguru import logger

from crate_client.client import ShipResult
from crate_client.errors import CrateOperationalError

from .metrics import MetricsRegistry, metrics_registry

R = TypeVar("R")
Shipper = Callable[[Sequence[Any]], ShipResult]


class FlushState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"
    BACKOFF = "backoff"


@dataclass(frozen=True)
class BatchConfig:
    """Size/age flush thresholds and the retry budget."""

    capacity: int = 500  # flush once this many rows are buffered
    max_age: float = 300  # or this many seconds after the last flush
    max_retries: int = 6  # failed attempts kept before the buffer is dropped
    retry_delay: float = 120  # seconds between attempts after a failure

    def __post_init__(self):
        if self.capacity <= 0:
            raise ValueError("capacity must be > 0")
        if self.max_age < 0 or self.retry_delay < 0 or self.max_retries < 0:
            raise ValueError("max_age, retry_delay and max_retries must be >= 0")


class RowBuffer(Generic[R]):
    """Ordered rows plus the bookkeeping the flush controller needs."""

    def __init__(self, capacity: int, max_age: float, now: float):
        self.capacity = capacity
        self.max_age = max_age
        self.rows: List[R] = []
        self.retry_count = 0
        self.last_flush = now
        self.last_attempt: Optional[float] = None

    def __len__(self) -> int:
        return len(self.rows)

    def extend(self, rows: Sequence[R]) -> None:
        self.rows.extend(rows)

    def drain(self) -> List[R]:
        rows, self.rows = self.rows, []
        return rows

    def too_big(self) -> bool:
        return len(self.rows) >= self.capacity

    def too_old(self, now: float) -> bool:
        return now - self.last_flush >= self.max_age

    def reset(self, now: float) -> None:
        self.rows = []
        self.retry_count = 0
        self.last_flush = now
        self.last_attempt = None


class FlushController(Generic[R]):
    """
    Decides when to ship the buffer and applies the verdict.

    Usage:
        ctl = FlushController(client_ship, BatchConfig(capacity=500), name="events")
        ctl.add(rows)       # may flush
        ctl.force_flush()   # shutdown
    """

    def __init__(
        self,
        ship: Shipper,
        config: Optional[BatchConfig] = None,
        *,
        name: str = "default",
        clock: Callable[[], float] = monotonic,
        metrics: MetricsRegistry = metrics_registry,
    ):
        self._ship = ship
        self._cfg = config or BatchConfig()
        self._clock = clock
        self._metrics = metrics
        self.name = name
        self.buffer: RowBuffer[R] = RowBuffer(self._cfg.capacity, self._cfg.max_age, clock())
        self.state = FlushState.IDLE
        self._guard_warned = False

    @property
    def config(self) -> BatchConfig:
        return self._cfg

    @property
    def retry_count(self) -> int:
        return self.buffer.retry_count

    # --------------------------- public API

    def add(self, rows: Sequence[R]) -> Optional[ShipResult]:
        """Append rows, then flush if a threshold is reached and backoff allows it."""
        if rows:
            self.buffer.extend(rows)
            self._metrics.rows_buffered_total.labels(pipeline=self.name).inc(len(rows))
            logger.debug(
                f"{self.name}: stored {len(rows)} rows in buffer "
                f"({len(self.buffer)}/{self._cfg.capacity})"
            )
            if self.state == FlushState.IDLE:
                self.state = FlushState.ACCUMULATING
        self._report_size()
        return self.maybe_flush()

    def maybe_flush(self) -> Optional[ShipResult]:
        now = self._clock()
        if self.state == FlushState.BACKOFF and not self._retry_delay_elapsed(now):
            return None
        if self.buffer.too_big() or self.buffer.too_old(now):
            return self.flush()
        return None

    def flush(self) -> ShipResult:
        """One shipping attempt of the whole buffer, followed by the state transition."""
        if not self.buffer.rows:
            self.buffer.reset(self._clock())
            self.state = FlushState.IDLE
            return ShipResult.success(0)

        self.state = FlushState.FLUSHING
        result = self._attempt()
        now = self._clock()
        if result.ok:
            self._on_success(result, now)
        else:
            self._on_failure(result, now)
        self._report_size()
        return result

    def force_flush(self) -> Optional[ShipResult]:
        """Shutdown flush: one attempt, no retry-delay guard, no retries afterwards."""
        if not self.buffer.rows:
            return None

        n = len(self.buffer)
        logger.info(f"{self.name}: flushing buffer before shutdown ({n}/{self._cfg.capacity})")
        self.state = FlushState.FLUSHING
        result = self._attempt()
        if result.ok:
            self._metrics.flush_total.labels(pipeline=self.name, outcome="success").inc()
            logger.info(f"{self.name}: sent {result.rows} rows to Crate in {result.elapsed:.3f}s")
        else:
            self._metrics.flush_total.labels(pipeline=self.name, outcome="dropped").inc()
            self._metrics.rows_dropped_total.labels(pipeline=self.name).inc(n)
            logger.error(
                f"{self.name}: shutdown flush failed, {n} buffered rows have been lost! "
                f"{type(result.error).__name__}: {result.error}"
            )
        self.buffer.reset(self._clock())
        self.state = FlushState.IDLE
        self._report_size()
        return result

    # --------------------------- internals

    def _attempt(self) -> ShipResult:
        rows = list(self.buffer.rows)
        try:
            result = self._ship(rows)
        except Exception as exc:
            # any exception counts as one failed attempt
            logger.exception(f"{self.name}: shipping {len(rows)} rows raised")
            result = ShipResult.failure(len(rows), CrateOperationalError(str(exc)))
        self._metrics.flush_latency_seconds.labels(pipeline=self.name).observe(result.elapsed)
        return result

    def _on_success(self, result: ShipResult, now: float) -> None:
        self._metrics.flush_total.labels(pipeline=self.name, outcome="success").inc()
        logger.info(f"{self.name}: sent {result.rows} rows to Crate in {result.elapsed:.3f}s")
        self.buffer.reset(now)
        self.state = FlushState.IDLE

    def _on_failure(self, result: ShipResult, now: float) -> None:
        buf = self.buffer
        max_retries = self._cfg.max_retries
        reason = f"{type(result.error).__name__}: {result.error}"

        if buf.retry_count >= max_retries:
            n = len(buf)
            self._metrics.flush_total.labels(pipeline=self.name, outcome="dropped").inc()
            self._metrics.rows_dropped_total.labels(pipeline=self.name).inc(n)
            logger.error(
                f"{self.name}: maximum retries reached ({buf.retry_count}/{max_retries}), "
                f"all {n} buffered rows have been lost! {reason}"
            )
            buf.reset(now)
            self.state = FlushState.IDLE
            return

        self._metrics.flush_total.labels(pipeline=self.name, outcome="failure").inc()
        buf.retry_count += 1
        buf.last_attempt = now
        self.state = FlushState.BACKOFF
        self._guard_warned = False
        logger.warning(
            f"{self.name}: writing to Crate failed ({buf.retry_count}/{max_retries}), {reason}"
        )

    def _retry_delay_elapsed(self, now: float) -> bool:
        last = self.buffer.last_attempt
        waited = 0.0 if last is None else now - last
        if last is not None and waited < self._cfg.retry_delay:
            # one warning per failed attempt, debug for the rest of the wait
            msg = (
                f"{self.name}: waiting ({waited:.0f}/{self._cfg.retry_delay:.0f}) seconds "
                f"before next retry"
            )
            if self._guard_warned:
                logger.debug(msg)
            else:
                logger.warning(msg)
                self._guard_warned = True
            return False
        return True

    def _report_size(self) -> None:
        self._metrics.buffer_rows.labels(pipeline=self.name).set(len(self.buffer))
