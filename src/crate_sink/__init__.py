"""Crate Sink (buffered batch shipping of monitoring records)

- Record transformers for events and Graphite-style metric output
- RowBuffer + FlushController with size/age triggers
- Retry with delay, bounded retry budget, drop on exhaustion
- Pipeline orchestration (ingest / shutdown)
- Environment-based settings
- Prometheus metrics
"""

from .buffer import BatchConfig, FlushController, FlushState, RowBuffer
from .config import (
    ConfigurationError,
    EventSinkSettings,
    MetricSinkSettings,
    SinkSettings,
)
from .pipeline import Pipeline, build_event_pipeline, build_metric_pipeline
from .transform import (
    EventTransformer,
    MetricTransformer,
    transform_event,
    transform_metric,
)

__all__ = [
    # config
    "ConfigurationError",
    "SinkSettings",
    "EventSinkSettings",
    "MetricSinkSettings",
    # transform
    "EventTransformer",
    "MetricTransformer",
    "transform_event",
    "transform_metric",
    # runtime
    "BatchConfig",
    "RowBuffer",
    "FlushController",
    "FlushState",
    "Pipeline",
    "build_event_pipeline",
    "build_metric_pipeline",
]
