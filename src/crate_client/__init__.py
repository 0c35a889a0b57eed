"""
Crate Client Library

A small HTTP client for shipping bulk inserts to Crate.IO's ``/_sql`` endpoint.

Usage:
    from crate_client import CrateClient, EventRow

    client = CrateClient({"hostname": "127.0.0.1", "port": 4200})
    result = client.ship_preset("events", "events", [EventRow(...)])
"""

from .client import CrateClient, ShipResult
from .errors import (
    CrateOperationalError,
    RetryableError,
    TimeoutExceeded,
    ConnectionFailed,
    StatusError,
)
from .models import EventRow, EventStatus, MetricRow

__version__ = "1.0.0"
__all__ = [
    "CrateClient",
    "ShipResult",
    "CrateOperationalError",
    "RetryableError",
    "TimeoutExceeded",
    "ConnectionFailed",
    "StatusError",
    "EventRow",
    "EventStatus",
    "MetricRow",
]
