"""
Pydantic row models for the Crate destination tables.

Timestamps are stored as integer milliseconds since epoch, the native
representation of Crate's TIMESTAMP columns.
"""

from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel


class EventStatus(str, Enum):
    OK = "OK"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_code(cls, code: Any) -> "EventStatus":
        """Map a check exit code (0/1/2) to a status; anything else is UNKNOWN."""
        if isinstance(code, bool):
            return cls.UNKNOWN
        return {0: cls.OK, 1: cls.WARNING, 2: cls.CRITICAL}.get(code, cls.UNKNOWN)


class EventRow(BaseModel):
    """One monitoring event, as stored in the events table."""

    id: str
    timestamp_ms: int
    action: Optional[str] = None
    status: EventStatus = EventStatus.UNKNOWN
    occurrences: Optional[int] = None
    client: Dict[str, Any] = {}
    check: Dict[str, Any] = {}

    def bulk_args(self) -> Tuple[Any, ...]:
        return (
            self.id,
            self.timestamp_ms,
            self.action,
            self.status.value,
            self.occurrences,
            self.client,
            self.check,
        )


class MetricRow(BaseModel):
    """One metric sample parsed from a check's output."""

    source: str
    client: Optional[str] = None
    client_info: Dict[str, Any] = {}
    interval: Optional[int] = None
    issued_ms: Optional[int] = None
    executed_ms: Optional[int] = None
    received_ms: int
    duration: Optional[float] = None
    metric: Optional[str] = None
    key: str
    value: float
    timestamp_ms: int

    def bulk_args(self) -> Tuple[Any, ...]:
        return (
            self.source,
            self.client,
            self.client_info,
            self.interval,
            self.issued_ms,
            self.executed_ms,
            self.received_ms,
            self.duration,
            self.metric,
            self.key,
            self.value,
            self.timestamp_ms,
        )
