"""
Pytest configuration and fixtures for crate-sink.

Provides sample records, a controllable clock, fake shippers and log capture.
"""

from typing import Sequence

import pytest
from loguru import logger

from crate_client.client import ShipResult
from crate_client.errors import ConnectionFailed


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeShipper:
    """Records every batch; fails while ``failures`` > 0 (or always if ``always_fail``)."""

    def __init__(self, failures: int = 0, always_fail: bool = False):
        self.failures = failures
        self.always_fail = always_fail
        self.batches: list[list] = []

    @property
    def calls(self) -> int:
        return len(self.batches)

    def __call__(self, rows: Sequence) -> ShipResult:
        self.batches.append(list(rows))
        if self.always_fail or self.failures > 0:
            self.failures -= 1
            return ShipResult.failure(len(rows), ConnectionFailed("connection refused"))
        return ShipResult.success(len(rows))


class FakeClient:
    """Stands in for CrateClient in pipeline tests."""

    def __init__(self, shipper):
        self.shipper = shipper
        self.tables: list[tuple[str, str]] = []

    def ship_preset(self, kind: str, table: str, rows: Sequence) -> ShipResult:
        self.tables.append((kind, table))
        return self.shipper(rows)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_shipper():
    return FakeShipper


@pytest.fixture
def shipper():
    return FakeShipper()


@pytest.fixture
def failing_shipper():
    return FakeShipper(always_fail=True)


@pytest.fixture
def fake_client(shipper):
    return FakeClient(shipper)


@pytest.fixture
def failing_client(failing_shipper):
    return FakeClient(failing_shipper)


@pytest.fixture
def log_records():
    """Capture loguru records emitted during the test."""
    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


@pytest.fixture
def make_event():
    def _make(status: int = 0, event_id: str = "evt-1", **overrides) -> dict:
        event = {
            "id": event_id,
            "timestamp": 1700000000,
            "action": "create",
            "occurrences": 1,
            "client": {
                "name": "web-01",
                "address": "10.0.0.1",
                "subscriptions": ["linux"],
                "timestamp": 1699999990,
            },
            "check": {
                "name": "check-disk",
                "status": status,
                "output": "DISK OK",
                "issued": 1699999995,
                "executed": 1699999996,
                "duration": 0.12,
                "interval": 60,
            },
        }
        event.update(overrides)
        return event

    return _make


@pytest.fixture
def make_metric():
    def _make(output: str, name: str = "load", **check_overrides) -> dict:
        check = {
            "name": name,
            "output": output,
            "status": 0,
            "issued": 1700000000,
            "executed": 1700000001,
            "duration": 0.5,
            "interval": 10,
        }
        check.update(check_overrides)
        return {
            "id": "m-1",
            "timestamp": 1700000002,
            "client": {"name": "db-01", "address": "10.0.0.2", "timestamp": 1700000000},
            "check": check,
        }

    return _make


@pytest.fixture
def base_settings():
    return {"hostname": "127.0.0.1", "port": 4200, "table": "events"}
