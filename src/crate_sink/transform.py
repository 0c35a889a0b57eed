"""
Record transformers: raw monitoring records to normalized rows.

Both transformers are total. A malformed record yields no rows, a malformed
metric line is skipped, and either case is logged rather than raised.
"""

from __future__ import annotations

import copy
import math
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from loguru import logger
from pydantic import BaseModel, ValidationError

from crate_client.models import EventRow, EventStatus, MetricRow
from crate_client.utils import convert_fields_to_ms, is_integer, parse_record, to_ms

RawRecord = Union[str, bytes, Dict[str, Any]]
Transformer = Callable[[RawRecord], Sequence[BaseModel]]
SkipCallback = Callable[[int], None]

_LINE_SPLIT = re.compile(r"\r\n|\n")


def _normalize(raw: RawRecord) -> Optional[Dict[str, Any]]:
    """Parse, deep-copy and convert the shared timestamp fields to ms."""
    record = parse_record(raw)
    if record is None:
        return None
    record = copy.deepcopy(record)
    client = record.get("client")
    check = record.get("check")
    if not isinstance(client, dict) or not isinstance(check, dict):
        return None
    record["timestamp"] = to_ms(record["timestamp"])
    record["client"] = convert_fields_to_ms(client, "timestamp")
    record["check"] = convert_fields_to_ms(check, "issued", "executed")
    return record


class EventTransformer:
    """Maps one event record to one EventRow."""

    def __init__(self, on_skip: Optional[SkipCallback] = None):
        self._on_skip = on_skip

    def __call__(self, raw: RawRecord) -> List[EventRow]:
        row = self._build(raw)
        if row is None:
            if self._on_skip:
                self._on_skip(1)
            return []
        logger.debug(f"Event: {row.action} -> {row.status.value} - {row.check.get('output')}")
        return [row]

    @staticmethod
    def _build(raw: RawRecord) -> Optional[EventRow]:
        try:
            record = _normalize(raw)
            if record is None:
                logger.warning(f"Skipping event that is not a valid record: {raw!r}")
                return None
            return EventRow(
                id=record["id"],
                timestamp_ms=record["timestamp"],
                action=record.get("action"),
                status=EventStatus.from_code(record["check"].get("status")),
                occurrences=record.get("occurrences"),
                client=record["client"],
                check=record["check"],
            )
        except (KeyError, TypeError, ValidationError) as e:
            logger.warning(f"Skipping malformed event: {type(e).__name__}: {e}")
            return None


def transform_event(raw: RawRecord) -> List[EventRow]:
    return EventTransformer()(raw)


def parse_metric_line(line: str) -> Optional[tuple[str, float, int]]:
    """Parse a Graphite plaintext line ``<name> <value> <epoch_seconds>``."""
    parts = line.split()
    if len(parts) != 3:
        logger.error(f"Metric is invalid, skipping metric {line!r}")
        return None
    name, value, ts = parts
    if not is_integer(ts):
        logger.error(f"Timestamp is invalid, skipping metric {line!r}")
        return None
    try:
        val = float(value)
        if not math.isfinite(val):
            raise ValueError(value)
    except ValueError:
        logger.error(f"Value is invalid, skipping metric {line!r}")
        return None
    return name, val, int(ts)


def strip_prefix(name: str) -> str:
    """Drop the first dot-separated segment (the metric scheme prefix)."""
    return ".".join(name.split(".")[1:])


class MetricTransformer:
    """Splits a check's Graphite output into one MetricRow per valid line."""

    def __init__(self, source: str = "sensu", on_skip: Optional[SkipCallback] = None):
        self.source = source
        self._on_skip = on_skip

    def __call__(self, raw: RawRecord) -> List[MetricRow]:
        try:
            record = _normalize(raw)
        except (KeyError, TypeError) as e:
            logger.warning(f"Skipping malformed metric record: {type(e).__name__}: {e}")
            self._skip(1)
            return []
        if record is None:
            logger.warning(f"Skipping metric record that is not a valid record: {raw!r}")
            self._skip(1)
            return []

        client = record["client"]
        check = record["check"]
        output = check.get("output") or ""
        if not isinstance(output, str):
            logger.warning(f"Skipping metric record with non-text output: {output!r}")
            self._skip(1)
            return []

        shared = dict(
            source=self.source,
            client=client.get("name"),
            client_info=client,
            interval=check.get("interval"),
            issued_ms=check.get("issued"),
            executed_ms=check.get("executed"),
            received_ms=record["timestamp"],
            duration=check.get("duration"),
            metric=check.get("name"),
        )

        rows: List[MetricRow] = []
        skipped = 0
        for line in _LINE_SPLIT.split(output):
            if not line.strip():
                continue
            parsed = parse_metric_line(line)
            if parsed is None:
                skipped += 1
                continue
            name, value, ts = parsed
            try:
                rows.append(
                    MetricRow(key=strip_prefix(name), value=value, timestamp_ms=to_ms(ts), **shared)
                )
            except ValidationError as e:
                # shared fields invalid for every line
                logger.warning(f"Skipping malformed metric record: {e}")
                self._skip(1)
                return []

        if skipped:
            self._skip(skipped)
        return rows

    def _skip(self, n: int) -> None:
        if self._on_skip:
            self._on_skip(n)


def transform_metric(raw: RawRecord, source: str = "sensu") -> List[MetricRow]:
    return MetricTransformer(source)(raw)
