"""
Utility functions for the Crate client.

Includes epoch conversion helpers and NDJSON reading.
"""

import json
from typing import Any, Dict, IO, Iterator, Optional, Union


def to_ms(seconds: Union[int, float]) -> int:
    """Convert epoch seconds to epoch milliseconds."""
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        raise TypeError(f"Expected epoch seconds as a number, got {seconds!r}")
    if isinstance(seconds, int):
        return seconds * 1000
    return int(round(seconds * 1000))


def convert_fields_to_ms(obj: Dict[str, Any], *fields: str) -> Dict[str, Any]:
    """Return a shallow copy of ``obj`` with the present ``fields`` converted to ms."""
    out = dict(obj)
    for f in fields:
        if f in out and out[f] is not None:
            out[f] = to_ms(out[f])
    return out


def is_integer(text: str) -> bool:
    try:
        int(text)
    except (TypeError, ValueError):
        return False
    return True


def parse_record(raw: Union[str, bytes, Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Accept a record as a mapping or its JSON text; None if it is neither."""
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, dict):
        return None
    return raw


def iter_ndjson(stream: IO[str]) -> Iterator[str]:
    """Yield the non-blank lines of an NDJSON stream."""
    for line in stream:
        line = line.strip()
        if line:
            yield line
