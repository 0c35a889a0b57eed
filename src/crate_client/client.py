from __future__ import annotations

import gzip
import json
import ssl
from dataclasses import dataclass
from time import monotonic
from typing import Any, Optional, Sequence

import httpx
from loguru import logger

from .errors import CrateOperationalError, StatusError, map_transport_error
from .sql import TABLE_PRESETS, insert_statement

SQL_ENDPOINT = "/_sql"


@dataclass
class _Cfg:
    hostname: str
    port: int = 4200
    ssl: bool = False
    ssl_cert: Optional[str] = None
    timeout: float = 10.0
    compression: bool = True


@dataclass(frozen=True)
class ShipResult:
    """Outcome of one bulk write. ``error`` is set exactly when ``ok`` is False."""

    ok: bool
    rows: int
    elapsed: float = 0.0
    error: Optional[CrateOperationalError] = None
    failed_rows: int = 0

    @classmethod
    def success(cls, rows: int, elapsed: float = 0.0, failed_rows: int = 0) -> "ShipResult":
        return cls(ok=True, rows=rows, elapsed=elapsed, failed_rows=failed_rows)

    @classmethod
    def failure(cls, rows: int, error: CrateOperationalError, elapsed: float = 0.0) -> "ShipResult":
        return cls(ok=False, rows=rows, elapsed=elapsed, error=error)


class CrateClient:
    """
    Minimal client for Crate's HTTP SQL endpoint.

    Usage:
        client = CrateClient({"hostname": "127.0.0.1", "port": 4200})
        result = client.ship("sensu_metrics", TABLE_PRESETS["metrics"]["cols"], rows)
        if not result.ok:
            ...
        client.close()
    """

    def __init__(self, config: dict, *, transport: Optional[httpx.BaseTransport] = None):
        c = _Cfg(**config)
        self._cfg = c
        scheme = "https" if c.ssl else "http"
        self.url = f"{scheme}://{c.hostname}:{c.port}{SQL_ENDPOINT}"

        verify: Any = True
        if c.ssl and c.ssl_cert:
            verify = ssl.create_default_context(cafile=c.ssl_cert)

        self._http = httpx.Client(timeout=c.timeout, verify=verify, transport=transport)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "CrateClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---------- internal helpers ----------

    def _encode(self, payload: dict) -> tuple[bytes, dict[str, str]]:
        headers = {"Content-Type": "application/json; charset=utf-8"}
        body = json.dumps(payload, separators=(",", ":"), allow_nan=False).encode("utf-8")
        if self._cfg.compression:
            headers["Content-Encoding"] = "gzip"
            body = gzip.compress(body)
        return body, headers

    def _post(self, payload: dict) -> httpx.Response:
        body, headers = self._encode(payload)
        return self._http.post(self.url, content=body, headers=headers)

    @staticmethod
    def _failed_bulk_rows(response: httpx.Response) -> int:
        """Crate reports per-row bulk failures as rowcount -2 inside a 200 response."""
        try:
            results = response.json().get("results") or []
        except (ValueError, AttributeError):
            return 0
        return sum(1 for r in results if isinstance(r, dict) and r.get("rowcount") == -2)

    # ---------- writes ----------

    def ship(self, table: str, cols: Sequence[str], rows: Sequence[Any]) -> ShipResult:
        """Send ``rows`` as one bulk INSERT; never raises for transport problems."""
        n = len(rows)
        payload = {
            "stmt": insert_statement(table, cols),
            "bulk_args": [list(r.bulk_args()) if hasattr(r, "bulk_args") else list(r) for r in rows],
        }
        logger.debug(f"Writing {n} rows to Crate: {self.url} stmt={payload['stmt']}")

        t0 = monotonic()
        try:
            response = self._post(payload)
        except httpx.HTTPError as exc:
            err = map_transport_error(exc)
            return ShipResult.failure(n, err, monotonic() - t0)
        except (TypeError, ValueError) as exc:
            # payload not JSON-encodable (e.g. NaN or an unknown object type)
            logger.error(f"Unable to encode {n} rows for Crate: {exc}")
            return ShipResult.failure(n, CrateOperationalError(str(exc)), monotonic() - t0)
        elapsed = monotonic() - t0

        if response.status_code != 200:
            logger.error(
                f"Writing to Crate failed: response code = {response.status_code}, "
                f"body = {response.text}"
            )
            return ShipResult.failure(n, StatusError(response.status_code, response.text), elapsed)

        failed = self._failed_bulk_rows(response)
        if failed:
            logger.warning(f"Crate rejected {failed}/{n} rows of the bulk insert into {table}")
        logger.debug(f"Writing to Crate: response code = {response.status_code}, body = {response.text}")
        return ShipResult.success(n, elapsed, failed)

    def ship_preset(self, kind: str, table: str, rows: Sequence[Any]) -> ShipResult:
        return self.ship(table, TABLE_PRESETS[kind]["cols"], rows)

    # ---------- admin ----------

    def execute(self, stmt: str, args: Optional[Sequence[Any]] = None) -> dict:
        """Run a single statement; raises on any failure (admin/CLI use)."""
        payload: dict = {"stmt": stmt}
        if args is not None:
            payload["args"] = list(args)
        try:
            response = self._post(payload)
        except httpx.HTTPError as exc:
            raise map_transport_error(exc) from exc
        if response.status_code != 200:
            raise StatusError(response.status_code, response.text)
        return response.json()
