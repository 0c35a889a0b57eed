from __future__ import annotations

import re
from typing import Sequence

# Canonical column sets (match the destination tables created by DDL below)
TABLE_PRESETS: dict[str, dict] = {
    "events": {
        "cols": [
            "id",
            "timestamp",
            "action",
            "status",
            "occurrences",
            "client",
            "check",
        ],
    },
    "metrics": {
        "cols": [
            "source",
            "client",
            "client_info",
            "interval",
            "issued",
            "executed",
            "received",
            "duration",
            "metric",
            "key",
            "val",
            "ts",
        ],
    },
}

_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def quote_ident(name: str) -> str:
    """Quote a (optionally schema-qualified) table or column identifier."""
    if not _IDENT.match(name):
        raise ValueError(f"Invalid identifier: {name!r}")
    return ".".join(f'"{part}"' for part in name.split("."))


def insert_statement(table: str, cols: Sequence[str]) -> str:
    """INSERT ... VALUES (?, ...) with positional parameters for bulk_args."""
    ins_cols = ", ".join(quote_ident(c) for c in cols)
    placeholders = ", ".join("?" for _ in cols)
    return f"INSERT INTO {quote_ident(table)} ({ins_cols}) VALUES ({placeholders})"


# DDL for the destination tables
EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    "id" STRING PRIMARY KEY,
    "timestamp" TIMESTAMP,
    "action" STRING,
    "status" STRING,
    "occurrences" INTEGER,
    "client" OBJECT,
    "check" OBJECT
)
"""

METRICS_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    "source" STRING,
    "client" STRING,
    "client_info" OBJECT,
    "interval" INTEGER,
    "issued" TIMESTAMP,
    "executed" TIMESTAMP,
    "received" TIMESTAMP,
    "duration" FLOAT,
    "metric" STRING,
    "key" STRING,
    "val" FLOAT,
    "ts" TIMESTAMP,
    "day" TIMESTAMP GENERATED ALWAYS AS date_trunc('day', "ts"),
    PRIMARY KEY ("client", "key", "ts", "day")
) CLUSTERED BY ("key") PARTITIONED BY ("day") WITH (number_of_replicas = '2-4')
"""

DDL = {"events": EVENTS_DDL, "metrics": METRICS_DDL}


def create_table_statement(kind: str, table: str) -> str:
    return DDL[kind].format(table=quote_ident(table)).strip()
