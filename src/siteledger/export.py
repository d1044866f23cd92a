"""Flatten the record corpus into a polars DataFrame for export."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import polars as pl

from siteledger.records import (
    COL_LATITUDE,
    COL_LONGITUDE,
    COL_REPAIR_RANK,
    CORE_COLUMNS,
    Record,
)

EXPORT_FORMATS = ("csv", "parquet")


def records_to_frame(records: Iterable[Record]) -> pl.DataFrame:
    """One row per record: core columns first, then attribute columns.

    Attribute columns appear in first-seen order and are stored as strings,
    since the same column may hold mixed types across categories.
    """
    rows = [r.to_flat() for r in records]
    dynamic: list[str] = []
    for row in rows:
        for name in row:
            if name not in CORE_COLUMNS and name not in dynamic:
                dynamic.append(name)

    schema: dict[str, pl.DataType] = {name: pl.Utf8 for name in CORE_COLUMNS}
    schema[COL_LATITUDE] = pl.Float64
    schema[COL_LONGITUDE] = pl.Float64
    schema[COL_REPAIR_RANK] = pl.Int64
    for name in dynamic:
        schema[name] = pl.Utf8

    data = {
        name: [
            _as_text(row.get(name)) if schema[name] == pl.Utf8 else row.get(name)
            for row in rows
        ]
        for name in schema
    }
    return pl.DataFrame(data, schema=schema)


def _as_text(value: object) -> str | None:
    if value is None:
        return None
    return str(value)


def write_export(records: Iterable[Record], path: Path, fmt: str = "csv") -> int:
    """Write *records* to *path* as CSV or Parquet.

    Returns:
        Number of rows written.
    """
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format {fmt!r}; expected one of {EXPORT_FORMATS}")
    df = records_to_frame(records)
    path.parent.mkdir(parents=True, exist_ok=True)
    if fmt == "parquet":
        df.write_parquet(path)
    else:
        df.write_csv(path)
    return df.height
