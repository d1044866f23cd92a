"""Shared fixtures for siteledger tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest


@pytest.fixture(autouse=True)
def _detach_event_sink():
    """Keep the module-level event sink from leaking between tests."""
    from siteledger.logging.events import reset_sink

    reset_sink()
    yield
    reset_sink()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    d = tmp_path / "data"
    d.mkdir()
    return d


@pytest.fixture
def make_xlsx(tmp_path: Path):
    """Factory: write a source workbook from ``{sheet name: rows}``."""
    from openpyxl import Workbook

    def _make(sheets: dict[str, list[list[Any]]], name: str = "source.xlsx") -> Path:
        wb = Workbook()
        wb.remove(wb.active)
        for title, rows in sheets.items():
            ws = wb.create_sheet(title)
            for row in rows:
                ws.append(row)
        path = tmp_path / name
        wb.save(path)
        return path

    return _make


@pytest.fixture
def make_record():
    """Factory: build a valid record with sensible defaults."""
    from siteledger.records import Record

    def _make(key: str = "ST-001", **overrides: Any) -> Record:
        values: dict[str, Any] = {
            "record_key": key,
            "category": "Pump Station",
            "region": "ON",
            "site_name": f"Site {key}",
            "latitude": 43.7,
            "longitude": -79.4,
            "status": "Active",
            "repair_rank": 2,
            "attributes": {},
        }
        values.update(overrides)
        return Record(**values)

    return _make
