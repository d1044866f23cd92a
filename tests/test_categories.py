"""Tests for per-category workbooks."""

from __future__ import annotations

from pathlib import Path

import pytest

from siteledger.records import CORE_COLUMNS


@pytest.fixture
def lookups(data_dir: Path):
    from siteledger.lookups import LookupStore

    store = LookupStore(data_dir / "lookups.xlsx")
    store.add_region("ON")
    store.add_region("QC")
    return store


@pytest.fixture
def store(data_dir: Path, lookups):
    from siteledger.categories import CategoryStore

    return CategoryStore(data_dir, lookups)


class TestEnsure:
    def test_one_sheet_per_known_region(self, store, data_dir: Path):
        from siteledger import schema

        assert store.ensure("Tank") is True
        assert (data_dir / "Tank.xlsx").exists()
        wb = store.open("Tank")
        assert wb.sheetnames == ["ON", "QC"]
        for ws in wb.worksheets:
            assert schema.read_headers(ws) == list(CORE_COLUMNS)

    def test_idempotent(self, store):
        assert store.ensure("Tank") is True
        assert store.ensure("Tank") is False

    def test_extra_region_included(self, store):
        store.ensure("Tank", regions=["BC", "on"])
        assert store.open("Tank").sheetnames == ["ON", "QC", "BC"]

    def test_no_regions_uses_placeholder_until_first_region(self, data_dir: Path):
        from siteledger.categories import CategoryStore
        from siteledger.lookups import LookupStore

        store = CategoryStore(data_dir, LookupStore(data_dir / "lookups.xlsx"))
        store.ensure("Tank")
        assert store.open("Tank").sheetnames == ["Sheet"]

        assert store.ensure_region_sheet("Tank", "ON") == "ON"
        assert store.open("Tank").sheetnames == ["ON"]

    def test_open_missing(self, store):
        from siteledger.errors import MissingWorkbookError

        with pytest.raises(MissingWorkbookError):
            store.open("Nope")


class TestRegionSheets:
    def test_find_case_insensitive(self, store):
        store.ensure("Tank")
        wb = store.open("Tank")
        assert store.find_region_sheet(wb, "ON").title == "ON"
        assert store.find_region_sheet(wb, "qc").title == "QC"
        assert store.find_region_sheet(wb, "BC") is None

    def test_new_sheet_copies_dynamic_columns(self, store):
        from siteledger import schema

        store.ensure("Tank")
        wb = store.open("Tank")
        for ws in wb.worksheets:
            schema.reconcile(ws, ["Civil - Material"])
        store.save("Tank", wb)

        assert store.ensure_region_sheet("Tank", "BC") == "BC"
        wb = store.open("Tank")
        assert schema.read_headers(wb["BC"]) == list(CORE_COLUMNS) + ["Civil - Material"]


class TestRows:
    def test_append_and_remove(self, store, make_record):
        from siteledger import schema

        store.ensure("Pump Station")
        wb = store.open("Pump Station")
        ws = wb["ON"]
        schema.reconcile(ws, ["Electrical - Voltage"])
        record = make_record(attributes={"Electrical": {"Voltage": 600}, "Unmapped": {"x": 1}})

        row = store.append_row(ws, record)
        assert row == schema.FIRST_DATA_ROW
        hmap = schema.header_map(ws)
        assert ws.cell(row=row, column=hmap["RecordID"]).value == "ST-001"
        assert ws.cell(row=row, column=hmap["Electrical - Voltage"]).value == 600
        assert "Unmapped - x" not in hmap
        store.save("Pump Station", wb)

        assert store.remove_row_by_key("Pump Station", "ST-001") is True
        assert store.remove_row_by_key("Pump Station", "ST-001") is False
        records, skipped = store.read_records("Pump Station")
        assert records == [] and skipped == 0

    def test_append_requires_core_columns(self, store, make_record):
        from openpyxl import Workbook

        from siteledger.errors import MissingColumnError

        ws = Workbook().active
        ws.cell(row=2, column=1, value="RecordID")
        with pytest.raises(MissingColumnError):
            store.append_row(ws, make_record())

    def test_remove_matches_numeric_keys(self, store):
        store.ensure("Tank")
        wb = store.open("Tank")
        ws = wb["QC"]
        ws.cell(row=3, column=1, value=1001)
        ws.cell(row=3, column=5, value=46.0)
        ws.cell(row=3, column=6, value=-71.0)
        store.save("Tank", wb)

        assert store.read_keys("Tank") == {"1001": "QC"}
        assert store.remove_row_by_key("Tank", "1001") is True
        assert store.read_keys("Tank") == {}

    def test_read_records_counts_skipped(self, store, make_record):
        store.ensure("Tank")
        wb = store.open("Tank")
        store.append_row(wb["ON"], make_record("T-1", category="Tank"))
        wb["ON"].cell(row=4, column=1, value="T-2")  # no coordinates
        store.save("Tank", wb)

        records, skipped = store.read_records("Tank")
        assert [r.record_key for r in records] == ["T-1"]
        assert skipped == 1


class TestListing:
    def test_lookup_order_then_orphans(self, store, lookups, data_dir: Path):
        from openpyxl import Workbook

        lookups.add_category("Tank")
        lookups.add_category("Pump Station")
        lookups.add_category("Never Created")
        store.ensure("Pump Station")
        store.ensure("Tank")
        Workbook().save(data_dir / "Orphan.xlsx")
        (data_dir / ".Tank_abc.tmp").write_text("partial")

        assert store.list_categories() == ["Tank", "Pump Station", "Orphan"]

    def test_purge_removes_all_workbooks(self, store, data_dir: Path):
        store.ensure("Tank")
        (data_dir / "notes.txt").write_text("keep me")

        removed = store.purge()

        assert {p.name for p in removed} == {"Tank.xlsx", "lookups.xlsx"}
        assert (data_dir / "notes.txt").exists()
