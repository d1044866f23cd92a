"""Tests for the Record model and column naming helpers."""

from __future__ import annotations

import pytest


class TestAttributeColumns:
    def test_split_on_first_separator(self):
        from siteledger.records import split_attribute_column

        assert split_attribute_column("Electrical - Voltage") == ("Electrical", "Voltage")
        assert split_attribute_column("Site - Access - Road") == ("Site", "Access - Road")

    def test_non_attribute_names(self):
        from siteledger.records import is_attribute_column, split_attribute_column

        assert split_attribute_column("RecordID") is None
        assert split_attribute_column(" - Voltage") is None
        assert not is_attribute_column("Latitude")

    def test_dynamic_columns_skip_core_and_blanks(self):
        from siteledger.records import CORE_COLUMNS, dynamic_columns

        headers = list(CORE_COLUMNS) + [None, "A - x", "B - y"]
        assert dynamic_columns(headers) == ["A - x", "B - y"]


class TestNormalization:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("active", "Active"),
            ("INACTIVE", "Inactive"),
            (" Mothballed ", "Mothballed"),
            ("", "Unknown"),
            (None, "Unknown"),
            ("decommissioned", "Unknown"),
        ],
    )
    def test_normalize_status(self, raw, expected):
        from siteledger.records import normalize_status

        assert normalize_status(raw) == expected

    def test_repair_rank(self):
        from siteledger.records import coerce_repair_rank

        assert coerce_repair_rank("") is None
        assert coerce_repair_rank(None) is None
        assert coerce_repair_rank("3") == 3
        assert coerce_repair_rank(5.0) == 5
        with pytest.raises(ValueError):
            coerce_repair_rank(6)
        with pytest.raises(ValueError):
            coerce_repair_rank("2.5")
        with pytest.raises(ValueError):
            coerce_repair_rank("high")

    def test_parse_float(self):
        from siteledger.records import parse_float

        assert parse_float(" 43.5 ") == 43.5
        assert parse_float(7) == 7.0
        assert parse_float("") is None
        assert parse_float("north") is None
        assert parse_float(float("nan")) is None

    def test_cell_text(self):
        from siteledger.records import cell_text

        assert cell_text(123.0) == "123"
        assert cell_text(" ST-1 ") == "ST-1"
        assert cell_text(None) == ""


class TestNames:
    def test_category_rejects_path_characters(self):
        from siteledger.errors import InvalidNameError
        from siteledger.records import validate_category_name

        assert validate_category_name(" Pump Station ") == "Pump Station"
        with pytest.raises(InvalidNameError):
            validate_category_name("a/b")
        with pytest.raises(InvalidNameError):
            validate_category_name("  ")

    def test_region_must_be_sheet_title(self):
        from siteledger.errors import InvalidNameError
        from siteledger.records import validate_region_name

        assert validate_region_name("ON") == "ON"
        with pytest.raises(InvalidNameError):
            validate_region_name("x" * 32)
        with pytest.raises(InvalidNameError):
            validate_region_name("North[1]")


class TestRecord:
    def test_defaults_and_coercion(self):
        from siteledger.records import Record

        r = Record(record_key=1001, category="Tank", region="QC", latitude=46.8, longitude=-71.2)
        assert r.record_key == "1001"
        assert r.status == "Unknown"
        assert r.repair_rank is None
        assert r.site_name == ""

    def test_coordinate_ranges(self):
        from siteledger.errors import RecordValidationError
        from siteledger.records import Record

        with pytest.raises(RecordValidationError, match="latitude"):
            Record.validated(record_key="a", category="T", region="ON", latitude=91, longitude=0)
        with pytest.raises(RecordValidationError, match="longitude"):
            Record.validated(record_key="a", category="T", region="ON", latitude=0, longitude=-181)

    def test_empty_key_rejected(self):
        from siteledger.errors import RecordValidationError
        from siteledger.records import Record

        with pytest.raises(RecordValidationError):
            Record.validated(record_key="  ", category="T", region="ON", latitude=0, longitude=0)

    def test_blank_attributes_dropped(self, make_record):
        r = make_record(attributes={"Electrical": {"Voltage": 600, "Phase": ""}, "Empty": {"x": None}})
        assert r.attributes == {"Electrical": {"Voltage": 600}}
        assert r.attribute_columns() == ["Electrical - Voltage"]

    def test_section_may_not_contain_separator(self, make_record):
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            make_record(attributes={"A - B": {"x": 1}})

    def test_to_flat(self, make_record):
        from siteledger.records import CORE_COLUMNS

        r = make_record(attributes={"Electrical": {"Voltage": 600}})
        flat = r.to_flat()
        assert list(flat)[: len(CORE_COLUMNS)] == list(CORE_COLUMNS)
        assert flat["RecordID"] == "ST-001"
        assert flat["Electrical - Voltage"] == 600


class TestFromPayload:
    def test_snake_case_with_nested_attributes(self):
        from siteledger.records import Record

        r = Record.from_payload({
            "record_key": "ST-9",
            "category": "Tank",
            "region": "ON",
            "latitude": "44.1",
            "longitude": "-79.9",
            "repair_rank": "",
            "attributes": {"Civil": {"Material": "Concrete"}},
        })
        assert r.latitude == 44.1
        assert r.repair_rank is None
        assert r.attributes == {"Civil": {"Material": "Concrete"}}

    def test_storage_columns_and_flat_attributes(self):
        from siteledger.records import Record

        r = Record.from_payload({
            "RecordID": "ST-10",
            "Category": "Tank",
            "Region": "QC",
            "SiteName": "Depot",
            "Latitude": 46.0,
            "Longitude": -72.0,
            "Status": "inactive",
            "RepairRank": 4,
            "Civil - Material": "Steel",
            "attributes": {"Civil": {"Material": "Concrete", "Height": 12}},
        })
        assert r.site_name == "Depot"
        assert r.status == "Inactive"
        assert r.repair_rank == 4
        # Flat keys win over the nested mapping
        assert r.attributes == {"Civil": {"Material": "Steel", "Height": 12}}

    def test_invalid_payload(self):
        from siteledger.errors import RecordValidationError
        from siteledger.records import Record

        with pytest.raises(RecordValidationError):
            Record.from_payload({"record_key": "x"})
        with pytest.raises(RecordValidationError):
            Record.from_payload(["not", "a", "mapping"])


class TestFromRow:
    HEADERS = ["RecordID", "Category", "SiteName", "Region", "Latitude", "Longitude",
               "Status", "RepairRank", "Civil - Material"]

    def test_region_falls_back_to_sheet_title(self):
        from siteledger.records import Record

        values = ["ST-1", "Tank", "Depot", None, 45.0, -75.0, "active", "9", ""]
        r = Record.from_row(self.HEADERS, values, category="Tank", sheet_title="ON")
        assert r is not None
        assert r.region == "ON"
        assert r.status == "Active"
        assert r.repair_rank is None
        assert r.attributes == {}

    def test_unusable_rows(self):
        from siteledger.records import Record

        no_key = [None, "Tank", "", "ON", 45.0, -75.0, None, None, None]
        bad_lat = ["ST-1", "Tank", "", "ON", "north", -75.0, None, None, None]
        out_of_range = ["ST-1", "Tank", "", "ON", 95.0, -75.0, None, None, None]
        for values in (no_key, bad_lat, out_of_range):
            assert Record.from_row(self.HEADERS, values, category="Tank", sheet_title="ON") is None

    def test_category_comes_from_file(self):
        from siteledger.records import Record

        values = ["ST-1", "Something Else", "", "ON", 45.0, -75.0, None, None, "Steel"]
        r = Record.from_row(self.HEADERS, values, category="Tank", sheet_title="ON")
        assert r.category == "Tank"
        assert r.attributes == {"Civil": {"Material": "Steel"}}
