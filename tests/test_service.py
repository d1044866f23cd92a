"""Service-layer envelopes and HTTP API endpoints."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

PAYLOAD: dict[str, Any] = {
    "recordKey": "S1",
    "category": "Weir",
    "region": "BC",
    "siteName": "Fraser Weir",
    "latitude": 50.0,
    "longitude": -120.0,
    "status": "active",
    "repairRank": "2",
    "attributes": {"Inspection": {"LastDate": "2024-05-01"}},
}


@pytest.fixture
def service(data_dir: Path):
    from siteledger.ui.service import LedgerService

    return LedgerService(data_dir)


# ────────────────────────────────────────────────────────────────
# Service layer
# ────────────────────────────────────────────────────────────────


class TestErrorCodes:
    def test_mapping(self) -> None:
        from siteledger.errors import (
            DuplicateKeyError,
            ImportHeaderError,
            MissingWorkbookError,
            RecordValidationError,
        )
        from siteledger.ui.service import error_code

        assert error_code(DuplicateKeyError("S1", "Weir")) == "duplicate_key"
        assert error_code(MissingWorkbookError("Weir", Path("Weir.xlsx"))) == "missing_workbook"
        assert error_code(ImportHeaderError("no header")) == "import_header"
        assert error_code(RecordValidationError("bad")) == "validation"
        assert error_code(PermissionError("locked")) == "io"
        assert error_code(RuntimeError("?")) == "internal"


class TestRecordEnvelopes:
    def test_create_and_list(self, service) -> None:
        created = asyncio.run(service.create_record(PAYLOAD))
        assert created["success"] is True
        assert created["data"]["record_key"] == "S1"
        assert created["data"]["status"] == "Active"
        assert created["data"]["flat"]["Inspection - LastDate"] == "2024-05-01"

        listed = asyncio.run(service.get_all_records())
        assert listed["success"] is True
        assert [r["record_key"] for r in listed["data"]] == ["S1"]

    def test_duplicate_envelope(self, service) -> None:
        asyncio.run(service.create_record(PAYLOAD))
        result = asyncio.run(service.create_record({**PAYLOAD, "category": "Cableway"}))

        assert result["success"] is False
        assert result["error"] == "duplicate_key"
        assert "Weir" in result["message"]

    def test_validation_envelope(self, service) -> None:
        result = asyncio.run(service.create_record({**PAYLOAD, "latitude": 120}))
        assert result == {
            "success": False,
            "message": result["message"],
            "error": "validation",
        }
        assert "latitude" in result["message"]

    def test_update_with_original_key(self, service) -> None:
        asyncio.run(service.create_record(PAYLOAD))
        result = asyncio.run(
            service.update_record(
                {**PAYLOAD, "recordKey": "S2", "category": "Tank", "originalKey": "S1"}
            )
        )
        assert result["success"] is True

        missing = asyncio.run(service.get_record("S1"))
        found = asyncio.run(service.get_record("S2"))
        assert missing == {"success": True, "data": None}
        assert found["data"]["category"] == "Tank"

    def test_lookups_and_colors(self, service) -> None:
        assert asyncio.run(service.add_region("ON"))["data"] == {"name": "ON", "added": True}
        assert asyncio.run(service.add_region("on"))["data"] == {"name": "on", "added": False}
        assert asyncio.run(service.add_category("Tank"))["data"]["added"] is True
        assert asyncio.run(service.list_regions())["data"] == ["ON"]
        assert asyncio.run(service.list_categories())["data"] == ["Tank"]
        assert (service.data_dir / "Tank.xlsx").exists()

        asyncio.run(service.set_color("Tank", "ON", "#00ff00"))
        assert asyncio.run(service.get_color("Tank", "ON"))["data"] == "#00ff00"
        assert asyncio.run(service.get_colors())["data"] == {"Tank|ON": "#00ff00"}

    def test_invalid_region_name(self, service) -> None:
        result = asyncio.run(service.add_region("a/b"))
        assert result["success"] is False
        assert result["error"] == "validation"


class TestImportExportEnvelopes:
    def test_import_and_export(self, service, make_xlsx, tmp_path: Path) -> None:
        import polars as pl

        source = make_xlsx({
            "Cableway BC": [
                ["Station ID", "Latitude", "Longitude"],
                ["CW-1", 53.9, -122.7],
            ]
        })
        assert asyncio.run(service.list_sheet_names(source))["data"] == ["Cableway BC"]

        imported = asyncio.run(service.import_sheet(source, "Cableway BC"))
        assert imported["success"] is True
        assert imported["data"]["imported"] == 1

        out = tmp_path / "out" / "records.csv"
        exported = asyncio.run(service.export_records(out))
        assert exported["data"]["rows"] == 1
        assert pl.read_csv(out)["RecordID"].to_list() == ["CW-1"]

    def test_missing_source_sheet(self, service, make_xlsx) -> None:
        source = make_xlsx({"Weir BC": [["Station ID", "Latitude"]]})
        result = asyncio.run(service.import_sheet(source, "Nope"))
        assert result["success"] is False
        assert result["error"] == "import_header"

    def test_missing_source_file(self, service, tmp_path: Path) -> None:
        result = asyncio.run(service.list_sheet_names(tmp_path / "absent.xlsx"))
        assert result["success"] is False
        assert result["error"] == "io"

    def test_delete_all(self, service) -> None:
        asyncio.run(service.create_record(PAYLOAD))
        result = asyncio.run(service.delete_all_data_files())
        assert result == {"success": True, "data": {"removed": 2}}
        assert asyncio.run(service.get_all_records())["data"] == []


# ────────────────────────────────────────────────────────────────
# HTTP API
# ────────────────────────────────────────────────────────────────


class TestApiEndpoints:
    @pytest.fixture
    def client(self, data_dir: Path):
        from fastapi.testclient import TestClient

        from siteledger.ui.server import create_app

        app = create_app(data_dir)
        return TestClient(app)

    def test_record_routes(self, client) -> None:
        resp = client.post("/api/records", json=PAYLOAD)
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        resp = client.get("/api/records")
        assert [r["record_key"] for r in resp.json()["data"]] == ["S1"]

        resp = client.get("/api/records/S1")
        assert resp.json()["data"]["region"] == "BC"

        resp = client.put("/api/records", json={**PAYLOAD, "region": "ON"})
        assert resp.json()["data"]["region"] == "ON"

    def test_duplicate_returns_envelope(self, client) -> None:
        client.post("/api/records", json=PAYLOAD)
        resp = client.post("/api/records", json={**PAYLOAD, "category": "Tank"})
        assert resp.status_code == 200
        assert resp.json()["error"] == "duplicate_key"

    def test_lookup_routes(self, client) -> None:
        assert client.post("/api/regions", json={"name": "ON"}).json()["data"]["added"] is True
        assert client.get("/api/regions").json()["data"] == ["ON"]
        assert client.post("/api/categories", json={"name": "Tank"}).json()["success"] is True
        assert client.get("/api/categories").json()["data"] == ["Tank"]

        client.post("/api/color", json={"category": "Tank", "region": "ON", "color": "#123456"})
        resp = client.get("/api/color", params={"category": "Tank", "region": "ON"})
        assert resp.json()["data"] == "#123456"
        assert client.get("/api/colors").json()["data"] == {"Tank|ON": "#123456"}

    def test_import_routes(self, client, make_xlsx) -> None:
        source = make_xlsx({"Weir QC": [["RecordID", "Latitude", "Longitude"], ["W-1", 46.8, -71.2]]})

        resp = client.post("/api/import/sheets", json={"file": str(source)})
        assert resp.json()["data"] == ["Weir QC"]

        resp = client.post("/api/import", json={"file": str(source), "sheet_name": "Weir QC"})
        body = resp.json()["data"]
        assert body["imported"] == 1

        log = client.get("/api/import/log", params={"import_id": body["import_id"]}).json()
        assert log[0]["event_type"] == "import_started"
        assert client.get("/api/import/log", params={"import_id": "../x"}).status_code == 400

    def test_delete_requires_confirm(self, client) -> None:
        client.post("/api/records", json=PAYLOAD)
        assert client.delete("/api/data").status_code == 400
        assert client.get("/api/records").json()["data"] != []

        resp = client.delete("/api/data", params={"confirm": "true"})
        assert resp.json()["data"]["removed"] == 2

    def test_events(self, client) -> None:
        client.post("/api/records", json=PAYLOAD)
        client.post("/api/records", json=PAYLOAD)

        events = client.get("/api/events", params={"event_type": "record_duplicate"}).json()
        assert len(events) == 1
        assert events[0]["context"]["record_key"] == "S1"
        assert events[0]["error_code"] == "duplicate_key"
