"""FastAPI server for the siteledger UI boundary.

Routes are thin wrappers over the shared :class:`LedgerService` and return
its envelopes unchanged.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from siteledger.logging.events import set_data_dir
from siteledger.logging.sink import EventSink, is_valid_log_id
from siteledger.ui.service import LedgerService

# The singleton service is set at startup by ``create_app()``.
_service: LedgerService | None = None


def create_app(data_dir: Path) -> FastAPI:
    """Create the FastAPI application for a data directory.

    Args:
        data_dir: Directory holding the category and lookup files.

    Returns:
        Configured FastAPI instance.
    """
    global _service
    _service = LedgerService(data_dir)
    set_data_dir(_service.data_dir)

    from siteledger import __version__

    app = FastAPI(title="siteledger", version=__version__)
    app.include_router(_api_router())
    return app


def _svc() -> LedgerService:
    """Get the singleton service, raising if not initialised."""
    if _service is None:
        raise HTTPException(500, "Service not initialised")
    return _service


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class NameRequest(BaseModel):
    name: str


class ColorRequest(BaseModel):
    category: str
    region: str
    color: str


class SheetRequest(BaseModel):
    file: str


class ImportRequest(BaseModel):
    file: str
    sheet_name: str


class ExportRequest(BaseModel):
    path: str
    format: str = "csv"


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def _api_router():
    from fastapi import APIRouter

    router = APIRouter(prefix="/api")

    # -- Records --

    @router.get("/records")
    async def get_all_records(consistent: bool = Query(False)) -> dict[str, Any]:
        return await _svc().get_all_records(consistent=consistent)

    @router.get("/records/{record_key}")
    async def get_record(record_key: str) -> dict[str, Any]:
        return await _svc().get_record(record_key)

    @router.post("/records")
    async def create_record(payload: dict[str, Any]) -> dict[str, Any]:
        return await _svc().create_record(payload)

    @router.put("/records")
    async def update_record(payload: dict[str, Any]) -> dict[str, Any]:
        return await _svc().update_record(payload)

    # -- Lookups --

    @router.get("/regions")
    async def list_regions() -> dict[str, Any]:
        return await _svc().list_regions()

    @router.post("/regions")
    async def add_region(req: NameRequest) -> dict[str, Any]:
        return await _svc().add_region(req.name)

    @router.get("/categories")
    async def list_categories() -> dict[str, Any]:
        return await _svc().list_categories()

    @router.post("/categories")
    async def add_category(req: NameRequest) -> dict[str, Any]:
        return await _svc().add_category(req.name)

    @router.get("/colors")
    async def get_colors() -> dict[str, Any]:
        return await _svc().get_colors()

    @router.get("/color")
    async def get_color(
        category: str = Query(...),
        region: str = Query(...),
    ) -> dict[str, Any]:
        return await _svc().get_color(category, region)

    @router.post("/color")
    async def set_color(req: ColorRequest) -> dict[str, Any]:
        return await _svc().set_color(req.category, req.region, req.color)

    # -- Import / export --

    @router.post("/import/sheets")
    async def list_sheet_names(req: SheetRequest) -> dict[str, Any]:
        return await _svc().list_sheet_names(req.file)

    @router.post("/import")
    async def import_sheet(req: ImportRequest) -> dict[str, Any]:
        return await _svc().import_sheet(req.file, req.sheet_name)

    @router.post("/export")
    async def export_records(req: ExportRequest) -> dict[str, Any]:
        return await _svc().export_records(req.path, req.format)

    # -- Maintenance --

    @router.delete("/data")
    async def delete_all_data_files(confirm: bool = Query(False)) -> dict[str, Any]:
        if not confirm:
            raise HTTPException(400, "Pass confirm=true to delete all data files")
        return await _svc().delete_all_data_files()

    # -- Event logs --

    @router.get("/events")
    async def get_events(
        level: str | None = Query(None),
        event_type: str | None = Query(None),
        category: str | None = Query(None),
        record_key: str | None = Query(None),
        limit: int = Query(200, ge=1, le=2000),
    ) -> list[dict[str, Any]]:
        sink = EventSink(_svc().data_dir)
        return sink.read_global(
            level=level,
            event_type=event_type,
            category=category,
            record_key=record_key,
            limit=limit,
        )

    @router.get("/import/log")
    async def get_import_log(import_id: str = Query(...)) -> list[dict[str, Any]]:
        if not is_valid_log_id(import_id):
            raise HTTPException(400, "Invalid import_id")
        return EventSink(_svc().data_dir).read_import_log(import_id)

    return router
