"""Shared service layer for the siteledger UI boundary.

Every operation returns an envelope instead of raising::

    {"success": True, "data": ...}
    {"success": False, "message": "...", "error": "<code>"}

The FastAPI server and the CLI both go through this module.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable

from siteledger.errors import (
    CorruptLookupError,
    DuplicateKeyError,
    ImportHeaderError,
    MissingWorkbookError,
    RecordValidationError,
    SiteLedgerError,
)
from siteledger.export import write_export
from siteledger.geo import RegionResolver
from siteledger.importer import BulkImportPipeline, list_sheet_names
from siteledger.records import Record
from siteledger.repository import RecordRepository

_log = logging.getLogger(__name__)

# Payload keys naming the key a record is currently stored under.
_ORIGINAL_KEY_FIELDS = ("original_key", "originalKey", "previous_key", "oldRecordId")


def error_code(exc: BaseException) -> str:
    """Map an exception onto the envelope ``error`` code."""
    if isinstance(exc, DuplicateKeyError):
        return "duplicate_key"
    if isinstance(exc, MissingWorkbookError):
        return "missing_workbook"
    if isinstance(exc, ImportHeaderError):
        return "import_header"
    if isinstance(exc, (RecordValidationError, ValueError)):
        return "validation"
    if isinstance(exc, (CorruptLookupError, OSError)):
        return "io"
    return "internal"


def ok(data: Any = None) -> dict[str, Any]:
    return {"success": True, "data": data}


def fail(exc: BaseException) -> dict[str, Any]:
    return {"success": False, "message": str(exc) or type(exc).__name__, "error": error_code(exc)}


def _record_dict(record: Record) -> dict[str, Any]:
    data = record.model_dump()
    data["flat"] = record.to_flat()
    return data


class LedgerService:
    """Envelope-returning operations over one data directory.

    Args:
        data_dir: Directory holding the category and lookup files.
        resolver: Coordinate-to-region resolver for imports; defaults to
            the one configured by ``region_boundaries``.
    """

    def __init__(self, data_dir: Path, *, resolver: RegionResolver | None = None) -> None:
        self.data_dir = data_dir.resolve()
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.repository = RecordRepository(self.data_dir)
        self._resolver = resolver
        self._importer: BulkImportPipeline | None = None

    @property
    def importer(self) -> BulkImportPipeline:
        if self._importer is None:
            self._importer = BulkImportPipeline(self.repository, resolver=self._resolver)
        return self._importer

    async def _call(self, op: str, awaitable: Awaitable[Any]) -> dict[str, Any]:
        try:
            return ok(await awaitable)
        except (SiteLedgerError, ValueError, OSError) as exc:
            _log.debug("%s failed", op, exc_info=True)
            return fail(exc)
        except Exception as exc:
            _log.exception("%s failed unexpectedly", op)
            return fail(exc)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def get_all_records(self, *, consistent: bool = False) -> dict[str, Any]:
        async def run() -> list[dict[str, Any]]:
            records = await self.repository.list_all(consistent=consistent)
            return [_record_dict(r) for r in records]

        return await self._call("get_all_records", run())

    async def get_record(self, record_key: str) -> dict[str, Any]:
        async def run() -> dict[str, Any] | None:
            record = await self.repository.get(record_key)
            return _record_dict(record) if record is not None else None

        return await self._call("get_record", run())

    async def create_record(self, payload: dict[str, Any]) -> dict[str, Any]:
        async def run() -> dict[str, Any]:
            record = Record.from_payload(payload)
            return _record_dict(await self.repository.create(record))

        return await self._call("create_record", run())

    async def update_record(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Update a record.

        The payload carries the new record.  If its key changed, the old key
        goes in ``original_key`` (``originalKey`` is accepted too).
        """

        async def run() -> dict[str, Any]:
            record = Record.from_payload(payload)
            original = next(
                (payload[k] for k in _ORIGINAL_KEY_FIELDS if payload.get(k) not in (None, "")),
                record.record_key,
            )
            updated = await self.repository.update(str(original).strip(), record)
            return _record_dict(updated)

        return await self._call("update_record", run())

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def list_regions(self) -> dict[str, Any]:
        return await self._call("list_regions", _thread(self.repository.lookups.list_regions))

    async def list_categories(self) -> dict[str, Any]:
        return await self._call(
            "list_categories", _thread(self.repository.lookups.list_categories)
        )

    async def add_region(self, name: str) -> dict[str, Any]:
        async def run() -> dict[str, Any]:
            return {"name": name.strip(), "added": await self.repository.register_region(name)}

        return await self._call("add_region", run())

    async def add_category(self, name: str) -> dict[str, Any]:
        async def run() -> dict[str, Any]:
            return {"name": name.strip(), "added": await self.repository.register_category(name)}

        return await self._call("add_category", run())

    async def get_color(self, category: str, region: str) -> dict[str, Any]:
        return await self._call(
            "get_color", _thread(self.repository.lookups.get_color, category, region)
        )

    async def set_color(self, category: str, region: str, value: str) -> dict[str, Any]:
        return await self._call(
            "set_color", _thread(self.repository.lookups.set_color, category, region, value)
        )

    async def get_colors(self) -> dict[str, Any]:
        return await self._call("get_colors", _thread(self.repository.lookups.colors))

    # ------------------------------------------------------------------
    # Import / export / maintenance
    # ------------------------------------------------------------------

    async def list_sheet_names(self, file: str | Path) -> dict[str, Any]:
        return await self._call("list_sheet_names", _thread(list_sheet_names, Path(file)))

    async def import_sheet(self, file: str | Path, sheet_name: str) -> dict[str, Any]:
        async def run() -> dict[str, Any]:
            summary = await self.importer.import_sheet(Path(file), sheet_name)
            return summary.to_dict()

        return await self._call("import_sheet", run())

    async def export_records(self, path: str | Path, fmt: str = "csv") -> dict[str, Any]:
        async def run() -> dict[str, Any]:
            records = await self.repository.list_all(consistent=True)
            rows = await _thread(write_export, records, Path(path), fmt)
            return {"path": str(path), "format": fmt, "rows": rows}

        return await self._call("export_records", run())

    async def delete_all_data_files(self) -> dict[str, Any]:
        async def run() -> dict[str, Any]:
            return {"removed": await self.repository.purge()}

        return await self._call("delete_all_data_files", run())


async def _thread(fn: Any, *args: Any) -> Any:
    return await asyncio.to_thread(fn, *args)
