"""Bulk import of records from an external spreadsheet.

Rows of one source worksheet are replayed through
:meth:`RecordRepository.create`.  The sheet name decides the category and,
when it ends in a two-letter code (``"Pump Station ON"``), the region.
Otherwise the region comes from a Region/Province column, then from the
configured coordinate resolver.

Produces an ``import_report.json`` under ``import_reports/`` summarising what
was imported, which keys were duplicates, and which rows failed.
"""

from __future__ import annotations

import asyncio
import json
import re
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from openpyxl import load_workbook

from siteledger.errors import DuplicateKeyError, ImportHeaderError
from siteledger.geo import RegionResolver, resolver_from_config
from siteledger.logging.events import (
    DUPLICATE_KEY,
    IMPORT_ROW_ERROR,
    EventType,
    emit_info,
    emit_warning,
)
from siteledger.records import (
    Record,
    cell_text,
    parse_float,
    split_attribute_column,
    validate_category_name,
)
from siteledger.repository import RecordRepository
from siteledger.utils.files import atomic_json_write

_SHEET_REGION_RE = re.compile(r"^(.+?)\s+([A-Za-z]{2})$")

# Normalised header name -> record field
_HEADER_ALIASES: dict[str, str] = {
    "recordid": "record_key",
    "stationid": "record_key",
    "latitude": "latitude",
    "lat": "latitude",
    "longitude": "longitude",
    "lon": "longitude",
    "long": "longitude",
    "lng": "longitude",
    "sitename": "site_name",
    "stationname": "site_name",
    "region": "region",
    "province": "region",
    "status": "status",
    "repairrank": "repair_rank",
    "repairpriority": "repair_rank",
    "repairranking": "repair_rank",
}


def _normalize_header(value: Any) -> str:
    """``"Station ID"``, ``"station_id"`` and ``"StationID"`` all map to ``stationid``."""
    if value is None:
        return ""
    return re.sub(r"[\s_]+", "", str(value)).lower()


def split_sheet_name(sheet_name: str) -> tuple[str, str]:
    """Split ``"<category> <XX>"`` into category and upper-cased region code.

    Returns:
        ``(category, region)``; region is ``""`` when the name has no suffix.
    """
    name = sheet_name.strip()
    m = _SHEET_REGION_RE.match(name)
    if m:
        return m.group(1).strip(), m.group(2).upper()
    return name, ""


@dataclass
class ImportSummary:
    """Outcome of one sheet import."""

    import_id: str
    source: str
    sheet: str
    category: str
    imported: int = 0
    duplicates: list[str] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    skipped: int = 0
    report_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def list_sheet_names(source_file: Path) -> list[str]:
    """Worksheet names of an external workbook, in file order."""
    wb = load_workbook(source_file, read_only=True)
    try:
        return list(wb.sheetnames)
    finally:
        wb.close()


def _read_sheet(source_file: Path, sheet_name: str) -> list[tuple[Any, ...]]:
    wb = load_workbook(source_file, read_only=True, data_only=True)
    try:
        if sheet_name not in wb.sheetnames:
            raise ImportHeaderError(f'Worksheet "{sheet_name}" not found in {source_file.name}')
        return [tuple(row) for row in wb[sheet_name].iter_rows(values_only=True)]
    finally:
        wb.close()


def find_header_row(rows: list[tuple[Any, ...]], scan_rows: int = 10) -> int:
    """Index of the first row naming both a RecordID-like and a Latitude-like column.

    Raises:
        ImportHeaderError: If no such row is among the first *scan_rows*.
    """
    for idx, row in enumerate(rows[:scan_rows]):
        fields = {_HEADER_ALIASES.get(_normalize_header(v)) for v in row}
        if "record_key" in fields and "latitude" in fields:
            return idx
    raise ImportHeaderError(
        f"No RecordID/Latitude header row in the first {scan_rows} rows"
    )


def _map_columns(header: tuple[Any, ...]) -> tuple[dict[str, int], dict[int, tuple[str, str]]]:
    """Split a header row into core-field positions and attribute positions."""
    core: dict[str, int] = {}
    attributes: dict[int, tuple[str, str]] = {}
    for idx, value in enumerate(header):
        if value is None:
            continue
        parts = split_attribute_column(str(value).strip())
        if parts is not None:
            attributes[idx] = parts
            continue
        field_name = _HEADER_ALIASES.get(_normalize_header(value))
        if field_name and field_name not in core:
            core[field_name] = idx
    return core, attributes


def write_import_report(data_dir: Path, source: Path, report: dict[str, Any]) -> str:
    """Store *report* as a numbered import report and index it.

    Returns:
        Report path relative to *data_dir*.
    """
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    reports_root = data_dir / "import_reports"
    reports_root.mkdir(parents=True, exist_ok=True)

    existing = sorted(
        d.name for d in reports_root.iterdir()
        if d.is_dir() and "_import_" in d.name
    )
    import_n = 1
    if existing:
        try:
            import_n = max(int(name.rsplit("_", 1)[1]) for name in existing) + 1
        except (ValueError, IndexError):
            import_n = len(existing) + 1

    dir_name = f"{ts}_import_{import_n}"
    report_dir = reports_root / dir_name
    report_dir.mkdir(parents=True, exist_ok=True)
    (report_dir / "import_report.json").write_text(json.dumps(report, indent=2, default=str))

    rel_path = f"import_reports/{dir_name}/import_report.json"
    index_path = reports_root / "index.json"
    index: list[dict[str, Any]] = []
    if index_path.exists():
        try:
            index = json.loads(index_path.read_text())
        except (json.JSONDecodeError, OSError):
            index = []
    index.append({
        "timestamp": ts,
        "path": rel_path,
        "file": source.name,
        "sheet": report.get("sheet"),
        "imported": report.get("imported", 0),
    })
    atomic_json_write(index_path, index)
    return rel_path


class BulkImportPipeline:
    """Import external worksheets into a repository.

    Args:
        repository: Destination repository.
        resolver: Coordinate-to-region resolver; defaults to the one
            configured by ``region_boundaries``.
    """

    def __init__(
        self,
        repository: RecordRepository,
        *,
        resolver: RegionResolver | None = None,
    ) -> None:
        self.repository = repository
        self.config = repository.config
        self.resolver = resolver if resolver is not None else resolver_from_config(self.config)

    async def import_sheet(self, source_file: Path, sheet_name: str) -> ImportSummary:
        """Import every usable row of *sheet_name*.

        One bad row never aborts the import: duplicates and failures are
        collected in the summary.

        Raises:
            ImportHeaderError: If the sheet is missing or has no header row.
            InvalidNameError: If the sheet name yields an unusable category.
        """
        source_file = Path(source_file)
        rows = await asyncio.to_thread(_read_sheet, source_file, sheet_name)
        header_idx = find_header_row(rows, int(self.config["import_header_scan_rows"]))
        core, attribute_cols = _map_columns(rows[header_idx])

        category, sheet_region = split_sheet_name(sheet_name)
        category = validate_category_name(category)

        import_id = (
            datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ") + "_" + uuid.uuid4().hex[:8]
        )
        summary = ImportSummary(
            import_id=import_id, source=source_file.name, sheet=sheet_name, category=category
        )
        emit_info(
            EventType.import_started,
            f"Import of {source_file.name}:{sheet_name} started",
            {"source": source_file.name, "sheet": sheet_name, "category": category},
            import_id=import_id,
        )

        seen_regions: set[str] = set()
        for offset, values in enumerate(rows[header_idx + 1:], start=header_idx + 2):
            if all(v is None or (isinstance(v, str) and not v.strip()) for v in values):
                continue
            get = _getter(values, core)

            key = cell_text(get("record_key"))
            lat = parse_float(get("latitude"))
            lon = parse_float(get("longitude"))
            if not key or lat is None or lon is None:
                summary.skipped += 1
                continue

            try:
                region = sheet_region or cell_text(get("region")) or self.resolver(lat, lon)
                if not region:
                    raise ValueError(
                        f"Region could not be determined for ({lat}, {lon})"
                    )
                if region not in seen_regions:
                    await self.repository.register_region(region)
                    seen_regions.add(region)

                attributes: dict[str, dict[str, Any]] = {}
                for idx, (section, field_name) in attribute_cols.items():
                    value = values[idx] if idx < len(values) else None
                    attributes.setdefault(section, {})[field_name] = value

                record = Record.validated(
                    record_key=key,
                    category=category,
                    region=region,
                    site_name=get("site_name"),
                    latitude=lat,
                    longitude=lon,
                    status=get("status"),
                    repair_rank=get("repair_rank"),
                    attributes=attributes,
                )
                await self.repository.create(record)
                summary.imported += 1
            except DuplicateKeyError:
                summary.duplicates.append(key)
                emit_warning(
                    EventType.import_row_failed,
                    f"Row {offset}: Record ID {key!r} already exists",
                    {"row": offset, "record_key": key, "category": category},
                    error_code=DUPLICATE_KEY,
                    import_id=import_id,
                )
            except Exception as exc:
                summary.errors.append({"row": offset, "message": str(exc)})
                emit_warning(
                    EventType.import_row_failed,
                    f"Row {offset}: {exc}",
                    {"row": offset, "record_key": key, "category": category},
                    error_code=IMPORT_ROW_ERROR,
                    import_id=import_id,
                )

        if self.config.get("write_import_reports", True):
            summary.report_path = await asyncio.to_thread(
                write_import_report, self.repository.data_dir, source_file, summary.to_dict()
            )

        emit_info(
            EventType.import_completed,
            f"Import of {source_file.name}:{sheet_name} finished: "
            f"{summary.imported} imported, {len(summary.duplicates)} duplicate(s), "
            f"{len(summary.errors)} error(s)",
            {
                "category": category,
                "imported": summary.imported,
                "duplicates": len(summary.duplicates),
                "errors": len(summary.errors),
                "skipped": summary.skipped,
            },
            import_id=import_id,
        )
        return summary


def _getter(values: tuple[Any, ...], core: dict[str, int]):
    def get(field_name: str) -> Any:
        idx = core.get(field_name)
        if idx is None or idx >= len(values):
            return None
        return values[idx]

    return get
