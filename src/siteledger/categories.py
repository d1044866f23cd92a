"""Per-category workbooks: one ``<category>.xlsx`` per category.

Each category file holds one worksheet per region.  All region sheets of a
file share one column set; new sheets copy the dynamic columns of an existing
sheet when they are created.

Everything here is synchronous file work.  Callers that mutate a category
must hold that category's write lock (see :mod:`siteledger.serializer`).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterator

from openpyxl import Workbook, load_workbook
from openpyxl.worksheet.worksheet import Worksheet

from siteledger import schema
from siteledger.errors import MissingColumnError, MissingWorkbookError
from siteledger.logging.events import EventType, emit_info
from siteledger.lookups import LookupStore
from siteledger.records import (
    CORE_COLUMNS,
    COL_KEY,
    Record,
    cell_text,
    dynamic_columns,
    validate_category_name,
    validate_region_name,
)
from siteledger.utils.files import atomic_save_workbook, is_temp_file

_log = logging.getLogger(__name__)

WORKBOOK_SUFFIX = ".xlsx"

# Title openpyxl gives the first sheet of a new workbook.
_PLACEHOLDER_SHEET = "Sheet"


class CategoryStore:
    """Create, open and edit category workbooks under *data_dir*.

    Args:
        data_dir: Directory holding the category files.
        lookups: Lookup store supplying the known regions.
        sheet_title: Text of the merged title cell in row 1.
    """

    def __init__(
        self,
        data_dir: Path,
        lookups: LookupStore,
        *,
        sheet_title: str = schema.DEFAULT_SHEET_TITLE,
    ) -> None:
        self.data_dir = data_dir
        self.lookups = lookups
        self.sheet_title = sheet_title

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def path_for(self, category: str) -> Path:
        return self.data_dir / f"{validate_category_name(category)}{WORKBOOK_SUFFIX}"

    def exists(self, category: str) -> bool:
        return self.path_for(category).exists()

    def open(self, category: str) -> Workbook:
        """Load the workbook for *category*.

        Raises:
            MissingWorkbookError: If the category has no file.
        """
        path = self.path_for(category)
        if not path.exists():
            raise MissingWorkbookError(category, path)
        return load_workbook(path)

    def save(self, category: str, wb: Workbook) -> None:
        atomic_save_workbook(wb, self.path_for(category))

    def ensure(self, category: str, *, regions: list[str] | None = None) -> bool:
        """Create the category file if it is missing.

        The new file gets one seeded sheet per known region, plus any
        *regions* passed in.

        Returns:
            True if the file was created.
        """
        path = self.path_for(category)
        if path.exists():
            return False

        wanted: list[str] = []
        seen: set[str] = set()
        for region in self.lookups.list_regions() + list(regions or []):
            region = validate_region_name(region)
            if region.lower() in seen:
                continue
            seen.add(region.lower())
            wanted.append(region)

        wb = Workbook()
        if wanted:
            wb.remove(wb.active)
            for region in wanted:
                schema.seed_sheet(wb.create_sheet(region), self.sheet_title)
        else:
            # A workbook needs one sheet; dropped once a real region arrives.
            schema.seed_sheet(wb.active, self.sheet_title)

        atomic_save_workbook(wb, path)
        emit_info(
            EventType.category_created,
            f"Category file created for {category!r}",
            {"category": category, "regions": wanted},
        )
        return True

    def list_categories(self) -> list[str]:
        """Categories that have a file: lookup order first, then orphans by name."""
        on_disk = {p.stem: p for p in self._workbook_files()}
        ordered: list[str] = []
        for category in self.lookups.list_categories():
            if category in on_disk and category not in ordered:
                ordered.append(category)
        for stem in sorted(on_disk):
            if stem not in ordered:
                ordered.append(stem)
        return ordered

    def _workbook_files(self) -> list[Path]:
        if not self.data_dir.is_dir():
            return []
        lookup_name = self.lookups.path.name
        return [
            p for p in self.data_dir.iterdir()
            if p.is_file()
            and p.suffix.lower() == WORKBOOK_SUFFIX
            and p.name != lookup_name
            and not is_temp_file(p)
        ]

    def purge(self) -> list[Path]:
        """Delete every ``.xlsx`` in the data directory, lookup file included.

        Returns:
            Paths that were removed.
        """
        removed: list[Path] = []
        if not self.data_dir.is_dir():
            return removed
        for path in sorted(self.data_dir.iterdir()):
            if path.is_file() and path.suffix.lower() == WORKBOOK_SUFFIX:
                path.unlink()
                removed.append(path)
        return removed

    # ------------------------------------------------------------------
    # Region sheets
    # ------------------------------------------------------------------

    @staticmethod
    def find_region_sheet(wb: Workbook, region: str) -> Worksheet | None:
        """Find a region sheet by exact title, then case-insensitively."""
        if region in wb.sheetnames:
            return wb[region]
        lowered = region.lower()
        for ws in wb.worksheets:
            if ws.title.lower() == lowered:
                return ws
        return None

    def add_region_sheet(self, wb: Workbook, region: str) -> Worksheet:
        """Return the sheet for *region*, creating it in *wb* if needed.

        A new sheet is seeded and given the dynamic columns of the
        workbook's existing sheets.  The workbook is not saved.
        """
        ws = self.find_region_sheet(wb, region)
        if ws is not None:
            return ws

        region = validate_region_name(region)
        siblings = list(wb.worksheets)
        ws = wb.create_sheet(region)
        schema.seed_sheet(ws, self.sheet_title)
        if siblings:
            schema.reconcile(
                ws, dynamic_columns(schema.read_headers(siblings[0])), title=self.sheet_title
            )

        placeholder = wb[_PLACEHOLDER_SHEET] if _PLACEHOLDER_SHEET in wb.sheetnames else None
        if (
            placeholder is not None
            and placeholder is not ws
            and placeholder.max_row < schema.FIRST_DATA_ROW
        ):
            wb.remove(placeholder)

        emit_info(
            EventType.region_sheet_created,
            f"Region sheet {region!r} added",
            {"region": region},
        )
        return ws

    def ensure_region_sheet(self, category: str, region: str) -> str:
        """Make sure *category*'s file has a sheet for *region*; persist it.

        Returns:
            Title of the region sheet.
        """
        self.ensure(category, regions=[region])
        wb = self.open(category)
        ws = self.find_region_sheet(wb, region)
        if ws is None:
            ws = self.add_region_sheet(wb, region)
            self.save(category, wb)
        return ws.title

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    @staticmethod
    def append_row(ws: Worksheet, record: Record) -> int:
        """Write *record* as a new row at the bottom of *ws*.

        Dynamic attributes without a matching column are skipped.

        Returns:
            The 1-based row number written.

        Raises:
            MissingColumnError: If a core column is absent from the header row.
        """
        columns = schema.header_map(ws)
        for name in CORE_COLUMNS:
            if name not in columns:
                raise MissingColumnError(name, ws.title)

        row_idx = max(ws.max_row + 1, schema.FIRST_DATA_ROW)
        for name, value in record.to_flat().items():
            col = columns.get(name)
            if col is None:
                _log.debug("no column %r in sheet %r; value dropped", name, ws.title)
                continue
            if value is None:
                continue
            ws.cell(row=row_idx, column=col, value=value)
        return row_idx

    @staticmethod
    def remove_row(wb: Workbook, record_key: str) -> str | None:
        """Delete the first row whose RecordID equals *record_key*.

        Returns:
            Title of the sheet the row was removed from, or None.
        """
        for ws in wb.worksheets:
            col = schema.header_map(ws).get(COL_KEY)
            if col is None:
                continue
            for (cell,) in ws.iter_rows(
                min_row=schema.FIRST_DATA_ROW, min_col=col, max_col=col
            ):
                if cell_text(cell.value) == record_key:
                    ws.delete_rows(cell.row)
                    return ws.title
        return None

    def remove_row_by_key(self, category: str, record_key: str) -> bool:
        """Remove *record_key*'s row from *category*'s file and persist.

        Returns:
            False if the file or the row does not exist.
        """
        if not self.exists(category):
            return False
        wb = self.open(category)
        if self.remove_row(wb, record_key) is None:
            return False
        self.save(category, wb)
        return True

    @staticmethod
    def iter_rows(wb: Workbook) -> Iterator[tuple[str, list[str | None], tuple[Any, ...]]]:
        """Yield ``(sheet title, headers, values)`` for every non-empty data row."""
        for ws in wb.worksheets:
            headers = schema.read_headers(ws)
            if not headers:
                continue
            for values in ws.iter_rows(
                min_row=schema.FIRST_DATA_ROW, max_col=len(headers), values_only=True
            ):
                if all(v is None or (isinstance(v, str) and not v.strip()) for v in values):
                    continue
                yield ws.title, headers, values

    def read_records(self, category: str) -> tuple[list[Record], int]:
        """Parse every usable row of *category*'s file.

        Returns:
            ``(records, skipped)`` where *skipped* counts rows that lacked a
            parsable key or coordinates.
        """
        records: list[Record] = []
        skipped = 0
        wb = self.open(category)
        for title, headers, values in self.iter_rows(wb):
            record = Record.from_row(headers, values, category=category, sheet_title=title)
            if record is None:
                skipped += 1
                continue
            records.append(record)
        return records, skipped

    def read_keys(self, category: str) -> dict[str, str]:
        """Map every RecordID in *category*'s file to its sheet title."""
        keys: dict[str, str] = {}
        wb = self.open(category)
        for ws in wb.worksheets:
            col = schema.header_map(ws).get(COL_KEY)
            if col is None:
                continue
            for (value,) in ws.iter_rows(
                min_row=schema.FIRST_DATA_ROW, min_col=col, max_col=col, values_only=True
            ):
                key = cell_text(value)
                if key and key not in keys:
                    keys[key] = ws.title
        return keys
