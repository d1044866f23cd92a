"""The shared lookup workbook: regions, categories and map colours.

One file (``lookups.xlsx`` by default) with three sheets:

- ``Regions``    -- header ``Region``, one name per row
- ``Categories`` -- header ``Category``, one name per row
- ``Colors``     -- headers ``Category``, ``Region``, ``Color``

Region and category lists are deduplicated case-insensitively.  Colours are
keyed by ``"Category|Region"`` and the last write wins.  Every mutation
rewrites the whole file atomically before returning.
"""

from __future__ import annotations

import threading
import zipfile
from pathlib import Path

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet

from siteledger.errors import CorruptLookupError
from siteledger.logging.events import LOOKUP_CORRUPT, EventType, emit_info, emit_warning
from siteledger.records import validate_category_name, validate_region_name
from siteledger.utils.files import atomic_save_workbook

REGIONS_SHEET = "Regions"
CATEGORIES_SHEET = "Categories"
COLORS_SHEET = "Colors"

_LIST_HEADERS = {
    REGIONS_SHEET: "Region",
    CATEGORIES_SHEET: "Category",
}
_COLOR_HEADERS = ("Category", "Region", "Color")


def color_key(category: str, region: str) -> str:
    return f"{category}|{region}"


def _new_workbook() -> Workbook:
    wb = Workbook()
    first = wb.active
    first.title = REGIONS_SHEET
    first.append([_LIST_HEADERS[REGIONS_SHEET]])
    wb.create_sheet(CATEGORIES_SHEET).append([_LIST_HEADERS[CATEGORIES_SHEET]])
    wb.create_sheet(COLORS_SHEET).append(list(_COLOR_HEADERS))
    return wb


def _sheet(wb: Workbook, name: str) -> Worksheet:
    """Return sheet *name*, adding it with its header row if absent."""
    if name in wb.sheetnames:
        return wb[name]
    ws = wb.create_sheet(name)
    if name == COLORS_SHEET:
        ws.append(list(_COLOR_HEADERS))
    else:
        ws.append([_LIST_HEADERS[name]])
    return ws


def _read_list(ws: Worksheet) -> list[str]:
    names: list[str] = []
    for (value,) in ws.iter_rows(min_row=2, max_col=1, values_only=True):
        if value is None:
            continue
        text = str(value).strip()
        if text:
            names.append(text)
    return names


class LookupStore:
    """Read/append access to the lookup workbook.

    File I/O may run on worker threads, so every public call holds a
    process-local lock for its whole read-modify-write cycle.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _load_strict(self) -> Workbook:
        try:
            return load_workbook(self.path)
        except (zipfile.BadZipFile, InvalidFileException, KeyError, ValueError, EOFError) as exc:
            raise CorruptLookupError(self.path, str(exc)) from exc

    def _load(self) -> Workbook:
        """Open the lookup file, creating or resetting it as needed."""
        if not self.path.exists():
            wb = _new_workbook()
            atomic_save_workbook(wb, self.path)
            return wb
        try:
            return self._load_strict()
        except CorruptLookupError as exc:
            emit_warning(
                EventType.lookup_reset,
                f"{exc}; replaced with an empty lookup file",
                {"path": str(self.path)},
                error_code=LOOKUP_CORRUPT,
            )
            wb = _new_workbook()
            atomic_save_workbook(wb, self.path)
            return wb

    def _list(self, sheet_name: str) -> list[str]:
        with self._lock:
            wb = self._load()
            return _read_list(_sheet(wb, sheet_name))

    def _append(self, sheet_name: str, name: str) -> bool:
        with self._lock:
            wb = self._load()
            ws = _sheet(wb, sheet_name)
            lowered = name.lower()
            if any(existing.lower() == lowered for existing in _read_list(ws)):
                return False
            ws.append([name])
            atomic_save_workbook(wb, self.path)
            return True

    # ------------------------------------------------------------------
    # Regions / categories
    # ------------------------------------------------------------------

    def ensure_file(self) -> None:
        """Create the lookup file if it does not exist yet."""
        with self._lock:
            self._load()

    def list_regions(self) -> list[str]:
        return self._list(REGIONS_SHEET)

    def list_categories(self) -> list[str]:
        return self._list(CATEGORIES_SHEET)

    def add_region(self, name: str) -> bool:
        """Register a region.

        Returns:
            False when an equal name (ignoring case) is already present.

        Raises:
            InvalidNameError: If *name* is empty or not a valid sheet title.
        """
        name = validate_region_name(name)
        added = self._append(REGIONS_SHEET, name)
        if added:
            emit_info(EventType.lookup_region_added, f"Region {name!r} added", {"region": name})
        return added

    def add_category(self, name: str) -> bool:
        """Register a category.

        Returns:
            False when an equal name (ignoring case) is already present.

        Raises:
            InvalidNameError: If *name* is empty or not a valid file name.
        """
        name = validate_category_name(name)
        added = self._append(CATEGORIES_SHEET, name)
        if added:
            emit_info(
                EventType.lookup_category_added, f"Category {name!r} added", {"category": name}
            )
        return added

    # ------------------------------------------------------------------
    # Colours
    # ------------------------------------------------------------------

    def colors(self) -> dict[str, str]:
        """All stored colours as ``{"Category|Region": color}``."""
        with self._lock:
            wb = self._load()
            return self._read_colors(_sheet(wb, COLORS_SHEET))

    @staticmethod
    def _read_colors(ws: Worksheet) -> dict[str, str]:
        out: dict[str, str] = {}
        for row in ws.iter_rows(min_row=2, max_col=3, values_only=True):
            category, region, color = (list(row) + [None, None, None])[:3]
            if category is None or region is None or color is None:
                continue
            out[color_key(str(category).strip(), str(region).strip())] = str(color).strip()
        return out

    def get_color(self, category: str, region: str) -> str | None:
        return self.colors().get(color_key(category.strip(), region.strip()))

    def set_color(self, category: str, region: str, value: str) -> None:
        """Store the colour for a category/region pair, replacing any prior one."""
        category, region, value = category.strip(), region.strip(), value.strip()
        if not category or not region:
            raise ValueError("category and region are required")
        with self._lock:
            wb = self._load()
            ws = _sheet(wb, COLORS_SHEET)
            for row in ws.iter_rows(min_row=2, max_col=3):
                cat_cell, reg_cell = row[0], row[1]
                if (
                    cat_cell.value is not None
                    and reg_cell.value is not None
                    and str(cat_cell.value).strip() == category
                    and str(reg_cell.value).strip() == region
                ):
                    ws.cell(row=cat_cell.row, column=3, value=value)
                    break
            else:
                ws.append([category, region, value])
            atomic_save_workbook(wb, self.path)
