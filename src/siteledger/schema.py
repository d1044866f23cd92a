"""Header-row reconciliation for region worksheets.

Layout of every region sheet:

- row 1: merged title cell spanning the core columns (bold, centred)
- row 2: authoritative column names (bold, left-aligned)
- rows 3+: one record per row

Schema changes are two-phase: :func:`plan` computes what must change from the
current header row and the desired column set, :func:`apply` performs it.
Removing a column deletes its data in every row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from openpyxl.styles import Alignment, Font
from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from siteledger.records import CORE_COLUMNS

_log = logging.getLogger(__name__)

TITLE_ROW = 1
HEADER_ROW = 2
FIRST_DATA_ROW = 3

DEFAULT_SHEET_TITLE = "General Information"

_HEADER_FONT = Font(bold=True)
_HEADER_ALIGN = Alignment(horizontal="left")
_TITLE_ALIGN = Alignment(horizontal="center", vertical="center")


@dataclass
class SchemaPlan:
    """Result of comparing a header row against a target column set.

    Attributes:
        keep: Current columns that survive, in their current order.
        remove: Current columns absent from the target.
        add: Target columns not yet present, in desired order.
        result: Header order after the plan is applied.
    """

    keep: list[str] = field(default_factory=list)
    remove: list[str] = field(default_factory=list)
    add: list[str] = field(default_factory=list)

    @property
    def result(self) -> list[str]:
        return self.keep + self.add

    @property
    def changed(self) -> bool:
        return bool(self.remove or self.add)


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


def _cell_name(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def read_headers(ws: Worksheet) -> list[str | None]:
    """Return the row-2 header names, trailing blanks trimmed.

    Blank cells inside the row come back as None so that list positions
    map to column indices (index 0 is column A).
    """
    if ws.max_row < HEADER_ROW:
        return []
    headers = [
        _cell_name(cell.value)
        for cell in next(ws.iter_rows(min_row=HEADER_ROW, max_row=HEADER_ROW))
    ]
    while headers and headers[-1] is None:
        headers.pop()
    return headers


def header_map(ws: Worksheet) -> dict[str, int]:
    """Map each header name to its 1-based column index (first occurrence)."""
    mapping: dict[str, int] = {}
    for idx, name in enumerate(read_headers(ws), start=1):
        if name is not None and name not in mapping:
            mapping[name] = idx
    return mapping


def is_fresh(ws: Worksheet) -> bool:
    """True when the sheet has no header row yet."""
    return not any(read_headers(ws))


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def target_columns(desired: Iterable[str]) -> list[str]:
    """Core columns followed by the desired dynamic columns, deduplicated."""
    ordered: list[str] = list(CORE_COLUMNS)
    seen = set(ordered)
    for name in desired:
        name = _cell_name(name)
        if name is None or name in seen:
            continue
        seen.add(name)
        ordered.append(name)
    return ordered


def plan(current: Iterable[str | None], desired: Iterable[str]) -> SchemaPlan:
    """Compute the changes that turn *current* into ``core + desired``.

    Args:
        current: Existing header names in column order (None for blanks).
        desired: Dynamic columns that must be present afterwards.  Callers
            pass the union of everything to keep.

    Returns:
        A :class:`SchemaPlan`; ``plan.result`` equals the target as a set.
    """
    target = target_columns(desired)
    target_set = set(target)

    result = SchemaPlan()
    present: set[str] = set()
    for name in current:
        if name is None or name in present:
            continue
        present.add(name)
        if name in target_set:
            result.keep.append(name)
        else:
            result.remove.append(name)
    result.add = [name for name in target if name not in present]
    return result


# ---------------------------------------------------------------------------
# Applying
# ---------------------------------------------------------------------------


def _write_header(ws: Worksheet, column: int, name: str) -> None:
    cell = ws.cell(row=HEADER_ROW, column=column, value=name)
    cell.font = _HEADER_FONT
    cell.alignment = _HEADER_ALIGN


def seed_sheet(ws: Worksheet, title: str = DEFAULT_SHEET_TITLE) -> None:
    """Write the merged title row and the core header row."""
    width = len(CORE_COLUMNS)
    title_cell = ws.cell(row=TITLE_ROW, column=1, value=title)
    title_cell.font = _HEADER_FONT
    title_cell.alignment = _TITLE_ALIGN
    ws.merge_cells(start_row=TITLE_ROW, start_column=1, end_row=TITLE_ROW, end_column=width)
    for idx, name in enumerate(CORE_COLUMNS, start=1):
        _write_header(ws, idx, name)


def apply(ws: Worksheet, schema_plan: SchemaPlan) -> None:
    """Apply *schema_plan* to *ws*.

    Removed columns are deleted right to left so indices stay valid; added
    headers go after the current last header cell.
    """
    if schema_plan.remove:
        doomed = set(schema_plan.remove)
        indices = [
            idx for idx, name in enumerate(read_headers(ws), start=1)
            if name in doomed
        ]
        for idx in sorted(indices, reverse=True):
            ws.delete_cols(idx)

    if schema_plan.add:
        start = len(read_headers(ws)) + 1
        for offset, name in enumerate(schema_plan.add):
            _write_header(ws, start + offset, name)


def reconcile(
    ws: Worksheet,
    desired: Iterable[str],
    *,
    title: str = DEFAULT_SHEET_TITLE,
) -> SchemaPlan:
    """Bring one sheet's header row to ``core + desired``.

    A sheet without headers is seeded first.
    """
    if is_fresh(ws):
        seed_sheet(ws, title)
    schema_plan = plan(read_headers(ws), desired)
    if schema_plan.changed:
        _log.debug(
            "reconcile %s: +%s -%s", ws.title, schema_plan.add, schema_plan.remove
        )
        apply(ws, schema_plan)
    return schema_plan


def reconcile_workbook(
    wb: Workbook,
    desired: Iterable[str],
    *,
    title: str = DEFAULT_SHEET_TITLE,
) -> dict[str, SchemaPlan]:
    """Apply the same target column set to every sheet of *wb*.

    Returns:
        Mapping of sheet title to the plan applied to it.
    """
    wanted = list(desired)
    return {ws.title: reconcile(ws, wanted, title=title) for ws in wb.worksheets}
