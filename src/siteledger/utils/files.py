"""Atomic file writes for workbooks and JSON documents."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from openpyxl import Workbook


TMP_SUFFIX = ".tmp"


def atomic_save_workbook(wb: Workbook, path: Path) -> None:
    """Save *wb* to *path* via a temporary sibling and ``os.replace``.

    Readers never observe a partially written workbook.

    Args:
        wb: Workbook to persist.
        path: Destination ``.xlsx`` path.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.stem}_", suffix=TMP_SUFFIX, dir=str(path.parent)
    )
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        wb.save(tmp_path)
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def atomic_json_write(path: Path, data: Any) -> None:
    """Write JSON to a file atomically via write-to-tmp then os.replace.

    Args:
        path: Destination file path.
        data: JSON-serializable data.
    """
    tmp_path = path.with_suffix(path.suffix + TMP_SUFFIX)
    tmp_path.write_text(json.dumps(data, indent=2, sort_keys=True, default=str))
    os.replace(str(tmp_path), str(path))


def is_temp_file(path: Path) -> bool:
    """True for in-flight temporary files and Excel owner/lock files."""
    return path.name.endswith(TMP_SUFFIX) or path.name.startswith((".", "~$"))
