"""Data-directory configuration and scaffolding."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml


CONFIG_FILENAME = "siteledger.yaml"

DEFAULT_CONFIG = {
    "lookup_filename": "lookups.xlsx",
    "sheet_title": "General Information",
    "import_header_scan_rows": 10,
    "write_import_reports": True,
    "region_boundaries": None,  # path to a GeoJSON FeatureCollection
    "default_regions": [],
    "logging_fsync": False,
    "logging_tail_bytes": 2_097_152,  # 2 MB
}


DEMO_CONFIG = """\
# siteledger data directory config
lookup_filename: lookups.xlsx
sheet_title: General Information

# Bulk import
import_header_scan_rows: 10
write_import_reports: true

# Optional GeoJSON FeatureCollection used to infer a region from coordinates.
# Each feature carries the region code in its "code" property.
region_boundaries: null

# Regions seeded into the lookup file by `siteledger init`
default_regions: []

logging_fsync: false
"""


def _normalize_regions(value: Any) -> list[str]:
    """Accept a list or a comma-separated string of region names."""
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v).strip() for v in value if str(v).strip()]


def load_config(data_dir: Path) -> dict[str, Any]:
    """Load data-directory configuration from ``siteledger.yaml``, with defaults.

    Args:
        data_dir: Directory holding the category and lookup files.

    Returns:
        Merged configuration dict.
    """
    config = dict(DEFAULT_CONFIG)
    config_path = data_dir / CONFIG_FILENAME
    if config_path.exists():
        user_config = yaml.safe_load(config_path.read_text()) or {}
        if not isinstance(user_config, dict):
            raise ValueError(f"{config_path} must contain a mapping")
        config.update(user_config)

    config["default_regions"] = _normalize_regions(config.get("default_regions"))
    config["import_header_scan_rows"] = max(1, int(config["import_header_scan_rows"]))

    boundaries = config.get("region_boundaries")
    if boundaries:
        path = Path(boundaries).expanduser()
        if not path.is_absolute():
            path = data_dir / path
        config["region_boundaries"] = path

    return config


def lookup_path(data_dir: Path, config: dict[str, Any] | None = None) -> Path:
    cfg = config if config is not None else load_config(data_dir)
    return data_dir / cfg["lookup_filename"]


def scaffold_data_dir(target_dir: Path, regions: list[str] | None = None) -> Path:
    """Create a new data directory with config, lookup file and regions.

    Existing files are left untouched, so running this on an initialised
    directory only adds missing regions.

    Args:
        target_dir: Directory to create.
        regions: Regions to register; defaults to ``default_regions``.

    Returns:
        Path to the data directory.
    """
    from siteledger.lookups import LookupStore

    target_dir.mkdir(parents=True, exist_ok=True)

    config_path = target_dir / CONFIG_FILENAME
    if not config_path.exists():
        config_path.write_text(DEMO_CONFIG)

    config = load_config(target_dir)
    lookups = LookupStore(lookup_path(target_dir, config))
    for region in regions if regions is not None else config["default_regions"]:
        lookups.add_region(region)

    for d in ["logs", "import_reports"]:
        (target_dir / d).mkdir(exist_ok=True)

    return target_dir
