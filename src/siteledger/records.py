"""Record model and the storage-column naming conventions.

A :class:`Record` is one physical asset.  Its dynamic attributes are kept as
a two-level mapping (section -> field -> value) and are flattened into
``"<Section> - <Field>"`` column names only when they reach a worksheet.
"""

from __future__ import annotations

import math
import re
from typing import Any, Iterable, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from siteledger.errors import InvalidNameError, RecordValidationError


# ---------------------------------------------------------------------------
# Column names
# ---------------------------------------------------------------------------

COL_KEY = "RecordID"
COL_CATEGORY = "Category"
COL_SITE_NAME = "SiteName"
COL_REGION = "Region"
COL_LATITUDE = "Latitude"
COL_LONGITUDE = "Longitude"
COL_STATUS = "Status"
COL_REPAIR_RANK = "RepairRank"

CORE_COLUMNS: tuple[str, ...] = (
    COL_KEY,
    COL_CATEGORY,
    COL_SITE_NAME,
    COL_REGION,
    COL_LATITUDE,
    COL_LONGITUDE,
    COL_STATUS,
    COL_REPAIR_RANK,
)

ATTRIBUTE_SEPARATOR = " - "

STATUS_VALUES = ("Active", "Inactive", "Mothballed", "Unknown")
DEFAULT_STATUS = "Unknown"

REPAIR_RANK_MIN = 1
REPAIR_RANK_MAX = 5

# Characters Windows refuses in file names; the category becomes one.
_BAD_FILENAME_RE = re.compile(r'[\\/:*?"<>|\x00-\x1f]')
# Characters Excel refuses in worksheet titles.
_BAD_SHEET_TITLE_RE = re.compile(r"[\[\]:*?/\\]")
_MAX_SHEET_TITLE = 31


def attribute_column(section: str, field: str) -> str:
    """Flatten a section/field pair into its storage column name."""
    return f"{section}{ATTRIBUTE_SEPARATOR}{field}"


def split_attribute_column(name: str) -> tuple[str, str] | None:
    """Split a ``"Section - Field"`` column name on its first separator.

    Returns None for names that are not attribute columns.
    """
    if ATTRIBUTE_SEPARATOR not in name:
        return None
    section, field = name.split(ATTRIBUTE_SEPARATOR, 1)
    section, field = section.strip(), field.strip()
    if not section or not field:
        return None
    return section, field


def is_attribute_column(name: str) -> bool:
    return split_attribute_column(name) is not None


def normalize_status(raw: Any) -> str:
    """Map free-form status input onto the four known statuses."""
    if raw is None:
        return DEFAULT_STATUS
    text = str(raw).strip().lower()
    for status in STATUS_VALUES:
        if text == status.lower():
            return status
    return DEFAULT_STATUS


def validate_category_name(name: Any) -> str:
    """Return the stripped category name or raise :class:`InvalidNameError`."""
    text = "" if name is None else str(name).strip()
    if not text:
        raise InvalidNameError("Category name must not be empty")
    if _BAD_FILENAME_RE.search(text) or text in (".", ".."):
        raise InvalidNameError(f"Category name {text!r} cannot be used as a file name")
    return text


def validate_region_name(name: Any) -> str:
    """Return the stripped region name or raise :class:`InvalidNameError`."""
    text = "" if name is None else str(name).strip()
    if not text:
        raise InvalidNameError("Region name must not be empty")
    if len(text) > _MAX_SHEET_TITLE:
        raise InvalidNameError(
            f"Region name {text!r} is longer than {_MAX_SHEET_TITLE} characters"
        )
    if _BAD_SHEET_TITLE_RE.search(text):
        raise InvalidNameError(f"Region name {text!r} cannot be used as a sheet title")
    return text


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def cell_text(value: Any) -> str:
    """Render a key-like cell as stripped text; whole floats lose their ``.0``."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def coerce_repair_rank(value: Any) -> int | None:
    """Parse a repair rank; blank input means no rank.

    Raises:
        ValueError: If the value is not an integer in 1..5.
    """
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        raise ValueError("repair rank must be an integer")
    if isinstance(value, str):
        value = value.strip()
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"repair rank {value!r} is not a number")
    if not number.is_integer():
        raise ValueError(f"repair rank {value!r} is not an integer")
    rank = int(number)
    if not REPAIR_RANK_MIN <= rank <= REPAIR_RANK_MAX:
        raise ValueError(
            f"repair rank must be between {REPAIR_RANK_MIN} and {REPAIR_RANK_MAX}"
        )
    return rank


def parse_float(value: Any) -> float | None:
    """Parse a coordinate cell; None when blank or not numeric."""
    if _is_blank(value) or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


# ---------------------------------------------------------------------------
# Record model
# ---------------------------------------------------------------------------


class Record(BaseModel):
    """One physical asset, uniquely keyed across the whole corpus."""

    model_config = ConfigDict(str_strip_whitespace=True)

    record_key: str
    category: str
    region: str
    site_name: str = ""
    latitude: float
    longitude: float
    status: str = DEFAULT_STATUS
    repair_rank: int | None = None
    attributes: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @field_validator("record_key", "site_name", "category", "region", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        if v is None or (isinstance(v, (int, float)) and not isinstance(v, bool)):
            return cell_text(v)
        return v

    @field_validator("record_key")
    @classmethod
    def _key_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("record key must not be empty")
        return v

    @field_validator("category")
    @classmethod
    def _check_category(cls, v: str) -> str:
        return validate_category_name(v)

    @field_validator("region")
    @classmethod
    def _check_region(cls, v: str) -> str:
        return validate_region_name(v)

    @field_validator("latitude")
    @classmethod
    def _check_latitude(cls, v: float) -> float:
        if not math.isfinite(v) or not -90.0 <= v <= 90.0:
            raise ValueError("latitude must be between -90 and 90")
        return v

    @field_validator("longitude")
    @classmethod
    def _check_longitude(cls, v: float) -> float:
        if not math.isfinite(v) or not -180.0 <= v <= 180.0:
            raise ValueError("longitude must be between -180 and 180")
        return v

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v: Any) -> str:
        return normalize_status(v)

    @field_validator("repair_rank", mode="before")
    @classmethod
    def _coerce_rank(cls, v: Any) -> int | None:
        return coerce_repair_rank(v)

    @field_validator("attributes", mode="before")
    @classmethod
    def _clean_attributes(cls, v: Any) -> dict[str, dict[str, Any]]:
        if v is None:
            return {}
        if not isinstance(v, Mapping):
            raise ValueError("attributes must be a mapping of section -> field -> value")
        cleaned: dict[str, dict[str, Any]] = {}
        for section, fields in v.items():
            section_name = str(section).strip()
            if not section_name:
                raise ValueError("attribute section names must not be empty")
            if ATTRIBUTE_SEPARATOR in section_name:
                raise ValueError(
                    f"attribute section {section_name!r} must not contain {ATTRIBUTE_SEPARATOR!r}"
                )
            if not isinstance(fields, Mapping):
                raise ValueError(f"attribute section {section_name!r} must be a mapping")
            kept: dict[str, Any] = {}
            for field, value in fields.items():
                field_name = str(field).strip()
                if not field_name:
                    raise ValueError(f"empty field name in section {section_name!r}")
                # Blank values are indistinguishable from absent cells on read.
                if _is_blank(value):
                    continue
                kept[field_name] = value
            if kept:
                cleaned.setdefault(section_name, {}).update(kept)
        return cleaned

    # ------------------------------------------------------------------
    # Storage views
    # ------------------------------------------------------------------

    def attribute_columns(self) -> list[str]:
        """Flat column names implied by the attribute map, in insertion order."""
        return [
            attribute_column(section, field)
            for section, fields in self.attributes.items()
            for field in fields
        ]

    def flat_attributes(self) -> dict[str, Any]:
        return {
            attribute_column(section, field): value
            for section, fields in self.attributes.items()
            for field, value in fields.items()
        }

    def core_values(self) -> dict[str, Any]:
        """Values for the core columns, keyed by column name."""
        return {
            COL_KEY: self.record_key,
            COL_CATEGORY: self.category,
            COL_SITE_NAME: self.site_name,
            COL_REGION: self.region,
            COL_LATITUDE: self.latitude,
            COL_LONGITUDE: self.longitude,
            COL_STATUS: self.status,
            COL_REPAIR_RANK: self.repair_rank,
        }

    def to_flat(self) -> dict[str, Any]:
        """Storage-column view: core columns followed by attribute columns."""
        flat = self.core_values()
        flat.update(self.flat_attributes())
        return flat

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> Record:
        """Build a record from a loosely-shaped mapping.

        Accepts snake_case field names, camelCase names, or the storage
        column names (``RecordID``, ``SiteName`` ...).  Attributes may come
        as a nested ``attributes`` mapping and/or as flat ``"Section - Field"``
        keys; flat keys win on conflict.

        Raises:
            RecordValidationError: If the payload is not a valid record.
        """
        if not isinstance(data, Mapping):
            raise RecordValidationError("record payload must be a mapping")
        values: dict[str, Any] = {}
        for field_name, aliases in _PAYLOAD_ALIASES.items():
            for alias in aliases:
                if alias in data:
                    values[field_name] = data[alias]
                    break

        attributes: dict[str, dict[str, Any]] = {}
        nested = data.get("attributes")
        if isinstance(nested, Mapping):
            for section, fields in nested.items():
                if isinstance(fields, Mapping):
                    attributes.setdefault(str(section), {}).update(fields)
                else:
                    attributes.setdefault(str(section), fields)
        for key, value in data.items():
            if not isinstance(key, str):
                continue
            parts = split_attribute_column(key)
            if parts is None:
                continue
            section, field = parts
            attributes.setdefault(section, {})[field] = value
        values["attributes"] = attributes
        return cls.validated(**values)

    @classmethod
    def validated(cls, **values: Any) -> Record:
        """Construct a record, converting pydantic errors to RecordValidationError."""
        try:
            return cls(**values)
        except ValidationError as exc:
            raise RecordValidationError(format_validation_error(exc)) from exc

    @classmethod
    def from_row(
        cls,
        headers: Sequence[str | None],
        values: Sequence[Any],
        *,
        category: str,
        sheet_title: str,
    ) -> Record | None:
        """Leniently rebuild a record from one worksheet data row.

        Returns None for rows without a usable key or coordinates.  The
        category is the one of the file the row came from; the region falls
        back to the sheet title when the Region cell is blank.
        """
        row: dict[str, Any] = {}
        for idx, header in enumerate(headers):
            if not header:
                continue
            row[header] = values[idx] if idx < len(values) else None

        key = row.get(COL_KEY)
        if _is_blank(key):
            return None
        lat = parse_float(row.get(COL_LATITUDE))
        lon = parse_float(row.get(COL_LONGITUDE))
        if lat is None or lon is None:
            return None

        try:
            rank = coerce_repair_rank(row.get(COL_REPAIR_RANK))
        except ValueError:
            rank = None

        region = row.get(COL_REGION)
        if _is_blank(region):
            region = sheet_title

        attributes: dict[str, dict[str, Any]] = {}
        for header, value in row.items():
            parts = split_attribute_column(header)
            if parts is None or _is_blank(value):
                continue
            section, field = parts
            attributes.setdefault(section, {})[field] = value

        try:
            return cls(
                record_key=key,
                category=category,
                region=region,
                site_name=row.get(COL_SITE_NAME),
                latitude=lat,
                longitude=lon,
                status=row.get(COL_STATUS),
                repair_rank=rank,
                attributes=attributes,
            )
        except ValidationError:
            return None


_PAYLOAD_ALIASES: dict[str, tuple[str, ...]] = {
    "record_key": ("record_key", "recordKey", COL_KEY, "Record ID", "Station ID", "stationId"),
    "category": ("category", COL_CATEGORY, "Asset Type"),
    "region": ("region", COL_REGION, "Province", "province"),
    "site_name": ("site_name", "siteName", COL_SITE_NAME, "Site Name", "stationName"),
    "latitude": ("latitude", COL_LATITUDE, "lat"),
    "longitude": ("longitude", COL_LONGITUDE, "lon"),
    "status": ("status", COL_STATUS),
    "repair_rank": ("repair_rank", "repairRank", COL_REPAIR_RANK, "Repair Rank", "Repair Priority"),
}


def format_validation_error(exc: ValidationError) -> str:
    """Render a pydantic ValidationError as one readable line."""
    parts: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = str(err.get("msg", "invalid value"))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "invalid record"


def dynamic_columns(headers: Iterable[str | None]) -> list[str]:
    """Header names that are not core columns, in order."""
    core = set(CORE_COLUMNS)
    return [h for h in headers if h and h not in core]
