"""Event model and the process-wide ``emit`` helpers.

Events are pydantic models serialised one per line by
:class:`~siteledger.logging.sink.EventSink`.  Emitting is best effort: when
no data directory has been configured events are dropped, and a failing
write is reported on stderr (at most once a minute) instead of raising
into the caller.
"""

from __future__ import annotations

import re
import sys
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class EventLevel(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


class EventType(str, Enum):
    # lookups.xlsx
    lookup_reset = "lookup_reset"
    lookup_region_added = "lookup_region_added"
    lookup_category_added = "lookup_category_added"

    # Category files
    category_created = "category_created"
    region_sheet_created = "region_sheet_created"
    schema_reconciled = "schema_reconciled"

    # Records
    record_created = "record_created"
    record_updated = "record_updated"
    record_duplicate = "record_duplicate"
    record_failed = "record_failed"
    row_skipped = "row_skipped"

    serializer_task_failed = "serializer_task_failed"

    # Bulk import
    import_started = "import_started"
    import_completed = "import_completed"
    import_row_failed = "import_row_failed"

    data_purged = "data_purged"


# Values of LedgerEvent.error_code
DUPLICATE_KEY = "duplicate_key"
LOOKUP_CORRUPT = "lookup_corrupt"
TASK_FAILED = "task_failed"
ROW_UNPARSABLE = "row_unparsable"
IMPORT_ROW_ERROR = "import_row_error"


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------

_SECRET_KEY_RE = re.compile(r"password|secret|token|api_key|authorization", re.IGNORECASE)
_MAX_TEXT = 256
_REDACTED = "[REDACTED]"


def redact_context(context: dict[str, Any]) -> dict[str, Any]:
    """Copy of *context* with secret-looking keys masked and long strings cut."""
    return {
        key: _REDACTED if _SECRET_KEY_RE.search(str(key)) else _scrub(value)
        for key, value in context.items()
    }


def _scrub(value: Any) -> Any:
    if isinstance(value, dict):
        return redact_context(value)
    if isinstance(value, (list, tuple)):
        return [_scrub(v) for v in value]
    if isinstance(value, str) and len(value) > _MAX_TEXT:
        return f"{value[:_MAX_TEXT]}...[truncated]"
    return value


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


class LedgerEvent(BaseModel):
    """One structured log line."""

    schema_version: int = 1
    ts: str = Field(default_factory=_timestamp)
    level: EventLevel
    event_type: EventType
    message: str = ""
    context: dict[str, Any] = Field(default_factory=dict)
    error_code: str | None = None


def make_record_event(
    event_type: EventType,
    level: EventLevel,
    message: str,
    *,
    record_key: str,
    category: str | None = None,
    region: str | None = None,
    error_code: str | None = None,
    extra: dict[str, Any] | None = None,
) -> LedgerEvent:
    """Event about one record; its key, category and region go in the context."""
    context: dict[str, Any] = {"record_key": record_key}
    context.update(
        {k: v for k, v in (("category", category), ("region", region)) if v is not None}
    )
    context.update(extra or {})
    return LedgerEvent(
        level=level,
        event_type=event_type,
        message=message,
        context=context,
        error_code=error_code,
    )


# ---------------------------------------------------------------------------
# Process-wide sink
# ---------------------------------------------------------------------------

_sink: Any = None  # EventSink, once set_data_dir() ran


def set_data_dir(data_dir: Any) -> None:
    """Send subsequent events to *data_dir*'s ``logs`` directory.

    ``logging_fsync`` and ``logging_tail_bytes`` are taken from the data
    directory's ``siteledger.yaml``; an unreadable config means defaults.
    """
    global _sink
    from siteledger.logging.sink import EventSink
    from siteledger.project import load_config

    path = Path(data_dir)
    try:
        config = load_config(path)
    except Exception as exc:
        _warn(f"ignoring logging config of {path}: {exc}")
        config = {}
    tail = config.get("logging_tail_bytes")
    _sink = EventSink(
        path,
        fsync=bool(config.get("logging_fsync", False)),
        tail_bytes=int(tail) if tail else None,
    )


def reset_sink() -> None:
    """Stop writing events until :func:`set_data_dir` is called again."""
    global _sink
    _sink = None


_WARN_INTERVAL = 60.0
_last_stderr_ts = float("-inf")


def _warn(message: str) -> None:
    global _last_stderr_ts
    now = time.monotonic()
    if now - _last_stderr_ts < _WARN_INTERVAL:
        return
    _last_stderr_ts = now
    try:
        print(f"[siteledger] {message}", file=sys.stderr)
    except (OSError, ValueError):
        pass


# ---------------------------------------------------------------------------
# Emitting
# ---------------------------------------------------------------------------


def emit(event: LedgerEvent, *, import_id: str | None = None) -> None:
    """Persist *event*; never raises."""
    sink = _sink
    if sink is None:
        return
    try:
        redacted = event.model_copy(update={"context": redact_context(event.context)})
        sink.write(redacted, import_id=import_id)
    except Exception as exc:
        _warn(f"logging failed: {type(exc).__name__}: {exc}")


def _emit_at(
    level: EventLevel,
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None,
    error_code: str | None,
    import_id: str | None,
) -> None:
    emit(
        LedgerEvent(
            level=level,
            event_type=event_type,
            message=message,
            context=dict(context or {}),
            error_code=error_code,
        ),
        import_id=import_id,
    )


def emit_info(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    import_id: str | None = None,
) -> None:
    _emit_at(EventLevel.info, event_type, message, context, None, import_id)


def emit_warning(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
    import_id: str | None = None,
) -> None:
    _emit_at(EventLevel.warning, event_type, message, context, error_code, import_id)


def emit_error(
    event_type: EventType,
    message: str,
    context: dict[str, Any] | None = None,
    *,
    error_code: str | None = None,
    import_id: str | None = None,
) -> None:
    _emit_at(EventLevel.error, event_type, message, context, error_code, import_id)
