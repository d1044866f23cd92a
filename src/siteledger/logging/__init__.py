"""Structured NDJSON event logging.

Re-exports the event model, the ``emit`` helpers and :class:`EventSink`.
"""

from siteledger.logging.events import (
    EventLevel,
    EventType,
    LedgerEvent,
    emit,
    emit_error,
    emit_info,
    emit_warning,
    make_record_event,
    redact_context,
    reset_sink,
    set_data_dir,
)
from siteledger.logging.sink import EventSink

__all__ = [
    "EventLevel",
    "EventSink",
    "EventType",
    "LedgerEvent",
    "emit",
    "emit_error",
    "emit_info",
    "emit_warning",
    "make_record_event",
    "redact_context",
    "reset_sink",
    "set_data_dir",
]
