"""Tests for structured event logging."""

from __future__ import annotations

import json
from pathlib import Path


class TestRedaction:
    def test_sensitive_keys_redacted(self):
        from siteledger.logging.events import redact_context

        out = redact_context({"api_key": "abc", "nested": {"Password": "x"}, "ok": 1})
        assert out == {"api_key": "[REDACTED]", "nested": {"Password": "[REDACTED]"}, "ok": 1}

    def test_long_values_truncated(self):
        from siteledger.logging.events import redact_context

        out = redact_context({"message": "x" * 1000, "items": ["y" * 300]})
        assert out["message"].endswith("...[truncated]")
        assert len(out["message"]) < 300
        assert out["items"][0].endswith("...[truncated]")


class TestEmit:
    def test_discarded_without_sink(self, data_dir: Path):
        from siteledger.logging.events import EventType, emit_info

        emit_info(EventType.data_purged, "nothing configured")
        assert not (data_dir / "logs").exists()

    def test_written_to_global_and_import_logs(self, data_dir: Path):
        from siteledger.logging.events import EventType, emit_info, set_data_dir
        from siteledger.logging.sink import EventSink

        set_data_dir(data_dir)
        emit_info(EventType.import_started, "started", {"sheet": "Weir BC"}, import_id="imp_1")
        emit_info(EventType.data_purged, "purged")

        lines = (data_dir / "logs" / "events.ndjson").read_text().splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["event_type"] == "import_started"
        assert first["level"] == "info"
        assert first["ts"].endswith("Z")

        sink = EventSink(data_dir)
        assert [e["message"] for e in sink.read_import_log("imp_1")] == ["started"]
        assert sink.read_import_log("../escape") == []

    def test_never_raises(self, data_dir: Path, monkeypatch, capsys):
        from siteledger.logging import events
        from siteledger.logging.events import EventType, emit_error, set_data_dir

        set_data_dir(data_dir)

        def broken_write(event, *, import_id=None):
            raise OSError("disk full")

        monkeypatch.setattr(events._sink, "write", broken_write)
        monkeypatch.setattr(events, "_last_stderr_ts", float("-inf"))

        emit_error(EventType.record_failed, "boom")

        assert "logging failed" in capsys.readouterr().err

    def test_record_event_context(self, data_dir: Path):
        from siteledger.logging.events import (
            EventLevel,
            EventType,
            emit,
            make_record_event,
            set_data_dir,
        )
        from siteledger.logging.sink import EventSink

        set_data_dir(data_dir)
        emit(
            make_record_event(
                EventType.record_created,
                EventLevel.info,
                "created",
                record_key="ST-1",
                category="Tank",
                region="ON",
            )
        )

        (event,) = EventSink(data_dir).read_global(record_key="ST-1")
        assert event["context"] == {"record_key": "ST-1", "category": "Tank", "region": "ON"}


class TestSinkQueries:
    def test_filters_and_order(self, data_dir: Path):
        from siteledger.logging.events import EventLevel, EventType, LedgerEvent
        from siteledger.logging.sink import EventSink

        sink = EventSink(data_dir)
        for i, level in enumerate(["info", "warning", "info"]):
            sink.write(
                LedgerEvent(
                    level=EventLevel(level),
                    event_type=EventType.record_created,
                    message=f"e{i}",
                    context={"category": "Tank" if i else "Weir"},
                )
            )

        assert [e["message"] for e in sink.read_global()] == ["e2", "e1", "e0"]
        assert [e["message"] for e in sink.read_global(level="warning")] == ["e1"]
        assert [e["message"] for e in sink.read_global(category="Weir")] == ["e0"]
        assert [e["message"] for e in sink.read_global(limit=1)] == ["e2"]

    def test_tail_read_drops_partial_line(self, data_dir: Path):
        from siteledger.logging.events import EventLevel, EventType, LedgerEvent
        from siteledger.logging.sink import EventSink

        sink = EventSink(data_dir, tail_bytes=400)
        for i in range(20):
            sink.write(
                LedgerEvent(
                    level=EventLevel.info,
                    event_type=EventType.record_created,
                    message=f"event {i}",
                )
            )

        events = sink.read_global(limit=2000)
        assert 0 < len(events) < 20
        assert events[0]["message"] == "event 19"

    def test_tail_window_on_line_start_keeps_that_line(self, data_dir: Path):
        from siteledger.logging.sink import GLOBAL_LOG, EventSink

        lines = [
            json.dumps({"level": "info", "event_type": "record_created", "message": f"m{i}"})
            + "\n"
            for i in range(3)
        ]
        window = len(lines[1]) + len(lines[2])
        sink = EventSink(data_dir, tail_bytes=window)
        (sink.logs_dir / GLOBAL_LOG).write_text("".join(lines))

        assert [e["message"] for e in sink.read_global()] == ["m2", "m1"]

        sink.tail_bytes = window - 1
        assert [e["message"] for e in sink.read_global()] == ["m2"]
