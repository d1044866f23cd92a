"""NDJSON event files under ``<data_dir>/logs``.

``events.ndjson`` receives every event.  Events emitted during a bulk
import are also copied to ``imports/<import_id>.ndjson`` so one import can
be replayed on its own.  Appends hold an exclusive ``flock`` and reads a
shared one; where ``fcntl`` is missing the files are used unlocked.
"""

from __future__ import annotations

import json
import os
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from siteledger.logging.events import LedgerEvent

try:
    import fcntl
except ImportError:  # Windows
    fcntl = None  # type: ignore[assignment]

GLOBAL_LOG = "events.ndjson"
IMPORTS_DIR = "imports"

MAX_QUERY_LIMIT = 2000

# Import ids become file names.
_LOG_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")

_CONTEXT_FILTERS = ("category", "record_key")


def is_valid_log_id(value: str) -> bool:
    return bool(_LOG_ID_RE.match(value))


@contextmanager
def _locked_fd(path: Path, flags: int, lock: int | None) -> Iterator[int]:
    fd = os.open(str(path), flags, 0o644)
    try:
        if fcntl is not None and lock is not None:
            fcntl.flock(fd, lock)
        yield fd
    finally:
        if fcntl is not None and lock is not None:
            fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)


class EventSink:
    """Writer and reader for one data directory's event files.

    Args:
        data_dir: Data directory; logs live in its ``logs`` subdirectory.
        fsync: Flush every append to disk before returning.
        tail_bytes: Upper bound on how much of a log file a query reads.
    """

    def __init__(self, data_dir: Path, *, fsync: bool = False, tail_bytes: int | None = None) -> None:
        self.logs_dir = Path(data_dir) / "logs"
        self.fsync = fsync
        self.tail_bytes = tail_bytes or 2 * 1024 * 1024
        (self.logs_dir / IMPORTS_DIR).mkdir(parents=True, exist_ok=True)

    def import_log_path(self, import_id: str) -> Path:
        return self.logs_dir / IMPORTS_DIR / f"{import_id}.ndjson"

    def write(self, event: LedgerEvent, *, import_id: str | None = None) -> None:
        """Append *event* to the global log, and to the import's log if given."""
        payload = event.model_dump(mode="json")
        data = (json.dumps(payload, sort_keys=True, default=str) + "\n").encode("utf-8")
        targets = [self.logs_dir / GLOBAL_LOG]
        if import_id and is_valid_log_id(import_id):
            targets.append(self.import_log_path(import_id))
        for path in targets:
            self._append(path, data)

    # -- queries ---------------------------------------------------------

    def read_global(
        self,
        *,
        level: str | None = None,
        event_type: str | None = None,
        category: str | None = None,
        record_key: str | None = None,
        limit: int = 200,
    ) -> list[dict[str, Any]]:
        """Newest-first events of the global log matching every given filter.

        ``category`` and ``record_key`` match against the event context.
        """
        wanted = {"level": level, "event_type": event_type}
        context_wanted = dict(zip(_CONTEXT_FILTERS, (category, record_key)))

        matched: list[dict[str, Any]] = []
        for event in reversed(self._load(self.logs_dir / GLOBAL_LOG)):
            if any(v and event.get(k) != v for k, v in wanted.items()):
                continue
            context = event.get("context") or {}
            if any(v and context.get(k) != v for k, v in context_wanted.items()):
                continue
            matched.append(event)
            if len(matched) >= min(limit, MAX_QUERY_LIMIT):
                break
        return matched

    def read_import_log(self, import_id: str) -> list[dict[str, Any]]:
        """Events of one import, oldest first; empty for unknown or unsafe ids."""
        if not is_valid_log_id(import_id):
            return []
        return self._load(self.import_log_path(import_id))

    # -- file access -----------------------------------------------------

    def _append(self, path: Path, data: bytes) -> None:
        lock = fcntl.LOCK_EX if fcntl is not None else None
        with _locked_fd(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, lock) as fd:
            os.write(fd, data)
            if self.fsync:
                os.fsync(fd)

    def _load(self, path: Path) -> list[dict[str, Any]]:
        if not path.exists():
            return []
        events: list[dict[str, Any]] = []
        for line in self._tail(path).splitlines():
            if not line.strip():
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return events

    def _tail(self, path: Path) -> str:
        """The last ``tail_bytes`` of *path*, starting on a line boundary."""
        lock = fcntl.LOCK_SH if fcntl is not None else None
        with _locked_fd(path, os.O_RDONLY, lock) as fd:
            size = os.fstat(fd).st_size
            # One byte extra, so a window opening on a line start keeps that line.
            start = max(0, size - self.tail_bytes - 1)
            os.lseek(fd, start, os.SEEK_SET)
            chunks: list[bytes] = []
            remaining = size - start
            while remaining > 0:
                chunk = os.read(fd, remaining)
                if not chunk:
                    break
                chunks.append(chunk)
                remaining -= len(chunk)
        data = b"".join(chunks)
        if start > 0:
            newline = data.find(b"\n")
            data = data[newline + 1:] if newline >= 0 else b""
        return data.decode("utf-8", errors="replace")
