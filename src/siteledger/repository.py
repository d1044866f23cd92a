"""Async record repository over the category workbooks.

The repository owns global key uniqueness, placement of records into
category/region sheets, schema growth and shrinkage, and moves between
categories (delete, then re-insert).  Blocking file work runs in worker
threads via :func:`asyncio.to_thread`; every mutation of a category runs
inside that category's :class:`~siteledger.serializer.WriteSerializer` chain.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from siteledger import schema
from siteledger.categories import CategoryStore
from siteledger.errors import DuplicateKeyError, MissingWorkbookError
from siteledger.logging.events import (
    DUPLICATE_KEY,
    ROW_UNPARSABLE,
    EventLevel,
    EventType,
    emit,
    emit_info,
    emit_warning,
    make_record_event,
)
from siteledger.lookups import LookupStore
from siteledger.project import load_config, lookup_path
from siteledger.records import (
    COL_KEY,
    Record,
    cell_text,
    dynamic_columns,
    split_attribute_column,
)
from siteledger.serializer import WriteSerializer

_log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Key index
# ---------------------------------------------------------------------------


class KeyIndex:
    """In-memory map of record key to ``(category, region sheet)``.

    Only touched from the event-loop thread, so a check followed by
    :meth:`reserve` cannot interleave with another coroutine's check.
    """

    def __init__(self) -> None:
        self.loaded = False
        self._entries: dict[str, tuple[str, str]] = {}
        self._reserved: dict[str, str] = {}

    def load(self, entries: dict[str, tuple[str, str]]) -> None:
        self._entries = dict(entries)
        self._reserved.clear()
        self.loaded = True

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> tuple[str, str] | None:
        return self._entries.get(key)

    def owner(self, key: str) -> str | None:
        """Category holding or about to hold *key*, or None if the key is free."""
        entry = self._entries.get(key)
        if entry is not None:
            return entry[0]
        return self._reserved.get(key)

    def reserve(self, key: str, category: str) -> None:
        self._reserved[key] = category

    def release(self, key: str) -> None:
        self._reserved.pop(key, None)

    def put(self, key: str, category: str, region: str) -> None:
        self._reserved.pop(key, None)
        self._entries[key] = (category, region)

    def discard(self, key: str) -> None:
        self._entries.pop(key, None)
        self._reserved.pop(key, None)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class RecordRepository:
    """Create, update and read records stored in a data directory.

    Args:
        data_dir: Directory holding the category and lookup files.
        config: Data-directory config; loaded from ``siteledger.yaml`` if omitted.
    """

    def __init__(self, data_dir: Path, *, config: dict[str, Any] | None = None) -> None:
        self.data_dir = data_dir
        self.config = config if config is not None else load_config(data_dir)
        self.lookups = LookupStore(lookup_path(data_dir, self.config))
        self.categories = CategoryStore(
            data_dir, self.lookups, sheet_title=self.config["sheet_title"]
        )
        self.serializer = WriteSerializer()
        self.index = KeyIndex()
        self._index_lock = asyncio.Lock()
        self._inflight: set[asyncio.Future[Any]] = set()

    # ------------------------------------------------------------------
    # Key index
    # ------------------------------------------------------------------

    def _scan_keys(self) -> dict[str, tuple[str, str]]:
        entries: dict[str, tuple[str, str]] = {}
        for category in self.categories.list_categories():
            try:
                keys = self.categories.read_keys(category)
            except MissingWorkbookError:
                continue
            for key, region in keys.items():
                if key in entries:
                    _log.debug(
                        "key %r present in both %r and %r", key, entries[key][0], category
                    )
                    continue
                entries[key] = (category, region)
        return entries

    async def _ensure_index(self) -> None:
        if self.index.loaded:
            return
        async with self._index_lock:
            if not self.index.loaded:
                self.index.load(await asyncio.to_thread(self._scan_keys))

    async def refresh_index(self) -> int:
        """Rebuild the key index from disk.

        Returns:
            Number of keys indexed.
        """
        await self.settle()
        async with self._index_lock:
            self.index.load(await asyncio.to_thread(self._scan_keys))
        return len(self.index)

    def _claim(self, record: Record) -> None:
        """Check that *record*'s key is free and reserve it."""
        owner = self.index.owner(record.record_key)
        if owner is not None:
            emit(
                make_record_event(
                    EventType.record_duplicate,
                    EventLevel.warning,
                    f"Record ID {record.record_key!r} already exists in {owner}",
                    record_key=record.record_key,
                    category=owner,
                    error_code=DUPLICATE_KEY,
                )
            )
            raise DuplicateKeyError(record.record_key, owner)
        self.index.reserve(record.record_key, record.category)

    # ------------------------------------------------------------------
    # Blocking steps (run in worker threads, under the category lock)
    # ------------------------------------------------------------------

    def _register(self, record: Record) -> None:
        self.lookups.add_category(record.category)
        self.lookups.add_region(record.region)

    def _insert(self, record: Record, *, drop: set[str] | None = None) -> str:
        """Place *record* in its category/region sheet and persist the file.

        Args:
            record: Record to append.
            drop: Dynamic columns to remove from the file first.

        Returns:
            Title of the sheet the row went into.
        """
        self._register(record)
        self.categories.ensure(record.category, regions=[record.region])
        wb = self.categories.open(record.category)
        return self._insert_into(wb, record, drop=drop or set())

    def _insert_into(self, wb: Any, record: Record, *, drop: set[str]) -> str:
        ws = self.categories.add_region_sheet(wb, record.region)

        existing: list[str] = []
        for sheet in wb.worksheets:
            for name in dynamic_columns(schema.read_headers(sheet)):
                if name not in existing:
                    existing.append(name)
        desired = [c for c in existing if c not in drop]
        desired += [c for c in record.attribute_columns() if c not in desired]

        plans = schema.reconcile_workbook(wb, desired, title=self.categories.sheet_title)
        changed = {title: p for title, p in plans.items() if p.changed}
        if changed:
            first = next(iter(changed.values()))
            emit_info(
                EventType.schema_reconciled,
                f"Columns of {record.category!r} reconciled",
                {
                    "category": record.category,
                    "added": first.add,
                    "removed": first.remove,
                    "sheets": sorted(changed),
                },
            )

        self.categories.append_row(ws, record)
        self.categories.save(record.category, wb)
        return ws.title

    def _replace_in_place(self, record_key: str, record: Record) -> str:
        """Same-category update: delete the old row, shrink and grow, re-insert."""
        self._register(record)
        wb = self.categories.open(record.category)

        previous = self._row_attribute_columns(wb, record_key)
        removed = previous - set(record.attribute_columns())

        self.categories.remove_row(wb, record_key)
        return self._insert_into(wb, record, drop=removed)

    @staticmethod
    def _row_attribute_columns(wb: Any, record_key: str) -> set[str]:
        """Attribute columns holding a value in *record_key*'s row."""
        for title, headers, values in CategoryStore.iter_rows(wb):
            try:
                key_idx = headers.index(COL_KEY)
            except ValueError:
                continue
            if key_idx >= len(values) or cell_text(values[key_idx]) != record_key:
                continue
            return {
                header
                for header, value in zip(headers, values)
                if header
                and split_attribute_column(header) is not None
                and value is not None
                and not (isinstance(value, str) and not value.strip())
            }
        return set()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def _locked(self, category: str, fn: Any, *args: Any, **kwargs: Any) -> Any:
        return await self.serializer.with_lock(
            category, lambda: asyncio.to_thread(fn, *args, **kwargs)
        )

    def _detached(self, coro: Any) -> asyncio.Future[Any]:
        """Run *coro* as its own task; cancelling the caller leaves it running.

        A mutation that has claimed a key always gets to finish its file
        work and then either record or release that key.
        """
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)

        def _done(fut: asyncio.Future[Any]) -> None:
            self._inflight.discard(fut)
            if not fut.cancelled():
                fut.exception()  # retrieved here when the caller has gone

        task.add_done_callback(_done)
        return asyncio.shield(task)

    async def settle(self) -> None:
        """Wait for in-flight mutations and every queued category write."""
        while self._inflight:
            await asyncio.wait(list(self._inflight))
        await self.serializer.drain()

    def _failed(self, record: Record, exc: BaseException, action: str) -> None:
        emit(
            make_record_event(
                EventType.record_failed,
                EventLevel.error,
                f"{action} of {record.record_key!r} failed: {exc}",
                record_key=record.record_key,
                category=record.category,
                region=record.region,
                error_code=getattr(exc, "code", None),
            )
        )

    async def create(self, record: Record) -> Record:
        """Insert a new record.

        Once the key is claimed the write runs to completion even if the
        caller is cancelled, and the key index is updated to match.

        Raises:
            DuplicateKeyError: If the key exists in any category file.  Nothing
                is written in that case.
        """
        return await self._detached(self._create(record))

    async def _create(self, record: Record) -> Record:
        await self._ensure_index()
        self._claim(record)
        try:
            region = await self._locked(record.category, self._insert, record)
        except BaseException as exc:
            self.index.release(record.record_key)
            self._failed(record, exc, "create")
            raise
        self.index.put(record.record_key, record.category, region)
        emit(
            make_record_event(
                EventType.record_created,
                EventLevel.info,
                f"Record {record.record_key!r} created",
                record_key=record.record_key,
                category=record.category,
                region=region,
            )
        )
        return record

    async def update(self, record_key: str, record: Record) -> Record:
        """Replace the record stored under *record_key* with *record*.

        The old row is always deleted and the new one inserted.  Within one
        category, attribute columns the record no longer carries are removed
        from the whole file and new ones are added.  Moving to another
        category only adds columns there.  An unknown *record_key* makes this
        an insert.  As with :meth:`create`, cancelling the caller does not
        stop an update halfway.

        Raises:
            DuplicateKeyError: If *record* carries a different key that is
                already taken.
        """
        return await self._detached(self._update(record_key, record))

    async def _update(self, record_key: str, record: Record) -> Record:
        await self._ensure_index()
        previous = self.index.get(record_key)
        rekeyed = record.record_key != record_key
        if rekeyed or previous is None:
            self._claim(record)

        old_removed = False
        try:
            if previous is not None and previous[0] == record.category:
                region = await self._locked(
                    record.category, self._replace_in_place, record_key, record
                )
            else:
                if previous is not None:
                    await self._locked(
                        previous[0], self.categories.remove_row_by_key, previous[0], record_key
                    )
                    old_removed = True
                region = await self._locked(record.category, self._insert, record)
        except BaseException as exc:
            if rekeyed or previous is None:
                self.index.release(record.record_key)
            if old_removed:
                self.index.discard(record_key)
            self._failed(record, exc, "update")
            raise

        if rekeyed:
            self.index.discard(record_key)
        self.index.put(record.record_key, record.category, region)
        emit(
            make_record_event(
                EventType.record_updated,
                EventLevel.info,
                f"Record {record_key!r} updated",
                record_key=record.record_key,
                category=record.category,
                region=region,
                extra={
                    "previous_key": record_key,
                    "previous_category": previous[0] if previous else None,
                },
            )
        )
        return record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _read_category(self, category: str) -> list[Record]:
        try:
            records, skipped = self.categories.read_records(category)
        except MissingWorkbookError:
            return []
        if skipped:
            emit_warning(
                EventType.row_skipped,
                f"{skipped} row(s) in {category!r} lack a key or valid coordinates",
                {"category": category, "count": skipped},
                error_code=ROW_UNPARSABLE,
            )
        return records

    async def list_all(self, *, consistent: bool = False) -> list[Record]:
        """Read every record of every category file.

        Args:
            consistent: Queue each category's read behind its pending writes.
                Otherwise each file is read as last fully written.
        """
        names = await asyncio.to_thread(self.categories.list_categories)
        if consistent:
            reads = [self._locked(name, self._read_category, name) for name in names]
        else:
            reads = [asyncio.to_thread(self._read_category, name) for name in names]
        results = await asyncio.gather(*reads)
        return [record for batch in results for record in batch]

    async def get(self, record_key: str) -> Record | None:
        await self._ensure_index()
        location = self.index.get(record_key)
        if location is None:
            return None
        records = await asyncio.to_thread(self._read_category, location[0])
        for record in records:
            if record.record_key == record_key:
                return record
        return None

    # ------------------------------------------------------------------
    # Lookups and maintenance
    # ------------------------------------------------------------------

    async def register_region(self, name: str) -> bool:
        return await asyncio.to_thread(self.lookups.add_region, name)

    async def register_category(self, name: str) -> bool:
        """Add *name* to the lookups and provision its file."""
        added = await asyncio.to_thread(self.lookups.add_category, name)
        known = await asyncio.to_thread(self.lookups.list_categories)
        wanted = name.strip().lower()
        canonical = next((c for c in known if c.lower() == wanted), name.strip())
        await self._locked(canonical, self.categories.ensure, canonical)
        return added

    async def purge(self) -> int:
        """Delete every data file once queued writes have finished.

        Returns:
            Number of files removed.
        """
        await self.settle()
        removed = await asyncio.to_thread(self.categories.purge)
        self.index.load({})
        emit_warning(
            EventType.data_purged,
            f"{len(removed)} data file(s) deleted",
            {"files": [p.name for p in removed]},
        )
        return len(removed)
