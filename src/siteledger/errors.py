"""Error types for the record store."""

from __future__ import annotations

from pathlib import Path


class SiteLedgerError(Exception):
    """Base class for all record-store errors."""

    code = "internal"


class DuplicateKeyError(SiteLedgerError):
    """A record key already exists somewhere in the corpus.

    Attributes:
        record_key: The colliding key.
        category: Category whose file already holds the key.
    """

    code = "duplicate_key"

    def __init__(self, record_key: str, category: str) -> None:
        self.record_key = record_key
        self.category = category
        super().__init__(f"Record ID {record_key!r} already exists in {category}")


class MissingWorkbookError(SiteLedgerError):
    """The data file for a category does not exist."""

    code = "missing_workbook"

    def __init__(self, category: str, path: Path | None = None) -> None:
        self.category = category
        self.path = path
        super().__init__(f"Workbook for category {category!r} was not found")


class CorruptLookupError(SiteLedgerError):
    """The lookup file exists but cannot be read as a workbook."""

    code = "corrupt_lookup"

    def __init__(self, path: Path, reason: str = "") -> None:
        self.path = path
        msg = f"Lookup file {path} is unreadable"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class MissingColumnError(SiteLedgerError):
    """A core column is absent from a region sheet's header row.

    Indicates that the header row was never reconciled; not user-recoverable.
    """

    code = "missing_column"

    def __init__(self, column: str, sheet: str) -> None:
        self.column = column
        self.sheet = sheet
        super().__init__(f"Column {column!r} missing from header row of sheet {sheet!r}")


class ImportHeaderError(SiteLedgerError):
    """A source sheet for bulk import has no usable header row."""

    code = "import_header"


class RecordValidationError(SiteLedgerError, ValueError):
    """A record payload failed validation."""

    code = "validation"


class InvalidNameError(SiteLedgerError, ValueError):
    """A category or region name cannot be used as a file or sheet name."""

    code = "validation"
