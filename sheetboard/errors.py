"""Domain error taxonomy.

Every error raised by the stores, the spreadsheet adapter and the sync
orchestrator derives from ``SheetboardError``. The HTTP layer maps
``status_code`` onto the response; background loops log and continue.
"""

from __future__ import annotations


class SheetboardError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class NotFound(SheetboardError):
    """Table or row is absent, or not owned by the caller."""

    status_code = 404


class ValidationError(SheetboardError):
    """Malformed input (bad columns, unknown fields, untyped values)."""

    status_code = 400


class MissingColumnsError(SheetboardError):
    """The remote header row lacks one or more sheet-bound columns."""

    status_code = 409

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Missing columns in spreadsheet: {', '.join(self.missing)}")


class RowIndexOutOfBounds(SheetboardError):
    """A positional write targets a row the remote does not have."""

    status_code = 409

    def __init__(self, row_index: int, row_count: int) -> None:
        self.row_index = row_index
        self.row_count = row_count
        super().__init__(
            f"Row index {row_index} is out of bounds (total rows: {row_count})"
        )


class AdapterUnreachable(SheetboardError):
    """Network, auth or timeout failure while talking to the spreadsheet."""

    status_code = 502


class StorageCorruption(SheetboardError):
    """The side-store document is unreadable. Never surfaced to callers."""

    status_code = 500
