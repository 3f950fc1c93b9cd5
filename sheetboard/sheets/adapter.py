"""Spreadsheet Adapter — Google Sheets <-> typed row model.

gspread is blocking, so every remote operation is a small synchronous function
run in the default executor and bounded by ``timeout`` seconds. Timeouts and
transport, API or auth failures surface as ``AdapterUnreachable``; domain
errors raised inside the remote call (``RowIndexOutOfBounds``) pass through.

The first worksheet of the spreadsheet holds the table: row 1 is the header
row and data rows start at row 2.
"""

import asyncio
import re
from functools import partial
from typing import Any, Callable, Optional

import gspread
from google.auth.exceptions import GoogleAuthError
from gspread.exceptions import GSpreadException

from ..errors import AdapterUnreachable, MissingColumnsError, RowIndexOutOfBounds, SheetboardError
from ..tables.schema import ROW_ID_KEY, Column, TableSnapshot
from ..utils.logging import get_logger
from .coercion import coerce_cell, format_cell
from .correlation import correlate_row

logger = get_logger("sheets.adapter")

_SHEET_ID_PATTERN = re.compile(r"/d/(.*?)(?:/|$)")

HEADER_ROW = 1
FIRST_DATA_ROW = 2


def extract_external_id(url: Optional[str]) -> Optional[str]:
    """Spreadsheet id from a sharing URL (the segment after ``/d/``), or None."""
    if not url:
        return None
    match = _SHEET_ID_PATTERN.search(url)
    if not match or not match.group(1):
        return None
    return match.group(1)


def url_for(external_id: str) -> str:
    return f"https://docs.google.com/spreadsheets/d/{external_id}/edit"


class SheetsAdapter:
    """Async facade over a lazily-built gspread client."""

    def __init__(
        self,
        client_factory: Callable[[], Any],
        timeout: float = 30.0,
        share_email: Optional[str] = None,
        default_title: str = "New Dashboard Table",
    ):
        self._client_factory = client_factory
        self._client = None
        self._timeout = timeout
        self._share_email = share_email
        self._default_title = default_title

    # --- Plumbing ---

    def _get_client(self):
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    def _worksheet(self, external_id: str):
        return self._get_client().open_by_key(external_id).sheet1

    async def _call(self, operation: str, fn: Callable, *args) -> Any:
        loop = asyncio.get_event_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, partial(fn, *args)),
                timeout=self._timeout,
            )
        except SheetboardError:
            raise
        except asyncio.TimeoutError:
            logger.warning("sheets_call_timeout", operation=operation, timeout=self._timeout)
            raise AdapterUnreachable(
                f"Spreadsheet {operation} timed out after {self._timeout:g}s"
            ) from None
        except (GSpreadException, GoogleAuthError, OSError) as exc:
            logger.warning("sheets_call_failed", operation=operation, error=str(exc))
            raise AdapterUnreachable(f"Spreadsheet {operation} failed: {exc}") from exc

    @staticmethod
    def _require_ref(table: TableSnapshot) -> str:
        if table.spreadsheet is None:
            raise AdapterUnreachable(f"Table {table.id} has no linked spreadsheet")
        return table.spreadsheet.external_id

    # --- Blocking operations (executor only) ---

    def _create_sync(self, title: str, headers: list[str], rows: list[list[str]]) -> str:
        spreadsheet = self._get_client().create(title)
        if headers:
            spreadsheet.sheet1.append_row(headers, value_input_option="RAW")
            if rows:
                spreadsheet.sheet1.append_rows(
                    rows, value_input_option="USER_ENTERED", table_range="A1"
                )
        if self._share_email:
            spreadsheet.share(self._share_email, perm_type="user", role="writer", notify=False)
        return spreadsheet.id

    def _values_sync(self, external_id: str) -> list[list[str]]:
        return self._worksheet(external_id).get_all_values()

    def _headers_sync(self, external_id: str) -> list[str]:
        return self._worksheet(external_id).row_values(HEADER_ROW)

    def _upsert_sync(
        self, external_id: str, row_index: int, cells: list[tuple[str, str]]
    ) -> int:
        worksheet = self._worksheet(external_id)
        values = worksheet.get_all_values()
        row_count = max(len(values) - 1, 0)
        if row_index < 0 or row_index >= row_count:
            raise RowIndexOutOfBounds(row_index, row_count)
        headers = values[0]
        target_row = row_index + FIRST_DATA_ROW
        updates = [
            gspread.Cell(row=target_row, col=headers.index(name) + 1, value=value)
            for name, value in cells
            if name in headers
        ]
        if updates:
            worksheet.update_cells(updates, value_input_option="USER_ENTERED")
        return len(updates)

    def _append_sync(self, external_id: str, fields: dict[str, str]) -> None:
        worksheet = self._worksheet(external_id)
        headers = worksheet.row_values(HEADER_ROW)
        worksheet.append_row(
            [fields.get(h, "") for h in headers],
            value_input_option="USER_ENTERED",
            table_range="A1",
        )

    def _delete_sync(self, external_id: str, remote_row_number: int) -> None:
        worksheet = self._worksheet(external_id)
        total = len(worksheet.get_all_values())
        if remote_row_number < FIRST_DATA_ROW or remote_row_number > total:
            raise RowIndexOutOfBounds(remote_row_number - FIRST_DATA_ROW, max(total - 1, 0))
        worksheet.delete_rows(remote_row_number)

    def _ensure_header_sync(self, external_id: str, name: str) -> bool:
        worksheet = self._worksheet(external_id)
        headers = worksheet.row_values(HEADER_ROW)
        if name in headers:
            return False
        col = len(headers) + 1
        if worksheet.col_count < col:
            worksheet.add_cols(col - worksheet.col_count)
        worksheet.update_cell(HEADER_ROW, col, name)
        return True

    # --- Public API ---

    async def create_remote(
        self, table: TableSnapshot, title: Optional[str] = None, include_rows: bool = True
    ) -> str:
        """Provision a spreadsheet whose header row is the sheet-bound column names.

        With ``include_rows`` the stored rows are written below the header in
        table order, so positions line up with the row store from the start.
        """
        headers = [c.name for c in table.sheet_columns]
        rows = []
        if include_rows:
            for row in table.rows:
                cells = dict(self._format_fields(table, row, fill_missing=True))
                rows.append([cells[h] for h in headers])
        external_id = await self._call(
            "create", self._create_sync, title or table.name or self._default_title, headers, rows
        )
        logger.info("spreadsheet_created", table_id=table.id, spreadsheet_id=external_id)
        return external_id

    async def read_headers(self, table: TableSnapshot) -> list[str]:
        return await self._call("read headers", self._headers_sync, self._require_ref(table))

    async def pull(self, table: TableSnapshot) -> list[dict]:
        """All remote data rows, typed and correlated with the stored rows."""
        values = await self._call("pull", self._values_sync, self._require_ref(table))
        headers = values[0] if values else []
        sheet_columns = table.sheet_columns
        missing = [c.name for c in sheet_columns if c.name not in headers]
        if missing:
            raise MissingColumnsError(missing)

        positions = {c.name: headers.index(c.name) for c in sheet_columns}
        rows = []
        for index, cells in enumerate(values[1:]):
            row: dict[str, Any] = {ROW_ID_KEY: correlate_row(index, table.rows)}
            for column in sheet_columns:
                pos = positions[column.name]
                raw = cells[pos] if pos < len(cells) else ""
                row[column.name] = coerce_cell(column.type, raw)
            rows.append(row)
        logger.debug("spreadsheet_pulled", table_id=table.id, rows=len(rows))
        return rows

    async def push_row_upsert(self, table: TableSnapshot, row_index: int, fields: dict) -> int:
        """Write ``fields`` into the data row at 0-based ``row_index``."""
        cells = self._format_fields(table, fields)
        return await self._call(
            "row update", self._upsert_sync, self._require_ref(table), row_index, cells
        )

    async def push_row_append(self, table: TableSnapshot, fields: dict) -> None:
        cells = dict(self._format_fields(table, fields, fill_missing=True))
        await self._call("row append", self._append_sync, self._require_ref(table), cells)

    async def push_row_delete(self, table: TableSnapshot, remote_row_number: int) -> None:
        """Delete a remote row by 1-based sheet row number (the header is row 1)."""
        await self._call(
            "row delete", self._delete_sync, self._require_ref(table), remote_row_number
        )

    async def ensure_header(self, table: TableSnapshot, column_name: str) -> bool:
        """Append ``column_name`` to the header row if absent. Returns True if added."""
        return await self._call(
            "header update", self._ensure_header_sync, self._require_ref(table), column_name
        )

    @staticmethod
    def _format_fields(
        table: TableSnapshot, fields: dict, fill_missing: bool = False
    ) -> list[tuple[str, str]]:
        columns: list[Column] = table.sheet_columns
        return [
            (c.name, format_cell(c.type, fields.get(c.name)))
            for c in columns
            if fill_missing or c.name in fields
        ]
