"""Table service — user-triggered table, column and row mutations.

Every mutation runs locally first. When the table is linked to a spreadsheet
the matching remote write follows on a best-effort basis: a remote failure is
recorded as the table's ``lastSyncError`` and returned as a ``warning``, and
the local change stands. Row mutations hold the table's sync lock so a
concurrent pull cannot overwrite them mid-flight.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from ..errors import NotFound, SheetboardError, ValidationError
from ..sheets.adapter import FIRST_DATA_ROW, extract_external_id, url_for
from ..sheets.coercion import normalize_input
from ..utils.logging import get_logger
from .merge import merge
from .schema import (
    ROW_ID_KEY,
    Column,
    SpreadsheetRef,
    TableSnapshot,
    new_row_id,
    parse_columns,
    split_fields,
)

logger = get_logger("tables.service")


@dataclass
class MutationResult:
    table: TableSnapshot
    rows: list[dict]
    row: Optional[dict] = None
    row_id: Optional[str] = None
    warning: Optional[str] = None

    def table_dict(self) -> dict:
        return self.table.to_dict(rows=self.rows)


def _normalize(table: TableSnapshot, values: Mapping[str, Any]) -> dict:
    return {name: normalize_input(table.column(name), value) for name, value in values.items()}


def _find_row(rows: list[dict], row_id: str) -> Optional[dict]:
    for row in rows:
        if row.get(ROW_ID_KEY) == row_id:
            return row
    return None


class TableService:
    """Coordinates the row store, side store, adapter and orchestrator."""

    def __init__(self, row_store, side_store, adapter, orchestrator, channels=None):
        self._row_store = row_store
        self._side_store = side_store
        self._adapter = adapter
        self._orchestrator = orchestrator
        self._channels = channels

    # --- Helpers ---

    async def _merged(self, table: TableSnapshot) -> list[dict]:
        return merge(table, await self._side_store.get_all(table.id))

    async def _remote_failed(self, table: TableSnapshot, action: str, exc: SheetboardError) -> str:
        warning = f"Saved locally, but the spreadsheet {action} failed: {exc}"
        logger.warning("remote_mutation_failed", table_id=table.id, action=action, error=str(exc))
        await self._row_store.record_sync_error(table.id, str(exc))
        table.last_sync_error = str(exc)
        return warning

    async def _sync_after_link(self, owner_id: str, table: TableSnapshot) -> MutationResult:
        try:
            result = await self._orchestrator.sync_table(table.id, owner_id)
            return MutationResult(table=result.table, rows=result.rows)
        except SheetboardError as exc:
            table = await self._row_store.get(owner_id, table.id)
            rows = await self._merged(table)
            return MutationResult(table=table, rows=rows, warning=f"Spreadsheet sync failed: {exc}")

    @staticmethod
    def _parse_ref(url: Optional[str]) -> SpreadsheetRef:
        external_id = extract_external_id(url)
        if external_id is None:
            raise ValidationError("Invalid Google Sheets URL")
        return SpreadsheetRef(external_id=external_id, external_url=url)

    # --- Tables ---

    async def create_table(
        self,
        owner_id: str,
        name: str,
        columns: Any,
        spreadsheet_url: Optional[str] = None,
    ) -> MutationResult:
        parsed = parse_columns(columns)
        ref = self._parse_ref(spreadsheet_url) if spreadsheet_url else None
        table = await self._row_store.create(owner_id, name, parsed, ref)
        if ref is None:
            return MutationResult(table=table, rows=await self._merged(table))
        return await self._sync_after_link(owner_id, table)

    async def get_table(self, owner_id: str, table_id: int) -> MutationResult:
        table = await self._row_store.get(owner_id, table_id)
        return MutationResult(table=table, rows=await self._merged(table))

    async def list_tables(self, owner_id: str) -> list[MutationResult]:
        return [
            MutationResult(table=t, rows=await self._merged(t))
            for t in await self._row_store.list_by_owner(owner_id)
        ]

    async def update_table(
        self,
        owner_id: str,
        table_id: int,
        name: Optional[str] = None,
        columns: Any = None,
    ) -> MutationResult:
        """Rename and/or redefine columns.

        Values follow their column between the two stores when its
        dashboard-only flag changes. A sheet-bound column whose name is not in
        the linked spreadsheet's header row is switched to dashboard-only.
        """
        async with self._orchestrator.table_lock(table_id):
            table = await self._row_store.get(owner_id, table_id)
            if columns is None:
                table = await self._row_store.update_table(owner_id, table_id, name=name)
                rows = await self._orchestrator.notify_updated(table)
                return MutationResult(table=table, rows=rows)

            new_columns = parse_columns(columns)
            warning = None
            previous = {c.name for c in table.sheet_columns}
            introduced = [
                c.name for c in new_columns if not c.is_dashboard_only and c.name not in previous
            ]
            if table.is_linked and introduced:
                try:
                    headers = await self._adapter.read_headers(table)
                except SheetboardError as exc:
                    warning = await self._remote_failed(table, "header check", exc)
                else:
                    absent = [n for n in introduced if n not in headers]
                    if absent:
                        new_columns = [
                            c.model_copy(update={"is_dashboard_only": True})
                            if c.name in absent
                            else c
                            for c in new_columns
                        ]
                        warning = (
                            "Not found in the spreadsheet header, kept as dashboard-only: "
                            + ", ".join(absent)
                        )
                        logger.info("columns_degraded", table_id=table_id, columns=absent)

            merged = await self._merged(table)
            sheet_names = [c.name for c in new_columns if not c.is_dashboard_only]
            dash_names = [c.name for c in new_columns if c.is_dashboard_only]
            projections = []
            overlays = {}
            for row in merged:
                row_id = row[ROW_ID_KEY]
                projections.append({ROW_ID_KEY: row_id, **{n: row.get(n) for n in sheet_names}})
                dash = {n: row[n] for n in dash_names if row.get(n) is not None}
                if dash:
                    overlays[row_id] = dash

            table = await self._row_store.update_table(
                owner_id, table_id, name=name, columns=new_columns, rows=projections
            )
            await self._side_store.replace_table(table_id, overlays)
            rows = await self._orchestrator.notify_updated(table)
            return MutationResult(table=table, rows=rows, warning=warning)

    async def delete_table(self, owner_id: str, table_id: int) -> None:
        async with self._orchestrator.table_lock(table_id):
            await self._row_store.delete_table(owner_id, table_id)
            await self._side_store.delete_table(table_id)
        self._orchestrator.forget_table(table_id)
        if self._channels is not None:
            self._channels.close_table(table_id)

    async def add_column(self, owner_id: str, table_id: int, column: Any) -> MutationResult:
        """Append a column. A sheet-bound column whose header cannot be written
        to the linked spreadsheet is kept as dashboard-only."""
        new_column: Column = parse_columns([column])[0]
        warning = None
        async with self._orchestrator.table_lock(table_id):
            table = await self._row_store.add_column(owner_id, table_id, new_column)
            if table.is_linked and not new_column.is_dashboard_only:
                try:
                    await self._adapter.ensure_header(table, new_column.name)
                except SheetboardError as exc:
                    degraded = [
                        c.model_copy(update={"is_dashboard_only": True})
                        if c.name == new_column.name
                        else c
                        for c in table.columns
                    ]
                    table = await self._row_store.update_table(owner_id, table_id, columns=degraded)
                    warning = await self._remote_failed(table, "header update", exc)
                    warning += f" Column '{new_column.name}' is dashboard-only."
                    logger.info("columns_degraded", table_id=table_id, columns=[new_column.name])
            rows = await self._orchestrator.notify_updated(table)
        return MutationResult(table=table, rows=rows, warning=warning)

    # --- Spreadsheet link ---

    async def link_spreadsheet(self, owner_id: str, table_id: int, url: str) -> MutationResult:
        ref = self._parse_ref(url)
        async with self._orchestrator.table_lock(table_id):
            table = await self._row_store.set_spreadsheet_ref(owner_id, table_id, ref)
        logger.info("spreadsheet_linked", table_id=table_id, spreadsheet_id=ref.external_id)
        return await self._sync_after_link(owner_id, table)

    async def create_spreadsheet(
        self, owner_id: str, table_id: int, title: Optional[str] = None
    ) -> MutationResult:
        """Provision a new spreadsheet seeded with the table's rows and link it."""
        async with self._orchestrator.table_lock(table_id):
            table = await self._row_store.get(owner_id, table_id)
            external_id = await self._adapter.create_remote(table, title)
            table = await self._row_store.set_spreadsheet_ref(
                owner_id, table_id, SpreadsheetRef(external_id, url_for(external_id))
            )
            rows = await self._orchestrator.notify_updated(table)
        return MutationResult(table=table, rows=rows)

    async def sync_table(self, owner_id: str, table_id: int) -> MutationResult:
        result = await self._orchestrator.sync_table(table_id, owner_id)
        return MutationResult(table=result.table, rows=result.rows)

    # --- Rows ---

    async def add_row(
        self,
        owner_id: str,
        table_id: int,
        data: Mapping[str, Any],
        dashboard_flags: Optional[Mapping[str, bool]] = None,
    ) -> MutationResult:
        async with self._orchestrator.table_lock(table_id):
            table = await self._row_store.get(owner_id, table_id)
            sheet, dash = split_fields(table.columns, data, dashboard_flags)
            sheet, dash = _normalize(table, sheet), _normalize(table, dash)
            row_id = new_row_id()

            table = await self._row_store.append_row(owner_id, table_id, {ROW_ID_KEY: row_id, **sheet})
            if dash:
                try:
                    await self._side_store.save(table_id, row_id, dash)
                except Exception as e:
                    # No sheet-bound row without its dashboard fields
                    logger.error("row_add_rolled_back", table_id=table_id, row_id=row_id, error=str(e))
                    await self._row_store.delete_row(owner_id, table_id, row_id)
                    raise

            warning = None
            if table.is_linked and table.sheet_columns:
                try:
                    await self._adapter.push_row_append(table, sheet)
                except SheetboardError as exc:
                    warning = await self._remote_failed(table, "row append", exc)
            rows = await self._orchestrator.notify_updated(table)
        logger.info("row_added", table_id=table_id, row_id=row_id)
        return MutationResult(
            table=table, rows=rows, row=_find_row(rows, row_id), row_id=row_id, warning=warning
        )

    async def update_row(
        self,
        owner_id: str,
        table_id: int,
        row_id: str,
        data: Mapping[str, Any],
        dashboard_flags: Optional[Mapping[str, bool]] = None,
    ) -> MutationResult:
        async with self._orchestrator.table_lock(table_id):
            table = await self._row_store.get(owner_id, table_id)
            index = table.row_index(row_id)
            if index is None:
                raise NotFound(f"Row {row_id} not found")
            sheet, dash = split_fields(table.columns, data, dashboard_flags)
            sheet, dash = _normalize(table, sheet), _normalize(table, dash)

            if sheet:
                table = await self._row_store.update_row(owner_id, table_id, row_id, sheet)
            if dash:
                existing = await self._side_store.get(table_id, row_id) or {}
                await self._side_store.save(table_id, row_id, {**existing, **dash})

            warning = None
            if table.is_linked and sheet:
                try:
                    await self._adapter.push_row_upsert(table, index, sheet)
                except SheetboardError as exc:
                    warning = await self._remote_failed(table, "row update", exc)
            rows = await self._orchestrator.notify_updated(table)
        return MutationResult(
            table=table, rows=rows, row=_find_row(rows, row_id), row_id=row_id, warning=warning
        )

    async def delete_row(self, owner_id: str, table_id: int, row_id: str) -> MutationResult:
        """Delete a row from both stores and, when linked, from the spreadsheet."""
        async with self._orchestrator.table_lock(table_id):
            table = await self._row_store.get(owner_id, table_id)
            index = table.row_index(row_id)
            had_overlay = await self._side_store.delete(table_id, row_id)
            if index is None and not had_overlay:
                raise NotFound(f"Row {row_id} not found")
            if index is not None:
                table = await self._row_store.delete_row(owner_id, table_id, row_id)

            warning = None
            if table.is_linked and index is not None:
                try:
                    await self._adapter.push_row_delete(table, index + FIRST_DATA_ROW)
                except SheetboardError as exc:
                    warning = await self._remote_failed(table, "row delete", exc)
            rows = await self._orchestrator.notify_updated(table)
        logger.info("row_deleted", table_id=table_id, row_id=row_id)
        return MutationResult(table=table, rows=rows, row_id=row_id, warning=warning)
