"""Row Store — persistent table schemas and sheet-bound row projections.

Every owner-facing operation takes an explicit ``owner_id`` and raises
``NotFound`` for tables the caller does not own. Rows are individual records,
so an update is an atomic replace-by-id; concurrent writers to the same row
are last-write-wins.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import NotFound, ValidationError
from ..models.table import DashboardTable, TableRow
from ..utils.logging import get_logger
from .schema import (
    ROW_ID_KEY,
    Column,
    SpreadsheetRef,
    TableSnapshot,
    check_unique_names,
    new_row_id,
)

logger = get_logger("tables.row_store")


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _dump_columns(columns: list[Column]) -> str:
    return json.dumps([c.to_dict() for c in columns])


def _load_columns(raw: str) -> list[Column]:
    return [Column.model_validate(item) for item in json.loads(raw or "[]")]


def _projection(row: dict) -> dict:
    return {k: v for k, v in row.items() if k != ROW_ID_KEY}


class RowStore:
    """SQLAlchemy-backed store of tables and their sheet-bound rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # --- Internal helpers ---

    async def _owned(self, session: AsyncSession, owner_id: str, table_id: int) -> DashboardTable:
        result = await session.execute(
            select(DashboardTable).where(
                DashboardTable.id == table_id,
                DashboardTable.owner_id == owner_id,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFound(f"Table {table_id} not found")
        return record

    async def _by_id(self, session: AsyncSession, table_id: int) -> DashboardTable:
        record = await session.get(DashboardTable, table_id)
        if record is None:
            raise NotFound(f"Table {table_id} not found")
        return record

    async def _row_records(self, session: AsyncSession, table_id: int) -> list[TableRow]:
        result = await session.execute(
            select(TableRow)
            .where(TableRow.table_id == table_id)
            .order_by(TableRow.position.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def _snapshot(self, session: AsyncSession, table_id: int) -> TableSnapshot:
        result = await session.execute(
            select(DashboardTable)
            .where(DashboardTable.id == table_id)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFound(f"Table {table_id} not found")
        rows = []
        for row in await self._row_records(session, table_id):
            values = json.loads(row.values_json or "{}")
            rows.append({ROW_ID_KEY: row.id, **values})
        spreadsheet = None
        if record.spreadsheet_id:
            spreadsheet = SpreadsheetRef(record.spreadsheet_id, record.spreadsheet_url or "")
        return TableSnapshot(
            id=record.id,
            owner_id=record.owner_id,
            name=record.name,
            columns=_load_columns(record.columns_json),
            rows=rows,
            spreadsheet=spreadsheet,
            last_synced_at=_utc(record.last_synced_at),
            last_sync_error=record.last_sync_error,
            created_at=_utc(record.created_at),
            updated_at=_utc(record.updated_at),
        )

    async def _next_position(self, session: AsyncSession, table_id: int) -> int:
        result = await session.execute(
            select(func.max(TableRow.position)).where(TableRow.table_id == table_id)
        )
        current = result.scalar_one_or_none()
        return 0 if current is None else current + 1

    # --- Owner-scoped operations ---

    async def create(
        self,
        owner_id: str,
        name: str,
        columns: list[Column],
        spreadsheet: Optional[SpreadsheetRef] = None,
    ) -> TableSnapshot:
        if not name or not name.strip():
            raise ValidationError("table name is required")
        check_unique_names(columns)
        async with self._session_factory() as session:
            record = DashboardTable(
                owner_id=owner_id,
                name=name.strip(),
                columns_json=_dump_columns(columns),
                spreadsheet_id=spreadsheet.external_id if spreadsheet else None,
                spreadsheet_url=spreadsheet.external_url if spreadsheet else None,
            )
            session.add(record)
            await session.commit()
            logger.info("table_created", table_id=record.id, owner_id=owner_id)
            return await self._snapshot(session, record.id)

    async def get(self, owner_id: str, table_id: int) -> TableSnapshot:
        async with self._session_factory() as session:
            await self._owned(session, owner_id, table_id)
            return await self._snapshot(session, table_id)

    async def list_by_owner(self, owner_id: str) -> list[TableSnapshot]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DashboardTable.id)
                .where(DashboardTable.owner_id == owner_id)
                .order_by(DashboardTable.created_at.desc(), DashboardTable.id.desc())
            )
            return [await self._snapshot(session, tid) for tid in result.scalars().all()]

    async def update_row(
        self, owner_id: str, table_id: int, row_id: str, projection: dict
    ) -> TableSnapshot:
        """Merge ``projection`` into the stored row and replace it by id."""
        async with self._session_factory() as session:
            await self._owned(session, owner_id, table_id)
            row = await session.get(TableRow, row_id)
            if row is None or row.table_id != table_id:
                raise NotFound(f"Row {row_id} not found")
            values = json.loads(row.values_json or "{}")
            values.update(_projection(projection))
            row.values_json = json.dumps(values)
            await session.commit()
            return await self._snapshot(session, table_id)

    async def append_row(self, owner_id: str, table_id: int, row: dict) -> TableSnapshot:
        async with self._session_factory() as session:
            await self._owned(session, owner_id, table_id)
            session.add(
                TableRow(
                    id=row.get(ROW_ID_KEY) or new_row_id(),
                    table_id=table_id,
                    position=await self._next_position(session, table_id),
                    values_json=json.dumps(_projection(row)),
                )
            )
            await session.commit()
            return await self._snapshot(session, table_id)

    async def delete_row(self, owner_id: str, table_id: int, row_id: str) -> TableSnapshot:
        """Remove a row. A row already absent from this store is not an error here."""
        async with self._session_factory() as session:
            await self._owned(session, owner_id, table_id)
            result = await session.execute(
                delete(TableRow).where(TableRow.id == row_id, TableRow.table_id == table_id)
            )
            await session.commit()
            if result.rowcount:
                logger.info("row_deleted", table_id=table_id, row_id=row_id)
            return await self._snapshot(session, table_id)

    async def add_column(self, owner_id: str, table_id: int, column: Column) -> TableSnapshot:
        async with self._session_factory() as session:
            record = await self._owned(session, owner_id, table_id)
            columns = _load_columns(record.columns_json)
            columns.append(column)
            check_unique_names(columns)
            record.columns_json = _dump_columns(columns)
            await session.commit()
            return await self._snapshot(session, table_id)

    async def update_table(
        self,
        owner_id: str,
        table_id: int,
        name: Optional[str] = None,
        columns: Optional[list[Column]] = None,
        rows: Optional[list[dict]] = None,
    ) -> TableSnapshot:
        """Rename a table and/or replace its columns.

        ``rows`` optionally supplies new sheet-bound projections keyed by row
        id; rows keep their position.
        """
        async with self._session_factory() as session:
            record = await self._owned(session, owner_id, table_id)
            if name is not None:
                if not name.strip():
                    raise ValidationError("table name is required")
                record.name = name.strip()
            if columns is not None:
                check_unique_names(columns)
                record.columns_json = _dump_columns(columns)
            if rows is not None:
                by_id = {r[ROW_ID_KEY]: r for r in rows if r.get(ROW_ID_KEY)}
                for row in await self._row_records(session, table_id):
                    if row.id in by_id:
                        row.values_json = json.dumps(_projection(by_id[row.id]))
            await session.commit()
            return await self._snapshot(session, table_id)

    async def delete_table(self, owner_id: str, table_id: int) -> None:
        async with self._session_factory() as session:
            record = await self._owned(session, owner_id, table_id)
            await session.execute(delete(TableRow).where(TableRow.table_id == table_id))
            await session.delete(record)
            await session.commit()
            logger.info("table_deleted", table_id=table_id, owner_id=owner_id)

    async def set_spreadsheet_ref(
        self, owner_id: str, table_id: int, ref: Optional[SpreadsheetRef]
    ) -> TableSnapshot:
        async with self._session_factory() as session:
            record = await self._owned(session, owner_id, table_id)
            record.spreadsheet_id = ref.external_id if ref else None
            record.spreadsheet_url = ref.external_url if ref else None
            record.last_sync_error = None
            await session.commit()
            return await self._snapshot(session, table_id)

    # --- System-scoped operations (sync sweep) ---

    async def list_linked(self) -> list[int]:
        """Ids of every table with a spreadsheet reference, across all owners."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(DashboardTable.id)
                .where(DashboardTable.spreadsheet_id.is_not(None))
                .order_by(DashboardTable.id.asc())
            )
            return list(result.scalars().all())

    async def get_by_id(self, table_id: int) -> TableSnapshot:
        async with self._session_factory() as session:
            await self._by_id(session, table_id)
            return await self._snapshot(session, table_id)

    async def replace_rows(
        self, table_id: int, rows: list[dict], synced_at: Optional[datetime] = None
    ) -> TableSnapshot:
        """Replace the whole row array in one transaction and mark the table synced."""
        async with self._session_factory() as session:
            record = await self._by_id(session, table_id)
            existing = {r.id: r for r in await self._row_records(session, table_id)}
            keep: set[str] = set()
            for position, row in enumerate(rows):
                row_id = row.get(ROW_ID_KEY) or new_row_id()
                if row_id in keep:
                    raise ValidationError(f"duplicate row id {row_id}")
                keep.add(row_id)
                values_json = json.dumps(_projection(row))
                current = existing.get(row_id)
                if current is None:
                    session.add(
                        TableRow(
                            id=row_id,
                            table_id=table_id,
                            position=position,
                            values_json=values_json,
                        )
                    )
                else:
                    current.position = position
                    current.values_json = values_json
            for row_id, current in existing.items():
                if row_id not in keep:
                    await session.delete(current)
            record.last_synced_at = synced_at or datetime.now(timezone.utc)
            record.last_sync_error = None
            await session.commit()
            logger.info("table_rows_replaced", table_id=table_id, rows=len(rows))
            return await self._snapshot(session, table_id)

    async def record_sync_error(self, table_id: int, error: str) -> None:
        async with self._session_factory() as session:
            record = await self._by_id(session, table_id)
            record.last_sync_error = error
            await session.commit()

    async def clear_sync_error(self, table_id: int) -> None:
        async with self._session_factory() as session:
            record = await self._by_id(session, table_id)
            if record.last_sync_error is not None:
                record.last_sync_error = None
                await session.commit()
