"""Table schema types and the sheet-bound / dashboard-only split."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError

ROW_ID_KEY = "_id"


class ColumnType(str, Enum):
    TEXT = "text"
    DATE = "date"
    NUMBER = "number"
    BOOLEAN = "boolean"


class Column(BaseModel):
    """One typed column. ``is_dashboard_only`` routes its values to the side store."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = Field(min_length=1)
    type: ColumnType = ColumnType.TEXT
    is_dashboard_only: bool = Field(default=False, alias="isDashboardOnly")

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.type.value,
            "isDashboardOnly": self.is_dashboard_only,
        }


@dataclass(frozen=True)
class SpreadsheetRef:
    external_id: str
    external_url: str


@dataclass
class TableSnapshot:
    """Detached view of a table as held by the row store (sheet-bound rows only)."""

    id: int
    owner_id: str
    name: str
    columns: list[Column]
    rows: list[dict] = field(default_factory=list)
    spreadsheet: Optional[SpreadsheetRef] = None
    last_synced_at: Optional[datetime] = None
    last_sync_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_linked(self) -> bool:
        return self.spreadsheet is not None

    @property
    def sheet_columns(self) -> list[Column]:
        return [c for c in self.columns if not c.is_dashboard_only]

    @property
    def dashboard_columns(self) -> list[Column]:
        return [c for c in self.columns if c.is_dashboard_only]

    def column(self, name: str) -> Optional[Column]:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def row_index(self, row_id: str) -> Optional[int]:
        """Positional index of a row in table order, or None."""
        for index, row in enumerate(self.rows):
            if row.get(ROW_ID_KEY) == row_id:
                return index
        return None

    def to_dict(self, rows: Optional[list[dict]] = None) -> dict:
        """Serialize for the API. ``rows`` lets callers substitute merged rows."""
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "name": self.name,
            "columns": [c.to_dict() for c in self.columns],
            "rows": rows if rows is not None else self.rows,
            "spreadsheetId": self.spreadsheet.external_id if self.spreadsheet else None,
            "spreadsheetUrl": self.spreadsheet.external_url if self.spreadsheet else None,
            "lastSyncedAt": self.last_synced_at.isoformat() if self.last_synced_at else None,
            "lastSyncError": self.last_sync_error,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


def new_row_id() -> str:
    return uuid.uuid4().hex


def parse_columns(raw: Any) -> list[Column]:
    """Validate a user-supplied column list. Names must be unique."""
    if not isinstance(raw, list):
        raise ValidationError("columns must be an array")
    columns: list[Column] = []
    for item in raw:
        if isinstance(item, Column):
            columns.append(item)
            continue
        if not isinstance(item, Mapping):
            raise ValidationError("each column must be an object")
        try:
            columns.append(Column.model_validate(dict(item)))
        except PydanticValidationError as exc:
            raise ValidationError(f"invalid column: {exc.errors()[0]['msg']}") from exc
    check_unique_names(columns)
    return columns


def check_unique_names(columns: Iterable[Column]) -> None:
    seen: set[str] = set()
    for col in columns:
        if col.name == ROW_ID_KEY:
            raise ValidationError(f"column name '{ROW_ID_KEY}' is reserved")
        if col.name in seen:
            raise ValidationError(f"duplicate column name '{col.name}'")
        seen.add(col.name)


def split_fields(
    columns: list[Column],
    data: Mapping[str, Any],
    dashboard_flags: Optional[Mapping[str, bool]] = None,
) -> tuple[dict, dict]:
    """Split incoming row data into (sheet_bound, dashboard_only) projections.

    The column definition decides the routing; ``dashboard_flags`` from the
    request is advisory and only checked for unknown names. The row id key is
    ignored.
    """
    by_name = {c.name: c for c in columns}
    unknown = [k for k in data if k != ROW_ID_KEY and k not in by_name]
    if dashboard_flags:
        unknown += [k for k in dashboard_flags if k not in by_name and k not in unknown]
    if unknown:
        raise ValidationError(f"unknown columns: {', '.join(unknown)}")

    sheet_bound: dict = {}
    dashboard: dict = {}
    for key, value in data.items():
        if key == ROW_ID_KEY:
            continue
        if by_name[key].is_dashboard_only:
            dashboard[key] = value
        else:
            sheet_bound[key] = value
    return sheet_bound, dashboard
