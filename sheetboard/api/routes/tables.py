"""Table routes — schemas, rows and spreadsheet links for the current owner."""

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, ConfigDict, Field

from ...dependencies import get_current_owner, get_table_service
from ...tables.service import MutationResult, TableService

router = APIRouter(prefix="/tables", tags=["tables"])


# --- Request bodies ---

class CreateTableRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    columns: Any = None
    google_sheet_url: Optional[str] = Field(default=None, alias="googleSheetUrl")


class UpdateTableRequest(BaseModel):
    name: Optional[str] = None
    columns: Any = None


class SheetLinkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    google_sheet_url: Optional[str] = Field(default=None, alias="googleSheetUrl")


class CreateSheetRequest(BaseModel):
    title: Optional[str] = None


class RowRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: dict[str, Any] = Field(default_factory=dict)
    is_dashboard_only: dict[str, bool] = Field(default_factory=dict, alias="isDashboardOnly")


# --- Helpers ---

def _with_warning(body: dict, result: MutationResult) -> dict:
    if result.warning:
        body["warning"] = result.warning
    return body


def _table_response(result: MutationResult) -> dict:
    return _with_warning(result.table_dict(), result)


# --- Endpoints ---

@router.get("")
async def list_tables(
    owner_id: str = Depends(get_current_owner),
    service: TableService = Depends(get_table_service),
):
    """List the owner's tables with merged rows."""
    return [r.table_dict() for r in await service.list_tables(owner_id)]


@router.post("", status_code=201)
async def create_table(
    body: CreateTableRequest,
    owner_id: str = Depends(get_current_owner),
    service: TableService = Depends(get_table_service),
):
    """Create a table, optionally linked to an existing spreadsheet.

    A failed initial sync still creates the table and reports a warning.
    """
    result = await service.create_table(owner_id, body.name, body.columns, body.google_sheet_url)
    return _table_response(result)


@router.get("/{table_id}")
async def get_table(
    table_id: int,
    owner_id: str = Depends(get_current_owner),
    service: TableService = Depends(get_table_service),
):
    return (await service.get_table(owner_id, table_id)).table_dict()


@router.put("/{table_id}")
async def update_table(
    table_id: int,
    body: UpdateTableRequest,
    owner_id: str = Depends(get_current_owner),
    service: TableService = Depends(get_table_service),
):
    result = await service.update_table(owner_id, table_id, name=body.name, columns=body.columns)
    return _table_response(result)


@router.delete("/{table_id}")
async def delete_table(
    table_id: int,
    owner_id: str = Depends(get_current_owner),
    service: TableService = Depends(get_table_service),
):
    await service.delete_table(owner_id, table_id)
    return {"message": "Table deleted successfully", "id": table_id}


@router.post("/{table_id}/columns")
async def add_column(
    table_id: int,
    column: Any = Body(...),
    owner_id: str = Depends(get_current_owner),
    service: TableService = Depends(get_table_service),
):
    """Append a column. Body: ``{name, type, isDashboardOnly}``."""
    return _table_response(await service.add_column(owner_id, table_id, column))


@router.post("/{table_id}/connect-sheet")
async def connect_sheet(
    table_id: int,
    body: SheetLinkRequest,
    owner_id: str = Depends(get_current_owner),
    service: TableService = Depends(get_table_service),
):
    result = await service.link_spreadsheet(owner_id, table_id, body.google_sheet_url)
    return _table_response(result)


@router.put("/{table_id}/update-sheet")
async def update_sheet(
    table_id: int,
    body: Optional[SheetLinkRequest] = None,
    owner_id: str = Depends(get_current_owner),
    service: TableService = Depends(get_table_service),
):
    """Point the table at a different spreadsheet, or re-sync the current one."""
    if body is not None and body.google_sheet_url:
        result = await service.link_spreadsheet(owner_id, table_id, body.google_sheet_url)
    else:
        result = await service.sync_table(owner_id, table_id)
    return _table_response(result)


@router.post("/{table_id}/create-sheet", status_code=201)
async def create_sheet(
    table_id: int,
    body: Optional[CreateSheetRequest] = None,
    owner_id: str = Depends(get_current_owner),
    service: TableService = Depends(get_table_service),
):
    """Provision a new spreadsheet from the table's columns and rows."""
    title = body.title if body is not None else None
    return _table_response(await service.create_spreadsheet(owner_id, table_id, title))


@router.post("/{table_id}/sync")
async def sync_table(
    table_id: int,
    owner_id: str = Depends(get_current_owner),
    service: TableService = Depends(get_table_service),
):
    return _table_response(await service.sync_table(owner_id, table_id))


@router.post("/{table_id}/rows", status_code=201)
async def add_row(
    table_id: int,
    body: RowRequest,
    owner_id: str = Depends(get_current_owner),
    service: TableService = Depends(get_table_service),
):
    result = await service.add_row(owner_id, table_id, body.data, body.is_dashboard_only)
    return _with_warning(
        {"row": result.row, "rowId": result.row_id, "table": result.table_dict()}, result
    )


@router.put("/{table_id}/rows/{row_id}")
async def update_row(
    table_id: int,
    row_id: str,
    body: RowRequest,
    owner_id: str = Depends(get_current_owner),
    service: TableService = Depends(get_table_service),
):
    result = await service.update_row(owner_id, table_id, row_id, body.data, body.is_dashboard_only)
    return _with_warning({"row": result.row, "table": result.table_dict()}, result)


@router.delete("/{table_id}/rows/{row_id}")
async def delete_row(
    table_id: int,
    row_id: str,
    owner_id: str = Depends(get_current_owner),
    service: TableService = Depends(get_table_service),
):
    result = await service.delete_row(owner_id, table_id, row_id)
    return _with_warning({"deleted": row_id, "table": result.table_dict()}, result)
