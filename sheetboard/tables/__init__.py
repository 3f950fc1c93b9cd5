from .merge import merge
from .row_store import RowStore
from .schema import ROW_ID_KEY, Column, ColumnType, SpreadsheetRef, TableSnapshot
from .side_store import SideStore

__all__ = [
    "ROW_ID_KEY",
    "Column",
    "ColumnType",
    "RowStore",
    "SideStore",
    "SpreadsheetRef",
    "TableSnapshot",
    "merge",
]
