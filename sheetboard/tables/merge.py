"""Merge Engine — the read-path composition of row projections and overlays."""

from collections.abc import Mapping
from typing import Any

from .schema import ROW_ID_KEY, TableSnapshot


def merge_row(row: Mapping[str, Any], overlay: Any, column_names: list[str]) -> dict:
    """Overlay one side-store entry on a sheet-bound row; side store wins."""
    merged = dict(row)
    if isinstance(overlay, Mapping):
        merged.update(overlay)
    for name in column_names:
        merged.setdefault(name, None)
    return merged


def merge(table: TableSnapshot, overlays: Mapping[str, Any] | None) -> list[dict]:
    """Full logical rows for ``table``.

    ``overlays`` maps row id to that row's dashboard-only values. Entries that
    are missing or not mappings leave the row at its sheet-bound projection.
    """
    if not isinstance(overlays, Mapping):
        overlays = {}
    names = [c.name for c in table.columns]
    return [merge_row(row, overlays.get(row.get(ROW_ID_KEY)), names) for row in table.rows]
