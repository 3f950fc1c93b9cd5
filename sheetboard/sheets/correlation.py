"""Identity correlation between pulled spreadsheet rows and stored rows.

Rows are matched by position: the pulled row at index ``i`` inherits the id
of the stored row at index ``i``. Swapping this for a stable-key strategy only
requires a different ``correlate_row``.
"""

from typing import Sequence

from ..tables.schema import ROW_ID_KEY, new_row_id


def correlate_row(index: int, existing_rows: Sequence[dict]) -> str:
    """Row id for the pulled row at ``index``; a fresh id when none is stored there."""
    if 0 <= index < len(existing_rows):
        row_id = existing_rows[index].get(ROW_ID_KEY)
        if row_id:
            return row_id
    return new_row_id()
