from .adapter import SheetsAdapter, extract_external_id, url_for
from .coercion import coerce_cell, format_cell, normalize_input
from .correlation import correlate_row

__all__ = [
    "SheetsAdapter",
    "coerce_cell",
    "correlate_row",
    "extract_external_id",
    "format_cell",
    "normalize_input",
    "url_for",
]
