"""Cell coercion between the spreadsheet's string grid and typed row values.

Pull direction (``coerce_cell``) turns a cell string into a typed value; push
direction (``format_cell``) renders a typed value as the cell string the sheet
expects. ``normalize_input`` validates values arriving from the dashboard
before they are stored.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from ..errors import ValidationError
from ..tables.schema import Column, ColumnType

# Spreadsheet serial day numbers count from this epoch
SERIAL_EPOCH = datetime(1899, 12, 30, tzinfo=timezone.utc)

_DATE_FORMATS = (
    "%m/%d/%Y",
    "%m/%d/%y",
    "%Y/%m/%d",
    "%m-%d-%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%m/%d/%Y %H:%M:%S",
)

_LEADING_NUMBER = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


# --- Dates ---

def parse_date_string(value: str) -> Optional[datetime]:
    """Parse an ISO or common human date string into an aware UTC datetime."""
    text = value.strip()
    if not text:
        return None
    iso = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        parsed = datetime.fromisoformat(iso)
    except ValueError:
        parsed = None
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def serial_to_datetime(serial: float) -> Optional[datetime]:
    try:
        return SERIAL_EPOCH + timedelta(days=serial)
    except OverflowError:
        return None


def coerce_date(value: str) -> Optional[str]:
    """Date cell -> ISO-8601 string: date string first, serial day number second."""
    if not value:
        return None
    parsed = parse_date_string(value)
    if parsed is None:
        try:
            serial = float(value)
        except ValueError:
            return None
        if not math.isfinite(serial):
            return None
        parsed = serial_to_datetime(serial)
    return parsed.isoformat() if parsed is not None else None


def _to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        return parse_date_string(value)
    return None


# --- Numbers ---

def parse_float(value: str) -> Optional[float]:
    """Leading-numeric-prefix parse: '12.5kg' -> 12.5, 'abc' -> None.

    Values that overflow a float ('1e999') also read as None.
    """
    match = _LEADING_NUMBER.match(value)
    if not match:
        return None
    number = float(match.group(0))
    return number if math.isfinite(number) else None


def _format_number(value: Any) -> str:
    number = float(value)
    if number.is_integer() and abs(number) < 2 ** 53:
        return str(int(number))
    return repr(number)


# --- Public API ---

def coerce_cell(column_type: ColumnType, raw: Optional[str]) -> Any:
    """Convert one cell string from the sheet into a typed value."""
    if column_type is ColumnType.DATE:
        return coerce_date(raw or "")
    if column_type is ColumnType.NUMBER:
        return parse_float(raw) if raw else None
    if column_type is ColumnType.BOOLEAN:
        return bool(raw) and raw.lower() == "true"
    return raw or ""


def format_cell(column_type: ColumnType, value: Any) -> str:
    """Render a typed value as the string written into the sheet."""
    if value is None:
        return ""
    if column_type is ColumnType.DATE:
        parsed = _to_datetime(value)
        return parsed.strftime("%m/%d/%Y") if parsed else ""
    if column_type is ColumnType.BOOLEAN:
        return "TRUE" if bool(value) else "FALSE"
    if column_type is ColumnType.NUMBER:
        try:
            return _format_number(value)
        except (TypeError, ValueError):
            return ""
    return str(value)


def normalize_input(column: Column, value: Any) -> Any:
    """Validate a dashboard-supplied value against its column type."""
    if value is None:
        return None
    kind = column.type

    if kind is ColumnType.NUMBER:
        if isinstance(value, bool):
            raise ValidationError(f"'{column.name}' expects a number")
        if isinstance(value, (int, float)):
            if isinstance(value, float) and not math.isfinite(value):
                raise ValidationError(f"'{column.name}' expects a finite number")
            return value
        if isinstance(value, str):
            if not value.strip():
                return None
            try:
                number = float(value)
            except ValueError:
                raise ValidationError(f"'{column.name}' expects a number") from None
            if not math.isfinite(number):
                raise ValidationError(f"'{column.name}' expects a finite number")
            return number
        raise ValidationError(f"'{column.name}' expects a number")

    if kind is ColumnType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise ValidationError(f"'{column.name}' expects a boolean")

    if kind is ColumnType.DATE:
        if isinstance(value, str) and not value.strip():
            return None
        parsed = _to_datetime(value)
        if parsed is None:
            raise ValidationError(f"'{column.name}' expects a date")
        return parsed.isoformat()

    if isinstance(value, (dict, list)):
        raise ValidationError(f"'{column.name}' expects text")
    return value if isinstance(value, str) else str(value)
