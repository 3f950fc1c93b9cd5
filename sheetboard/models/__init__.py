"""SQLAlchemy models package."""

from .base import Base
from .table import DashboardTable, TableRow

__all__ = [
    "Base",
    "DashboardTable",
    "TableRow",
]
