"""Dashboard table and row models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class DashboardTable(Base):
    __tablename__ = "dashboard_tables"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    columns_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    spreadsheet_id: Mapped[Optional[str]] = mapped_column(
        String(200), nullable=True, index=True
    )
    spreadsheet_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_sync_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, onupdate=func.now(), nullable=True
    )


class TableRow(Base):
    """Sheet-bound projection of one row. Dashboard-only values live in the side store."""

    __tablename__ = "table_rows"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    table_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("dashboard_tables.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    values_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
