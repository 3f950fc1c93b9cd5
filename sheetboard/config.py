"""Sheetboard configuration system using Pydantic Settings."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SheetboardConfig(BaseSettings):
    """Main configuration class. Loads from .env file and environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "SHEETBOARD"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 5000
    cors_origins: str = "http://localhost:3000"  # comma-separated

    # Database
    database_url: str = "sqlite+aiosqlite:///./sheetboard.db"
    db_wal_mode: bool = True
    db_busy_timeout: int = 5000  # milliseconds

    # Auth (tokens are issued elsewhere; we only verify them)
    secret_key: str = "CHANGE_ME_IN_PRODUCTION"
    jwt_algorithm: str = "HS256"

    # Side store (dashboard-only values)
    side_store_path: str = "storage/dashboard_data.json"

    # Spreadsheet sync
    sync_enabled: bool = True
    sync_interval_seconds: float = 300.0  # 5 is comfortable in development
    remote_timeout_seconds: float = 30.0
    google_credentials_file: str = "config/google-credentials.json"
    spreadsheet_share_email: Optional[str] = None
    new_spreadsheet_title: str = "New Dashboard Table"

    # WebSocket
    ws_max_connections: int = 200
    ws_queue_size: int = 100
    ws_heartbeat_interval: int = 30

    # Logging
    log_dir: str = "logs"
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("sync_interval_seconds", "remote_timeout_seconds")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("interval and timeout settings must be positive")
        return v

    @property
    def base_dir(self) -> Path:
        return Path(__file__).resolve().parent.parent


def get_config() -> SheetboardConfig:
    """Factory function to create config instance."""
    return SheetboardConfig()
