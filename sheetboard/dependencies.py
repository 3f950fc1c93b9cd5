"""FastAPI dependency injection providers."""

from functools import partial
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import SheetboardConfig, get_config
from .database import get_session_factory
from .utils.logging import get_logger
from .utils.security import owner_from_token

_dep_logger = get_logger("dependencies")

security_scheme = HTTPBearer(auto_error=False)

_config_instance: SheetboardConfig | None = None
_row_store = None
_side_store = None
_sheets_adapter = None
_channel_hub = None
_sync_orchestrator = None
_table_service = None


def get_app_config() -> SheetboardConfig:
    """Get the application config singleton."""
    global _config_instance
    if _config_instance is None:
        _config_instance = get_config()
    return _config_instance


async def get_current_owner(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    config: SheetboardConfig = Depends(get_app_config),
) -> str:
    """Validate the bearer token and return the owner id from its ``sub`` claim."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    owner_id = owner_from_token(credentials.credentials, config.secret_key, config.jwt_algorithm)
    if owner_id is None:
        _dep_logger.info("token_rejected", path=str(request.url.path))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return owner_id


def get_row_store():
    """Get the row store singleton."""
    global _row_store
    if _row_store is None:
        from .tables.row_store import RowStore
        _row_store = RowStore(get_session_factory(get_app_config()))
    return _row_store


def get_side_store():
    """Get the side store singleton."""
    global _side_store
    if _side_store is None:
        from .tables.side_store import SideStore
        config = get_app_config()
        _side_store = SideStore(config.base_dir / config.side_store_path)
    return _side_store


def get_sheets_adapter():
    """Get the spreadsheet adapter singleton."""
    global _sheets_adapter
    if _sheets_adapter is None:
        from .sheets.adapter import SheetsAdapter
        from .sheets.client import build_client
        config = get_app_config()
        _sheets_adapter = SheetsAdapter(
            client_factory=partial(build_client, config.base_dir / config.google_credentials_file),
            timeout=config.remote_timeout_seconds,
            share_email=config.spreadsheet_share_email,
            default_title=config.new_spreadsheet_title,
        )
    return _sheets_adapter


def get_channel_hub():
    """Get the WebSocket channel hub singleton."""
    global _channel_hub
    if _channel_hub is None:
        from .realtime.hub import TableChannelHub
        config = get_app_config()
        _channel_hub = TableChannelHub(
            max_connections=config.ws_max_connections,
            queue_size=config.ws_queue_size,
            heartbeat_interval=config.ws_heartbeat_interval,
        )
    return _channel_hub


def get_sync_orchestrator():
    """Get the sync orchestrator singleton."""
    global _sync_orchestrator
    if _sync_orchestrator is None:
        from .sync.orchestrator import SyncOrchestrator
        _sync_orchestrator = SyncOrchestrator(
            row_store=get_row_store(),
            side_store=get_side_store(),
            adapter=get_sheets_adapter(),
            publisher=get_channel_hub(),
            interval=get_app_config().sync_interval_seconds,
        )
    return _sync_orchestrator


def get_table_service():
    """Get the table service singleton."""
    global _table_service
    if _table_service is None:
        from .tables.service import TableService
        _table_service = TableService(
            row_store=get_row_store(),
            side_store=get_side_store(),
            adapter=get_sheets_adapter(),
            orchestrator=get_sync_orchestrator(),
            channels=get_channel_hub(),
        )
    return _table_service
