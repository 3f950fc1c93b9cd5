"""Master API router — includes all sub-routers."""

from fastapi import APIRouter

from .routes.tables import router as tables_router
from .websockets.tables import router as ws_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(tables_router)

# WebSocket router is mounted at root level (no prefix)
websocket_router = ws_router
