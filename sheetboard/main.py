"""Sheetboard — dashboard tables mirrored to Google Sheets.

FastAPI entry point with lifespan management, background sync, and CORS.
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.router import api_router, websocket_router
from .config import get_config
from .database import close_engine, create_tables
from .dependencies import get_channel_hub, get_sync_orchestrator
from .middleware.error_handler import register_error_handlers
from .middleware.request_id import RequestIDMiddleware
from .utils.logging import get_logger, setup_logging

VERSION = "1.0.0"

config = get_config()
setup_logging(
    debug=config.debug,
    log_dir=config.log_dir,
    log_max_bytes=config.log_max_bytes,
    log_backup_count=config.log_backup_count,
)
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    # --- Startup ---
    logger.info("sheetboard_starting", host=config.host, port=config.port)

    if config.secret_key == "CHANGE_ME_IN_PRODUCTION":
        if not config.debug:
            raise RuntimeError(
                "INSECURE_SECRET_KEY: default secret_key detected in production mode. "
                "Set a strong, unique SECRET_KEY in .env before deploying."
            )
        logger.warning("insecure_secret_key", detail="default secret_key in debug mode")

    await create_tables(config)

    orchestrator = get_sync_orchestrator()
    if config.sync_enabled:
        await orchestrator.start()
    else:
        logger.info("sync_disabled")

    logger.info("sheetboard_started")
    yield

    # --- Shutdown ---
    logger.info("sheetboard_stopping")
    if orchestrator.running:
        await orchestrator.stop()

    try:
        await get_channel_hub().close_all()
    except Exception as e:
        logger.debug("ws_close_all_failed", error=str(e))

    await close_engine()
    logger.info("sheetboard_stopped")


app = FastAPI(
    title="SHEETBOARD",
    description="Dashboard tables with Google Sheets sync",
    version=VERSION,
    lifespan=lifespan,
)

# Register standard error handlers
register_error_handlers(app)

# CORS origins from config
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in config.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

# Request ID middleware is added last so it runs first
app.add_middleware(RequestIDMiddleware)

# Mount API routes
app.include_router(api_router)
app.include_router(websocket_router)


@app.get("/")
async def root():
    return {"name": config.app_name, "version": VERSION, "status": "operational"}


@app.get("/health")
async def health():
    """Detailed health check."""
    orchestrator = get_sync_orchestrator()
    sync_health = await orchestrator.health_check() if orchestrator.running else {
        "status": "disabled" if not config.sync_enabled else orchestrator.health_status,
        "details": {},
    }
    return {
        "status": "ok",
        "version": VERSION,
        "sync": sync_health,
        "websocket_connections": get_channel_hub().connection_count,
    }


def main():
    uvicorn.run(
        "sheetboard.main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
    )


if __name__ == "__main__":
    main()
