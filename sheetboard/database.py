"""Database engine and session-factory singletons, schema creation at startup."""

from sqlalchemy import event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import SheetboardConfig
from .models.base import Base
from .utils.logging import get_logger

logger = get_logger("sheetboard.database")

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _is_file_sqlite(database_url: str) -> bool:
    url = make_url(database_url)
    return url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:")


def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite leaves FK enforcement off per connection; row cascades depend on it
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(config: SheetboardConfig) -> AsyncEngine:
    """Get or create the async database engine."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            config.database_url,
            echo=config.debug,
            pool_pre_ping=True,
        )
        if make_url(config.database_url).get_backend_name() == "sqlite":
            event.listen(_engine.sync_engine, "connect", _enable_foreign_keys)
    return _engine


def get_session_factory(config: SheetboardConfig) -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(config), expire_on_commit=False)
    return _session_factory


async def create_tables(config: SheetboardConfig) -> None:
    """Create missing tables; switch file-backed SQLite to WAL with a busy timeout."""
    engine = get_engine(config)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    if config.db_wal_mode and _is_file_sqlite(config.database_url):
        async with engine.connect() as conn:
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text(f"PRAGMA busy_timeout={config.db_busy_timeout}"))
            logger.info("sqlite_pragmas_applied", busy_timeout=config.db_busy_timeout)
    logger.info("database_ready", tables=sorted(Base.metadata.tables))


async def close_engine() -> None:
    """Dispose the engine and forget both singletons."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
