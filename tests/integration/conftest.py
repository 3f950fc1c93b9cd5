"""Integration test fixtures — in-memory app, async client, bearer auth."""

import os
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

_STORAGE_DIR = Path(tempfile.mkdtemp(prefix="sheetboard-it-"))

# Force test config BEFORE any app imports
os.environ["DEBUG"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-for-integration-tests"
os.environ["SYNC_ENABLED"] = "false"
os.environ["SIDE_STORE_PATH"] = str(_STORAGE_DIR / "dashboard_data.json")
os.environ["LOG_DIR"] = str(_STORAGE_DIR / "logs")

import sheetboard.database as db_mod
import sheetboard.dependencies as dep_mod
from sheetboard.errors import AdapterUnreachable
from sheetboard.sheets.adapter import SheetsAdapter
from sheetboard.utils.security import create_access_token


def _reset_singletons():
    """Reset all module-level singletons so each test session starts clean."""
    db_mod._engine = None
    db_mod._session_factory = None
    dep_mod._config_instance = None
    dep_mod._row_store = None
    dep_mod._side_store = None
    dep_mod._sheets_adapter = None
    dep_mod._channel_hub = None
    dep_mod._sync_orchestrator = None
    dep_mod._table_service = None


def _no_credentials():
    raise AdapterUnreachable("Google credentials not configured")


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def test_app():
    """Create test app with in-memory database (shared via StaticPool)."""
    _reset_singletons()

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Inject into database module BEFORE app import
    db_mod._engine = engine
    db_mod._session_factory = async_sessionmaker(engine, expire_on_commit=False)

    dep_mod.get_app_config()
    # No spreadsheet service in tests: every remote call fails fast
    dep_mod._sheets_adapter = SheetsAdapter(client_factory=_no_credentials, timeout=2.0)

    from sheetboard.main import app
    from sheetboard.models.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield app

    await engine.dispose()
    _reset_singletons()


@pytest_asyncio.fixture(loop_scope="session")
async def client(test_app):
    """Async HTTP client for testing."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def _headers_for(owner_id: str) -> dict:
    token = create_access_token({"sub": owner_id}, os.environ["SECRET_KEY"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """Bearer headers for owner ``user-1``."""
    return _headers_for("user-1")


@pytest.fixture
def other_headers():
    """Bearer headers for a second owner, ``user-2``."""
    return _headers_for("user-2")
