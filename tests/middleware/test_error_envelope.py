"""Tests for the domain error envelope and request correlation."""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from sheetboard.errors import MissingColumnsError, NotFound, RowIndexOutOfBounds
from sheetboard.middleware.error_handler import register_error_handlers
from sheetboard.middleware.request_id import RequestIDMiddleware


def _app():
    app = FastAPI()
    register_error_handlers(app)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/missing")
    async def missing():
        raise NotFound("Table 9 not found")

    @app.get("/columns")
    async def columns():
        raise MissingColumnsError(["Amount", "Due"])

    @app.get("/bounds")
    async def bounds():
        raise RowIndexOutOfBounds(4, 2)

    return app


@pytest.fixture
def app():
    return _app()


async def _get(app, path, **kwargs):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.get(path, **kwargs)


class TestDomainErrors:
    @pytest.mark.asyncio
    async def test_not_found(self, app):
        resp = await _get(app, "/missing")
        assert resp.status_code == 404
        body = resp.json()
        assert body["error"] is True
        assert body["detail"] == "Table 9 not found"
        assert body["kind"] == "NotFound"
        assert body["request_id"] == resp.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_missing_columns_listed(self, app):
        resp = await _get(app, "/columns")
        assert resp.status_code == 409
        assert resp.json()["missing"] == ["Amount", "Due"]

    @pytest.mark.asyncio
    async def test_out_of_bounds(self, app):
        resp = await _get(app, "/bounds")
        assert resp.status_code == 409
        assert "total rows: 2" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_client_request_id_reused(self, app):
        resp = await _get(app, "/missing", headers={"X-Request-ID": "abc-123"})
        assert resp.headers["X-Request-ID"] == "abc-123"
        assert resp.json()["request_id"] == "abc-123"
