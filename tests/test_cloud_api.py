from __future__ import annotations

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from tandem.adapters.cloud_api import CloudApi
from tandem.engine.config import TandemConfig
from tandem.engine.errors import CloudApiError, NotLoggedInError, SessionLimitError


class _Backend:
    def __init__(self) -> None:
        self.create_status = 200
        self.create_body: dict = {"sessionId": "srv-1"}
        self.end_status = 200
        self.requests: list[tuple[str, str, dict]] = []

    async def create(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append(("create", request.headers.get("Authorization", ""), body))
        return web.json_response(self.create_body, status=self.create_status)

    async def end(self, request: web.Request) -> web.Response:
        self.requests.append(("end", request.match_info["session_id"], {}))
        return web.json_response({}, status=self.end_status)


async def _start(backend: _Backend) -> TestServer:
    app = web.Application()
    app.router.add_post("/api/v1/sessions", backend.create)
    app.router.add_post("/api/v1/sessions/{session_id}/end", backend.end)
    server = TestServer(app)
    await server.start_server()
    return server


def _config(server: TestServer, token: str | None = "tok") -> TandemConfig:
    return TandemConfig(
        api_url=f"http://{server.host}:{server.port}/",
        access_token=token,
        user_id="u1",
    )


@pytest.mark.asyncio
async def test_create_and_end_session() -> None:
    backend = _Backend()
    server = await _start(backend)
    try:
        api = CloudApi(_config(server))
        session_id = await api.create_session("/work")
        assert session_id == "srv-1"
        assert await api.end_session(session_id) is True
    finally:
        await server.close()

    assert backend.requests[0] == ("create", "Bearer tok", {"cwd": "/work"})
    assert backend.requests[1][:2] == ("end", "srv-1")


@pytest.mark.asyncio
async def test_session_limit_carries_upgrade_url() -> None:
    backend = _Backend()
    backend.create_status = 429
    backend.create_body = {"message": "Limit reached", "upgradeUrl": "https://example.com/up"}
    server = await _start(backend)
    try:
        with pytest.raises(SessionLimitError) as excinfo:
            await CloudApi(_config(server)).create_session("/work")
    finally:
        await server.close()

    assert excinfo.value.status == 429
    assert excinfo.value.message == "Limit reached"
    assert excinfo.value.upgrade_url == "https://example.com/up"


@pytest.mark.asyncio
async def test_create_failures_raise_cloud_api_error() -> None:
    backend = _Backend()
    backend.create_status = 500
    backend.create_body = {"error": "boom"}
    server = await _start(backend)
    try:
        api = CloudApi(_config(server))
        with pytest.raises(CloudApiError) as excinfo:
            await api.create_session("/work")
        assert excinfo.value.status == 500
        assert excinfo.value.message == "boom"

        backend.create_status = 200
        backend.create_body = {}
        with pytest.raises(CloudApiError):
            await api.create_session("/work")
    finally:
        await server.close()


@pytest.mark.asyncio
async def test_end_session_failure_is_reported_not_raised() -> None:
    backend = _Backend()
    backend.end_status = 404
    server = await _start(backend)
    try:
        assert await CloudApi(_config(server)).end_session("srv-1") is False
    finally:
        await server.close()


@pytest.mark.asyncio
async def test_missing_token_raises_not_logged_in() -> None:
    api = CloudApi(TandemConfig(api_url="http://127.0.0.1:1", access_token=None))
    with pytest.raises(NotLoggedInError):
        await api.create_session("/work")
