from __future__ import annotations

import httpx
import pytest
from fastapi import FastAPI

from todoist_mcp.config import Settings
from todoist_mcp.main import create_app
from todoist_mcp.repositories.entity_store import SqlEntityStore


@pytest.fixture
def app(sqlite_db, fake_todoist) -> FastAPI:
    _ = sqlite_db
    s = Settings.model_validate(
        {"mcp_enable_tools": True, "cors_allow_origins": "http://localhost:3000", "log_level": "WARNING"}
    )
    return create_app(s, store=SqlEntityStore(), client_factory=lambda _account: fake_todoist)


def _make_async_client(app: FastAPI) -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


@pytest.mark.anyio
async def test_health_ok(app):
    async with _make_async_client(app) as client:
        r = await client.get("/health")
        assert r.status_code == 200
        assert r.json() == {"ok": True}
        assert r.headers.get("x-request-id")


@pytest.mark.anyio
async def test_request_id_is_echoed(app):
    async with _make_async_client(app) as client:
        r = await client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 1, "method": "ping"},
            headers={"X-Request-Id": "trace-123"},
        )
        assert r.status_code == 200
        assert r.headers["x-request-id"] == "trace-123"


@pytest.mark.anyio
async def test_initialize_over_http(app):
    async with _make_async_client(app) as client:
        r = await client.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "initialize"})
        assert r.status_code == 200
        assert r.json() == {
            "jsonrpc": "2.0",
            "id": 1,
            "result": {
                "protocolVersion": "2024-11-05",
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "mcp-todoist", "version": "1.0.0"},
            },
        }


@pytest.mark.anyio
async def test_missing_fields_are_rejected_with_400(app):
    async with _make_async_client(app) as client:
        r = await client.post("/mcp", json={"method": "foo"})
        assert r.status_code == 400
        assert r.json() == {
            "jsonrpc": "2.0",
            "id": 0,
            "error": {"code": -32600, "message": "Invalid Request"},
        }

        r = await client.post("/mcp", json={"jsonrpc": "2.0", "method": "initialize"})
        assert r.status_code == 400
        assert r.json()["error"]["code"] == -32600

        r = await client.post("/mcp", json={"jsonrpc": "1.0", "id": 3, "method": "initialize"})
        assert r.status_code == 400
        assert r.json()["id"] == 3


@pytest.mark.anyio
async def test_unparseable_body_is_parse_error(app):
    async with _make_async_client(app) as client:
        r = await client.post(
            "/mcp", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert r.status_code == 500
        assert r.json() == {"jsonrpc": "2.0", "id": 0, "error": {"code": -32700, "message": "Parse error"}}


@pytest.mark.anyio
async def test_method_errors_are_http_200(app):
    async with _make_async_client(app) as client:
        r = await client.post("/mcp", json={"jsonrpc": "2.0", "id": 2, "method": "unknown/method"})
        assert r.status_code == 200
        assert r.json()["error"]["code"] == -32601


@pytest.mark.anyio
async def test_options_preflight(app):
    async with _make_async_client(app) as client:
        r = await client.options("/mcp")
        assert r.status_code == 200
        assert r.headers["access-control-allow-origin"] == "*"
        assert "POST" in r.headers["access-control-allow-methods"]


@pytest.mark.anyio
async def test_tools_call_uses_bearer_token(app, fake_todoist):
    from todoist_mcp.services import accounts_service

    services = app.state.services
    user = await accounts_service.create_user(services.store, username="u1", api_token="tok-u1")
    await accounts_service.link_account(
        services.store, services.engine, user=user, todoist_token="todoist-secret"
    )

    call = {
        "jsonrpc": "2.0",
        "id": 7,
        "method": "tools/call",
        "params": {"name": "todoist_create_task", "arguments": {"content": "from http"}},
    }
    async with _make_async_client(app) as client:
        r = await client.post("/mcp", json=call)
        assert r.status_code == 200
        assert r.json()["error"]["code"] == -32001

        r = await client.post("/mcp", json=call, headers={"Authorization": "Bearer wrong"})
        assert r.json()["error"]["code"] == -32001

        r = await client.post("/mcp", json=call, headers={"Authorization": "Bearer tok-u1"})
        assert r.status_code == 200
        body = r.json()
        assert body["id"] == 7
        assert body["result"]["isError"] is False
        assert "from http" in body["result"]["content"][0]["text"]

    assert fake_todoist.ops("create_task") == [
        {"content": "from http", "description": "", "priority": 1, "labels": []}
    ]


@pytest.mark.anyio
async def test_non_rpc_errors_use_error_response_shape(app):
    async with _make_async_client(app) as client:
        r = await client.get("/mcp", headers={"X-Request-Id": "rid-1"})
        assert r.status_code == 405
        assert r.json() == {
            "error": "method_not_allowed",
            "message": "Method Not Allowed",
            "request_id": "rid-1",
        }

        r = await client.get("/nowhere")
        assert r.status_code == 404
        assert r.json()["error"] == "not_found"
        assert r.json()["request_id"] == r.headers["x-request-id"]
