from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import cast

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from todoist_mcp.bootstrap import build_services
from todoist_mcp.config import Settings, settings
from todoist_mcp.db import dispose_engine_cache
from todoist_mcp.error_handlers import register_error_handlers
from todoist_mcp.repositories.entity_store import EntityStore
from todoist_mcp.routers import mcp as mcp_router
from todoist_mcp.services.sync_engine import ClientFactory

logger = logging.getLogger(__name__)


class RequestIdMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app: ASGIApp = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id_header: bytes | None = None
        for key, value in cast(list[tuple[bytes, bytes]], scope.get("headers") or []):
            if key.lower() == b"x-request-id":
                value = value.strip()
                if value:
                    request_id_header = value
                break

        if request_id_header is None:
            request_id = str(uuid.uuid4())
            request_id_header = request_id.encode("ascii")
        else:
            request_id = request_id_header.decode("latin-1")

        scope.setdefault("state", {})["request_id"] = request_id

        async def send_wrapper(message: Message) -> None:
            if message.get("type") == "http.response.start":
                headers = cast(list[tuple[bytes, bytes]], message.get("headers", []))
                headers = [(k, v) for (k, v) in headers if k.lower() != b"x-request-id"]
                headers.append((b"x-request-id", request_id_header))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    yield
    # Ensure sqlite/aiosqlite worker threads don't keep the process alive.
    dispose_engine_cache()


def create_app(
    app_settings: Settings | None = None,
    *,
    store: EntityStore | None = None,
    client_factory: ClientFactory | None = None,
) -> FastAPI:
    s = app_settings or settings
    logging.basicConfig(level=getattr(logging, s.log_level.upper(), logging.INFO))
    for msg in s.security_warnings():
        logger.warning("SECURITY WARNING: %s", msg)

    app = FastAPI(title=s.app_name, lifespan=_lifespan)
    app.state.services = build_services(s, store=store, client_factory=client_factory)

    app.add_middleware(RequestIdMiddleware)

    origins = s.cors_origins_list()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            # Bearer tokens only; no cookies cross-origin.
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_error_handlers(app)

    @app.get("/health")
    def health():
        return {"ok": True}

    app.include_router(mcp_router.router, prefix=s.mcp_path.rstrip("/") or "/mcp")
    return app


app = create_app()
