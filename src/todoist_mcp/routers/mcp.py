from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from todoist_mcp.bootstrap import Services
from todoist_mcp.deps import get_services, get_tool_context
from todoist_mcp.mcp.jsonrpc import (
    INVALID_REQUEST,
    PARSE_ERROR,
    json_rpc_error,
)
from todoist_mcp.mcp.tools import ToolContext

logger = logging.getLogger(__name__)

router = APIRouter(tags=["mcp"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Request-Id",
    "Access-Control-Max-Age": "86400",
}


def _status_for(response: dict[str, Any]) -> int:
    error = response.get("error")
    if isinstance(error, dict) and error.get("code") == INVALID_REQUEST:
        return 400
    return 200


@router.post("")
async def mcp_post(
    request: Request,
    ctx: ToolContext = Depends(get_tool_context),
    services: Services = Depends(get_services),
) -> JSONResponse:
    body = await request.body()
    try:
        payload = json.loads(body)
    except ValueError:
        # Also covers UnicodeDecodeError.
        logger.info("mcp parse error request_id=%s", getattr(request.state, "request_id", None))
        return JSONResponse(status_code=500, content=json_rpc_error(None, PARSE_ERROR))

    # Fast reject before the dispatcher sees it.
    if isinstance(payload, dict) and ("jsonrpc" not in payload or "method" not in payload):
        return JSONResponse(
            status_code=400, content=json_rpc_error(payload.get("id"), INVALID_REQUEST)
        )

    response = await services.dispatcher.handle(payload, ctx)
    return JSONResponse(status_code=_status_for(response), content=response)


@router.options("")
async def mcp_options() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)
