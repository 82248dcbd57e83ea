from __future__ import annotations

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Error body for non JSON-RPC routes; /mcp answers with JSON-RPC errors instead."""

    error: str
    message: str
    request_id: str | None = None
    details: object | None = None
