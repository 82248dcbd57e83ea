"""JSON-RPC 2.0 envelope helpers shared by every MCP transport."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from todoist_mcp.integrations.todoist_api import (
    TodoistForbiddenError,
    TodoistNotFoundError,
    TodoistRateLimitedError,
    TodoistUnauthorizedError,
)
from todoist_mcp.repositories.entity_store import EntityNotFoundError
from todoist_mcp.services.accounts_service import NoLinkedAccountError
from todoist_mcp.services.sync_engine import InvalidEditError, SyncBusyError

JSONRPC_VERSION = "2.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
UNAUTHORIZED = -32001
FORBIDDEN = -32002
NOT_FOUND = -32003
RATE_LIMITED = -32004

MESSAGES: dict[int, str] = {
    PARSE_ERROR: "Parse error",
    INVALID_REQUEST: "Invalid Request",
    METHOD_NOT_FOUND: "Method not found",
    INVALID_PARAMS: "Invalid params",
    INTERNAL_ERROR: "Internal error",
    UNAUTHORIZED: "Unauthorized",
    FORBIDDEN: "Forbidden",
    NOT_FOUND: "Not found",
    RATE_LIMITED: "Rate limited",
}

RequestId = Union[str, int]

# Outgoing id for error responses whose request carried no usable id.
NULL_ID_SENTINEL = 0


class JsonRpcError(Exception):
    def __init__(self, code: int, message: str | None = None, data: Any = None) -> None:
        self.code = code
        self.message = message or MESSAGES.get(code, "Error")
        self.data = data
        super().__init__(self.message)


def is_valid_id(request_id: Any) -> bool:
    # bool is an int subclass but never a valid id.
    if request_id is None:
        return True
    return isinstance(request_id, (str, int)) and not isinstance(request_id, bool)


def response_id(request_id: Any) -> RequestId:
    if request_id is None or not is_valid_id(request_id):
        return NULL_ID_SENTINEL
    return request_id


def json_rpc_result(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def json_rpc_error(
    request_id: Any, code: int, message: str | None = None, data: Any = None
) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message or MESSAGES.get(code, "Error")}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": response_id(request_id), "error": error}


def error_response(request_id: Any, err: JsonRpcError) -> dict[str, Any]:
    return json_rpc_error(request_id, err.code, err.message, err.data)


@dataclass(frozen=True)
class Envelope:
    id: Any
    method: str
    params: Any


def validate_envelope(payload: Any) -> Envelope:
    """Structural checks, first failure wins. Raises JsonRpcError(-32600)."""

    if not isinstance(payload, dict):
        raise JsonRpcError(INVALID_REQUEST)
    if payload.get("jsonrpc") != JSONRPC_VERSION:
        raise JsonRpcError(INVALID_REQUEST)
    if "id" not in payload or not is_valid_id(payload["id"]):
        raise JsonRpcError(INVALID_REQUEST)
    method = payload.get("method")
    if not isinstance(method, str) or not method:
        raise JsonRpcError(INVALID_REQUEST)
    return Envelope(id=payload["id"], method=method, params=payload.get("params"))


def validation_error_data(e: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in e.errors()
    ]


def error_from_exception(exc: BaseException) -> JsonRpcError:
    if isinstance(exc, JsonRpcError):
        return exc
    if isinstance(exc, ValidationError):
        return JsonRpcError(INVALID_PARAMS, data=validation_error_data(exc))
    if isinstance(exc, InvalidEditError):
        return JsonRpcError(INVALID_PARAMS, data=str(exc))
    if isinstance(exc, (TodoistUnauthorizedError, NoLinkedAccountError)):
        return JsonRpcError(UNAUTHORIZED, data=str(exc))
    if isinstance(exc, TodoistForbiddenError):
        return JsonRpcError(FORBIDDEN, data=str(exc))
    if isinstance(exc, (TodoistNotFoundError, EntityNotFoundError)):
        return JsonRpcError(NOT_FOUND, data=str(exc))
    if isinstance(exc, (TodoistRateLimitedError, SyncBusyError)):
        return JsonRpcError(RATE_LIMITED, data=str(exc))
    return JsonRpcError(INTERNAL_ERROR, data=str(exc))


class _Params(BaseModel):
    model_config = ConfigDict(extra="ignore")


class InitializeParams(_Params):
    protocolVersion: Optional[str] = None
    capabilities: dict[str, Any] = Field(default_factory=dict)
    clientInfo: dict[str, Any] = Field(default_factory=dict)


class EmptyParams(_Params):
    pass


class ToolsCallParams(_Params):
    name: str = Field(min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)

    @field_validator("arguments", mode="before")
    @classmethod
    def _null_arguments(cls, v: Any) -> Any:
        return {} if v is None else v


class ResourcesReadParams(_Params):
    uri: str = Field(min_length=1)


class PromptsGetParams(_Params):
    name: str = Field(min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)
