from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ValidationError

from todoist_mcp.config import Settings
from todoist_mcp.mcp import resources
from todoist_mcp.mcp.jsonrpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    EmptyParams,
    InitializeParams,
    JsonRpcError,
    PromptsGetParams,
    ResourcesReadParams,
    ToolsCallParams,
    error_from_exception,
    error_response,
    json_rpc_result,
    validate_envelope,
)
from todoist_mcp.mcp.tools import ToolContext, ToolRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Capabilities:
    tools: bool = False
    resources: bool = False
    prompts: bool = False
    logging: bool = False

    @classmethod
    def from_settings(cls, s: Settings) -> "Capabilities":
        return cls(
            tools=s.mcp_enable_tools,
            resources=s.mcp_enable_resources,
            prompts=s.mcp_enable_prompts,
            logging=s.mcp_enable_logging,
        )

    def advertised(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.tools:
            out["tools"] = {}
        if self.resources:
            out["resources"] = {}
        if self.prompts:
            out["prompts"] = {}
        if self.logging:
            out["logging"] = {}
        return out


@dataclass(frozen=True)
class ServerInfo:
    name: str = "mcp-todoist"
    version: str = "1.0.0"
    protocol_version: str = "2024-11-05"

    @classmethod
    def from_settings(cls, s: Settings) -> "ServerInfo":
        return cls(
            name=s.mcp_server_name,
            version=s.mcp_server_version,
            protocol_version=s.mcp_protocol_version,
        )


Execute = Callable[[ToolContext, Any], Awaitable[Any]]


@dataclass(frozen=True)
class MethodHandler:
    """One JSON-RPC method: typed params, validated once, then executed."""

    name: str
    params_model: type[BaseModel]
    execute: Execute

    def parse_params(self, raw: Any) -> BaseModel:
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise JsonRpcError(INVALID_PARAMS, data="params must be an object")
        return self.params_model.model_validate(raw)


class McpDispatcher:
    """Validate, route and answer JSON-RPC requests. `handle` never raises."""

    def __init__(
        self,
        *,
        registry: ToolRegistry,
        capabilities: Capabilities | None = None,
        server_info: ServerInfo | None = None,
    ) -> None:
        self._registry = registry
        self._capabilities = capabilities or Capabilities()
        self._server_info = server_info or ServerInfo()
        self._methods: Mapping[str, MethodHandler] = MappingProxyType(self._build_method_table())

    @property
    def methods(self) -> Mapping[str, MethodHandler]:
        return self._methods

    def _build_method_table(self) -> dict[str, MethodHandler]:
        handlers = [
            MethodHandler("initialize", InitializeParams, self._initialize),
            MethodHandler("ping", EmptyParams, self._ping),
            MethodHandler("tools/list", EmptyParams, self._tools_list),
            MethodHandler("tools/call", ToolsCallParams, self._tools_call),
        ]
        if self._capabilities.resources:
            handlers += [
                MethodHandler("resources/list", EmptyParams, self._resources_list),
                MethodHandler("resources/read", ResourcesReadParams, self._resources_read),
            ]
        if self._capabilities.prompts:
            handlers += [
                MethodHandler("prompts/list", EmptyParams, self._prompts_list),
                MethodHandler("prompts/get", PromptsGetParams, self._prompts_get),
            ]
        return {h.name: h for h in handlers}

    async def handle(self, payload: Any, ctx: ToolContext) -> dict[str, Any]:
        raw_id = payload.get("id") if isinstance(payload, dict) else None
        try:
            envelope = validate_envelope(payload)
        except JsonRpcError as e:
            return error_response(raw_id, e)

        handler = self._methods.get(envelope.method)
        if handler is None:
            return error_response(
                envelope.id,
                JsonRpcError(METHOD_NOT_FOUND, data=f"Unknown method: {envelope.method}"),
            )

        try:
            params = handler.parse_params(envelope.params)
            result = await handler.execute(ctx, params)
        except (JsonRpcError, ValidationError) as e:
            return error_response(envelope.id, error_from_exception(e))
        except Exception as e:
            err = error_from_exception(e)
            if err.code == INTERNAL_ERROR:
                logger.exception("mcp method failed method=%s", envelope.method)
            else:
                logger.warning(
                    "mcp method failed method=%s code=%s error=%s", envelope.method, err.code, e
                )
            return error_response(envelope.id, err)

        return json_rpc_result(envelope.id, result)

    # --- built-in methods ---

    async def _initialize(self, ctx: ToolContext, params: InitializeParams) -> dict[str, Any]:
        return {
            "protocolVersion": self._server_info.protocol_version,
            "capabilities": self._capabilities.advertised(),
            "serverInfo": {"name": self._server_info.name, "version": self._server_info.version},
        }

    async def _ping(self, ctx: ToolContext, params: EmptyParams) -> dict[str, Any]:
        return {}

    async def _tools_list(self, ctx: ToolContext, params: EmptyParams) -> dict[str, Any]:
        return {"tools": self._registry.describe()}

    async def _tools_call(self, ctx: ToolContext, params: ToolsCallParams) -> dict[str, Any]:
        user_id = ctx.user.id if ctx.user is not None else None
        logger.info("mcp tool call tool=%s user_id=%s", params.name, user_id)
        return await self._registry.call(params.name, params.arguments, ctx)

    async def _resources_list(self, ctx: ToolContext, params: EmptyParams) -> dict[str, Any]:
        return await resources.list_resources(ctx)

    async def _resources_read(
        self, ctx: ToolContext, params: ResourcesReadParams
    ) -> dict[str, Any]:
        return await resources.read_resource(ctx, params.uri)

    async def _prompts_list(self, ctx: ToolContext, params: EmptyParams) -> dict[str, Any]:
        return await resources.list_prompts(ctx)

    async def _prompts_get(self, ctx: ToolContext, params: PromptsGetParams) -> dict[str, Any]:
        return await resources.get_prompt(ctx, params.name, params.arguments)
