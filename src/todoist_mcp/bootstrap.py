"""Process-level wiring shared by the HTTP app and the stdio server.

Everything is built once per process and handed down explicitly; nothing here
is a module-level singleton.
"""

from __future__ import annotations

from dataclasses import dataclass

from todoist_mcp.config import Settings
from todoist_mcp.integrations.todoist_api import HttpxTodoistAPI, TodoistAPI
from todoist_mcp.mcp.dispatcher import Capabilities, McpDispatcher, ServerInfo
from todoist_mcp.mcp.tools import ToolRegistry, build_default_registry
from todoist_mcp.models import Account
from todoist_mcp.repositories.entity_store import EntityStore, SqlEntityStore
from todoist_mcp.services.sync_engine import ClientFactory, SyncEngine


@dataclass(frozen=True)
class Services:
    store: EntityStore
    engine: SyncEngine
    registry: ToolRegistry
    dispatcher: McpDispatcher


def todoist_client_factory(s: Settings) -> ClientFactory:
    def _factory(account: Account) -> TodoistAPI:
        return HttpxTodoistAPI(
            api_token=account.api_token,
            rest_base_url=s.todoist_rest_base_url,
            sync_base_url=s.todoist_sync_base_url,
            timeout_seconds=s.todoist_request_timeout_seconds,
            max_retries=s.todoist_max_retries,
            backoff_seconds=s.todoist_retry_backoff_seconds,
        )

    return _factory


def build_services(
    s: Settings,
    *,
    store: EntityStore | None = None,
    client_factory: ClientFactory | None = None,
) -> Services:
    store = store or SqlEntityStore()
    engine = SyncEngine(
        store=store,
        client_factory=client_factory or todoist_client_factory(s),
        lock_timeout_seconds=s.sync_lock_timeout_seconds,
        push_on_write=s.push_on_write,
    )
    registry = build_default_registry()
    dispatcher = McpDispatcher(
        registry=registry,
        capabilities=Capabilities.from_settings(s),
        server_info=ServerInfo.from_settings(s),
    )
    return Services(store=store, engine=engine, registry=registry, dispatcher=dispatcher)
