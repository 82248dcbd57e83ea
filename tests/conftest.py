from __future__ import annotations

import asyncio
import inspect
import itertools
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import pytest

from todoist_mcp.db import dispose_engine_cache, get_engine, init_db, reset_engine_cache
from todoist_mcp.integrations.todoist_api import (
    RemoteChanges,
    RemoteLabel,
    RemoteProject,
    RemoteTask,
)
from todoist_mcp.models import Account, User
from todoist_mcp.repositories.entity_store import SqlEntityStore
from todoist_mcp.services import accounts_service
from todoist_mcp.services.sync_engine import SyncEngine


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
async def _dispose_engine_cache_per_test(  # pyright: ignore[reportUnusedFunction]
    anyio_backend: object,  # noqa: ARG001
) -> AsyncGenerator[None, None]:
    # Dispose the cached AsyncEngine (aiosqlite worker thread) while the
    # per-test event loop is still alive.
    _ = anyio_backend
    yield

    try:
        engine = get_engine()
    except Exception:
        engine = None

    if engine is not None:
        result = engine.dispose()
        if inspect.isawaitable(result):
            await result

    dispose_engine_cache()
    get_engine.cache_clear()


def pytest_sessionfinish(session: object, exitstatus: int) -> None:  # noqa: ARG001
    _ = session, exitstatus
    dispose_engine_cache()


@pytest.fixture
async def sqlite_db(tmp_path: Path) -> AsyncGenerator[str, None]:
    from todoist_mcp.config import settings

    old_db = settings.database_url
    settings.database_url = f"sqlite:///{tmp_path / 'test.db'}"
    reset_engine_cache()
    await init_db()
    try:
        yield settings.database_url
    finally:
        settings.database_url = old_db


@dataclass
class FakeTodoist:
    """In-process Todoist double: records every call and hands out remote ids."""

    changes: list[RemoteChanges] = field(default_factory=list)
    since_calls: list[str | None] = field(default_factory=list)
    calls: list[tuple[str, Any]] = field(default_factory=list)
    request_ids: dict[str, str] = field(default_factory=dict)
    seen_request_ids: list[str | None] = field(default_factory=list)
    tasks: dict[str, RemoteTask] = field(default_factory=dict)
    projects: dict[str, RemoteProject] = field(default_factory=dict)
    labels: dict[str, RemoteLabel] = field(default_factory=dict)
    fail_next: dict[str, Exception] = field(default_factory=dict)
    delay_seconds: float = 0.0
    in_flight: int = 0
    max_in_flight: int = 0
    _ids: Any = field(default_factory=lambda: itertools.count(1))

    async def _enter(self, op: str, payload: Any) -> None:
        self.calls.append((op, payload))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
        finally:
            self.in_flight -= 1
        exc = self.fail_next.pop(op, None)
        if exc is not None:
            raise exc

    def ops(self, name: str) -> list[Any]:
        return [payload for op, payload in self.calls if op == name]

    async def list_changes(self, *, since: str | None) -> RemoteChanges:
        self.since_calls.append(since)
        await self._enter("list_changes", since)
        if self.changes:
            return self.changes.pop(0)
        return RemoteChanges(sync_token=f"tok-{len(self.since_calls)}", full_sync=since is None)

    async def list_tasks(self, *, since: str | None) -> tuple[list[RemoteTask], str]:
        changes = await self.list_changes(since=since)
        return changes.tasks, changes.sync_token

    async def create_task(
        self, fields: dict[str, Any], *, request_id: str | None = None
    ) -> RemoteTask:
        self.seen_request_ids.append(request_id)
        await self._enter("create_task", dict(fields))
        if request_id and request_id in self.request_ids:
            return self.tasks[self.request_ids[request_id]]
        remote_id = f"t{next(self._ids)}"
        task = RemoteTask(
            remote_id=remote_id,
            content=str(fields.get("content") or ""),
            description=str(fields.get("description") or ""),
            project_remote_id=fields.get("project_id"),
            parent_remote_id=fields.get("parent_id"),
            priority=int(fields.get("priority") or 1),
            labels=tuple(fields.get("labels") or ()),
        )
        self.tasks[remote_id] = task
        if request_id:
            self.request_ids[request_id] = remote_id
        return task

    async def update_task(self, remote_id: str, fields: dict[str, Any]) -> RemoteTask:
        await self._enter("update_task", (remote_id, dict(fields)))
        task = self.tasks.get(remote_id) or RemoteTask(remote_id=remote_id, content="")
        if "content" in fields:
            task = replace(task, content=fields["content"])
        self.tasks[remote_id] = task
        return task

    async def close_task(self, remote_id: str) -> None:
        await self._enter("close_task", remote_id)

    async def reopen_task(self, remote_id: str) -> None:
        await self._enter("reopen_task", remote_id)

    async def delete_task(self, remote_id: str) -> None:
        await self._enter("delete_task", remote_id)

    async def create_project(
        self, fields: dict[str, Any], *, request_id: str | None = None
    ) -> RemoteProject:
        await self._enter("create_project", dict(fields))
        remote_id = f"p{next(self._ids)}"
        project = RemoteProject(
            remote_id=remote_id,
            name=str(fields.get("name") or ""),
            parent_remote_id=fields.get("parent_id"),
        )
        self.projects[remote_id] = project
        return project

    async def update_project(self, remote_id: str, fields: dict[str, Any]) -> RemoteProject:
        await self._enter("update_project", (remote_id, dict(fields)))
        return self.projects.get(remote_id) or RemoteProject(remote_id=remote_id, name="")

    async def create_label(
        self, fields: dict[str, Any], *, request_id: str | None = None
    ) -> RemoteLabel:
        await self._enter("create_label", dict(fields))
        remote_id = f"l{next(self._ids)}"
        label = RemoteLabel(remote_id=remote_id, name=str(fields.get("name") or ""))
        self.labels[remote_id] = label
        return label

    async def update_label(self, remote_id: str, fields: dict[str, Any]) -> RemoteLabel:
        await self._enter("update_label", (remote_id, dict(fields)))
        return self.labels.get(remote_id) or RemoteLabel(remote_id=remote_id, name="")

    async def move_task(
        self, remote_id: str, *, project_id: str | None = None, parent_id: str | None = None
    ) -> None:
        target = {"parent_id": parent_id} if parent_id is not None else {"project_id": project_id}
        await self._enter("move_task", (remote_id, target))

    async def move_project(self, remote_id: str, *, parent_id: str | None) -> None:
        await self._enter("move_project", (remote_id, {"parent_id": parent_id}))


@pytest.fixture
def fake_todoist() -> FakeTodoist:
    return FakeTodoist()


@pytest.fixture
def sync_engine(sqlite_db: str, fake_todoist: FakeTodoist) -> SyncEngine:
    _ = sqlite_db
    return SyncEngine(
        store=SqlEntityStore(),
        client_factory=lambda _account: fake_todoist,
        lock_timeout_seconds=5.0,
        push_on_write=True,
    )


async def make_user_and_account(
    engine: SyncEngine, *, username: str = "u1", api_token: str = "tok-u1"
) -> tuple[User, Account]:
    user = await accounts_service.create_user(engine.store, username=username, api_token=api_token)
    account = await accounts_service.link_account(
        engine.store, engine, user=user, todoist_token=f"todoist-{username}"
    )
    return user, account


@pytest.fixture
async def account(sync_engine: SyncEngine) -> Account:
    _, acc = await make_user_and_account(sync_engine)
    return acc


@pytest.fixture
def account_factory(sync_engine: SyncEngine):
    async def _make(username: str) -> Account:
        _, acc = await make_user_and_account(
            sync_engine, username=username, api_token=f"tok-{username}"
        )
        return acc

    return _make
