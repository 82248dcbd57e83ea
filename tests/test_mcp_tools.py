from __future__ import annotations

import json
from typing import Any

import pytest

from todoist_mcp.integrations.todoist_api import (
    RemoteChanges,
    RemoteProject,
    RemoteTask,
    TodoistAPIError,
)
from todoist_mcp.mcp.dispatcher import Capabilities, McpDispatcher
from todoist_mcp.mcp.tools import ToolContext, build_default_registry
from todoist_mcp.models import User
from todoist_mcp.services import accounts_service


@pytest.fixture
def dispatcher() -> McpDispatcher:
    return McpDispatcher(
        registry=build_default_registry(),
        capabilities=Capabilities(tools=True, resources=True, prompts=True),
    )


@pytest.fixture
async def ctx(sync_engine, account) -> ToolContext:
    user = await sync_engine.store.get(User, account.user_id)
    return ToolContext(engine=sync_engine, user=user, account=account)


class _Client:
    def __init__(self, dispatcher: McpDispatcher, ctx: ToolContext) -> None:
        self._dispatcher = dispatcher
        self._ctx = ctx
        self._next_id = 0

    async def rpc(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        self._next_id += 1
        payload: dict[str, Any] = {"jsonrpc": "2.0", "id": self._next_id, "method": method}
        if params is not None:
            payload["params"] = params
        resp = await self._dispatcher.handle(payload, self._ctx)
        assert resp["id"] == self._next_id
        return resp

    async def tool(self, tool_name: str, /, **arguments: Any) -> dict[str, Any]:
        resp = await self.rpc("tools/call", {"name": tool_name, "arguments": arguments})
        assert "error" not in resp, resp
        result = resp["result"]
        assert result["isError"] is False, result
        return json.loads(result["content"][0]["text"])


@pytest.fixture
def client(dispatcher, ctx) -> _Client:
    return _Client(dispatcher, ctx)


@pytest.mark.anyio
async def test_create_list_update_complete_delete_task(client, fake_todoist):
    created = (await client.tool("todoist_create_task", content="  write report ", priority=2))[
        "task"
    ]
    assert created["content"] == "write report"
    assert created["remote_id"] == "t1"
    assert created["pending_push"] is False

    listed = await client.tool("todoist_get_tasks")
    assert listed["count"] == 1
    assert listed["tasks"][0]["id"] == created["id"]

    updated = (
        await client.tool(
            "todoist_update_task", task_id="t1", content="write final report", labels=["work"]
        )
    )["task"]
    assert updated["content"] == "write final report"
    assert updated["labels"] == ["work"]
    assert fake_todoist.ops("update_task") == [
        ("t1", {"content": "write final report", "labels": ["work"]})
    ]

    await client.tool("todoist_complete_task", task_id=created["id"])
    assert fake_todoist.ops("close_task") == ["t1"]
    assert (await client.tool("todoist_get_tasks"))["count"] == 0
    assert (await client.tool("todoist_get_tasks", include_completed=True))["count"] == 1

    deleted = await client.tool("todoist_delete_task", task_id=created["id"])
    assert deleted["deleted"] is True
    assert fake_todoist.ops("delete_task") == ["t1"]
    assert (await client.tool("todoist_get_tasks", include_completed=True))["count"] == 0


@pytest.mark.anyio
async def test_update_with_only_task_id_changes_nothing(client, fake_todoist):
    await client.tool("todoist_create_task", content="steady")

    await client.tool("todoist_update_task", task_id="t1")

    assert fake_todoist.ops("update_task") == []


@pytest.mark.anyio
async def test_unknown_task_is_not_found(client):
    resp = await client.rpc(
        "tools/call", {"name": "todoist_complete_task", "arguments": {"task_id": "missing"}}
    )

    assert resp["error"]["code"] == -32003


@pytest.mark.anyio
async def test_parent_cycle_is_invalid_params(client):
    parent = (await client.tool("todoist_create_task", content="parent"))["task"]
    child = (await client.tool("todoist_create_task", content="child", parent_id=parent["id"]))[
        "task"
    ]

    resp = await client.rpc(
        "tools/call",
        {
            "name": "todoist_update_task",
            "arguments": {"task_id": parent["id"], "parent_id": child["id"]},
        },
    )

    assert resp["error"]["code"] == -32602


@pytest.mark.anyio
async def test_remote_rejection_is_reported_as_tool_error(client, fake_todoist):
    fake_todoist.fail_next["create_task"] = TodoistAPIError(400, "Invalid project")

    resp = await client.rpc(
        "tools/call", {"name": "todoist_create_task", "arguments": {"content": "x"}}
    )

    assert resp["result"]["isError"] is True
    body = json.loads(resp["result"]["content"][0]["text"])
    assert body == {"error": "todoist_rejected", "message": "Invalid project"}


@pytest.mark.anyio
async def test_projects_and_labels(client, fake_todoist):
    project = (await client.tool("todoist_create_project", name="Home", color="red"))["project"]
    assert project["remote_id"] == "p1"
    assert fake_todoist.ops("create_project") == [{"name": "Home", "color": "red", "is_favorite": False}]

    child = (
        await client.tool("todoist_create_project", name="Garden", parent_id=project["id"])
    )["project"]
    assert child["parent_id"] == project["id"]
    assert fake_todoist.ops("create_project")[1]["parent_id"] == "p1"

    projects = await client.tool("todoist_get_projects")
    assert [p["name"] for p in projects["projects"]] == ["Home", "Garden"]

    labels = await client.tool("todoist_get_labels")
    assert labels == {"labels": [], "count": 0}


@pytest.mark.anyio
async def test_sync_tool_reports_pull_and_push(client, fake_todoist):
    fake_todoist.changes.append(
        RemoteChanges(
            sync_token="tok-1",
            full_sync=True,
            projects=[RemoteProject(remote_id="rp1", name="Inbox")],
            tasks=[RemoteTask(remote_id="rt1", content="from todoist", project_remote_id="rp1")],
        )
    )

    summary = await client.tool("todoist_sync")

    assert summary["pull"]["created_local"] == 2
    assert summary["pull"]["full_sync"] is True
    assert summary["push"] == {
        "created_remote": 0,
        "updated_remote": 0,
        "deleted_remote": 0,
        "deferred": 0,
        "failed": [],
    }
    listed = await client.tool("todoist_get_tasks", project_id="rp1")
    assert [t["content"] for t in listed["tasks"]] == ["from todoist"]

    await client.tool("todoist_sync", full=True)
    assert fake_todoist.since_calls == [None, None]


@pytest.mark.anyio
async def test_user_without_linked_account_is_unauthorized(dispatcher, sync_engine):
    user = await accounts_service.create_user(sync_engine.store, username="lonely")
    ctx = ToolContext(engine=sync_engine, user=user, account=None)

    resp = await dispatcher.handle(
        {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "todoist_get_tasks"}},
        ctx,
    )

    assert resp["error"]["code"] == -32001


@pytest.mark.anyio
async def test_resources_list_and_read(client):
    project = (await client.tool("todoist_create_project", name="Work"))["project"]
    task = (await client.tool("todoist_create_task", content="ship", project_id=project["id"]))[
        "task"
    ]

    listed = (await client.rpc("resources/list"))["result"]["resources"]
    uris = [r["uri"] for r in listed]
    assert uris[:2] == ["todoist://tasks", "todoist://projects"]
    assert f"project://{project['id']}" in uris
    assert f"task://{task['id']}" in uris

    read = (await client.rpc("resources/read", {"uri": f"project://{project['id']}"}))["result"]
    content = read["contents"][0]
    assert content["mimeType"] == "application/json"
    body = json.loads(content["text"])
    assert body["name"] == "Work"
    assert [t["content"] for t in body["tasks"]] == ["ship"]

    read = (await client.rpc("resources/read", {"uri": "todoist://tasks"}))["result"]
    assert [t["id"] for t in json.loads(read["contents"][0]["text"])] == [task["id"]]

    missing = await client.rpc("resources/read", {"uri": "task://nope"})
    assert missing["error"]["code"] == -32003
    unknown = await client.rpc("resources/read", {"uri": "ftp://x"})
    assert unknown["error"]["code"] == -32602


@pytest.mark.anyio
async def test_prompts(client):
    project = (await client.tool("todoist_create_project", name="Launch"))["project"]
    a = (await client.tool("todoist_create_task", content="a", project_id=project["id"], priority=4))[
        "task"
    ]
    await client.tool("todoist_create_task", content="b", project_id=project["id"])
    await client.tool("todoist_complete_task", task_id=a["id"])

    names = [p["name"] for p in (await client.rpc("prompts/list"))["result"]["prompts"]]
    assert names == ["task_summary", "project_analysis"]

    analysis = await client.rpc(
        "prompts/get", {"name": "project_analysis", "arguments": {"project_id": project["id"]}}
    )
    text = analysis["result"]["messages"][0]["content"]["text"]
    assert "Project Analysis for Launch" in text
    assert "- Total tasks: 2" in text
    assert "- Completion rate: 50%" in text
    assert "- High priority tasks: 1" in text

    summary = await client.rpc(
        "prompts/get", {"name": "task_summary", "arguments": {"task_ids": [a["id"], "missing"]}}
    )
    text = summary["result"]["messages"][0]["content"]["text"]
    assert text.startswith("Here is a summary of 1 tasks:")
    assert "- a (Priority: 4, Completed: true)" in text

    unknown = await client.rpc("prompts/get", {"name": "haiku"})
    assert unknown["error"]["code"] == -32601
    bad = await client.rpc("prompts/get", {"name": "task_summary", "arguments": {}})
    assert bad["error"]["code"] == -32602


@pytest.mark.anyio
async def test_move_task_tool(client, fake_todoist):
    home = (await client.tool("todoist_create_project", name="Home"))["project"]
    work = (await client.tool("todoist_create_project", name="Work"))["project"]
    task = (await client.tool("todoist_create_task", content="paint", project_id=home["id"]))[
        "task"
    ]

    moved = (await client.tool("todoist_move_task", task_id=task["id"], project_id=work["id"]))[
        "task"
    ]

    assert moved["project_id"] == work["id"]
    assert moved["remote_id"] == task["remote_id"]
    assert fake_todoist.ops("move_task") == [(task["remote_id"], {"project_id": work["remote_id"]})]


@pytest.mark.anyio
@pytest.mark.parametrize(
    "arguments",
    [{"task_id": "t1"}, {"task_id": "t1", "project_id": "p1", "parent_id": "t2"}],
)
async def test_move_task_needs_exactly_one_target(client, arguments):
    resp = await client.rpc("tools/call", {"name": "todoist_move_task", "arguments": arguments})

    assert resp["error"]["code"] == -32602


@pytest.mark.anyio
async def test_clearing_due_date_through_update_tool(client, fake_todoist):
    await client.tool("todoist_create_task", content="call mom", due_string="tomorrow")

    updated = (await client.tool("todoist_update_task", task_id="t1", due_string=None))["task"]

    assert updated["due_string"] is None
    assert fake_todoist.ops("update_task") == [("t1", {"due_string": "no date"})]


@pytest.mark.anyio
async def test_create_that_cannot_reach_todoist_is_kept_pending(client, fake_todoist):
    fake_todoist.fail_next["create_task"] = TodoistAPIError(503, "unavailable")

    created = (await client.tool("todoist_create_task", content="later"))["task"]

    assert created["pending_push"] is True
    assert created["remote_id"] is None
    assert created["push_error"] == "503: unavailable"

    await client.tool("todoist_sync")

    listed = await client.tool("todoist_get_tasks")
    assert listed["count"] == 1
    assert listed["tasks"][0]["remote_id"] == "t1"
    assert listed["tasks"][0]["push_error"] is None


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("tool_name", "arguments"),
    [
        ("todoist_update_task", {"task_id": "t1", "content": "   "}),
        ("todoist_create_project", {"name": "   "}),
    ],
)
async def test_blank_text_is_invalid_params(client, tool_name, arguments):
    resp = await client.rpc("tools/call", {"name": tool_name, "arguments": arguments})

    assert resp["error"]["code"] == -32602


@pytest.mark.anyio
async def test_project_name_is_stripped(client, fake_todoist):
    project = (await client.tool("todoist_create_project", name="  Garden  "))["project"]

    assert project["name"] == "Garden"
    assert fake_todoist.ops("create_project")[0]["name"] == "Garden"
