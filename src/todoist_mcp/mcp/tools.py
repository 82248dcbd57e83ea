from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Optional

from todoist_mcp.integrations.todoist_api import TodoistAPIError
from todoist_mcp.mcp.jsonrpc import METHOD_NOT_FOUND, UNAUTHORIZED, JsonRpcError
from todoist_mcp.mcp.schemas import (
    CreateProjectArgs,
    CreateTaskArgs,
    GetLabelsArgs,
    GetProjectsArgs,
    GetTasksArgs,
    MoveTaskArgs,
    SyncArgs,
    TaskIdArgs,
    ToolArguments,
    UpdateTaskArgs,
)
from todoist_mcp.models import Account, Label, Project, Task, User
from todoist_mcp.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolContext:
    engine: SyncEngine
    user: Optional[User] = None
    account: Optional[Account] = None

    def require_account(self) -> Account:
        if self.user is None:
            raise JsonRpcError(UNAUTHORIZED, data="a bearer token is required to call tools")
        if self.account is None:
            raise JsonRpcError(UNAUTHORIZED, data="no linked Todoist account")
        return self.account


ToolHandler = Callable[[ToolContext, Any], Awaitable[Any]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    arguments_model: type[ToolArguments]
    handler: ToolHandler

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.arguments_model.model_json_schema(),
        }


def text_result(payload: Any, *, is_error: bool = False) -> dict[str, Any]:
    text = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


class ToolRegistry:
    """Read-only name -> ToolSpec mapping, fixed at construction."""

    def __init__(self, specs: Iterable[ToolSpec]) -> None:
        table: dict[str, ToolSpec] = {}
        for spec in specs:
            if spec.name in table:
                raise ValueError(f"duplicate tool name: {spec.name}")
            table[spec.name] = spec
        self._specs: Mapping[str, ToolSpec] = MappingProxyType(table)

    @property
    def specs(self) -> Mapping[str, ToolSpec]:
        return self._specs

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    def describe(self) -> list[dict[str, Any]]:
        return [spec.describe() for spec in self._specs.values()]

    def get(self, name: str) -> ToolSpec:
        spec = self._specs.get(name)
        if spec is None:
            raise JsonRpcError(METHOD_NOT_FOUND, "Tool not found", f"Unknown tool: {name}")
        return spec

    async def call(self, name: str, arguments: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        spec = self.get(name)
        # ValidationError propagates and is shaped as -32602 by the dispatcher.
        args = spec.arguments_model.model_validate(arguments)
        try:
            payload = await spec.handler(ctx, args)
        except TodoistAPIError as e:
            if e.status != 400:
                raise
            logger.info("todoist rejected tool call tool=%s error=%s", name, e.message)
            return text_result({"error": "todoist_rejected", "message": e.message}, is_error=True)
        return text_result(payload)


# --- serialization ---


def _iso(value: Any) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_task(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "remote_id": task.remote_id,
        "project_id": task.project_id,
        "parent_id": task.parent_id,
        "content": task.content,
        "description": task.description,
        "priority": task.priority,
        "labels": list(task.labels_json or []),
        "due_date": task.due_date,
        "due_string": task.due_string,
        "is_completed": task.is_completed,
        "archived": task.archived,
        "pending_push": task.pending_push,
        "push_error": task.push_error,
        "updated_at": _iso(task.updated_at),
    }


def serialize_project(project: Project) -> dict[str, Any]:
    return {
        "id": project.id,
        "remote_id": project.remote_id,
        "name": project.name,
        "color": project.color,
        "parent_id": project.parent_id,
        "is_favorite": project.is_favorite,
        "archived": project.archived,
        "pending_push": project.pending_push,
        "push_error": project.push_error,
    }


def serialize_label(label: Label) -> dict[str, Any]:
    return {
        "id": label.id,
        "remote_id": label.remote_id,
        "name": label.name,
        "color": label.color,
        "is_favorite": label.is_favorite,
    }


# --- handlers ---


async def get_tasks(ctx: ToolContext, args: GetTasksArgs) -> dict[str, Any]:
    tasks = await ctx.engine.list_tasks(
        ctx.require_account(),
        project_id=args.project_id,
        label=args.label,
        include_completed=args.include_completed,
        limit=args.limit,
    )
    return {"tasks": [serialize_task(t) for t in tasks], "count": len(tasks)}


async def create_task(ctx: ToolContext, args: CreateTaskArgs) -> dict[str, Any]:
    task = await ctx.engine.create_task(
        ctx.require_account(),
        content=args.content,
        description=args.description,
        project_id=args.project_id,
        parent_id=args.parent_id,
        priority=args.priority,
        due_date=args.due_date,
        due_string=args.due_string,
        labels=args.labels,
    )
    return {"task": serialize_task(task)}


async def update_task(ctx: ToolContext, args: UpdateTaskArgs) -> dict[str, Any]:
    task = await ctx.engine.update_task(ctx.require_account(), args.task_id, args.changes())
    return {"task": serialize_task(task)}


async def move_task(ctx: ToolContext, args: MoveTaskArgs) -> dict[str, Any]:
    task = await ctx.engine.move_task(
        ctx.require_account(), args.task_id, project_id=args.project_id, parent_id=args.parent_id
    )
    return {"task": serialize_task(task)}


async def complete_task(ctx: ToolContext, args: TaskIdArgs) -> dict[str, Any]:
    task = await ctx.engine.complete_task(ctx.require_account(), args.task_id)
    return {"task": serialize_task(task)}


async def delete_task(ctx: ToolContext, args: TaskIdArgs) -> dict[str, Any]:
    task = await ctx.engine.archive_task(ctx.require_account(), args.task_id)
    return {"deleted": True, "task": serialize_task(task)}


async def get_projects(ctx: ToolContext, args: GetProjectsArgs) -> dict[str, Any]:
    projects = await ctx.engine.list_projects(
        ctx.require_account(), include_archived=args.include_archived
    )
    return {"projects": [serialize_project(p) for p in projects], "count": len(projects)}


async def create_project(ctx: ToolContext, args: CreateProjectArgs) -> dict[str, Any]:
    project = await ctx.engine.create_project(
        ctx.require_account(),
        name=args.name,
        color=args.color,
        parent_id=args.parent_id,
        is_favorite=args.is_favorite,
    )
    return {"project": serialize_project(project)}


async def get_labels(ctx: ToolContext, args: GetLabelsArgs) -> dict[str, Any]:
    labels = await ctx.engine.list_labels(ctx.require_account())
    return {"labels": [serialize_label(label) for label in labels], "count": len(labels)}


async def sync(ctx: ToolContext, args: SyncArgs) -> dict[str, Any]:
    summary = await ctx.engine.sync(ctx.require_account(), full=args.full)
    return summary.as_dict()


def build_default_registry() -> ToolRegistry:
    return ToolRegistry(
        [
            ToolSpec(
                "todoist_get_tasks",
                "List active tasks, optionally filtered by project or label.",
                GetTasksArgs,
                get_tasks,
            ),
            ToolSpec(
                "todoist_create_task",
                "Create a task and push it to Todoist.",
                CreateTaskArgs,
                create_task,
            ),
            ToolSpec(
                "todoist_update_task",
                "Update fields of an existing task.",
                UpdateTaskArgs,
                update_task,
            ),
            ToolSpec(
                "todoist_move_task",
                "Move a task to another project, or under another task.",
                MoveTaskArgs,
                move_task,
            ),
            ToolSpec(
                "todoist_complete_task",
                "Mark a task as completed.",
                TaskIdArgs,
                complete_task,
            ),
            ToolSpec(
                "todoist_delete_task",
                "Delete a task (archived locally, deleted in Todoist).",
                TaskIdArgs,
                delete_task,
            ),
            ToolSpec(
                "todoist_get_projects",
                "List projects.",
                GetProjectsArgs,
                get_projects,
            ),
            ToolSpec(
                "todoist_create_project",
                "Create a project and push it to Todoist.",
                CreateProjectArgs,
                create_project,
            ),
            ToolSpec(
                "todoist_get_labels",
                "List personal labels.",
                GetLabelsArgs,
                get_labels,
            ),
            ToolSpec(
                "todoist_sync",
                "Pull remote changes since the last sync, then push pending local changes.",
                SyncArgs,
                sync,
            ),
        ]
    )
