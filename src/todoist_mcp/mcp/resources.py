"""Read-only MCP resources and prompts over the mirrored Todoist data."""

from __future__ import annotations

import json
from typing import Any

from pydantic import Field

from todoist_mcp.mcp.jsonrpc import INVALID_PARAMS, METHOD_NOT_FOUND, JsonRpcError
from todoist_mcp.mcp.schemas import ToolArguments
from todoist_mcp.mcp.tools import ToolContext, serialize_project, serialize_task
from todoist_mcp.repositories.entity_store import EntityNotFoundError

JSON_MIME = "application/json"

TASKS_URI = "todoist://tasks"
PROJECTS_URI = "todoist://projects"
TASK_URI_PREFIX = "task://"
PROJECT_URI_PREFIX = "project://"


def _contents(uri: str, payload: Any) -> dict[str, Any]:
    return {
        "contents": [
            {
                "uri": uri,
                "mimeType": JSON_MIME,
                "text": json.dumps(payload, ensure_ascii=False, indent=2),
            }
        ]
    }


async def list_resources(ctx: ToolContext) -> dict[str, Any]:
    resources: list[dict[str, Any]] = [
        {
            "uri": TASKS_URI,
            "name": "Tasks",
            "description": "All active tasks",
            "mimeType": JSON_MIME,
        },
        {
            "uri": PROJECTS_URI,
            "name": "Projects",
            "description": "All active projects",
            "mimeType": JSON_MIME,
        },
    ]
    account = ctx.require_account()
    for project in await ctx.engine.list_projects(account):
        uri = f"{PROJECT_URI_PREFIX}{project.id}"
        resources.append({"uri": uri, "name": project.name, "mimeType": JSON_MIME})
    for task in await ctx.engine.list_tasks(account, limit=500):
        resources.append(
            {"uri": f"{TASK_URI_PREFIX}{task.id}", "name": task.content, "mimeType": JSON_MIME}
        )
    return {"resources": resources}


async def read_resource(ctx: ToolContext, uri: str) -> dict[str, Any]:
    account = ctx.require_account()
    if uri == TASKS_URI:
        tasks = await ctx.engine.list_tasks(account, limit=500)
        return _contents(uri, [serialize_task(t) for t in tasks])
    if uri == PROJECTS_URI:
        projects = await ctx.engine.list_projects(account)
        return _contents(uri, [serialize_project(p) for p in projects])
    if uri.startswith(TASK_URI_PREFIX):
        task = await ctx.engine.get_task(account, uri[len(TASK_URI_PREFIX) :])
        return _contents(uri, serialize_task(task))
    if uri.startswith(PROJECT_URI_PREFIX):
        project = await ctx.engine.get_project(account, uri[len(PROJECT_URI_PREFIX) :])
        tasks = await ctx.engine.list_tasks(account, project_id=project.id, include_completed=True)
        payload = serialize_project(project)
        payload["tasks"] = [serialize_task(t) for t in tasks]
        return _contents(uri, payload)
    raise JsonRpcError(INVALID_PARAMS, data=f"Unknown resource URI: {uri}")


class TaskSummaryArgs(ToolArguments):
    task_ids: list[str] = Field(min_length=1)


class ProjectAnalysisArgs(ToolArguments):
    project_id: str = Field(min_length=1)


PROMPTS: list[dict[str, Any]] = [
    {
        "name": "task_summary",
        "description": "Generate a task summary",
        "arguments": [{"name": "task_ids", "description": "List of task IDs", "required": True}],
    },
    {
        "name": "project_analysis",
        "description": "Analyze project progress",
        "arguments": [{"name": "project_id", "description": "Project ID", "required": True}],
    },
]


def _prompt(name: str, description: str, text: str) -> dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "messages": [{"role": "user", "content": {"type": "text", "text": text}}],
    }


async def list_prompts(ctx: ToolContext) -> dict[str, Any]:
    return {"prompts": PROMPTS}


async def get_prompt(ctx: ToolContext, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    account = ctx.require_account()

    if name == "task_summary":
        args = TaskSummaryArgs.model_validate(arguments)
        tasks = []
        for ref in args.task_ids:
            try:
                tasks.append(await ctx.engine.get_task(account, ref))
            except EntityNotFoundError:
                continue
        lines = [
            f"- {t.content} (Priority: {t.priority}, Completed: {str(t.is_completed).lower()})"
            for t in tasks
        ]
        text = f"Here is a summary of {len(tasks)} tasks:\n\n" + "\n".join(lines)
        return _prompt(name, "Task summary generated", text)

    if name == "project_analysis":
        args = ProjectAnalysisArgs.model_validate(arguments)
        project = await ctx.engine.get_project(account, args.project_id)
        tasks = await ctx.engine.list_tasks(
            account, project_id=project.id, include_completed=True, limit=500
        )
        total = len(tasks)
        completed = sum(1 for t in tasks if t.is_completed)
        rate = round(completed * 100 / total) if total else 0
        high = sum(1 for t in tasks if t.priority >= 3)
        text = (
            f"Project Analysis for {project.name}:\n\n"
            f"- Total tasks: {total}\n"
            f"- Completed tasks: {completed}\n"
            f"- Completion rate: {rate}%\n"
            f"- High priority tasks: {high}"
        )
        return _prompt(name, "Project analysis generated", text)

    raise JsonRpcError(METHOD_NOT_FOUND, "Prompt not found", f"Unknown prompt: {name}")
