from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

from todoist_mcp.integrations.todoist_api import RemoteLabel, RemoteProject, RemoteTask
from todoist_mcp.models import Label, Project, Task

# Fields sent on the REST create/update call.
TASK_UPDATE_FIELDS = (
    "content",
    "description",
    "priority",
    "labels_json",
    "due_date",
    "due_string",
)
# Fields REST update ignores; changing them is a move.
TASK_MOVE_FIELDS = ("project_id", "parent_id")
TASK_PUSH_FIELDS = TASK_UPDATE_FIELDS + TASK_MOVE_FIELDS

PROJECT_UPDATE_FIELDS = ("name", "color", "is_favorite")
PROJECT_PUSH_FIELDS = ("name", "color", "parent_id", "is_favorite")
LABEL_PUSH_FIELDS = ("name", "color", "is_favorite")

# Todoist clears a due date when given this due string.
NO_DUE_DATE = "no date"
# Todoist has no "no color"; clearing one resets it to the default.
DEFAULT_COLOR = "charcoal"


def _order(remote_order: int | None, current_sort_order: int | None) -> int:
    # Keep the local ordering key unless Todoist supplies one.
    if remote_order is not None:
        return remote_order
    return current_sort_order or 0


def _merge_bookkeeping() -> dict[str, Any]:
    # A pull is the last completed write for the record, so it settles pending state.
    return {
        "pending_push": False,
        "pending_fields_json": [],
        "push_request_id": None,
        "push_error": None,
    }


def task_fields_from_remote(
    remote: RemoteTask, *, current_sort_order: int | None
) -> dict[str, Any]:
    """Remote-authoritative field set for a task.

    Project and parent references are resolved by the caller because they need
    the local id of another record.
    """
    fields: dict[str, Any] = {
        "remote_id": remote.remote_id,
        "content": remote.content or "(untitled)",
        "description": remote.description,
        "priority": remote.priority,
        "labels_json": list(remote.labels),
        "due_date": remote.due_date,
        "due_string": remote.due_string,
        "is_completed": remote.is_completed,
        "archived": remote.is_deleted,
        "sort_order": _order(remote.order, current_sort_order),
    }
    fields.update(_merge_bookkeeping())
    return fields


def project_fields_from_remote(
    remote: RemoteProject, *, current_sort_order: int | None
) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "remote_id": remote.remote_id,
        "name": remote.name or "(untitled)",
        "color": remote.color,
        "is_favorite": remote.is_favorite,
        "archived": remote.is_deleted or remote.is_archived,
        "sort_order": _order(remote.order, current_sort_order),
    }
    fields.update(_merge_bookkeeping())
    return fields


def label_fields_from_remote(
    remote: RemoteLabel, *, current_sort_order: int | None
) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "remote_id": remote.remote_id,
        "name": remote.name or "(untitled)",
        "color": remote.color,
        "is_favorite": remote.is_favorite,
        "archived": remote.is_deleted,
        "sort_order": _order(remote.order, current_sort_order),
    }
    fields.update(_merge_bookkeeping())
    return fields


def merge_pending_fields(existing: Iterable[str], changed: Iterable[str]) -> list[str]:
    out = list(existing)
    for name in changed:
        if name not in out:
            out.append(name)
    return out


ActionKind = Literal["create", "update", "move", "close", "reopen", "delete", "defer", "settle"]


@dataclass(frozen=True)
class PushAction:
    """One Todoist call. `defer` carries the fields that must stay pending."""

    kind: ActionKind
    payload: dict[str, Any] = field(default_factory=dict)


def _due_payload(task: Task, *, clear_when_empty: bool) -> dict[str, Any]:
    if task.due_date:
        key = "due_datetime" if "T" in task.due_date else "due_date"
        return {key: task.due_date}
    if task.due_string:
        return {"due_string": task.due_string}
    return {"due_string": NO_DUE_DATE} if clear_when_empty else {}


def task_payload(
    task: Task,
    *,
    fields: Iterable[str],
    project_remote_id: str | None,
    parent_remote_id: str | None,
    for_create: bool = False,
) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    due_done = False
    for name in fields:
        if name == "content":
            payload["content"] = task.content
        elif name == "description":
            payload["description"] = task.description
        elif name == "priority":
            payload["priority"] = task.priority
        elif name == "labels_json":
            payload["labels"] = list(task.labels_json)
        elif name in ("due_date", "due_string"):
            if not due_done:
                payload.update(_due_payload(task, clear_when_empty=not for_create))
                due_done = True
        elif name == "project_id":
            if project_remote_id:
                payload["project_id"] = project_remote_id
        elif name == "parent_id":
            if parent_remote_id:
                payload["parent_id"] = parent_remote_id
    return payload


def _task_move(
    task: Task, *, project_remote_id: str | None, parent_remote_id: str | None
) -> dict[str, Any] | None:
    # A subtask lives in its parent's project, so the parent wins.
    if task.parent_id:
        return {"parent_id": parent_remote_id} if parent_remote_id else None
    if task.project_id:
        return {"project_id": project_remote_id} if project_remote_id else None
    return None


def plan_task_push(
    task: Task, *, project_remote_id: str | None, parent_remote_id: str | None
) -> list[PushAction]:
    """Translate a pending task into the ordered Todoist calls that publish it.

    - No DB/network.
    - A task without a remote id is always created, never updated.
    - A pending change that cannot be expressed yet (a move to a record with no
      remote id) becomes `defer`; it is never dropped.
    """

    if task.remote_id is None:
        if task.archived:
            # Deleted before it ever reached Todoist.
            return [PushAction("settle")]
        actions = [
            PushAction(
                "create",
                task_payload(
                    task,
                    fields=TASK_PUSH_FIELDS,
                    project_remote_id=project_remote_id,
                    parent_remote_id=parent_remote_id,
                    for_create=True,
                ),
            )
        ]
        if task.is_completed:
            actions.append(PushAction("close"))
        return actions

    pending = list(task.pending_fields_json or [])
    if task.archived:
        return [PushAction("delete")] if "archived" in pending else [PushAction("settle")]

    actions: list[PushAction] = []
    update_fields = [f for f in pending if f in TASK_UPDATE_FIELDS]
    if update_fields:
        actions.append(
            PushAction(
                "update",
                task_payload(
                    task,
                    fields=update_fields,
                    project_remote_id=project_remote_id,
                    parent_remote_id=parent_remote_id,
                ),
            )
        )
    move_fields = [f for f in pending if f in TASK_MOVE_FIELDS]
    if move_fields:
        move = _task_move(
            task, project_remote_id=project_remote_id, parent_remote_id=parent_remote_id
        )
        if move is None:
            actions.append(PushAction("defer", {"fields": move_fields}))
        else:
            actions.append(PushAction("move", move))
    if "is_completed" in pending:
        actions.append(PushAction("close" if task.is_completed else "reopen"))
    if not actions:
        actions.append(PushAction("settle"))
    return actions


def project_payload(
    project: Project,
    *,
    fields: Iterable[str],
    parent_remote_id: str | None,
    for_create: bool = True,
) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for name in fields:
        if name == "name":
            payload["name"] = project.name
        elif name == "color":
            if project.color:
                payload["color"] = project.color
            elif not for_create:
                payload["color"] = DEFAULT_COLOR
        elif name == "is_favorite":
            payload["is_favorite"] = project.is_favorite
        elif name == "parent_id":
            if parent_remote_id:
                payload["parent_id"] = parent_remote_id
    return payload


def plan_project_push(project: Project, *, parent_remote_id: str | None) -> list[PushAction]:
    if project.remote_id is None:
        if project.archived:
            return [PushAction("settle")]
        return [
            PushAction(
                "create",
                project_payload(
                    project, fields=PROJECT_PUSH_FIELDS, parent_remote_id=parent_remote_id
                ),
            )
        ]

    pending = list(project.pending_fields_json or [])
    actions: list[PushAction] = []
    update_fields = [f for f in pending if f in PROJECT_UPDATE_FIELDS]
    if update_fields:
        actions.append(
            PushAction(
                "update",
                project_payload(
                    project,
                    fields=update_fields,
                    parent_remote_id=parent_remote_id,
                    for_create=False,
                ),
            )
        )
    if "parent_id" in pending:
        if project.parent_id and parent_remote_id is None:
            actions.append(PushAction("defer", {"fields": ["parent_id"]}))
        else:
            # None moves the project to the top level.
            actions.append(PushAction("move", {"parent_id": parent_remote_id}))
    if not actions:
        actions.append(PushAction("settle"))
    return actions


def label_payload(
    label: Label, *, fields: Iterable[str], for_create: bool = True
) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for name in fields:
        if name == "name":
            payload["name"] = label.name
        elif name == "color":
            if label.color:
                payload["color"] = label.color
            elif not for_create:
                payload["color"] = DEFAULT_COLOR
        elif name == "is_favorite":
            payload["is_favorite"] = label.is_favorite
    return payload
