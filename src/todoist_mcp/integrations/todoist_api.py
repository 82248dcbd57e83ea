"""Todoist API client.

Incremental reads go through the Sync API (`/sync/v9/sync` with a sync token);
writes go through REST v2, except moves, which REST v2 cannot express and which
are sent as Sync API commands (`item_move`, `project_move`).

Every call is bearer-authenticated, bounded by a timeout and retried with
exponential backoff on 5xx / 429 / network errors. Other 4xx responses fail
fast with a typed error.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

FULL_SYNC_TOKEN = "*"
RESOURCE_TYPES = ("items", "projects", "labels")


class TodoistAPIError(RuntimeError):
    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message


class TodoistUnauthorizedError(TodoistAPIError):
    pass


class TodoistForbiddenError(TodoistAPIError):
    pass


class TodoistNotFoundError(TodoistAPIError):
    pass


class TodoistRateLimitedError(TodoistAPIError):
    def __init__(self, status: int, message: str, retry_after: int | None = None) -> None:
        super().__init__(status, message)
        self.retry_after = retry_after


class TodoistTimeoutError(TodoistAPIError):
    pass


class TodoistTransportError(TodoistAPIError):
    pass


@dataclass(frozen=True)
class RemoteTask:
    remote_id: str
    content: str
    description: str = ""
    project_remote_id: str | None = None
    parent_remote_id: str | None = None
    priority: int = 1
    labels: tuple[str, ...] = ()
    is_completed: bool = False
    is_deleted: bool = False
    order: int | None = None
    due_date: str | None = None
    due_string: str | None = None


@dataclass(frozen=True)
class RemoteProject:
    remote_id: str
    name: str
    color: str | None = None
    parent_remote_id: str | None = None
    order: int | None = None
    is_favorite: bool = False
    is_archived: bool = False
    is_deleted: bool = False


@dataclass(frozen=True)
class RemoteLabel:
    remote_id: str
    name: str
    color: str | None = None
    order: int | None = None
    is_favorite: bool = False
    is_deleted: bool = False


@dataclass(frozen=True)
class RemoteChanges:
    sync_token: str
    full_sync: bool
    tasks: list[RemoteTask] = field(default_factory=list)
    projects: list[RemoteProject] = field(default_factory=list)
    labels: list[RemoteLabel] = field(default_factory=list)


class TodoistAPI(Protocol):
    async def list_changes(self, *, since: str | None) -> RemoteChanges: ...

    async def list_tasks(self, *, since: str | None) -> tuple[list[RemoteTask], str]: ...

    async def create_task(
        self, fields: dict[str, Any], *, request_id: str | None = None
    ) -> RemoteTask: ...

    async def update_task(self, remote_id: str, fields: dict[str, Any]) -> RemoteTask: ...

    async def close_task(self, remote_id: str) -> None: ...

    async def reopen_task(self, remote_id: str) -> None: ...

    async def delete_task(self, remote_id: str) -> None: ...

    async def create_project(
        self, fields: dict[str, Any], *, request_id: str | None = None
    ) -> RemoteProject: ...

    async def update_project(self, remote_id: str, fields: dict[str, Any]) -> RemoteProject: ...

    async def create_label(
        self, fields: dict[str, Any], *, request_id: str | None = None
    ) -> RemoteLabel: ...

    async def update_label(self, remote_id: str, fields: dict[str, Any]) -> RemoteLabel: ...

    async def move_task(
        self, remote_id: str, *, project_id: str | None = None, parent_id: str | None = None
    ) -> None: ...

    async def move_project(self, remote_id: str, *, parent_id: str | None) -> None: ...


def _str_or_none(value: object) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _int_or_none(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.lstrip("-").isdigit():
        return int(value)
    return None


def _parse_remote_id(obj: dict[str, Any]) -> str:
    remote_id = _str_or_none(obj.get("id"))
    if not remote_id:
        raise TodoistAPIError(0, f"cannot parse remote id: {obj}")
    return remote_id


def _parse_task(obj: dict[str, Any]) -> RemoteTask:
    # REST v2 uses is_completed/order; Sync v9 uses checked/child_order.
    completed = obj.get("is_completed")
    if not isinstance(completed, bool):
        completed = bool(obj.get("checked", False))
    order = _int_or_none(obj.get("order"))
    if order is None:
        order = _int_or_none(obj.get("child_order"))

    due = obj.get("due")
    due_date: str | None = None
    due_string: str | None = None
    if isinstance(due, dict):
        due_date = _str_or_none(due.get("datetime")) or _str_or_none(due.get("date"))
        due_string = _str_or_none(due.get("string"))

    labels_raw = obj.get("labels")
    labels = tuple(str(x) for x in labels_raw) if isinstance(labels_raw, list) else ()

    priority = _int_or_none(obj.get("priority")) or 1

    return RemoteTask(
        remote_id=_parse_remote_id(obj),
        content=str(obj.get("content") or ""),
        description=str(obj.get("description") or ""),
        project_remote_id=_str_or_none(obj.get("project_id")),
        parent_remote_id=_str_or_none(obj.get("parent_id")),
        priority=priority,
        labels=labels,
        is_completed=completed,
        is_deleted=bool(obj.get("is_deleted", False)),
        order=order,
        due_date=due_date,
        due_string=due_string,
    )


def _parse_project(obj: dict[str, Any]) -> RemoteProject:
    order = _int_or_none(obj.get("order"))
    if order is None:
        order = _int_or_none(obj.get("child_order"))
    return RemoteProject(
        remote_id=_parse_remote_id(obj),
        name=str(obj.get("name") or ""),
        color=_str_or_none(obj.get("color")),
        parent_remote_id=_str_or_none(obj.get("parent_id")),
        order=order,
        is_favorite=bool(obj.get("is_favorite", False)),
        is_archived=bool(obj.get("is_archived", False)),
        is_deleted=bool(obj.get("is_deleted", False)),
    )


def _parse_label(obj: dict[str, Any]) -> RemoteLabel:
    order = _int_or_none(obj.get("order"))
    if order is None:
        order = _int_or_none(obj.get("item_order"))
    return RemoteLabel(
        remote_id=_parse_remote_id(obj),
        name=str(obj.get("name") or ""),
        color=_str_or_none(obj.get("color")),
        order=order,
        is_favorite=bool(obj.get("is_favorite", False)),
        is_deleted=bool(obj.get("is_deleted", False)),
    )


def _dict_list(data: dict[str, Any], key: str) -> list[dict[str, Any]]:
    value = data.get(key)
    if not isinstance(value, list):
        return []
    return [x for x in value if isinstance(x, dict)]


def parse_sync_response(data: object) -> RemoteChanges:
    if not isinstance(data, dict):
        raise TodoistAPIError(0, f"sync response is not an object: {data!r}")
    token = data.get("sync_token")
    if not isinstance(token, str) or not token:
        raise TodoistAPIError(0, "sync response has no sync_token")
    try:
        return RemoteChanges(
            sync_token=token,
            full_sync=bool(data.get("full_sync", False)),
            tasks=[_parse_task(x) for x in _dict_list(data, "items")],
            projects=[_parse_project(x) for x in _dict_list(data, "projects")],
            labels=[_parse_label(x) for x in _dict_list(data, "labels")],
        )
    except TodoistAPIError:
        raise
    except Exception as e:
        raise TodoistAPIError(0, f"sync response parse failed: {e}") from e


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        msg = data.get("error") or data.get("message")
        if isinstance(msg, str) and msg:
            return msg
    text = resp.text.strip()
    if text:
        return text[:500]
    return resp.reason_phrase or f"HTTP {resp.status_code}"


def _retry_after(resp: httpx.Response) -> int | None:
    value = resp.headers.get("retry-after")
    if value and value.strip().isdigit():
        return int(value.strip())
    return None


def error_for_status(
    status: int, message: str, *, retry_after: int | None = None
) -> TodoistAPIError:
    if status == 401:
        return TodoistUnauthorizedError(status, message)
    if status == 403:
        return TodoistForbiddenError(status, message)
    if status == 404:
        return TodoistNotFoundError(status, message)
    if status == 429:
        return TodoistRateLimitedError(status, message, retry_after=retry_after)
    return TodoistAPIError(status, message)


def raise_for_todoist_status(resp: httpx.Response) -> None:
    status = resp.status_code
    if 200 <= status < 300:
        return
    raise error_for_status(status, _error_message(resp), retry_after=_retry_after(resp))


def raise_for_command_status(data: dict[str, Any], command_uuid: str, command_type: str) -> None:
    """Sync API commands answer 200 and report per-command results in `sync_status`."""

    statuses = data.get("sync_status")
    status = statuses.get(command_uuid) if isinstance(statuses, dict) else None
    if status == "ok":
        return
    if isinstance(status, dict):
        code = _int_or_none(status.get("http_code")) or 400
        message = _str_or_none(status.get("error")) or f"{command_type} failed"
        raise error_for_status(code, message)
    raise TodoistAPIError(0, f"{command_type} returned no status for command {command_uuid}")


def _is_retryable(exc: TodoistAPIError) -> bool:
    if isinstance(exc, (TodoistRateLimitedError, TodoistTimeoutError, TodoistTransportError)):
        return True
    return exc.status >= 500


class HttpxTodoistAPI:
    def __init__(
        self,
        *,
        api_token: str,
        rest_base_url: str,
        sync_base_url: str,
        timeout_seconds: float,
        max_retries: int = 2,
        backoff_seconds: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_token or not api_token.strip():
            raise TodoistUnauthorizedError(401, "Todoist API token is required")
        self._token = api_token.strip()
        self._rest_base = rest_base_url.rstrip("/")
        self._sync_base = sync_base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._max_retries = max(0, max_retries)
        self._backoff = backoff_seconds
        self._client = client

    def _headers(self, request_id: str | None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self._token}"}
        if request_id:
            headers["X-Request-Id"] = request_id
        return headers

    async def _send(
        self,
        method: str,
        url: str,
        *,
        json_body: dict[str, Any] | None,
        form: dict[str, str] | None,
        request_id: str | None,
    ) -> httpx.Response:
        headers = self._headers(request_id)
        try:
            if self._client is not None:
                return await self._client.request(
                    method, url, headers=headers, json=json_body, data=form, timeout=self._timeout
                )
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.request(method, url, headers=headers, json=json_body, data=form)
        except httpx.TimeoutException as e:
            raise TodoistTimeoutError(0, f"{method} {url} timed out") from e
        except httpx.TransportError as e:
            raise TodoistTransportError(0, f"{method} {url} failed: {e}") from e

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json_body: dict[str, Any] | None = None,
        form: dict[str, str] | None = None,
        request_id: str | None = None,
    ) -> httpx.Response:
        attempt = 0
        while True:
            try:
                resp = await self._send(
                    method, url, json_body=json_body, form=form, request_id=request_id
                )
                raise_for_todoist_status(resp)
                return resp
            except TodoistAPIError as e:
                if attempt >= self._max_retries or not _is_retryable(e):
                    raise
                delay = self._backoff * (2**attempt)
                if isinstance(e, TodoistRateLimitedError) and e.retry_after is not None:
                    delay = max(delay, float(e.retry_after))
                logger.warning(
                    "todoist request retry method=%s url=%s attempt=%s status=%s delay=%.2fs",
                    method,
                    url,
                    attempt + 1,
                    e.status,
                    delay,
                )
                attempt += 1
                if delay > 0:
                    await asyncio.sleep(delay)

    @staticmethod
    def _json_object(resp: httpx.Response, what: str) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as e:
            raise TodoistAPIError(resp.status_code, f"{what} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise TodoistAPIError(resp.status_code, f"{what} succeeded but bad response: {data}")
        return data

    async def list_changes(self, *, since: str | None) -> RemoteChanges:
        form = {
            "sync_token": since or FULL_SYNC_TOKEN,
            "resource_types": json.dumps(list(RESOURCE_TYPES)),
        }
        resp = await self._request("POST", f"{self._sync_base}/sync", form=form)
        try:
            data = resp.json()
        except ValueError as e:
            raise TodoistAPIError(resp.status_code, "sync returned invalid JSON") from e
        return parse_sync_response(data)

    async def list_tasks(self, *, since: str | None) -> tuple[list[RemoteTask], str]:
        changes = await self.list_changes(since=since)
        return changes.tasks, changes.sync_token

    async def create_task(
        self, fields: dict[str, Any], *, request_id: str | None = None
    ) -> RemoteTask:
        if not str(fields.get("content") or "").strip():
            raise TodoistAPIError(400, "Task content is required")
        resp = await self._request(
            "POST", f"{self._rest_base}/tasks", json_body=fields, request_id=request_id
        )
        return _parse_task(self._json_object(resp, "create task"))

    async def update_task(self, remote_id: str, fields: dict[str, Any]) -> RemoteTask:
        resp = await self._request("POST", f"{self._rest_base}/tasks/{remote_id}", json_body=fields)
        return _parse_task(self._json_object(resp, "update task"))

    async def close_task(self, remote_id: str) -> None:
        await self._request("POST", f"{self._rest_base}/tasks/{remote_id}/close")

    async def reopen_task(self, remote_id: str) -> None:
        await self._request("POST", f"{self._rest_base}/tasks/{remote_id}/reopen")

    async def delete_task(self, remote_id: str) -> None:
        try:
            await self._request("DELETE", f"{self._rest_base}/tasks/{remote_id}")
        except TodoistNotFoundError:
            # Already gone upstream.
            return

    async def create_project(
        self, fields: dict[str, Any], *, request_id: str | None = None
    ) -> RemoteProject:
        resp = await self._request(
            "POST", f"{self._rest_base}/projects", json_body=fields, request_id=request_id
        )
        return _parse_project(self._json_object(resp, "create project"))

    async def update_project(self, remote_id: str, fields: dict[str, Any]) -> RemoteProject:
        resp = await self._request(
            "POST", f"{self._rest_base}/projects/{remote_id}", json_body=fields
        )
        return _parse_project(self._json_object(resp, "update project"))

    async def create_label(
        self, fields: dict[str, Any], *, request_id: str | None = None
    ) -> RemoteLabel:
        resp = await self._request(
            "POST", f"{self._rest_base}/labels", json_body=fields, request_id=request_id
        )
        return _parse_label(self._json_object(resp, "create label"))

    async def update_label(self, remote_id: str, fields: dict[str, Any]) -> RemoteLabel:
        resp = await self._request(
            "POST", f"{self._rest_base}/labels/{remote_id}", json_body=fields
        )
        return _parse_label(self._json_object(resp, "update label"))

    async def _command(self, command_type: str, args: dict[str, Any]) -> None:
        # The command uuid is fixed before the first attempt so Todoist applies a
        # retried command once.
        command_uuid = str(uuid.uuid4())
        form = {
            "commands": json.dumps([{"type": command_type, "uuid": command_uuid, "args": args}])
        }
        resp = await self._request("POST", f"{self._sync_base}/sync", form=form)
        raise_for_command_status(self._json_object(resp, command_type), command_uuid, command_type)

    async def move_task(
        self, remote_id: str, *, project_id: str | None = None, parent_id: str | None = None
    ) -> None:
        if (project_id is None) == (parent_id is None):
            raise ValueError("move_task needs exactly one of project_id or parent_id")
        args: dict[str, Any] = {"id": remote_id}
        if parent_id is not None:
            args["parent_id"] = parent_id
        else:
            args["project_id"] = project_id
        await self._command("item_move", args)

    async def move_project(self, remote_id: str, *, parent_id: str | None) -> None:
        # parent_id None moves the project to the top level.
        await self._command("project_move", {"id": remote_id, "parent_id": parent_id})
