from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, TypeVar

from todoist_mcp.domain.mirror_merge import (
    LABEL_PUSH_FIELDS,
    label_fields_from_remote,
    label_payload,
    merge_pending_fields,
    plan_project_push,
    plan_task_push,
    project_fields_from_remote,
    task_fields_from_remote,
)
from todoist_mcp.integrations.todoist_api import (
    RemoteLabel,
    RemoteProject,
    RemoteTask,
    TodoistAPI,
    TodoistAPIError,
    TodoistForbiddenError,
    TodoistRateLimitedError,
    TodoistTimeoutError,
    TodoistTransportError,
    TodoistUnauthorizedError,
)
from todoist_mcp.models import Account, Label, MirroredRow, Project, SyncCursor, Task, utc_now
from todoist_mcp.repositories.entity_store import EntityNotFoundError, EntityStore
from todoist_mcp.sync_utils import new_id, now_ms

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT", Task, Project, Label)

ClientFactory = Callable[[Account], TodoistAPI]

# Errors that make every further call in the same pass pointless.
_FATAL_REMOTE_ERRORS = (
    TodoistUnauthorizedError,
    TodoistForbiddenError,
    TodoistRateLimitedError,
    TodoistTimeoutError,
    TodoistTransportError,
)

TASK_EDITABLE_FIELDS = (
    "content",
    "description",
    "priority",
    "labels_json",
    "due_date",
    "due_string",
    "project_id",
    "parent_id",
    "is_completed",
)


class SyncError(RuntimeError):
    pass


class SyncBusyError(SyncError):
    def __init__(self, account_id: int, waited_seconds: float) -> None:
        super().__init__(
            f"account {account_id} is busy syncing (waited {waited_seconds:.1f}s), retry later"
        )
        self.account_id = account_id


class InvalidEditError(ValueError):
    """A local mutation that can never be expressed in Todoist."""


class ParentCycleError(InvalidEditError):
    def __init__(self, kind: str, entity_id: str, parent_id: str) -> None:
        super().__init__(f"{kind} {entity_id} cannot have parent {parent_id}: would create a cycle")
        self.kind = kind
        self.entity_id = entity_id
        self.parent_id = parent_id


@dataclass(frozen=True)
class PullSummary:
    full_sync: bool
    remote_total: int
    created_local: int
    updated_local: int
    archived_local: int
    sync_token: str


@dataclass(frozen=True)
class PushSummary:
    created_remote: int
    updated_remote: int
    deleted_remote: int
    deferred: int
    failed: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class SyncSummary:
    pull: PullSummary
    push: PushSummary

    def as_dict(self) -> dict[str, Any]:
        return {
            "pull": {
                "full_sync": self.pull.full_sync,
                "remote_total": self.pull.remote_total,
                "created_local": self.pull.created_local,
                "updated_local": self.pull.updated_local,
                "archived_local": self.pull.archived_local,
            },
            "push": {
                "created_remote": self.push.created_remote,
                "updated_remote": self.push.updated_remote,
                "deleted_remote": self.push.deleted_remote,
                "deferred": self.push.deferred,
                "failed": list(self.push.failed),
            },
        }


@dataclass
class _PushCounters:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    deferred: int = 0
    failed: list[dict[str, Any]] = field(default_factory=list)


def _retry_later(exc: TodoistAPIError) -> bool:
    # The record itself is fine; the same push can succeed on a later pass.
    return isinstance(exc, _FATAL_REMOTE_ERRORS) or exc.status >= 500


def _error_text(exc: TodoistAPIError) -> str:
    return f"{exc.status}: {exc.message}"[:500]


def _account_id(account: Account) -> int:
    if account.id is None:
        raise SyncError("account has not been stored yet")
    return int(account.id)


def _parents_first(rows: Sequence[RowT]) -> list[RowT]:
    """Order rows so every pending parent precedes its pending children."""

    by_id = {r.id: r for r in rows}
    depth: dict[str, int] = {}

    def _depth(row_id: str) -> int:
        if row_id in depth:
            return depth[row_id]
        depth[row_id] = 0  # guards against a stored cycle
        parent_id = getattr(by_id[row_id], "parent_id", None)
        d = _depth(parent_id) + 1 if parent_id in by_id else 0
        depth[row_id] = d
        return d

    return sorted(rows, key=lambda r: _depth(r.id))


class SyncEngine:
    """Two-way mirror between the entity store and Todoist.

    Every operation touching an account (pull, push, and local mutations) runs
    under that account's lock, so two passes for the same account never
    interleave. Passes for different accounts run concurrently.
    """

    def __init__(
        self,
        *,
        store: EntityStore,
        client_factory: ClientFactory,
        lock_timeout_seconds: float = 30.0,
        push_on_write: bool = True,
    ) -> None:
        self._store = store
        self._client_factory = client_factory
        self._lock_timeout = lock_timeout_seconds
        self._push_on_write = push_on_write
        self._locks: dict[int, asyncio.Lock] = {}

    @property
    def store(self) -> EntityStore:
        return self._store

    @asynccontextmanager
    async def _account_lock(self, account: Account) -> AsyncIterator[None]:
        account_id = _account_id(account)
        lock = self._locks.setdefault(account_id, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._lock_timeout)
        except asyncio.TimeoutError as e:
            logger.warning("sync lock timeout account_id=%s", account_id)
            raise SyncBusyError(account_id, self._lock_timeout) from e
        try:
            yield
        finally:
            lock.release()

    # --- cursor ---

    async def open_cursor(self, account: Account) -> SyncCursor:
        account_id = _account_id(account)
        rows = await self._store.query_by_index(SyncCursor, "by_account", account_id)
        if rows:
            return rows[0]
        cursor = SyncCursor(account_id=account_id)
        await self._store.insert(SyncCursor, cursor)
        return cursor

    # --- lookups ---

    async def _by_remote_id(self, kind: type[RowT], account_id: int, remote_id: str) -> RowT | None:
        rows = await self._store.query_by_index(kind, "by_remote_id", (account_id, remote_id))
        return rows[0] if rows else None

    async def _remote_id_of(self, kind: type[RowT], local_id: str | None) -> str | None:
        if not local_id:
            return None
        row = await self._store.get(kind, local_id)
        return row.remote_id if row is not None else None

    async def _resolve(self, kind: type[RowT], account: Account, ref: str) -> RowT:
        account_id = _account_id(account)
        ref = str(ref).strip()
        if ref:
            row = await self._store.get(kind, ref)
            if row is not None and row.account_id == account_id:
                return row
            row = await self._by_remote_id(kind, account_id, ref)
            if row is not None:
                return row
        raise EntityNotFoundError(kind.__name__, ref)

    async def resolve_task(self, account: Account, ref: str) -> Task:
        return await self._resolve(Task, account, ref)

    async def resolve_project(self, account: Account, ref: str) -> Project:
        return await self._resolve(Project, account, ref)

    async def _would_cycle(self, kind: type[RowT], entity_id: str, parent_id: str | None) -> bool:
        seen: set[str] = set()
        current = parent_id
        while current:
            if current == entity_id or current in seen:
                return True
            seen.add(current)
            row = await self._store.get(kind, current)
            if row is None:
                return False
            current = getattr(row, "parent_id", None)
        return False

    # --- pull ---

    async def pull(self, account: Account, *, full: bool = False) -> PullSummary:
        async with self._account_lock(account):
            return await self._pull_locked(account, full=full)

    async def _pull_locked(self, account: Account, *, full: bool) -> PullSummary:
        account_id = _account_id(account)
        client = self._client_factory(account)
        cursor = await self.open_cursor(account)
        since = None if full else cursor.sync_token

        changes = await client.list_changes(since=since)
        logger.info(
            "todoist pull account_id=%s full_sync=%s tasks=%s projects=%s labels=%s",
            account_id,
            changes.full_sync,
            len(changes.tasks),
            len(changes.projects),
            len(changes.labels),
        )

        counts = {"created": 0, "updated": 0, "archived": 0}

        def _count(outcome: str | None) -> None:
            if outcome:
                counts[outcome] += 1

        # Labels and projects first so tasks can resolve their project reference.
        for remote_label in changes.labels:
            _count(await self._apply_label(account, remote_label))

        project_links: list[tuple[str, str | None]] = []
        for remote_project in changes.projects:
            local_id, outcome = await self._apply_project(account, remote_project)
            _count(outcome)
            if local_id:
                project_links.append((local_id, remote_project.parent_remote_id))
        for local_id, parent_remote_id in project_links:
            await self._link_parent(Project, account_id, local_id, parent_remote_id)

        task_links: list[tuple[str, str | None]] = []
        for remote_task in changes.tasks:
            local_id, outcome = await self._apply_task(account, remote_task)
            _count(outcome)
            if local_id:
                task_links.append((local_id, remote_task.parent_remote_id))
        for local_id, parent_remote_id in task_links:
            await self._link_parent(Task, account_id, local_id, parent_remote_id)

        # The cursor advances only after the whole batch landed; a failure above
        # leaves it untouched and the next pull replays the same changes.
        await self._store.patch(
            SyncCursor,
            cursor.id,
            {"sync_token": changes.sync_token, "last_synced_at": utc_now()},
        )

        return PullSummary(
            full_sync=changes.full_sync,
            remote_total=len(changes.tasks) + len(changes.projects) + len(changes.labels),
            created_local=counts["created"],
            updated_local=counts["updated"],
            archived_local=counts["archived"],
            sync_token=changes.sync_token,
        )

    async def _upsert_from_remote(
        self,
        kind: type[RowT],
        account: Account,
        remote_id: str,
        is_deleted: bool,
        fields: Callable[[int | None], dict[str, Any]],
    ) -> tuple[str | None, str | None]:
        account_id = _account_id(account)
        existing = await self._by_remote_id(kind, account_id, remote_id)
        if existing is None:
            if is_deleted:
                # Never seen locally; nothing to archive.
                return None, None
            row = kind(
                id=new_id(),
                user_id=account.user_id,
                account_id=account_id,
                remote_synced_at=utc_now(),
                **fields(None),
            )
            await self._store.insert(kind, row)
            return row.id, "created"

        values = fields(existing.sort_order)
        values["remote_synced_at"] = utc_now()
        was_archived = existing.archived
        await self._store.patch(kind, existing.id, values)
        if values.get("archived") and not was_archived:
            return existing.id, "archived"
        return existing.id, "updated"

    async def _apply_label(self, account: Account, remote: RemoteLabel) -> str | None:
        _, outcome = await self._upsert_from_remote(
            Label,
            account,
            remote.remote_id,
            remote.is_deleted,
            lambda order: label_fields_from_remote(remote, current_sort_order=order),
        )
        return outcome

    async def _apply_project(
        self, account: Account, remote: RemoteProject
    ) -> tuple[str | None, str | None]:
        return await self._upsert_from_remote(
            Project,
            account,
            remote.remote_id,
            remote.is_deleted,
            lambda order: project_fields_from_remote(remote, current_sort_order=order),
        )

    async def _apply_task(
        self, account: Account, remote: RemoteTask
    ) -> tuple[str | None, str | None]:
        account_id = _account_id(account)
        project_id: str | None = None
        if remote.project_remote_id:
            project = await self._by_remote_id(Project, account_id, remote.project_remote_id)
            project_id = project.id if project is not None else None

        def _fields(order: int | None) -> dict[str, Any]:
            values = task_fields_from_remote(remote, current_sort_order=order)
            values["project_id"] = project_id
            return values

        return await self._upsert_from_remote(
            Task, account, remote.remote_id, remote.is_deleted, _fields
        )

    async def _link_parent(
        self, kind: type[RowT], account_id: int, local_id: str, parent_remote_id: str | None
    ) -> None:
        parent_id: str | None = None
        if parent_remote_id:
            parent = await self._by_remote_id(kind, account_id, parent_remote_id)
            parent_id = parent.id if parent is not None else None

        row = await self._store.get(kind, local_id)
        if row is None or getattr(row, "parent_id", None) == parent_id:
            return
        if await self._would_cycle(kind, local_id, parent_id):
            logger.warning(
                "skipping remote parent that closes a cycle kind=%s id=%s parent_id=%s",
                kind.__name__,
                local_id,
                parent_id,
            )
            return
        await self._store.patch(kind, local_id, {"parent_id": parent_id})

    # --- push ---

    async def push(self, account: Account) -> PushSummary:
        async with self._account_lock(account):
            return await self._push_locked(account)

    async def _push_locked(self, account: Account) -> PushSummary:
        account_id = _account_id(account)
        client = self._client_factory(account)
        counters = _PushCounters()

        projects = await self._store.query_by_index(Project, "by_pending", account_id)
        for project in _parents_first(projects):
            step = self._push_project(client, project.id)
            await self._push_guarded(counters, Project, project.id, step)

        labels = await self._store.query_by_index(Label, "by_pending", account_id)
        for label in labels:
            step = self._push_label(client, label.id)
            await self._push_guarded(counters, Label, label.id, step)

        tasks = await self._store.query_by_index(Task, "by_pending", account_id)
        for task in _parents_first(tasks):
            step = self._push_task(client, task.id)
            await self._push_guarded(counters, Task, task.id, step)

        if counters.failed:
            logger.warning(
                "todoist push finished with failures account_id=%s failed=%s",
                account_id,
                len(counters.failed),
            )
        return PushSummary(
            created_remote=counters.created,
            updated_remote=counters.updated,
            deleted_remote=counters.deleted,
            deferred=counters.deferred,
            failed=counters.failed,
        )

    async def _push_guarded(
        self,
        counters: _PushCounters,
        kind: type[MirroredRow],
        row_id: str,
        step: Awaitable[str],
    ) -> None:
        try:
            outcome = await step
        except _FATAL_REMOTE_ERRORS:
            # Abort the pass; pending state of this and later rows is kept.
            raise
        except TodoistAPIError as e:
            logger.warning(
                "todoist push failed kind=%s id=%s status=%s error=%s",
                kind.__name__,
                row_id,
                e.status,
                e.message,
            )
            await self._store.patch(kind, row_id, {"push_error": _error_text(e)})
            counters.failed.append(
                {
                    "kind": kind.__name__.lower(),
                    "id": row_id,
                    "status": e.status,
                    "error": e.message,
                }
            )
            return
        if outcome == "created":
            counters.created += 1
        elif outcome == "updated":
            counters.updated += 1
        elif outcome == "deleted":
            counters.deleted += 1
        elif outcome == "deferred":
            counters.deferred += 1

    async def _ensure_request_id(self, kind: type[RowT], row: RowT) -> str:
        # Stored before the call so a retried create reuses the same key.
        if row.push_request_id:
            return row.push_request_id
        request_id = new_id()
        await self._store.patch(kind, row.id, {"push_request_id": request_id})
        return request_id

    async def _settle(
        self, kind: type[RowT], row_id: str, extra: dict[str, Any] | None = None
    ) -> None:
        values: dict[str, Any] = {
            "pending_push": False,
            "pending_fields_json": [],
            "push_request_id": None,
            "push_error": None,
            "remote_synced_at": utc_now(),
        }
        if extra:
            values.update(extra)
        await self._store.patch(kind, row_id, values)

    async def _keep_pending(self, kind: type[RowT], row_id: str, fields: list[str]) -> None:
        await self._store.patch(
            kind, row_id, {"pending_fields_json": fields, "remote_synced_at": utc_now()}
        )
        logger.info(
            "todoist push deferred kind=%s id=%s fields=%s", kind.__name__, row_id, fields
        )

    async def _push_task(self, client: TodoistAPI, task_id: str) -> str:
        fresh = await self._store.get(Task, task_id)
        if fresh is None or not fresh.pending_push:
            return "skipped"

        project_remote_id = await self._remote_id_of(Project, fresh.project_id)
        parent_remote_id = await self._remote_id_of(Task, fresh.parent_id)
        if fresh.remote_id is None and (
            (fresh.parent_id and parent_remote_id is None)
            or (fresh.project_id and project_remote_id is None)
        ):
            # A referenced record has not reached Todoist yet; retried on the next pass.
            return "deferred"

        outcome = "updated"
        remote_id = fresh.remote_id
        still_pending: list[str] = []
        for action in plan_task_push(
            fresh, project_remote_id=project_remote_id, parent_remote_id=parent_remote_id
        ):
            if action.kind == "create":
                request_id = await self._ensure_request_id(Task, fresh)
                created = await client.create_task(action.payload, request_id=request_id)
                remote_id = created.remote_id
                outcome = "created"
                # Persist the mapping right away; a later close failure must not
                # produce a second create.
                remaining = ["is_completed"] if fresh.is_completed else []
                await self._store.patch(
                    Task,
                    fresh.id,
                    {
                        "remote_id": remote_id,
                        "push_request_id": None,
                        "pending_fields_json": remaining,
                        "remote_synced_at": utc_now(),
                    },
                )
            elif action.kind == "update":
                assert remote_id is not None
                await client.update_task(remote_id, action.payload)
            elif action.kind == "move":
                assert remote_id is not None
                await client.move_task(remote_id, **action.payload)
            elif action.kind == "close":
                assert remote_id is not None
                await client.close_task(remote_id)
            elif action.kind == "reopen":
                assert remote_id is not None
                await client.reopen_task(remote_id)
            elif action.kind == "delete":
                assert remote_id is not None
                await client.delete_task(remote_id)
                outcome = "deleted"
            elif action.kind == "defer":
                still_pending.extend(action.payload["fields"])
            elif action.kind == "settle" and outcome == "updated":
                outcome = "settled"

        if still_pending:
            await self._keep_pending(Task, fresh.id, still_pending)
            return "deferred"
        await self._settle(Task, fresh.id)
        logger.debug(
            "todoist push task id=%s remote_id=%s outcome=%s", fresh.id, remote_id, outcome
        )
        return outcome

    async def _push_project(self, client: TodoistAPI, project_id: str) -> str:
        fresh = await self._store.get(Project, project_id)
        if fresh is None or not fresh.pending_push:
            return "skipped"
        parent_remote_id = await self._remote_id_of(Project, fresh.parent_id)
        if fresh.remote_id is None and fresh.parent_id and parent_remote_id is None:
            return "deferred"

        outcome = "updated"
        still_pending: list[str] = []
        for action in plan_project_push(fresh, parent_remote_id=parent_remote_id):
            if action.kind == "create":
                request_id = await self._ensure_request_id(Project, fresh)
                created = await client.create_project(action.payload, request_id=request_id)
                await self._settle(Project, fresh.id, {"remote_id": created.remote_id})
                return "created"
            if action.kind == "update":
                assert fresh.remote_id is not None
                await client.update_project(fresh.remote_id, action.payload)
            elif action.kind == "move":
                assert fresh.remote_id is not None
                await client.move_project(fresh.remote_id, parent_id=action.payload["parent_id"])
            elif action.kind == "defer":
                still_pending.extend(action.payload["fields"])
            elif action.kind == "settle":
                outcome = "settled"

        if still_pending:
            await self._keep_pending(Project, fresh.id, still_pending)
            return "deferred"
        await self._settle(Project, fresh.id)
        return outcome

    async def _push_label(self, client: TodoistAPI, label_id: str) -> str:
        fresh = await self._store.get(Label, label_id)
        if fresh is None or not fresh.pending_push:
            return "skipped"

        if fresh.remote_id is None:
            if fresh.archived:
                await self._settle(Label, fresh.id)
                return "settled"
            request_id = await self._ensure_request_id(Label, fresh)
            created = await client.create_label(
                label_payload(fresh, fields=LABEL_PUSH_FIELDS), request_id=request_id
            )
            await self._settle(Label, fresh.id, {"remote_id": created.remote_id})
            return "created"

        fields = [f for f in (fresh.pending_fields_json or []) if f in LABEL_PUSH_FIELDS]
        if fields:
            payload = label_payload(fresh, fields=fields, for_create=False)
            await client.update_label(fresh.remote_id, payload)
        await self._settle(Label, fresh.id)
        return "updated" if fields else "settled"

    # --- full pass ---

    async def sync(self, account: Account, *, full: bool = False) -> SyncSummary:
        """Pull then push, as one locked pass."""

        async with self._account_lock(account):
            pulled = await self._pull_locked(account, full=full)
            pushed = await self._push_locked(account)
        logger.info(
            "todoist sync account_id=%s pulled=%s pushed_created=%s pushed_updated=%s failed=%s",
            account.id,
            pulled.remote_total,
            pushed.created_remote,
            pushed.updated_remote,
            len(pushed.failed),
        )
        return SyncSummary(pull=pulled, push=pushed)

    # --- local mutations ---

    async def _push_after_write(
        self, account: Account, kind: type[RowT], row_id: str, *, created: bool
    ) -> None:
        """Push one freshly written row when push-on-write is enabled.

        The local write is already committed. Failures that a later pass can
        recover from leave the row pending with `push_error` set, so a create
        is never reported as failed while its row waits to be pushed. A create
        Todoist rejects outright is withdrawn before the error propagates.
        """

        if not self._push_on_write:
            return
        client = self._client_factory(account)
        try:
            if kind is Task:
                await self._push_task(client, row_id)
            else:
                await self._push_project(client, row_id)
        except TodoistAPIError as e:
            await self._store.patch(kind, row_id, {"push_error": _error_text(e)})
            if created and _retry_later(e):
                logger.warning(
                    "todoist push after create failed, kept pending kind=%s id=%s status=%s",
                    kind.__name__,
                    row_id,
                    e.status,
                )
                return
            if created:
                await self._withdraw(kind, row_id)
            raise

    async def _withdraw(self, kind: type[RowT], row_id: str) -> None:
        row = await self._store.get(kind, row_id)
        if row is None or row.remote_id is not None:
            return
        await self._store.patch(
            kind,
            row_id,
            {
                "archived": True,
                "pending_push": False,
                "pending_fields_json": [],
                "push_request_id": None,
            },
        )
        logger.info("withdrew rejected local create kind=%s id=%s", kind.__name__, row_id)

    async def create_task(
        self,
        account: Account,
        *,
        content: str,
        description: str = "",
        project_id: str | None = None,
        parent_id: str | None = None,
        priority: int = 1,
        due_date: str | None = None,
        due_string: str | None = None,
        labels: Sequence[str] = (),
    ) -> Task:
        async with self._account_lock(account):
            project = await self.resolve_project(account, project_id) if project_id else None
            parent = await self.resolve_task(account, parent_id) if parent_id else None
            if parent is not None:
                if project is not None and project.id != parent.project_id:
                    raise InvalidEditError("a subtask must be in its parent's project")
                project_local_id = parent.project_id
            else:
                project_local_id = project.id if project is not None else None

            task = Task(
                id=new_id(),
                user_id=account.user_id,
                account_id=_account_id(account),
                project_id=project_local_id,
                parent_id=parent.id if parent is not None else None,
                content=content,
                description=description or "",
                priority=priority,
                labels_json=list(labels),
                due_date=due_date,
                due_string=due_string,
                sort_order=now_ms(),
                pending_push=True,
                push_request_id=new_id(),
            )
            await self._store.insert(Task, task)
            await self._push_after_write(account, Task, task.id, created=True)
            return await self._reload(Task, task.id)

    async def _task_ref_changes(
        self, account: Account, task: Task, values: dict[str, Any]
    ) -> None:
        # Keeps project_id and parent_id consistent the way Todoist does: a
        # subtask lives in its parent's project, and moving a task to another
        # project makes it top-level there.
        for ref_field in ("project_id", "parent_id"):
            if ref_field in values and not values[ref_field]:
                values[ref_field] = None

        if "project_id" in values:
            if values["project_id"] is None:
                if task.project_id and task.remote_id is not None:
                    raise InvalidEditError(
                        "a synced task always belongs to a project; move it to another one"
                    )
            else:
                project = await self.resolve_project(account, values["project_id"])
                values["project_id"] = project.id

        if values.get("parent_id"):
            parent = await self.resolve_task(account, values["parent_id"])
            if await self._would_cycle(Task, task.id, parent.id):
                raise ParentCycleError("task", task.id, parent.id)
            if "project_id" in values and values["project_id"] != parent.project_id:
                raise InvalidEditError("a subtask must be in its parent's project")
            values["parent_id"] = parent.id
            values["project_id"] = parent.project_id
        elif "parent_id" in values:
            if task.parent_id and "project_id" not in values and task.project_id is None:
                old_parent = await self._store.get(Task, task.parent_id)
                values["project_id"] = old_parent.project_id if old_parent is not None else None
        elif values.get("project_id") and values["project_id"] != task.project_id:
            values["parent_id"] = None

    async def update_task(self, account: Account, task_ref: str, changes: dict[str, Any]) -> Task:
        unknown = set(changes) - set(TASK_EDITABLE_FIELDS)
        if unknown:
            raise InvalidEditError(f"unsupported task fields: {sorted(unknown)}")

        async with self._account_lock(account):
            task = await self.resolve_task(account, task_ref)
            values = dict(changes)
            await self._task_ref_changes(account, task, values)

            # A task has one due date; setting one form replaces the other.
            if "due_date" in values and "due_string" not in values:
                values["due_string"] = None
            elif "due_string" in values and "due_date" not in values:
                values["due_date"] = None

            changed = {k: v for k, v in values.items() if getattr(task, k) != v}
            if not changed:
                return task

            changed["pending_push"] = True
            changed["pending_fields_json"] = merge_pending_fields(
                task.pending_fields_json or [], [k for k in changed if k != "pending_push"]
            )
            await self._store.patch(Task, task.id, changed)
            await self._push_after_write(account, Task, task.id, created=False)
            return await self._reload(Task, task.id)

    async def move_task(
        self,
        account: Account,
        task_ref: str,
        *,
        project_id: str | None = None,
        parent_id: str | None = None,
    ) -> Task:
        """Move a task into a project (top level) or under another task."""

        if bool(project_id) == bool(parent_id):
            raise InvalidEditError("move needs exactly one of project_id or parent_id")
        changes = {"parent_id": parent_id} if parent_id else {"project_id": project_id}
        return await self.update_task(account, task_ref, changes)

    async def complete_task(self, account: Account, task_ref: str) -> Task:
        return await self.update_task(account, task_ref, {"is_completed": True})

    async def archive_task(self, account: Account, task_ref: str) -> Task:
        async with self._account_lock(account):
            task = await self.resolve_task(account, task_ref)
            if not task.archived:
                await self._store.patch(
                    Task,
                    task.id,
                    {
                        "archived": True,
                        "pending_push": True,
                        "pending_fields_json": merge_pending_fields(
                            task.pending_fields_json or [], ["archived"]
                        ),
                    },
                )
                await self._push_after_write(account, Task, task.id, created=False)
            return await self._reload(Task, task.id)

    async def create_project(
        self,
        account: Account,
        *,
        name: str,
        color: str | None = None,
        parent_id: str | None = None,
        is_favorite: bool = False,
    ) -> Project:
        async with self._account_lock(account):
            parent = await self.resolve_project(account, parent_id) if parent_id else None
            project = Project(
                id=new_id(),
                user_id=account.user_id,
                account_id=_account_id(account),
                name=name,
                color=color,
                parent_id=parent.id if parent is not None else None,
                is_favorite=is_favorite,
                sort_order=now_ms(),
                pending_push=True,
                push_request_id=new_id(),
            )
            await self._store.insert(Project, project)
            await self._push_after_write(account, Project, project.id, created=True)
            return await self._reload(Project, project.id)

    async def set_project_parent(
        self, account: Account, project_ref: str, parent_ref: str | None
    ) -> Project:
        async with self._account_lock(account):
            project = await self.resolve_project(account, project_ref)
            parent_id = (await self.resolve_project(account, parent_ref)).id if parent_ref else None
            if parent_id and await self._would_cycle(Project, project.id, parent_id):
                raise ParentCycleError("project", project.id, parent_id)
            if project.parent_id != parent_id:
                await self._store.patch(
                    Project,
                    project.id,
                    {
                        "parent_id": parent_id,
                        "pending_push": True,
                        "pending_fields_json": merge_pending_fields(
                            project.pending_fields_json or [], ["parent_id"]
                        ),
                    },
                )
                await self._push_after_write(account, Project, project.id, created=False)
            return await self._reload(Project, project.id)

    async def _reload(self, kind: type[RowT], row_id: str) -> RowT:
        row = await self._store.get(kind, row_id)
        if row is None:
            raise EntityNotFoundError(kind.__name__, row_id)
        return row

    # --- reads ---

    async def list_tasks(
        self,
        account: Account,
        *,
        project_id: str | None = None,
        label: str | None = None,
        include_completed: bool = False,
        limit: int = 100,
    ) -> list[Task]:
        if project_id:
            project = await self.resolve_project(account, project_id)
            rows = await self._store.query_by_index(Task, "by_project", project.id)
        else:
            rows = await self._store.query_by_index(Task, "by_account", _account_id(account))

        out: list[Task] = []
        for task in rows:
            if task.archived:
                continue
            if task.is_completed and not include_completed:
                continue
            if label and label not in (task.labels_json or []):
                continue
            out.append(task)
            if len(out) >= limit:
                break
        return out

    async def list_projects(
        self, account: Account, *, include_archived: bool = False
    ) -> list[Project]:
        rows = await self._store.query_by_index(Project, "by_account", _account_id(account))
        return [p for p in rows if include_archived or not p.archived]

    async def list_labels(self, account: Account) -> list[Label]:
        rows = await self._store.query_by_index(Label, "by_account", _account_id(account))
        return [label for label in rows if not label.archived]

    async def get_task(self, account: Account, task_ref: str) -> Task:
        return await self.resolve_task(account, task_ref)

    async def get_project(self, account: Account, project_ref: str) -> Project:
        return await self.resolve_project(account, project_ref)
