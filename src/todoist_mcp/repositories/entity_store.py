"""Key-indexed table store used by the sync engine and the account service.

Every call opens its own session and commits before returning, so each
operation is transactional for a single record only. Callers must not assume
two calls land atomically together.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar, cast

from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

from todoist_mcp.db import session_scope
from todoist_mcp.models import utc_now

RowT = TypeVar("RowT", bound=SQLModel)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class EntityStoreError(RuntimeError):
    pass


class EntityNotFoundError(EntityStoreError):
    def __init__(self, kind: str, entity_id: object) -> None:
        super().__init__(f"{kind} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class EntityConflictError(EntityStoreError):
    pass


class UnknownIndexError(EntityStoreError):
    pass


@dataclass(frozen=True)
class IndexDef:
    columns: tuple[str, ...]
    # Constant filters baked into the index (e.g. pending_push == True).
    fixed: dict[str, object] = field(default_factory=dict)


INDEXES: dict[str, IndexDef] = {
    "by_user": IndexDef(("user_id",)),
    "by_account": IndexDef(("account_id",)),
    "by_remote_id": IndexDef(("account_id", "remote_id")),
    "by_pending": IndexDef(("account_id",), fixed={"pending_push": True}),
    "by_project": IndexDef(("project_id",)),
    "by_parent": IndexDef(("parent_id",)),
    "by_api_token": IndexDef(("api_token",)),
    "by_username": IndexDef(("username",)),
    "by_user_provider": IndexDef(("user_id", "provider")),
}


class EntityStore(Protocol):
    async def get(self, kind: type[RowT], entity_id: object) -> RowT | None: ...

    async def insert(self, kind: type[RowT], record: RowT) -> Any: ...

    async def patch(self, kind: type[RowT], entity_id: object, fields: dict[str, Any]) -> None: ...

    async def query_by_index(
        self, kind: type[RowT], index_name: str, key: object
    ) -> list[RowT]: ...


def _index_key(index: IndexDef, key: object) -> tuple[object, ...]:
    if len(index.columns) == 1:
        return (key[0],) if isinstance(key, tuple) and len(key) == 1 else (key,)
    if not isinstance(key, tuple) or len(key) != len(index.columns):
        raise UnknownIndexError(f"index key must be a {len(index.columns)}-tuple, got {key!r}")
    return key


class SqlEntityStore:
    def __init__(self, session_factory: SessionFactory = session_scope) -> None:
        self._session_factory = session_factory

    async def get(self, kind: type[RowT], entity_id: object) -> RowT | None:
        async with self._session_factory() as session:
            return await session.get(kind, entity_id)

    async def insert(self, kind: type[RowT], record: RowT) -> Any:
        if not isinstance(record, kind):
            raise EntityStoreError(f"expected {kind.__name__}, got {type(record).__name__}")
        async with self._session_factory() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise EntityConflictError(f"{kind.__name__} insert rejected: {e.orig}") from e
            await session.refresh(record)
            return getattr(record, "id")

    async def patch(self, kind: type[RowT], entity_id: object, fields: dict[str, Any]) -> None:
        async with self._session_factory() as session:
            row = await session.get(kind, entity_id)
            if row is None:
                raise EntityNotFoundError(kind.__name__, entity_id)
            for name, value in fields.items():
                if name not in kind.model_fields:
                    raise EntityStoreError(f"{kind.__name__} has no field {name!r}")
                setattr(row, name, value)
            if "updated_at" in kind.model_fields and "updated_at" not in fields:
                setattr(row, "updated_at", utc_now())
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise EntityConflictError(f"{kind.__name__} patch rejected: {e.orig}") from e

    async def query_by_index(self, kind: type[RowT], index_name: str, key: object) -> list[RowT]:
        index = INDEXES.get(index_name)
        if index is None:
            raise UnknownIndexError(f"unknown index {index_name!r}")
        for col in (*index.columns, *index.fixed):
            if col not in kind.model_fields:
                raise UnknownIndexError(f"index {index_name!r} does not apply to {kind.__name__}")

        stmt = select(kind)
        for col, value in zip(index.columns, _index_key(index, key)):
            stmt = stmt.where(getattr(kind, col) == value)
        for col, value in index.fixed.items():
            stmt = stmt.where(getattr(kind, col) == value)

        order_cols: Sequence[str] = (
            ("sort_order", "created_at", "id") if "sort_order" in kind.model_fields else ("id",)
        )
        stmt = stmt.order_by(*[getattr(kind, c) for c in order_cols])

        async with self._session_factory() as session:
            return cast(list[RowT], list((await session.exec(stmt)).all()))
