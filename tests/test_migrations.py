from __future__ import annotations

from pathlib import Path

import pytest
import sqlalchemy as sa
from alembic import command
from alembic.config import Config

from todoist_mcp.db import get_engine, reset_engine_cache
from todoist_mcp.models import Task
from todoist_mcp.repositories.entity_store import SqlEntityStore
from todoist_mcp.services import accounts_service
from todoist_mcp.services.sync_engine import SyncEngine


def _alembic_upgrade_head() -> None:
    cfg = Config("alembic.ini")
    command.upgrade(cfg, "head")


def _alembic_downgrade_base() -> None:
    cfg = Config("alembic.ini")
    command.downgrade(cfg, "base")


def _tables(db_path: Path) -> set[str]:
    engine = sa.create_engine(f"sqlite:///{db_path}")
    try:
        return set(sa.inspect(engine).get_table_names())
    finally:
        engine.dispose()


@pytest.mark.anyio
async def test_migrations_create_schema_usable_by_the_store(tmp_path: Path):
    from todoist_mcp.config import settings

    old_db = settings.database_url
    db_path = tmp_path / "migrated.db"
    try:
        settings.database_url = f"sqlite:///{db_path}"
        reset_engine_cache()
        _alembic_upgrade_head()

        assert {"users", "accounts", "projects", "tasks", "labels", "sync_cursors"} <= _tables(
            db_path
        )

        engine = SyncEngine(
            store=SqlEntityStore(),
            client_factory=lambda _a: None,  # type: ignore[arg-type,return-value]
            push_on_write=False,
        )
        user = await accounts_service.create_user(engine.store, username="u1", api_token="tok")
        account = await accounts_service.link_account(
            engine.store, engine, user=user, todoist_token="todoist"
        )
        task = await engine.create_task(account, content="migrated", labels=["a"])

        stored = await engine.store.get(Task, task.id)
        assert stored is not None
        assert stored.labels_json == ["a"]
        assert stored.sort_order > 2**31

        await get_engine().dispose()
        reset_engine_cache()
        _alembic_downgrade_base()
        assert not {"users", "tasks", "sync_cursors"} & _tables(db_path)
    finally:
        settings.database_url = old_db
