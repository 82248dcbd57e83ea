"""init schema (users + accounts + mirrored todoist records + sync cursors)

Revision ID: 20261019_0001
Revises: None
Create Date: 2026-10-19 00:00:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy import inspect

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

MIRRORED_TABLES = ("projects", "tasks", "labels")


def _table_exists(table_name: str) -> bool:
    return table_name in inspect(op.get_bind()).get_table_names()


def _mirrored_columns() -> list[sa.Column]:
    return [
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
        sa.Column("remote_id", sa.String(length=64), nullable=True),
        sa.Column("sort_order", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("pending_push", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("pending_fields_json", sa.JSON(), nullable=False),
        sa.Column("push_request_id", sa.String(length=36), nullable=True),
        sa.Column("push_error", sa.String(length=500), nullable=True),
        sa.Column("remote_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _mirrored_indexes(table: str) -> None:
    for col in (
        "user_id",
        "account_id",
        "remote_id",
        "sort_order",
        "archived",
        "pending_push",
        "created_at",
        "updated_at",
    ):
        op.create_index(f"ix_{table}_{col}", table, [col], unique=False)


def upgrade() -> None:
    if not _table_exists("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("username", sa.String(length=64), nullable=False),
            sa.Column("api_token", sa.String(length=255), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_users_username", "users", ["username"], unique=True)
        op.create_index("ix_users_api_token", "users", ["api_token"], unique=False)
        op.create_index("ix_users_is_active", "users", ["is_active"], unique=False)
        op.create_index("ix_users_created_at", "users", ["created_at"], unique=False)

    if not _table_exists("accounts"):
        op.create_table(
            "accounts",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("provider", sa.String(length=32), nullable=False),
            sa.Column("api_token", sa.Text(), nullable=False),
            sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint("user_id", "provider", name="uq_accounts_user_id_provider"),
        )
        op.create_index("ix_accounts_user_id", "accounts", ["user_id"], unique=False)
        op.create_index("ix_accounts_provider", "accounts", ["provider"], unique=False)
        op.create_index("ix_accounts_is_enabled", "accounts", ["is_enabled"], unique=False)
        op.create_index("ix_accounts_created_at", "accounts", ["created_at"], unique=False)
        op.create_index("ix_accounts_updated_at", "accounts", ["updated_at"], unique=False)

    if not _table_exists("projects"):
        op.create_table(
            "projects",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            *_mirrored_columns(),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("color", sa.String(length=32), nullable=True),
            sa.Column(
                "parent_id", sa.String(length=36), sa.ForeignKey("projects.id"), nullable=True
            ),
            sa.Column("is_favorite", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.UniqueConstraint("account_id", "remote_id", name="uq_projects_account_id_remote_id"),
        )
        _mirrored_indexes("projects")
        op.create_index("ix_projects_parent_id", "projects", ["parent_id"], unique=False)

    if not _table_exists("tasks"):
        op.create_table(
            "tasks",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            *_mirrored_columns(),
            sa.Column(
                "project_id", sa.String(length=36), sa.ForeignKey("projects.id"), nullable=True
            ),
            sa.Column("parent_id", sa.String(length=36), sa.ForeignKey("tasks.id"), nullable=True),
            sa.Column("content", sa.String(length=500), nullable=False),
            sa.Column("description", sa.Text(), nullable=False, server_default=sa.text("''")),
            sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("1")),
            sa.Column("labels_json", sa.JSON(), nullable=False),
            sa.Column("due_date", sa.String(length=32), nullable=True),
            sa.Column("due_string", sa.String(length=200), nullable=True),
            sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.UniqueConstraint("account_id", "remote_id", name="uq_tasks_account_id_remote_id"),
        )
        _mirrored_indexes("tasks")
        op.create_index("ix_tasks_project_id", "tasks", ["project_id"], unique=False)
        op.create_index("ix_tasks_parent_id", "tasks", ["parent_id"], unique=False)
        op.create_index("ix_tasks_priority", "tasks", ["priority"], unique=False)
        op.create_index("ix_tasks_is_completed", "tasks", ["is_completed"], unique=False)

    if not _table_exists("labels"):
        op.create_table(
            "labels",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            *_mirrored_columns(),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("color", sa.String(length=32), nullable=True),
            sa.Column("is_favorite", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.UniqueConstraint("account_id", "remote_id", name="uq_labels_account_id_remote_id"),
        )
        _mirrored_indexes("labels")

    if not _table_exists("sync_cursors"):
        op.create_table(
            "sync_cursors",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
            sa.Column("sync_token", sa.Text(), nullable=True),
            sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index("ix_sync_cursors_account_id", "sync_cursors", ["account_id"], unique=True)
        op.create_index(
            "ix_sync_cursors_last_synced_at", "sync_cursors", ["last_synced_at"], unique=False
        )
        op.create_index("ix_sync_cursors_created_at", "sync_cursors", ["created_at"], unique=False)
        op.create_index("ix_sync_cursors_updated_at", "sync_cursors", ["updated_at"], unique=False)


def downgrade() -> None:
    for table in ("sync_cursors", *reversed(MIRRORED_TABLES), "accounts", "users"):
        if _table_exists(table):
            op.drop_table(table)
