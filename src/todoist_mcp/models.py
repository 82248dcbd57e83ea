# basedpyright: reportAssignmentType=false
# basedpyright: reportIncompatibleVariableOverride=false

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, Column, Text, UniqueConstraint
from sqlalchemy.types import JSON as SAJSON
from sqlmodel import Field, SQLModel

TODOIST_PROVIDER = "todoist"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    __tablename__ = "users"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True, min_length=1, max_length=64)
    # Bearer token MCP clients present on the HTTP binding.
    api_token: Optional[str] = Field(default=None, index=True, max_length=255)

    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utc_now, index=True)


class Account(SQLModel, table=True):
    __tablename__ = "accounts"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_accounts_user_id_provider"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="users.id")
    provider: str = Field(default=TODOIST_PROVIDER, max_length=32, index=True)
    api_token: str = Field(sa_column=Column(Text, nullable=False))

    is_enabled: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, index=True)


class MirroredRow(SQLModel):
    """Columns shared by every locally mirrored Todoist record."""

    user_id: int = Field(index=True, foreign_key="users.id")
    account_id: int = Field(index=True, foreign_key="accounts.id")

    # Assigned by Todoist on the first successful push (or present from a pull).
    remote_id: Optional[str] = Field(default=None, index=True, max_length=64)

    sort_order: int = Field(default=0, index=True, sa_type=BigInteger)
    # Soft delete; rows are never removed so remote ids stay stable.
    archived: bool = Field(default=False, index=True)

    pending_push: bool = Field(default=False, index=True)
    # sa_type rather than sa_column: a Column instance cannot be shared by several tables.
    pending_fields_json: list[str] = Field(default_factory=list, sa_type=SAJSON)
    # Sent as X-Request-Id on the create call so a retried create is deduplicated upstream.
    push_request_id: Optional[str] = Field(default=None, max_length=36)
    # Last Todoist error for a pending row; cleared once the row settles.
    push_error: Optional[str] = Field(default=None, max_length=500)

    remote_synced_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, index=True)


class Project(MirroredRow, table=True):
    __tablename__ = "projects"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        UniqueConstraint("account_id", "remote_id", name="uq_projects_account_id_remote_id"),
    )

    id: str = Field(primary_key=True, min_length=1, max_length=36)
    name: str = Field(min_length=1, max_length=200)
    color: Optional[str] = Field(default=None, max_length=32)
    parent_id: Optional[str] = Field(
        default=None, index=True, foreign_key="projects.id", max_length=36
    )
    is_favorite: bool = Field(default=False)


class Task(MirroredRow, table=True):
    __tablename__ = "tasks"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        UniqueConstraint("account_id", "remote_id", name="uq_tasks_account_id_remote_id"),
    )

    id: str = Field(primary_key=True, min_length=1, max_length=36)
    project_id: Optional[str] = Field(
        default=None, index=True, foreign_key="projects.id", max_length=36
    )
    parent_id: Optional[str] = Field(
        default=None, index=True, foreign_key="tasks.id", max_length=36
    )

    content: str = Field(min_length=1, max_length=500)
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    # Todoist priority: 1 (normal) .. 4 (urgent)
    priority: int = Field(default=1, index=True)
    labels_json: list[str] = Field(default_factory=list, sa_type=SAJSON)
    due_date: Optional[str] = Field(default=None, max_length=32)  # YYYY-MM-DD or datetime
    due_string: Optional[str] = Field(default=None, max_length=200)
    is_completed: bool = Field(default=False, index=True)


class Label(MirroredRow, table=True):
    __tablename__ = "labels"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]
    __table_args__ = (
        UniqueConstraint("account_id", "remote_id", name="uq_labels_account_id_remote_id"),
    )

    id: str = Field(primary_key=True, min_length=1, max_length=36)
    name: str = Field(min_length=1, max_length=200)
    color: Optional[str] = Field(default=None, max_length=32)
    is_favorite: bool = Field(default=False)


class SyncCursor(SQLModel, table=True):
    __tablename__ = "sync_cursors"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(index=True, unique=True, foreign_key="accounts.id")

    # Opaque Todoist sync token; None means no pull has completed yet.
    sync_token: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    last_synced_at: Optional[datetime] = Field(default=None, index=True)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now, index=True)
