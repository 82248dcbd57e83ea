from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ToolArguments(BaseModel):
    model_config = ConfigDict(extra="forbid")


def _required_text(v: str, name: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError(f"{name} must not be blank")
    return v


def _validate_due_date(v: str | None) -> str | None:
    if v is None:
        return None
    v = v.strip()
    if not v:
        return None
    try:
        if "T" in v:
            datetime.fromisoformat(v.replace("Z", "+00:00"))
        else:
            date.fromisoformat(v)
    except ValueError as e:
        raise ValueError("due_date must be YYYY-MM-DD or an ISO 8601 datetime") from e
    return v


class GetTasksArgs(ToolArguments):
    project_id: Optional[str] = Field(default=None, description="Only tasks in this project.")
    label: Optional[str] = Field(default=None, description="Only tasks carrying this label name.")
    include_completed: bool = Field(default=False, description="Include completed tasks.")
    limit: int = Field(default=100, ge=1, le=500, description="Maximum number of tasks.")


class CreateTaskArgs(ToolArguments):
    content: str = Field(min_length=1, max_length=500, description="Task title.")
    description: str = Field(default="", max_length=16384, description="Longer task notes.")
    project_id: Optional[str] = Field(default=None, description="Project id (local or Todoist).")
    parent_id: Optional[str] = Field(default=None, description="Parent task id (local or Todoist).")
    priority: int = Field(default=1, ge=1, le=4, description="1 (normal) to 4 (urgent).")
    due_date: Optional[str] = Field(default=None, description="YYYY-MM-DD or ISO datetime.")
    due_string: Optional[str] = Field(
        default=None, max_length=200, description='Natural language due date, e.g. "tomorrow".'
    )
    labels: list[str] = Field(default_factory=list, description="Label names.")

    @field_validator("content")
    @classmethod
    def _strip_content(cls, v: str) -> str:
        return _required_text(v, "content")

    @field_validator("due_date")
    @classmethod
    def _check_due_date(cls, v: str | None) -> str | None:
        return _validate_due_date(v)


class UpdateTaskArgs(ToolArguments):
    task_id: str = Field(min_length=1, description="Task id (local or Todoist).")
    content: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = Field(default=None, max_length=16384)
    project_id: Optional[str] = None
    parent_id: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=1, le=4)
    due_date: Optional[str] = None
    due_string: Optional[str] = Field(default=None, max_length=200)
    labels: Optional[list[str]] = None
    is_completed: Optional[bool] = None

    @field_validator("content")
    @classmethod
    def _strip_content(cls, v: str | None) -> str | None:
        return None if v is None else _required_text(v, "content")

    @field_validator("due_date")
    @classmethod
    def _check_due_date(cls, v: str | None) -> str | None:
        return _validate_due_date(v)

    def changes(self) -> dict[str, object]:
        """Fields the caller actually supplied, keyed by stored column name."""

        out: dict[str, object] = {}
        for name in self.model_fields_set:
            if name == "task_id":
                continue
            value = getattr(self, name)
            if name == "labels":
                out["labels_json"] = list(value or [])
            elif name in ("content", "priority", "is_completed", "description"):
                if value is not None:
                    out[name] = value
            else:
                out[name] = value
        return out


class TaskIdArgs(ToolArguments):
    task_id: str = Field(min_length=1, description="Task id (local or Todoist).")


class MoveTaskArgs(ToolArguments):
    task_id: str = Field(min_length=1, description="Task id (local or Todoist).")
    project_id: Optional[str] = Field(
        default=None, min_length=1, description="Target project; the task becomes top-level there."
    )
    parent_id: Optional[str] = Field(
        default=None, min_length=1, description="New parent task; the task joins its project."
    )

    @model_validator(mode="after")
    def _one_target(self) -> MoveTaskArgs:
        if (self.project_id is None) == (self.parent_id is None):
            raise ValueError("give exactly one of project_id or parent_id")
        return self


class GetProjectsArgs(ToolArguments):
    include_archived: bool = False


class CreateProjectArgs(ToolArguments):
    name: str = Field(min_length=1, max_length=200, description="Project name.")
    color: Optional[str] = Field(default=None, max_length=32, description="Todoist color name.")
    parent_id: Optional[str] = Field(default=None, description="Parent project id.")
    is_favorite: bool = False

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        return _required_text(v, "name")


class GetLabelsArgs(ToolArguments):
    pass


class SyncArgs(ToolArguments):
    full: bool = Field(
        default=False, description="Ignore the stored sync token and re-read everything."
    )
