from __future__ import annotations

from todoist_mcp.domain.mirror_merge import (
    NO_DUE_DATE,
    label_payload,
    merge_pending_fields,
    plan_project_push,
    plan_task_push,
    project_fields_from_remote,
    project_payload,
    task_fields_from_remote,
)
from todoist_mcp.integrations.todoist_api import RemoteProject, RemoteTask
from todoist_mcp.models import Label, Project, Task


def _task(**overrides: object) -> Task:
    values: dict[str, object] = {
        "id": "local-1",
        "user_id": 1,
        "account_id": 1,
        "content": "write tests",
        "pending_push": True,
    }
    values.update(overrides)
    return Task(**values)


def _kinds(actions) -> list[str]:
    return [a.kind for a in actions]


def test_new_task_is_created_with_resolved_refs():
    task = _task(due_date="2026-10-20T09:00:00", labels_json=["x"], priority=2)

    actions = plan_task_push(task, project_remote_id="rp", parent_remote_id=None)

    assert _kinds(actions) == ["create"]
    assert actions[0].payload == {
        "content": "write tests",
        "description": "",
        "priority": 2,
        "labels": ["x"],
        "due_datetime": "2026-10-20T09:00:00",
        "project_id": "rp",
    }


def test_new_completed_task_is_created_then_closed():
    actions = plan_task_push(
        _task(is_completed=True), project_remote_id=None, parent_remote_id=None
    )

    assert _kinds(actions) == ["create", "close"]


def test_task_deleted_before_first_push_only_settles():
    actions = plan_task_push(_task(archived=True), project_remote_id=None, parent_remote_id=None)

    assert _kinds(actions) == ["settle"]


def test_existing_task_sends_only_pending_fields():
    task = _task(
        remote_id="r1",
        content="new title",
        priority=4,
        pending_fields_json=["content", "is_completed"],
        is_completed=False,
    )

    actions = plan_task_push(task, project_remote_id=None, parent_remote_id=None)

    assert _kinds(actions) == ["update", "reopen"]
    assert actions[0].payload == {"content": "new title"}


def test_existing_archived_task_is_deleted():
    task = _task(remote_id="r1", archived=True, pending_fields_json=["archived"])

    assert _kinds(plan_task_push(task, project_remote_id=None, parent_remote_id=None)) == ["delete"]


def test_existing_task_with_nothing_to_send_settles():
    task = _task(remote_id="r1", pending_fields_json=[])

    assert _kinds(plan_task_push(task, project_remote_id=None, parent_remote_id=None)) == ["settle"]


def test_remote_task_fields_settle_pending_state_and_keep_order():
    remote = RemoteTask(remote_id="r1", content="", is_deleted=True, labels=("a",))

    fields = task_fields_from_remote(remote, current_sort_order=42)

    assert fields["content"] == "(untitled)"
    assert fields["archived"] is True
    assert fields["sort_order"] == 42
    assert fields["labels_json"] == ["a"]
    assert fields["pending_push"] is False
    assert fields["pending_fields_json"] == []
    assert fields["push_request_id"] is None

    ordered = task_fields_from_remote(
        RemoteTask(remote_id="r1", content="x", order=3), current_sort_order=42
    )
    assert ordered["sort_order"] == 3


def test_archived_remote_project_is_archived_locally():
    fields = project_fields_from_remote(
        RemoteProject(remote_id="p1", name="Old", is_archived=True), current_sort_order=None
    )

    assert fields["archived"] is True
    assert fields["sort_order"] == 0


def test_project_payload_skips_empty_values():
    project = Project(id="p", user_id=1, account_id=1, name="Home", color=None)

    payload = project_payload(
        project, fields=["name", "color", "parent_id"], parent_remote_id=None
    )

    assert payload == {"name": "Home"}


def test_merge_pending_fields_keeps_first_seen_order():
    assert merge_pending_fields(["content"], ["priority", "content", "due_date"]) == [
        "content",
        "priority",
        "due_date",
    ]


def test_cleared_due_date_is_sent_as_no_date():
    task = _task(remote_id="r1", due_date=None, due_string=None, pending_fields_json=["due_date"])

    actions = plan_task_push(task, project_remote_id="rp", parent_remote_id=None)

    assert _kinds(actions) == ["update"]
    assert actions[0].payload == {"due_string": NO_DUE_DATE}


def test_both_due_fields_pending_send_one_due_value():
    task = _task(
        remote_id="r1",
        due_date="2026-11-01",
        due_string="every monday",
        pending_fields_json=["due_string", "due_date"],
    )

    actions = plan_task_push(task, project_remote_id=None, parent_remote_id=None)

    assert actions[0].payload == {"due_date": "2026-11-01"}


def test_project_change_is_a_move_not_an_update():
    task = _task(
        remote_id="r1",
        project_id="local-p",
        content="renamed",
        pending_fields_json=["content", "project_id", "parent_id"],
    )

    actions = plan_task_push(task, project_remote_id="rp2", parent_remote_id=None)

    assert _kinds(actions) == ["update", "move"]
    assert actions[0].payload == {"content": "renamed"}
    assert actions[1].payload == {"project_id": "rp2"}


def test_new_parent_is_a_move_under_that_task():
    task = _task(
        remote_id="r1", project_id="local-p", parent_id="local-t", pending_fields_json=["parent_id"]
    )

    actions = plan_task_push(task, project_remote_id="rp", parent_remote_id="rt")

    assert _kinds(actions) == ["move"]
    assert actions[0].payload == {"parent_id": "rt"}


def test_unparented_task_moves_to_top_of_its_project():
    task = _task(remote_id="r1", project_id="local-p", pending_fields_json=["parent_id"])

    actions = plan_task_push(task, project_remote_id="rp", parent_remote_id=None)

    assert [(a.kind, a.payload) for a in actions] == [("move", {"project_id": "rp"})]


def test_move_to_unpushed_project_is_deferred_not_dropped():
    task = _task(remote_id="r1", project_id="local-p", pending_fields_json=["project_id"])

    actions = plan_task_push(task, project_remote_id=None, parent_remote_id=None)

    assert [(a.kind, a.payload) for a in actions] == [("defer", {"fields": ["project_id"]})]


def test_pushed_project_moved_to_top_level():
    project = Project(
        id="p",
        user_id=1,
        account_id=1,
        name="Sub",
        remote_id="rp",
        pending_fields_json=["parent_id"],
    )

    actions = plan_project_push(project, parent_remote_id=None)

    assert [(a.kind, a.payload) for a in actions] == [("move", {"parent_id": None})]


def test_project_move_under_unpushed_parent_is_deferred():
    project = Project(
        id="p",
        user_id=1,
        account_id=1,
        name="Sub",
        remote_id="rp",
        parent_id="local-parent",
        pending_fields_json=["name", "parent_id"],
    )

    actions = plan_project_push(project, parent_remote_id=None)

    assert _kinds(actions) == ["update", "defer"]
    assert actions[0].payload == {"name": "Sub"}
    assert actions[1].payload == {"fields": ["parent_id"]}


def test_cleared_color_is_reset_on_update_only():
    project = Project(
        id="p", user_id=1, account_id=1, name="Home", remote_id="rp", pending_fields_json=["color"]
    )
    label = Label(id="l", user_id=1, account_id=1, name="home", color=None)

    actions = plan_project_push(project, parent_remote_id=None)

    assert actions[0].payload == {"color": "charcoal"}
    assert label_payload(label, fields=["color"], for_create=False) == {"color": "charcoal"}
    assert label_payload(label, fields=["color"]) == {}
