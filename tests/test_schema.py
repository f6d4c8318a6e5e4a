"""
Tests for the data model: status normalization, position coercion, task (de)serialization.
"""
import pytest

from taskboard.schema import (
    MemberRole, ReorderUpdate, Task, TaskStatus, STATUS_ORDER,
    coerce_position, make_id, normalize_status,
)


def test_status_order():
    assert STATUS_ORDER == ["backlog", "todo", "in-progress", "in-review", "done"]


def test_normalize_status_folds_legacy_spelling():
    assert normalize_status("inprogress") == "in-progress"
    assert normalize_status("InProgress") == "in-progress"
    assert normalize_status("in-progress") == "in-progress"


def test_normalize_status_defaults_to_todo():
    assert normalize_status(None) == "todo"
    assert normalize_status("") == "todo"
    assert normalize_status("  ") == "todo"


def test_task_status_parse():
    assert TaskStatus.parse("inprogress") is TaskStatus.IN_PROGRESS
    with pytest.raises(ValueError):
        TaskStatus.parse("archived")


def test_coerce_position():
    assert coerce_position(3) == 3
    assert coerce_position(2.0) == 2
    assert coerce_position(2.5) is None
    assert coerce_position("1") is None
    assert coerce_position(True) is None
    assert coerce_position(None) is None


def test_task_normalizes_on_construction():
    """Legacy status and a junk position are cleaned up whatever the source"""
    task = Task(id="t1", workspace_id="W", project_id="P", title="x",
                status="inprogress", position="high")
    assert task.status == "in-progress"
    assert task.position is None
    assert not task.has_position


def test_task_from_wire_dict():
    task = Task.from_dict({
        "id": "t1", "workspaceId": "W", "projectId": "P", "title": "Write docs",
        "status": "inprogress", "position": 4, "assigneeId": "u1",
        "dueDate": "2026-01-31", "createdAt": "2026-01-01T10:00:00Z",
    })
    assert task.workspace_id == "W"
    assert task.status == "in-progress"
    assert task.position == 4
    assert task.assignee_id == "u1"
    assert task.created_at.year == 2026


def test_task_from_row_dict_without_position():
    """Rows from a schema without the position column still load"""
    task = Task.from_dict({
        "id": "t1", "workspace_id": "W", "project_id": "P", "title": "Legacy",
        "status": "todo", "created_at": "2025-05-01T00:00:00+00:00",
    })
    assert task.position is None
    assert task.project_id == "P"


def test_task_to_dict_uses_wire_names():
    task = Task(id="t1", workspace_id="W", project_id="P", title="x", position=0)
    data = task.to_dict()
    assert data["workspaceId"] == "W"
    assert data["projectId"] == "P"
    assert data["position"] == 0
    assert data["status"] == "todo"
    assert Task.from_dict(data).created_at == task.created_at


def test_reorder_update_omits_unset_fields():
    assert ReorderUpdate("t1", "todo", 0).to_dict() == {"id": "t1", "status": "todo", "position": 0}
    assert ReorderUpdate("t1").to_dict() == {"id": "t1"}


def test_member_role_from_str():
    assert MemberRole.from_str("admin") is MemberRole.ADMIN
    assert MemberRole.from_str("owner") is MemberRole.MEMBER


def test_make_id_is_prefixed_and_unique():
    ids = {make_id("task") for _ in range(50)}
    assert len(ids) == 50
    assert all(i.startswith("task-") for i in ids)
