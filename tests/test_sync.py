"""
Tests for the optimistic reorder protocol.
"""
import pytest

from taskboard.board import Board, BoardStore
from taskboard.schema import ReorderUpdate, Task
from taskboard.sync import (
    FailureKind, GestureState, ReorderFailed, ReorderSynchronizer,
    TaskBoardSession, build_reorder_batch,
)


def _task(task_id, status="todo", position=None):
    return Task(id=task_id, workspace_id="W", project_id="P", title=task_id,
                status=status, position=position)


def _todo(n):
    return [_task(f"task{i}", position=i) for i in range(n)]


class Recorder:
    """Fake submit/notify pair that records calls and optionally fails."""

    def __init__(self, error=None):
        self.error = error
        self.batches = []
        self.notes = []

    def submit(self, workspace_id, updates):
        self.batches.append((workspace_id, list(updates)))
        if self.error is not None:
            raise self.error
        return [{"id": u.id, "ok": True} for u in updates]

    def notify(self, kind, message):
        self.notes.append((kind, message))


def _sync(tasks, recorder):
    store = BoardStore(tasks)
    return store, ReorderSynchronizer(store, recorder.submit, "W", notify=recorder.notify)


def _as_dicts(updates):
    return [u.to_dict() for u in updates]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Batch building
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_batch_reindexes_whole_column():
    board = Board.from_tasks([_task("a", position=4), _task("b", position=9)])
    assert build_reorder_batch(board, ["todo"]) == [
        ReorderUpdate("a", "todo", 0), ReorderUpdate("b", "todo", 1),
    ]


def test_batch_skips_empty_and_repeated_columns():
    board = Board.from_tasks(_todo(1))
    assert _as_dicts(build_reorder_batch(board, ["done", "todo", "todo"])) == [
        {"id": "task0", "status": "todo", "position": 0},
    ]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Gestures
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_reorder_within_column_batch():
    """Dragging index 1 to index 0 in a 3-item todo column"""
    rec = Recorder()
    store, sync = _sync(_todo(3), rec)

    result = sync.drop("todo", 1, "todo", 0)

    assert result.state is GestureState.CONFIRMED
    assert _as_dicts(result.updates) == [
        {"id": "task1", "status": "todo", "position": 0},
        {"id": "task0", "status": "todo", "position": 1},
        {"id": "task2", "status": "todo", "position": 2},
    ]
    assert rec.batches == [("W", result.updates)]
    assert store.board.layout()["todo"] == ["task1", "task0", "task2"]
    assert rec.notes == []


def test_move_to_empty_column_batch():
    """todo (3 items) -> done (empty) at index 0"""
    rec = Recorder()
    store, sync = _sync(_todo(3), rec)

    result = sync.drop("todo", 0, "done", 0)

    assert result.state is GestureState.CONFIRMED
    assert _as_dicts(result.updates) == [
        {"id": "task1", "status": "todo", "position": 0},
        {"id": "task2", "status": "todo", "position": 1},
        {"id": "task0", "status": "done", "position": 0},
    ]
    assert store.board.layout()["done"] == ["task0"]
    assert rec.notes == [("success", "Status updated")]


def test_moving_only_task_leaves_no_source_updates():
    rec = Recorder()
    _, sync = _sync(_todo(1), rec)
    result = sync.drop("todo", 0, "in-review", 0)
    assert _as_dicts(result.updates) == [{"id": "task0", "status": "in-review", "position": 0}]


def test_invalid_field_rolls_back():
    """Server rejects the position attribute: board reverts, failure is distinguishable"""
    rec = Recorder(ReorderFailed(FailureKind.INVALID_FIELD, "Unknown attribute: position"))
    store, sync = _sync(_todo(3), rec)
    before = store.board

    result = sync.drop("todo", 2, "done", 0)

    assert result.state is GestureState.ROLLED_BACK
    assert result.failure.kind is FailureKind.INVALID_FIELD
    assert store.board is before
    assert store.board.layout()["todo"] == ["task0", "task1", "task2"]
    assert rec.notes == [("invalid_field", "Unknown attribute: position")]
    assert sync.last_state is GestureState.ROLLED_BACK


@pytest.mark.parametrize("kind", [FailureKind.UNAUTHORIZED, FailureKind.GENERIC])
def test_other_failures_take_same_rollback_path(kind):
    rec = Recorder(ReorderFailed(kind))
    store, sync = _sync(_todo(2), rec)
    before = store.board

    result = sync.drop("todo", 0, "todo", 1)

    assert result.state is GestureState.ROLLED_BACK
    assert not result.ok
    assert store.board is before
    assert rec.notes[0][0] == kind.value


def test_unexpected_submit_error_is_generic_failure():
    rec = Recorder(ConnectionError("connection reset"))
    store, sync = _sync(_todo(2), rec)
    before = store.board

    result = sync.drop("todo", 0, "done", 0)

    assert result.failure.kind is FailureKind.GENERIC
    assert store.board is before
    assert rec.notes == [("generic", "connection reset")]


def test_drop_outside_or_in_place_submits_nothing():
    rec = Recorder()
    store, sync = _sync(_todo(2), rec)
    before = store.board

    assert sync.drop("todo", 0, None, None).state is GestureState.IDLE
    assert sync.drop("todo", 1, "todo", 1).state is GestureState.IDLE
    assert rec.batches == []
    assert store.board is before


def test_board_is_updated_before_submit():
    """Submit sees the optimistic board already installed"""
    seen = {}
    store = BoardStore(_todo(2))

    def submit(workspace_id, updates):
        seen["layout"] = store.board.layout()["todo"]
        return []

    ReorderSynchronizer(store, submit, "W").drop("todo", 0, "todo", 1)
    assert seen["layout"] == ["task1", "task0"]


def test_gestures_are_independent():
    """A failed gesture rolls back only its own change"""
    outcomes = iter([None, ReorderFailed(FailureKind.GENERIC)])
    store = BoardStore(_todo(3))

    def submit(workspace_id, updates):
        error = next(outcomes)
        if error:
            raise error

    sync = ReorderSynchronizer(store, submit, "W")
    assert sync.drop("todo", 0, "done", 0).state is GestureState.CONFIRMED
    after_first = store.board
    assert sync.drop("todo", 0, "done", 0).state is GestureState.ROLLED_BACK
    assert store.board is after_first
    assert store.board.layout()["done"] == ["task0"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Session
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_session_refresh_replaces_local_moves():
    rec = Recorder()
    session = TaskBoardSession("W", rec.submit, tasks=_todo(2), notify=rec.notify)
    session.drop("todo", 0, "done", 0)
    assert session.board.layout()["done"] == ["task0"]

    session.refresh([_task("task0", position=0), _task("task1", position=1)])
    assert session.board.layout()["todo"] == ["task0", "task1"]
    assert session.board.layout()["done"] == []


def test_out_of_range_source_ends_idle():
    """A drop whose source slot no longer exists is ignored"""
    rec = Recorder()
    store, sync = _sync(_todo(2), rec)
    before = store.board

    result = sync.drop("todo", 5, "done", 0)

    assert result.state is GestureState.IDLE
    assert sync.last_state is GestureState.IDLE
    assert rec.batches == []
    assert store.board is before
