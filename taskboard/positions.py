"""
Position assignment for new tasks.

A new task goes to the end of its (workspace, status) column: ``max + 1`` over
the positions already in the bucket, or 0 for an empty bucket. Two creators
racing on the same bucket can compute the same value; ties are left alone and
sorted by creation time until the next reorder rewrites the column.

Assignment is best-effort. If the store has no ``position`` attribute the task
is created without one and sorts by creation time.
"""
import logging
from typing import Optional

from .errors import UnknownAttributeError
from .schema import Task, coerce_position, normalize_status
from .store import TaskBoardStore

logger = logging.getLogger(__name__)


def next_position(store: TaskBoardStore, workspace_id: str, status: str) -> Optional[int]:
    """End-of-column position for the bucket, or None if positions are unsupported."""
    try:
        raw = store.bucket_positions(workspace_id, normalize_status(status))
    except UnknownAttributeError as e:
        logger.warning(f"Could not compute default position for {workspace_id}/{status}: {e}")
        return None

    highest = -1
    for value in raw:
        pos = coerce_position(value)
        if pos is not None and pos > highest:
            highest = pos
    return highest + 1


def assign_position(store: TaskBoardStore, task: Task) -> Task:
    """Fill ``task.position`` in place when the caller did not supply one."""
    if task.position is None:
        task.position = next_position(store, task.workspace_id, task.status)
    return task


def create_with_position(store: TaskBoardStore, task: Task) -> Task:
    """
    Create a task at the end of its column.

    Creation must not fail because ordering metadata could not be attached:
    if the store rejects ``position`` the insert is retried without it.
    """
    assign_position(store, task)
    try:
        return store.create_task(task)
    except UnknownAttributeError as e:
        if e.attribute != "position":
            raise
        logger.warning(f"Store rejected position for task {task.id}; creating without it")
        task.position = None
        return store.create_task(task)
