"""
Client-side board state.

``Board`` is an immutable grouping of tasks by status column. Moves return a
new board and never touch the receiver, so any earlier board doubles as a
rollback snapshot. ``BoardStore`` is the single mutable cell a view session
holds; ``OptimisticTransaction`` applies a change to such a cell and either
keeps it or restores the previous value.
"""
import dataclasses
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union, Any

from .schema import Task, STATUS_ORDER, normalize_status

TaskLike = Union[Task, Dict[str, Any]]


def _as_task(item: TaskLike) -> Task:
    return item if isinstance(item, Task) else Task.from_dict(item)


class Board:
    """Tasks grouped by status, in display order. Every task sits in exactly one slot."""

    def __init__(self, columns: Dict[str, Tuple[Task, ...]]):
        self._columns = columns

    @classmethod
    def from_tasks(cls, tasks: Iterable[TaskLike]) -> "Board":
        """
        Bucket by normalized status, then order each column by position.

        Tasks without a position go after positioned ones; equal keys keep
        their fetch order.
        """
        buckets: Dict[str, List[Task]] = {status: [] for status in STATUS_ORDER}
        for item in tasks:
            task = _as_task(item)
            buckets.setdefault(normalize_status(task.status), []).append(task)

        def key(task: Task):
            return (task.position is None, task.position if task.position is not None else 0)

        return cls({status: tuple(sorted(items, key=key)) for status, items in buckets.items()})

    # ── Reads ────────────────────────────────────────────────────────────────

    @property
    def statuses(self) -> List[str]:
        return list(self._columns)

    def column(self, status: str) -> List[Task]:
        return list(self._columns.get(normalize_status(status), ()))

    def find(self, task_id: str) -> Optional[Tuple[str, int]]:
        for status, items in self._columns.items():
            for index, task in enumerate(items):
                if task.id == task_id:
                    return status, index
        return None

    def snapshot(self) -> "Board":
        """A value safe to restore later. Boards are immutable, so this is the board itself."""
        return self

    def flatten(self) -> List[Task]:
        return [task for items in self._columns.values() for task in items]

    def layout(self) -> Dict[str, List[str]]:
        """Task ids per column; handy for comparing boards."""
        return {status: [t.id for t in items] for status, items in self._columns.items()}

    def __len__(self) -> int:
        return sum(len(items) for items in self._columns.values())

    def __eq__(self, other) -> bool:
        if not isinstance(other, Board):
            return NotImplemented
        return self._columns == other._columns

    def __repr__(self) -> str:
        counts = ", ".join(f"{s}={len(items)}" for s, items in self._columns.items())
        return f"Board({counts})"

    # ── Moves ────────────────────────────────────────────────────────────────

    def move(self, from_status: str, from_index: int, to_status: str, to_index: int) -> "Board":
        from_status, to_status = normalize_status(from_status), normalize_status(to_status)
        if from_status == to_status:
            return self.move_within_column(from_status, from_index, to_index)
        return self.move_across_columns(from_status, from_index, to_status, to_index)

    def move_within_column(self, status: str, from_index: int, to_index: int) -> "Board":
        """Reinsert the item at ``from_index`` at ``to_index`` in the same column."""
        status = normalize_status(status)
        items = list(self._source(status, from_index))
        if from_index == to_index:
            return self
        moved = items.pop(from_index)
        items.insert(_clamp(to_index, len(items)), moved)
        return self._with({status: tuple(items)})

    def move_across_columns(self, from_status: str, from_index: int,
                            to_status: str, to_index: int) -> "Board":
        """Move an item to another column; its status becomes ``to_status``."""
        from_status, to_status = normalize_status(from_status), normalize_status(to_status)
        if from_status == to_status:
            return self.move_within_column(from_status, from_index, to_index)
        source = list(self._source(from_status, from_index))
        moved = source.pop(from_index)
        dest = list(self._columns.get(to_status, ()))
        dest.insert(_clamp(to_index, len(dest)), dataclasses.replace(moved, status=to_status))
        return self._with({from_status: tuple(source), to_status: tuple(dest)})

    def _source(self, status: str, index: int) -> Tuple[Task, ...]:
        items = self._columns.get(status)
        if items is None:
            raise IndexError(f"Unknown column: {status}")
        if not 0 <= index < len(items):
            raise IndexError(f"Index {index} out of range for column {status} ({len(items)} items)")
        return items

    def _with(self, changed: Dict[str, Tuple[Task, ...]]) -> "Board":
        columns = dict(self._columns)
        columns.update(changed)
        return Board(columns)


def _clamp(index: int, upper: int) -> int:
    return max(0, min(index, upper))


class BoardStore:
    """The current board of one view session."""

    def __init__(self, tasks: Iterable[TaskLike] = ()):
        self.board = Board.from_tasks(tasks)

    def get(self) -> Board:
        return self.board.snapshot()

    def set(self, board: Board) -> None:
        self.board = board

    def reset(self, tasks: Iterable[TaskLike]) -> Board:
        """Rebuild from an authoritative task list (e.g. after a refetch)."""
        self.board = Board.from_tasks(tasks)
        return self.board


class TransactionState(Enum):
    PENDING = "pending"
    APPLIED = "applied"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class OptimisticTransaction:
    """
    Apply a change to a state cell now; keep it on commit, restore it on rollback.

    Usable as a context manager: an exception inside the block rolls back and
    propagates, a clean exit commits.
    """

    def __init__(self, get_state: Callable[[], Any], set_state: Callable[[Any], None]):
        self._get = get_state
        self._set = set_state
        self.snapshot: Any = None
        self.state = TransactionState.PENDING

    def apply(self, mutation: Callable[[Any], Any]) -> Any:
        if self.state != TransactionState.PENDING:
            raise RuntimeError(f"Transaction already {self.state.value}")
        current = self._get()
        updated = mutation(current)
        self.snapshot = current
        self._set(updated)
        self.state = TransactionState.APPLIED
        return updated

    def commit(self) -> None:
        if self.state == TransactionState.APPLIED:
            self.snapshot = None
            self.state = TransactionState.COMMITTED

    def rollback(self) -> None:
        if self.state == TransactionState.APPLIED:
            self._set(self.snapshot)
            self.snapshot = None
            self.state = TransactionState.ROLLED_BACK

    def __enter__(self) -> "OptimisticTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.rollback()
        else:
            self.commit()
        return False
