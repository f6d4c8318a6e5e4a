"""
Reorder synchronizer: optimistic kanban moves with rollback on failure.

One drop gesture runs::

    IDLE -> COMPUTING -> APPLIED -> SUBMITTING -> CONFIRMED
                                              \\-> ROLLED_BACK

The board changes before the network call. The batch sent to the server
re-indexes every task in each touched column from 0, so a column's positions
are dense after any successful gesture. Gestures are independent: nothing is
queued, coalesced or cancelled, and the last write to reach the server wins.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional, Any

from .board import Board, BoardStore, OptimisticTransaction, TaskLike
from .schema import ReorderUpdate, normalize_status

logger = logging.getLogger(__name__)


class GestureState(Enum):
    IDLE = "idle"
    COMPUTING = "computing"
    APPLIED = "applied"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


class FailureKind(Enum):
    UNAUTHORIZED = "unauthorized"
    INVALID_FIELD = "invalid_field"
    GENERIC = "generic"


FAILURE_MESSAGES = {
    FailureKind.UNAUTHORIZED: "You are not a member of this workspace",
    FailureKind.INVALID_FIELD: "Task ordering is not configured on the server",
    FailureKind.GENERIC: "Failed to save order",
}


class ReorderFailed(Exception):
    """Raised by a submit function when the server did not accept a batch."""

    def __init__(self, kind: FailureKind = FailureKind.GENERIC, message: str = ""):
        self.kind = kind
        self.message = message or FAILURE_MESSAGES[kind]
        super().__init__(self.message)


# submit(workspace_id, updates) -> server response; raises ReorderFailed
SubmitFn = Callable[[str, List[ReorderUpdate]], Any]
# notify(kind, message); kind is a FailureKind value or "success"
NotifyFn = Callable[[str, str], None]


@dataclass
class GestureResult:
    state: GestureState
    updates: List[ReorderUpdate] = field(default_factory=list)
    failure: Optional[ReorderFailed] = None
    response: Any = None

    @property
    def ok(self) -> bool:
        return self.state in (GestureState.CONFIRMED, GestureState.IDLE)


def build_reorder_batch(board: Board, statuses: Iterable[str]) -> List[ReorderUpdate]:
    """Every task of each listed column, re-indexed densely from 0."""
    updates: List[ReorderUpdate] = []
    seen = set()
    for status in statuses:
        status = normalize_status(status)
        if status in seen:
            continue
        seen.add(status)
        for index, task in enumerate(board.column(status)):
            updates.append(ReorderUpdate(id=task.id, status=status, position=index))
    return updates


class ReorderSynchronizer:
    """Applies drop gestures to a BoardStore and persists them through ``submit``."""

    def __init__(self, store: BoardStore, submit: SubmitFn, workspace_id: str,
                 notify: Optional[NotifyFn] = None):
        self.store = store
        self.submit = submit
        self.workspace_id = workspace_id
        self.notify = notify
        self.last_state = GestureState.IDLE

    def drop(self, source_status: str, source_index: int,
             dest_status: Optional[str], dest_index: Optional[int]) -> GestureResult:
        """Handle a drag end. ``dest_status is None`` means dropped outside any column."""
        if dest_status is None or dest_index is None:
            return self._finish(GestureResult(GestureState.IDLE))
        source_status, dest_status = normalize_status(source_status), normalize_status(dest_status)
        if source_status == dest_status and source_index == dest_index:
            return self._finish(GestureResult(GestureState.IDLE))

        self.last_state = GestureState.COMPUTING
        touched = [source_status] if source_status == dest_status else [source_status, dest_status]

        tx = OptimisticTransaction(self.store.get, self.store.set)
        try:
            board = tx.apply(lambda b: b.move(source_status, source_index, dest_status, dest_index))
        except IndexError as e:
            # stale gesture against a board that changed underneath it
            logger.warning(f"Ignoring drop from {source_status}[{source_index}]: {e}")
            return self._finish(GestureResult(GestureState.IDLE))
        self.last_state = GestureState.APPLIED

        updates = build_reorder_batch(board, touched)
        self.last_state = GestureState.SUBMITTING
        try:
            response = self.submit(self.workspace_id, updates)
        except ReorderFailed as failure:
            tx.rollback()
            logger.warning(f"Reorder rolled back ({failure.kind.value}): {failure.message}")
            self._notify(failure.kind.value, failure.message)
            return self._finish(GestureResult(GestureState.ROLLED_BACK, updates, failure=failure))
        except Exception as e:
            tx.rollback()
            failure = ReorderFailed(FailureKind.GENERIC, str(e) or FAILURE_MESSAGES[FailureKind.GENERIC])
            logger.error(f"Reorder submit raised unexpectedly: {e}", exc_info=True)
            self._notify(failure.kind.value, failure.message)
            return self._finish(GestureResult(GestureState.ROLLED_BACK, updates, failure=failure))

        tx.commit()
        if len(touched) > 1:
            self._notify("success", "Status updated")
        return self._finish(GestureResult(GestureState.CONFIRMED, updates, response=response))

    def _finish(self, result: GestureResult) -> GestureResult:
        self.last_state = result.state
        return result

    def _notify(self, kind: str, message: str) -> None:
        if self.notify is not None:
            self.notify(kind, message)


class TaskBoardSession:
    """
    One board view: the board cell, its synchronizer and refetch handling.

    ``refresh`` replaces the board wholesale; a move still in flight may be
    visually superseded by it.
    """

    def __init__(self, workspace_id: str, submit: SubmitFn,
                 tasks: Iterable[TaskLike] = (), notify: Optional[NotifyFn] = None):
        self.workspace_id = workspace_id
        self.store = BoardStore(tasks)
        self.sync = ReorderSynchronizer(self.store, submit, workspace_id, notify=notify)

    @property
    def board(self) -> Board:
        return self.store.board

    def refresh(self, tasks: Iterable[TaskLike]) -> Board:
        return self.store.reset(tasks)

    def drop(self, source_status: str, source_index: int,
             dest_status: Optional[str], dest_index: Optional[int]) -> GestureResult:
        return self.sync.drop(source_status, source_index, dest_status, dest_index)
