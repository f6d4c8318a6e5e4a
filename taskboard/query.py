"""
Task query service: facet filtering, display sort and facet counts.

Facets combine as a cross product. Every (project, assignee, status)
combination is one store query; the union is deduplicated by task id.
"""
from dataclasses import dataclass, field
from datetime import datetime, date, timezone
from typing import List, Optional, Dict, Any, Iterable

from .errors import ValidationError
from .schema import Task, STATUS_ORDER, normalize_status
from .store import TaskBoardStore


@dataclass
class TaskQuery:
    workspace_id: str
    project_ids: List[str] = field(default_factory=list)
    assignee_ids: List[str] = field(default_factory=list)
    statuses: List[str] = field(default_factory=list)
    due_date: Optional[str] = None

    def __post_init__(self):
        if not self.workspace_id:
            raise ValidationError("workspaceId required")
        self.statuses = _unique(normalize_status(s) for s in self.statuses if s)
        self.project_ids = _unique(p for p in self.project_ids if p)
        self.assignee_ids = _unique(a for a in self.assignee_ids if a)

    @classmethod
    def from_args(cls, args) -> "TaskQuery":
        """Build from a multidict of query parameters (repeated keys allowed)."""
        return cls(
            workspace_id=args.get("workspaceId", ""),
            project_ids=args.getlist("projectId"),
            assignee_ids=args.getlist("assigneeId"),
            statuses=args.getlist("status"),
            due_date=args.get("dueDate") or None,
        )

    def combinations(self):
        """Every facet combination; ``None`` means "don't filter on this facet"."""
        for project_id in self.project_ids or [None]:
            for assignee_id in self.assignee_ids or [None]:
                for status in self.statuses or [None]:
                    yield project_id, assignee_id, status


def _unique(values: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return list(seen)


def run_query(store: TaskBoardStore, query: TaskQuery, limit: int = 5000) -> List[Task]:
    """Fetch, deduplicate and sort the tasks matching ``query``."""
    found: Dict[str, Task] = {}
    for project_id, assignee_id, status in query.combinations():
        for task in store.list_tasks(
            query.workspace_id,
            project_id=project_id,
            assignee_id=assignee_id,
            status=status,
            due_date=query.due_date,
            limit=limit,
        ):
            found[task.id] = task
    return sort_tasks(found.values())


def sort_tasks(tasks: Iterable[Task]) -> List[Task]:
    """
    Positioned tasks first, ascending; then the rest by creation time.

    Positions from different buckets are compared as plain numbers here.
    Board columns re-sort per bucket, so this only affects flat list views.
    """
    def key(task: Task):
        if task.position is not None:
            return (0, task.position, _ts(task.created_at))
        return (1, 0, _ts(task.created_at))

    return sorted(tasks, key=key)


def _ts(value) -> float:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    return 0.0


def facet_counts(tasks: Iterable[Task]) -> Dict[str, Dict[str, int]]:
    """Per-status, per-project and per-assignee totals over a result set."""
    statuses = {status: 0 for status in STATUS_ORDER}
    projects: Dict[str, int] = {}
    assignees: Dict[str, int] = {}
    for task in tasks:
        statuses[task.status] = statuses.get(task.status, 0) + 1
        if task.project_id:
            projects[task.project_id] = projects.get(task.project_id, 0) + 1
        if task.assignee_id:
            assignees[task.assignee_id] = assignees.get(task.assignee_id, 0) + 1
    return {"statuses": statuses, "projects": projects, "assignees": assignees}


def _due(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        return None


def workspace_analytics(tasks: Iterable[Task], user_id: Optional[str] = None,
                        today: Optional[date] = None) -> Dict[str, Any]:
    """Home-page summary: totals, tasks assigned to the caller, completed and overdue."""
    today = today or datetime.now(timezone.utc).date()
    stats = {"total": 0, "assigned_to_you": 0, "completed": 0, "overdue": 0, "by_project": {}}
    for task in tasks:
        stats["total"] += 1
        if user_id and task.assignee_id == user_id:
            stats["assigned_to_you"] += 1
        if task.status == "done":
            stats["completed"] += 1
        else:
            due = _due(task.due_date)
            if due is not None and due < today:
                stats["overdue"] += 1
        if task.project_id:
            by_project = stats["by_project"]
            by_project[task.project_id] = by_project.get(task.project_id, 0) + 1
    return stats
