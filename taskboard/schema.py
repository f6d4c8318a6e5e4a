"""
Taskboard data model.

Workspaces own projects and members; projects own tasks. Tasks are shown on a
kanban board grouped by status, ordered inside each (workspace, status) bucket
by an integer ``position``.

Records coming out of the store or off the wire go through ``from_dict``,
which is the single normalization point: legacy status spellings are folded
and unusable positions become ``None``.
"""
import time
import uuid
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any


class TaskStatus(Enum):
    """Board columns, in display order."""
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    IN_REVIEW = "in-review"
    DONE = "done"

    @classmethod
    def parse(cls, value: Any) -> "TaskStatus":
        """Normalize and parse. Raises ValueError for unknown statuses."""
        return cls(normalize_status(value))


STATUS_ORDER: List[str] = [s.value for s in TaskStatus]

# Legacy spellings still present in older records
STATUS_SYNONYMS = {
    "inprogress": TaskStatus.IN_PROGRESS.value,
}


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MemberRole(Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"

    @classmethod
    def from_str(cls, value: str) -> "MemberRole":
        try:
            return cls[str(value).upper()]
        except KeyError:
            return cls.MEMBER


def normalize_status(value: Any) -> str:
    """Fold legacy synonyms; empty or missing means ``todo``."""
    text = str(value if value is not None else "").strip().lower()
    if not text:
        return TaskStatus.TODO.value
    return STATUS_SYNONYMS.get(text, text)


def coerce_position(value: Any) -> Optional[int]:
    """Return an integer position, or None when the value is not a usable number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def make_id(prefix: str) -> str:
    """Sortable unique ID (ms-precision timestamp + random hex)."""
    ts = int(time.time() * 1000)
    rand = uuid.uuid4().hex[:8]
    return f"{prefix}-{ts}-{rand}"


def parse_dt(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime) else value


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key wins; lets from_dict read wire (camelCase) and row (snake_case) shapes."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class Task:
    """A task card. ``position`` is only meaningful within its (workspace, status) bucket."""

    id: str
    workspace_id: str
    project_id: str
    title: str
    status: str = TaskStatus.TODO.value
    position: Optional[int] = None

    description: str = ""
    assignee_id: Optional[str] = None
    due_date: Optional[str] = None
    priority: str = Priority.MEDIUM.value

    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        self.status = normalize_status(self.status)
        self.position = coerce_position(self.position)

    @property
    def has_position(self) -> bool:
        return self.position is not None

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation (camelCase, as the API returns it)."""
        return {
            "id": self.id,
            "workspaceId": self.workspace_id,
            "projectId": self.project_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "position": self.position,
            "assigneeId": self.assignee_id,
            "dueDate": self.due_date,
            "priority": self.priority,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Build a task from a wire dict or a store row, normalizing on the way in."""
        return cls(
            id=str(_pick(data, "id", "$id", default="")),
            workspace_id=_pick(data, "workspaceId", "workspace_id", default=""),
            project_id=_pick(data, "projectId", "project_id", default=""),
            title=_pick(data, "title", default=""),
            status=_pick(data, "status", default=""),
            position=_pick(data, "position"),
            description=_pick(data, "description", default=""),
            assignee_id=_pick(data, "assigneeId", "assignee_id"),
            due_date=_pick(data, "dueDate", "due_date"),
            priority=_pick(data, "priority", default=Priority.MEDIUM.value),
            created_at=parse_dt(_pick(data, "createdAt", "created_at", "$createdAt")) or utc_now(),
            updated_at=parse_dt(_pick(data, "updatedAt", "updated_at", "$updatedAt")) or utc_now(),
        )


@dataclass
class ReorderUpdate:
    """One entry of a reorder batch."""
    id: str
    status: Optional[str] = None
    position: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id}
        if self.status is not None:
            data["status"] = self.status
        if self.position is not None:
            data["position"] = self.position
        return data


@dataclass
class User:
    id: str
    email: str
    name: str = ""
    password_hash: str = field(default="", repr=False)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        # password_hash never leaves the server
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class Workspace:
    id: str
    name: str
    owner_id: str
    invite_code: str
    image_url: str = ""
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "userId": self.owner_id,
            "inviteCode": self.invite_code,
            "imageUrl": self.image_url,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class Member:
    id: str
    workspace_id: str
    user_id: str
    role: MemberRole = MemberRole.MEMBER
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_admin(self) -> bool:
        return self.role == MemberRole.ADMIN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workspaceId": self.workspace_id,
            "userId": self.user_id,
            "role": self.role.value,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class Project:
    id: str
    workspace_id: str
    name: str
    image_url: str = ""
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workspaceId": self.workspace_id,
            "name": self.name,
            "imageUrl": self.image_url,
            "createdAt": _iso(self.created_at),
        }

