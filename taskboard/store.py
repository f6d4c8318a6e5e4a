"""
Taskboard storage backend (SQLite).

Document-style CRUD and filtered listing for users, sessions, workspaces,
members, projects and tasks. Columns added after the first release (currently
``tasks.position``) are created by an additive migration; a store opened with
``migrate=False`` leaves an older schema as it is, and any attempt to read or
write a missing column raises ``UnknownAttributeError``.
"""
import re
import sqlite3
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Dict, Any, Iterator

from .errors import StoreError, UnknownAttributeError, DocumentNotFound
from .schema import (
    Task, User, Workspace, Member, Project, MemberRole,
    STATUS_SYNONYMS, normalize_status, parse_dt, utc_now,
)

logger = logging.getLogger(__name__)

_NO_SUCH_COLUMN = re.compile(r"no such column: (?:\w+\.)?(\w+)|has no column named (\w+)")

# Wire/snake field name -> tasks column
TASK_FIELDS = {
    "title": "title",
    "description": "description",
    "status": "status",
    "position": "position",
    "project_id": "project_id",
    "assignee_id": "assignee_id",
    "due_date": "due_date",
    "priority": "priority",
}


@contextmanager
def _connect(db_path: str) -> Iterator[sqlite3.Connection]:
    """Open a connection with FK enforcement and WAL mode; commit on success, always close."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        yield conn
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        match = _NO_SUCH_COLUMN.search(str(e))
        if match:
            raise UnknownAttributeError(match.group(1) or match.group(2)) from e
        raise StoreError(str(e)) from e
    finally:
        conn.close()


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _status_variants(status: str) -> List[str]:
    """The normalized status plus every legacy spelling that folds into it."""
    status = normalize_status(status)
    return [status] + [legacy for legacy, canonical in STATUS_SYNONYMS.items() if canonical == status]


class TaskBoardStore:
    """SQLite-backed document store."""

    def __init__(self, db_path: str = None, migrate: bool = True):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "taskboard" / "taskboard.db")
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema(migrate)

    def _init_schema(self, migrate: bool):
        """Create tables if they don't exist."""
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    name TEXT DEFAULT '',
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    token TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS workspaces (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    owner_id TEXT NOT NULL,
                    invite_code TEXT NOT NULL,
                    image_url TEXT DEFAULT '',
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS members (
                    id TEXT PRIMARY KEY,
                    workspace_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'MEMBER',
                    created_at TEXT NOT NULL,
                    UNIQUE (workspace_id, user_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    workspace_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    image_url TEXT DEFAULT '',
                    created_at TEXT NOT NULL
                )
            """)
            # position is added by _migrate_columns
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    workspace_id TEXT NOT NULL,
                    project_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'todo',
                    assignee_id TEXT,
                    due_date TEXT,
                    priority TEXT DEFAULT 'medium',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            if migrate:
                self._migrate_columns(conn)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_members_user ON members(user_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_projects_workspace ON projects(workspace_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_bucket ON tasks(workspace_id, status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id)")

    def _migrate_columns(self, conn):
        """Add new columns to existing databases (safe: skips columns already present)."""
        new_columns = [
            ("position", "INTEGER"),
        ]
        existing = self._columns(conn, "tasks")
        for col_name, col_type in new_columns:
            if col_name not in existing:
                conn.execute(f"ALTER TABLE tasks ADD COLUMN {col_name} {col_type}")
                logger.info(f"Added tasks.{col_name} column")

    @staticmethod
    def _columns(conn, table: str) -> set:
        return {row["name"] for row in conn.execute(f"PRAGMA table_info({table})")}

    def has_task_attribute(self, name: str) -> bool:
        with _connect(self.db_path) as conn:
            return name in self._columns(conn, "tasks")

    # ── Tasks ────────────────────────────────────────────────────────────────

    def create_task(self, task: Task) -> Task:
        """Insert a task. ``position`` is only written when set."""
        values = {
            "id": task.id,
            "workspace_id": task.workspace_id,
            "project_id": task.project_id,
            "title": task.title,
            "description": task.description or "",
            "status": normalize_status(task.status),
            "assignee_id": task.assignee_id,
            "due_date": task.due_date,
            "priority": task.priority,
            "created_at": _iso(task.created_at),
            "updated_at": _iso(task.updated_at),
        }
        if task.position is not None:
            values["position"] = task.position
        with _connect(self.db_path) as conn:
            self._check_task_columns(conn, values)
            cols = ", ".join(values)
            marks = ", ".join("?" for _ in values)
            conn.execute(f"INSERT INTO tasks ({cols}) VALUES ({marks})", tuple(values.values()))
        return self.get_task(task.id)

    def get_task(self, task_id: str) -> Optional[Task]:
        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return self._row_to_task(row) if row else None

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> Task:
        """Apply a partial update. Raises DocumentNotFound / UnknownAttributeError."""
        values: Dict[str, Any] = {}
        for name, value in fields.items():
            column = TASK_FIELDS.get(name)
            if column is None:
                raise UnknownAttributeError(name)
            values[column] = normalize_status(value) if column == "status" else value
        values["updated_at"] = _iso(utc_now())

        with _connect(self.db_path) as conn:
            self._check_task_columns(conn, values)
            assignments = ", ".join(f"{col} = ?" for col in values)
            cur = conn.execute(
                f"UPDATE tasks SET {assignments} WHERE id = ?",
                tuple(values.values()) + (task_id,),
            )
            if cur.rowcount == 0:
                raise DocumentNotFound("task", task_id)
        return self.get_task(task_id)

    def delete_task(self, task_id: str) -> None:
        with _connect(self.db_path) as conn:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            if cur.rowcount == 0:
                raise DocumentNotFound("task", task_id)

    def list_tasks(
        self,
        workspace_id: str,
        project_id: Optional[str] = None,
        assignee_id: Optional[str] = None,
        status: Optional[str] = None,
        due_date: Optional[str] = None,
        order: str = "desc",
        limit: int = 5000,
    ) -> List[Task]:
        """List tasks in a workspace, each filter an equality match, ordered by creation time."""
        clauses = ["workspace_id = ?"]
        params: List[Any] = [workspace_id]
        if project_id:
            clauses.append("project_id = ?")
            params.append(project_id)
        if assignee_id:
            clauses.append("assignee_id = ?")
            params.append(assignee_id)
        if status:
            variants = _status_variants(status)
            clauses.append(f"status IN ({', '.join('?' for _ in variants)})")
            params.extend(variants)
        if due_date:
            clauses.append("due_date = ?")
            params.append(due_date)
        direction = "ASC" if order.lower() == "asc" else "DESC"
        params.append(limit)
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT * FROM tasks WHERE {' AND '.join(clauses)} "
                f"ORDER BY created_at {direction}, rowid {direction} LIMIT ?",
                tuple(params),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def bucket_positions(self, workspace_id: str, status: str) -> List[Any]:
        """Raw ``position`` values in one (workspace, status) bucket."""
        variants = _status_variants(status)
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT position FROM tasks WHERE workspace_id = ? "
                f"AND status IN ({', '.join('?' for _ in variants)})",
                (workspace_id, *variants),
            ).fetchall()
        return [row["position"] for row in rows]

    def _check_task_columns(self, conn, values: Dict[str, Any]):
        missing = [col for col in values if col not in self._columns(conn, "tasks")]
        if missing:
            raise UnknownAttributeError(missing[0])

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task.from_dict(dict(row))

    # ── Users & sessions ─────────────────────────────────────────────────────

    def create_user(self, user: User) -> User:
        with _connect(self.db_path) as conn:
            conn.execute(
                "INSERT INTO users (id, email, name, password_hash, created_at) VALUES (?, ?, ?, ?, ?)",
                (user.id, user.email.lower(), user.name, user.password_hash, _iso(user.created_at)),
            )
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email.lower(),)).fetchone()
        return self._row_to_user(row) if row else None

    def create_session(self, token: str, user_id: str, expires_at) -> None:
        with _connect(self.db_path) as conn:
            conn.execute(
                "INSERT INTO sessions (token, user_id, expires_at) VALUES (?, ?, ?)",
                (token, user_id, _iso(expires_at)),
            )

    def get_session_user(self, token: str) -> Optional[User]:
        """Resolve a session token to its user; expired sessions are deleted."""
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT s.expires_at, u.* FROM sessions s JOIN users u ON u.id = s.user_id WHERE s.token = ?",
                (token,),
            ).fetchone()
            if not row:
                return None
            expires_at = parse_dt(row["expires_at"])
            if expires_at is None or expires_at <= utc_now():
                conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
                return None
        return self._row_to_user(row)

    def delete_session(self, token: str) -> None:
        with _connect(self.db_path) as conn:
            conn.execute("DELETE FROM sessions WHERE token = ?", (token,))

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            name=row["name"] or "",
            password_hash=row["password_hash"],
            created_at=parse_dt(row["created_at"]) or utc_now(),
        )

    # ── Workspaces & members ─────────────────────────────────────────────────

    def create_workspace(self, workspace: Workspace, owner: Member) -> Workspace:
        """Create a workspace and its first (admin) member in one transaction."""
        with _connect(self.db_path) as conn:
            conn.execute(
                "INSERT INTO workspaces (id, name, owner_id, invite_code, image_url, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (workspace.id, workspace.name, workspace.owner_id, workspace.invite_code,
                 workspace.image_url, _iso(workspace.created_at)),
            )
            self._insert_member(conn, owner)
        return workspace

    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM workspaces WHERE id = ?", (workspace_id,)).fetchone()
        return self._row_to_workspace(row) if row else None

    def list_workspaces_for_user(self, user_id: str) -> List[Workspace]:
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT w.* FROM workspaces w JOIN members m ON m.workspace_id = w.id "
                "WHERE m.user_id = ? ORDER BY w.created_at DESC",
                (user_id,),
            ).fetchall()
        return [self._row_to_workspace(row) for row in rows]

    def update_workspace(self, workspace_id: str, fields: Dict[str, Any]) -> Workspace:
        allowed = {"name", "image_url", "invite_code"}
        self._update_row("workspaces", "workspace", workspace_id, fields, allowed)
        return self.get_workspace(workspace_id)

    def delete_workspace(self, workspace_id: str) -> None:
        """Delete a workspace with its members, projects and tasks."""
        with _connect(self.db_path) as conn:
            conn.execute("DELETE FROM tasks WHERE workspace_id = ?", (workspace_id,))
            conn.execute("DELETE FROM projects WHERE workspace_id = ?", (workspace_id,))
            conn.execute("DELETE FROM members WHERE workspace_id = ?", (workspace_id,))
            cur = conn.execute("DELETE FROM workspaces WHERE id = ?", (workspace_id,))
            if cur.rowcount == 0:
                raise DocumentNotFound("workspace", workspace_id)

    def list_workspace_ids(self) -> List[str]:
        with _connect(self.db_path) as conn:
            rows = conn.execute("SELECT id FROM workspaces ORDER BY created_at").fetchall()
        return [row["id"] for row in rows]

    def add_member(self, member: Member) -> Member:
        with _connect(self.db_path) as conn:
            self._insert_member(conn, member)
        return member

    @staticmethod
    def _insert_member(conn, member: Member):
        conn.execute(
            "INSERT INTO members (id, workspace_id, user_id, role, created_at) VALUES (?, ?, ?, ?, ?)",
            (member.id, member.workspace_id, member.user_id, member.role.value, _iso(member.created_at)),
        )

    def get_member(self, workspace_id: str, user_id: str) -> Optional[Member]:
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM members WHERE workspace_id = ? AND user_id = ?",
                (workspace_id, user_id),
            ).fetchone()
        return self._row_to_member(row) if row else None

    def get_member_by_id(self, member_id: str) -> Optional[Member]:
        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM members WHERE id = ?", (member_id,)).fetchone()
        return self._row_to_member(row) if row else None

    def list_members(self, workspace_id: str) -> List[Member]:
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM members WHERE workspace_id = ? ORDER BY created_at",
                (workspace_id,),
            ).fetchall()
        return [self._row_to_member(row) for row in rows]

    def update_member_role(self, member_id: str, role: MemberRole) -> Member:
        self._update_row("members", "member", member_id, {"role": role.value}, {"role"})
        return self.get_member_by_id(member_id)

    def delete_member(self, member_id: str) -> None:
        with _connect(self.db_path) as conn:
            cur = conn.execute("DELETE FROM members WHERE id = ?", (member_id,))
            if cur.rowcount == 0:
                raise DocumentNotFound("member", member_id)

    @staticmethod
    def _row_to_workspace(row: sqlite3.Row) -> Workspace:
        return Workspace(
            id=row["id"],
            name=row["name"],
            owner_id=row["owner_id"],
            invite_code=row["invite_code"],
            image_url=row["image_url"] or "",
            created_at=parse_dt(row["created_at"]) or utc_now(),
        )

    @staticmethod
    def _row_to_member(row: sqlite3.Row) -> Member:
        return Member(
            id=row["id"],
            workspace_id=row["workspace_id"],
            user_id=row["user_id"],
            role=MemberRole.from_str(row["role"]),
            created_at=parse_dt(row["created_at"]) or utc_now(),
        )

    # ── Projects ─────────────────────────────────────────────────────────────

    def create_project(self, project: Project) -> Project:
        with _connect(self.db_path) as conn:
            conn.execute(
                "INSERT INTO projects (id, workspace_id, name, image_url, created_at) VALUES (?, ?, ?, ?, ?)",
                (project.id, project.workspace_id, project.name, project.image_url, _iso(project.created_at)),
            )
        return project

    def get_project(self, project_id: str) -> Optional[Project]:
        with _connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        return self._row_to_project(row) if row else None

    def list_projects(self, workspace_id: str) -> List[Project]:
        with _connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM projects WHERE workspace_id = ? ORDER BY created_at DESC, rowid DESC",
                (workspace_id,),
            ).fetchall()
        return [self._row_to_project(row) for row in rows]

    def update_project(self, project_id: str, fields: Dict[str, Any]) -> Project:
        self._update_row("projects", "project", project_id, fields, {"name", "image_url"})
        return self.get_project(project_id)

    def delete_project(self, project_id: str) -> None:
        """Delete a project and its tasks."""
        with _connect(self.db_path) as conn:
            conn.execute("DELETE FROM tasks WHERE project_id = ?", (project_id,))
            cur = conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            if cur.rowcount == 0:
                raise DocumentNotFound("project", project_id)

    @staticmethod
    def _row_to_project(row: sqlite3.Row) -> Project:
        return Project(
            id=row["id"],
            workspace_id=row["workspace_id"],
            name=row["name"],
            image_url=row["image_url"] or "",
            created_at=parse_dt(row["created_at"]) or utc_now(),
        )

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _update_row(self, table: str, collection: str, doc_id: str,
                    fields: Dict[str, Any], allowed: set) -> None:
        for name in fields:
            if name not in allowed:
                raise UnknownAttributeError(name)
        if not fields:
            return
        assignments = ", ".join(f"{col} = ?" for col in fields)
        with _connect(self.db_path) as conn:
            cur = conn.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ?",
                tuple(fields.values()) + (doc_id,),
            )
            if cur.rowcount == 0:
                raise DocumentNotFound(collection, doc_id)
