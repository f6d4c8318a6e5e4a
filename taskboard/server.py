#!/usr/bin/env python3
"""
Taskboard Server
----------------
JSON API for workspaces, members, projects and tasks, backed by the SQLite
document store. Handlers validate input, check workspace membership and
forward to the store; store exceptions are mapped to the error taxonomy in
``taskboard.errors`` and never reach the client raw.

Usage:
    taskboard-server --port 3000 --db ./taskboard.db
    # or
    python -m taskboard.server

API:
    POST   /api/auth/register | /api/auth/login | /api/auth/logout
    GET    /api/auth/current
    GET    /api/workspaces                       → caller's workspaces
    POST   /api/workspaces                       → { name, imageUrl? }
    GET    /api/workspaces/<id>
    PATCH  /api/workspaces/<id>                  (admin)
    DELETE /api/workspaces/<id>                  (admin)
    POST   /api/workspaces/<id>/reset-invite-code (admin)
    POST   /api/workspaces/<id>/join             → { code }
    GET    /api/workspaces/<id>/analytics
    GET    /api/members?workspaceId=
    PATCH  /api/members/<id>                     → { role } (admin)
    DELETE /api/members/<id>                     (admin or self)
    GET    /api/projects?workspaceId=
    POST   /api/projects                         → { name, workspaceId, imageUrl? }
    GET|PATCH|DELETE /api/projects/<id>
    GET    /api/tasks?workspaceId=&projectId=*&assigneeId=*&status=*&dueDate=
    POST   /api/tasks
    POST   /api/tasks/reorder                    → { workspaceId, updates: [{id, status?, position?}] }
    GET|PUT|DELETE /api/tasks/<id>?workspaceId=
    GET    /health
"""

import logging
import sys
from datetime import date
from typing import Any, Dict, Optional

from flask import Flask, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from .auth import (
    generate_invite_code, get_member, hash_password, login_required,
    require_admin, require_member, start_session, verify_password,
)
from .config import Config
from .errors import (
    DocumentNotFound, GenericError, InvalidField, NotFound, StoreError,
    TaskBoardError, Unauthorized, UnknownAttributeError, ValidationError,
)
from .positions import create_with_position
from .query import TaskQuery, facet_counts, run_query, workspace_analytics
from .schema import (
    Member, MemberRole, Priority, Project, STATUS_ORDER, Task, User, Workspace,
    coerce_position, make_id, normalize_status,
)
from .store import TaskBoardStore

logger = logging.getLogger(__name__)

PRIORITIES = {p.value for p in Priority}


# ── Helpers ──────────────────────────────────────────────────────────────────

def _store() -> TaskBoardStore:
    return current_app.config["STORE"]


def _config() -> Config:
    return current_app.config["TASKBOARD"]


def _payload() -> Dict[str, Any]:
    """JSON body, falling back to form fields."""
    data = request.get_json(force=True, silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict() if request.form else {}


def _workspace_id(data: Optional[Dict[str, Any]] = None) -> str:
    workspace_id = (data or {}).get("workspaceId") or request.args.get("workspaceId")
    if not workspace_id:
        raise ValidationError("workspaceId required")
    return str(workspace_id)


def _documents(items) -> Dict[str, Any]:
    docs = [item if isinstance(item, dict) else item.to_dict() for item in items]
    return {"documents": docs, "total": len(docs)}


def _parse_status(value: Any) -> str:
    status = normalize_status(value)
    if status not in STATUS_ORDER:
        raise ValidationError(f"Invalid status: {value}")
    return status


def _parse_due_date(value: Any) -> Optional[str]:
    if value in (None, ""):
        return None
    text = str(value)
    try:
        date.fromisoformat(text[:10])
    except ValueError:
        raise ValidationError(f"Invalid dueDate: {value}")
    return text


def _task_in_workspace(task_id: str, workspace_id: str) -> Task:
    task = _store().get_task(task_id)
    if task is None or task.workspace_id != workspace_id:
        raise NotFound()
    return task


def _project_in_workspace(project_id: str, workspace_id: str) -> Project:
    project = _store().get_project(project_id)
    if project is None or project.workspace_id != workspace_id:
        raise ValidationError("Project not found in workspace")
    return project


def _task_fields(data: Dict[str, Any], workspace_id: str, partial: bool) -> Dict[str, Any]:
    """Validate a task payload into store field names."""
    fields: Dict[str, Any] = {}

    if "title" in data or not partial:
        title = str(data.get("title") or "").strip()
        if not title:
            raise ValidationError("Title is required")
        fields["title"] = title
    if "description" in data:
        fields["description"] = str(data.get("description") or "")
    if "status" in data or not partial:
        fields["status"] = _parse_status(data.get("status"))
    if "priority" in data or not partial:
        priority = str(data.get("priority") or Priority.MEDIUM.value).lower()
        if priority not in PRIORITIES:
            raise ValidationError(f"Invalid priority: {data.get('priority')}")
        fields["priority"] = priority
    if "projectId" in data or not partial:
        project_id = data.get("projectId")
        if not project_id:
            raise ValidationError("projectId is required")
        fields["project_id"] = _project_in_workspace(str(project_id), workspace_id).id
    if data.get("assigneeId"):
        assignee_id = str(data["assigneeId"])
        if get_member(_store(), workspace_id, assignee_id) is None:
            raise ValidationError("Assignee is not a member of this workspace")
        fields["assignee_id"] = assignee_id
    elif "assigneeId" in data and partial:
        fields["assignee_id"] = None
    if "dueDate" in data:
        fields["due_date"] = _parse_due_date(data.get("dueDate"))
    if "position" in data:
        position = coerce_position(data.get("position"))
        if position is not None:
            fields["position"] = position
    return fields


def _user_summary(user: Optional[User]) -> Dict[str, Any]:
    if user is None:
        return {"name": "", "email": ""}
    return {"name": user.name, "email": user.email}


def _set_session_cookie(response, token: str):
    cfg = _config()
    response.set_cookie(
        cfg.session_cookie, token,
        max_age=cfg.session_days * 86400, httponly=True, samesite="Lax",
    )
    return response


# ── App factory ──────────────────────────────────────────────────────────────

def create_app(config: Optional[Config] = None, store: Optional[TaskBoardStore] = None) -> Flask:
    config = config or Config.load()
    app = Flask(__name__)
    app.config["TASKBOARD"] = config
    app.config["STORE"] = store or TaskBoardStore(config.db_path, migrate=config.migrate_schema)

    _register_errors(app)
    _register_auth(app)
    _register_workspaces(app)
    _register_members(app)
    _register_projects(app)
    _register_tasks(app)

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "db": config.db_path})

    return app


def _register_errors(app: Flask):
    @app.errorhandler(TaskBoardError)
    def handle_taskboard_error(e: TaskBoardError):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(StoreError)
    def handle_store_error(e: StoreError):
        logger.error(f"Unhandled store error on {request.method} {request.path}: {e}")
        return jsonify(GenericError().to_dict()), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        logger.error(f"Unexpected error on {request.method} {request.path}: {e}", exc_info=True)
        return jsonify(GenericError().to_dict()), 500


# ── Auth ─────────────────────────────────────────────────────────────────────

def _register_auth(app: Flask):
    @app.route("/api/auth/register", methods=["POST"])
    def register():
        data = _payload()
        email = str(data.get("email") or "").strip().lower()
        password = str(data.get("password") or "")
        name = str(data.get("name") or "").strip()
        if not email or "@" not in email:
            raise ValidationError("A valid email is required")
        if len(password) < 8:
            raise ValidationError("Password must be at least 8 characters")
        if _store().get_user_by_email(email):
            raise ValidationError("Email already registered")

        user = _store().create_user(User(
            id=make_id("user"), email=email, name=name or email.split("@")[0],
            password_hash=hash_password(password),
        ))
        token = start_session(_store(), user, _config().session_days)
        logger.info(f"Registered user {user.id}")
        return _set_session_cookie(jsonify({"data": user.to_dict(), "token": token}), token)

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        data = _payload()
        user = _store().get_user_by_email(str(data.get("email") or "").strip())
        if user is None or not verify_password(user, str(data.get("password") or "")):
            raise Unauthorized("Invalid email or password")
        token = start_session(_store(), user, _config().session_days)
        return _set_session_cookie(jsonify({"data": user.to_dict(), "token": token}), token)

    @app.route("/api/auth/logout", methods=["POST"])
    @login_required
    def logout():
        _store().delete_session(g.session_token)
        response = jsonify({"success": True})
        response.delete_cookie(_config().session_cookie)
        return response

    @app.route("/api/auth/current")
    @login_required
    def current():
        return jsonify({"data": g.user.to_dict()})


# ── Workspaces ───────────────────────────────────────────────────────────────

def _register_workspaces(app: Flask):
    @app.route("/api/workspaces", methods=["GET"])
    @login_required
    def list_workspaces():
        return jsonify({"data": _documents(_store().list_workspaces_for_user(g.user.id))})

    @app.route("/api/workspaces", methods=["POST"])
    @login_required
    def create_workspace():
        data = _payload()
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required")
        workspace = Workspace(
            id=make_id("ws"), name=name, owner_id=g.user.id,
            invite_code=generate_invite_code(), image_url=str(data.get("imageUrl") or ""),
        )
        owner = Member(id=make_id("mem"), workspace_id=workspace.id,
                       user_id=g.user.id, role=MemberRole.ADMIN)
        _store().create_workspace(workspace, owner)
        return jsonify({"data": workspace.to_dict()}), 201

    @app.route("/api/workspaces/<workspace_id>", methods=["GET"])
    @login_required
    def get_workspace(workspace_id):
        require_member(_store(), workspace_id, g.user)
        workspace = _store().get_workspace(workspace_id)
        if workspace is None:
            raise NotFound()
        return jsonify({"data": workspace.to_dict()})

    @app.route("/api/workspaces/<workspace_id>", methods=["PATCH"])
    @login_required
    def update_workspace(workspace_id):
        require_admin(_store(), workspace_id, g.user)
        data = _payload()
        fields: Dict[str, Any] = {}
        if "name" in data:
            name = str(data.get("name") or "").strip()
            if not name:
                raise ValidationError("name cannot be empty")
            fields["name"] = name
        if "imageUrl" in data:
            fields["image_url"] = str(data.get("imageUrl") or "")
        if not fields:
            raise ValidationError("No update fields provided")
        workspace = _store().update_workspace(workspace_id, fields)
        return jsonify({"data": workspace.to_dict()})

    @app.route("/api/workspaces/<workspace_id>", methods=["DELETE"])
    @login_required
    def delete_workspace(workspace_id):
        require_admin(_store(), workspace_id, g.user)
        _store().delete_workspace(workspace_id)
        logger.info(f"Workspace {workspace_id} deleted by {g.user.id}")
        return jsonify({"data": {"id": workspace_id}})

    @app.route("/api/workspaces/<workspace_id>/reset-invite-code", methods=["POST"])
    @login_required
    def reset_invite_code(workspace_id):
        require_admin(_store(), workspace_id, g.user)
        workspace = _store().update_workspace(workspace_id, {"invite_code": generate_invite_code()})
        return jsonify({"data": workspace.to_dict()})

    @app.route("/api/workspaces/<workspace_id>/join", methods=["POST"])
    @login_required
    def join_workspace(workspace_id):
        code = str(_payload().get("code") or "").strip().upper()
        if get_member(_store(), workspace_id, g.user.id):
            raise ValidationError("Already a member")
        workspace = _store().get_workspace(workspace_id)
        if workspace is None:
            raise NotFound()
        if not code or code != workspace.invite_code:
            raise ValidationError("Invalid invite code")
        _store().add_member(Member(id=make_id("mem"), workspace_id=workspace_id,
                                   user_id=g.user.id, role=MemberRole.MEMBER))
        return jsonify({"data": workspace.to_dict()})

    @app.route("/api/workspaces/<workspace_id>/analytics")
    @login_required
    def analytics(workspace_id):
        require_member(_store(), workspace_id, g.user)
        tasks = _store().list_tasks(workspace_id, limit=_config().query_limit)
        return jsonify({"data": workspace_analytics(tasks, g.user.id)})


# ── Members ──────────────────────────────────────────────────────────────────

def _register_members(app: Flask):
    @app.route("/api/members", methods=["GET"])
    @login_required
    def list_members():
        workspace_id = _workspace_id()
        require_member(_store(), workspace_id, g.user)
        documents = []
        for member in _store().list_members(workspace_id):
            doc = member.to_dict()
            doc.update(_user_summary(_store().get_user(member.user_id)))
            documents.append(doc)
        return jsonify({"data": _documents(documents)})

    @app.route("/api/members/<member_id>", methods=["PATCH"])
    @login_required
    def update_member(member_id):
        target = _store().get_member_by_id(member_id)
        if target is None:
            raise NotFound()
        require_admin(_store(), target.workspace_id, g.user)
        role = str(_payload().get("role") or "").upper()
        if role not in MemberRole.__members__:
            raise ValidationError(f"Invalid role: {role}")
        if len(_store().list_members(target.workspace_id)) == 1:
            raise ValidationError("Cannot downgrade the only member")
        member = _store().update_member_role(member_id, MemberRole[role])
        return jsonify({"data": member.to_dict()})

    @app.route("/api/members/<member_id>", methods=["DELETE"])
    @login_required
    def delete_member(member_id):
        target = _store().get_member_by_id(member_id)
        if target is None:
            raise NotFound()
        caller = require_member(_store(), target.workspace_id, g.user)
        if caller.id != target.id and not caller.is_admin:
            raise Unauthorized()
        if len(_store().list_members(target.workspace_id)) == 1:
            raise ValidationError("Cannot delete the only member")
        _store().delete_member(member_id)
        return jsonify({"data": {"id": member_id}})


# ── Projects ─────────────────────────────────────────────────────────────────

def _register_projects(app: Flask):
    def _project_for_member(project_id: str) -> Project:
        project = _store().get_project(project_id)
        if project is None:
            raise NotFound()
        require_member(_store(), project.workspace_id, g.user)
        return project

    @app.route("/api/projects", methods=["GET"])
    @login_required
    def list_projects():
        workspace_id = _workspace_id()
        require_member(_store(), workspace_id, g.user)
        return jsonify({"data": _documents(_store().list_projects(workspace_id))})

    @app.route("/api/projects", methods=["POST"])
    @login_required
    def create_project():
        data = _payload()
        workspace_id = _workspace_id(data)
        require_member(_store(), workspace_id, g.user)
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required")
        project = _store().create_project(Project(
            id=make_id("proj"), workspace_id=workspace_id, name=name,
            image_url=str(data.get("imageUrl") or ""),
        ))
        return jsonify({"data": project.to_dict()}), 201

    @app.route("/api/projects/<project_id>", methods=["GET"])
    @login_required
    def get_project(project_id):
        return jsonify({"data": _project_for_member(project_id).to_dict()})

    @app.route("/api/projects/<project_id>", methods=["PATCH"])
    @login_required
    def update_project(project_id):
        _project_for_member(project_id)
        data = _payload()
        fields: Dict[str, Any] = {}
        if "name" in data:
            name = str(data.get("name") or "").strip()
            if not name:
                raise ValidationError("name cannot be empty")
            fields["name"] = name
        if "imageUrl" in data:
            fields["image_url"] = str(data.get("imageUrl") or "")
        if not fields:
            raise ValidationError("No update fields provided")
        return jsonify({"data": _store().update_project(project_id, fields).to_dict()})

    @app.route("/api/projects/<project_id>", methods=["DELETE"])
    @login_required
    def delete_project(project_id):
        _project_for_member(project_id)
        _store().delete_project(project_id)
        return jsonify({"data": {"id": project_id}})


# ── Tasks ────────────────────────────────────────────────────────────────────

def _register_tasks(app: Flask):
    @app.route("/api/tasks", methods=["POST"])
    @login_required
    def create_task():
        data = _payload()
        workspace_id = _workspace_id(data)
        require_member(_store(), workspace_id, g.user)
        fields = _task_fields(data, workspace_id, partial=False)
        task = Task(id=make_id("task"), workspace_id=workspace_id, **fields)
        task = create_with_position(_store(), task)
        return jsonify({"data": task.to_dict()})

    @app.route("/api/tasks", methods=["GET"])
    @login_required
    def list_tasks():
        query = TaskQuery.from_args(request.args)
        require_member(_store(), query.workspace_id, g.user)
        tasks = run_query(_store(), query, limit=_config().query_limit)
        return jsonify({
            "data": _documents(tasks),
            "counts": facet_counts(tasks),
        })

    @app.route("/api/tasks/reorder", methods=["POST"])
    @login_required
    def reorder_tasks():
        body = request.get_json(force=True, silent=True)
        body = body if isinstance(body, dict) else {}
        workspace_id = _workspace_id(body)
        require_member(_store(), workspace_id, g.user)

        updates = body.get("updates")
        if not isinstance(updates, list) or not updates:
            raise ValidationError("No updates provided")

        results = []
        for item in updates:
            item = item if isinstance(item, dict) else {}
            task_id = str(item.get("id") or "")
            fields: Dict[str, Any] = {}
            try:
                if item.get("status") is not None:
                    fields["status"] = _parse_status(item["status"])
                position = coerce_position(item.get("position"))
                if position is not None:
                    fields["position"] = position
            except ValidationError as e:
                results.append({"id": task_id, "ok": False, "error": e.message})
                continue
            if not fields:
                results.append({"id": task_id, "ok": False, "error": "No fields to update"})
                continue

            task = _store().get_task(task_id) if task_id else None
            if task is None or task.workspace_id != workspace_id:
                results.append({"id": task_id, "ok": False, "error": "Not found"})
                continue
            try:
                updated = _store().update_task(task_id, fields)
            except UnknownAttributeError as e:
                # earlier items stay applied; the client refetches to reconcile
                logger.warning(f"Reorder in {workspace_id} stopped at {task_id}: {e}")
                raise InvalidField()
            except StoreError as e:
                logger.error(f"Reorder in {workspace_id} failed for {task_id}: {e}")
                results.append({"id": task_id, "ok": False, "error": "Failed to update"})
                continue
            results.append({"id": task_id, "ok": True, "data": updated.to_dict()})

        return jsonify({"results": results})

    @app.route("/api/tasks/<task_id>", methods=["GET"])
    @login_required
    def get_task(task_id):
        workspace_id = _workspace_id()
        require_member(_store(), workspace_id, g.user)
        return jsonify({"data": _task_in_workspace(task_id, workspace_id).to_dict()})

    @app.route("/api/tasks/<task_id>", methods=["PUT", "PATCH"])
    @login_required
    def update_task(task_id):
        data = _payload()
        workspace_id = _workspace_id(data)
        require_member(_store(), workspace_id, g.user)
        _task_in_workspace(task_id, workspace_id)

        fields = _task_fields(data, workspace_id, partial=True)
        if not fields:
            raise ValidationError("No update fields provided")
        try:
            updated = _store().update_task(task_id, fields)
        except UnknownAttributeError:
            raise InvalidField()
        except DocumentNotFound:
            raise NotFound()
        except StoreError as e:
            logger.error(f"Failed to update task {task_id}: {e}")
            raise GenericError("Failed to update")
        return jsonify({"data": updated.to_dict()})

    @app.route("/api/tasks/<task_id>", methods=["DELETE"])
    @login_required
    def delete_task(task_id):
        workspace_id = _workspace_id()
        require_member(_store(), workspace_id, g.user)
        _task_in_workspace(task_id, workspace_id)
        try:
            _store().delete_task(task_id)
        except DocumentNotFound:
            raise NotFound()
        except StoreError as e:
            logger.error(f"Failed to delete task {task_id}: {e}")
            raise GenericError("Failed to delete")
        return jsonify({"data": {"id": task_id}})


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description="Taskboard Server")
    parser.add_argument("--config", help="Path to taskboard.yaml (overrides TASKBOARD_CONFIG)")
    parser.add_argument("--host", help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--db", help="Path to taskboard.db (overrides TASKBOARD_DB)")
    args = parser.parse_args(argv)

    config = Config.load(args.config)
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.db:
        config.db_path = args.db
        config.resolve_paths()

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [taskboard] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    app = create_app(config)
    logger.info(f"Serving on http://{config.host}:{config.port} (db: {config.db_path})")
    app.run(host=config.host, port=config.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
