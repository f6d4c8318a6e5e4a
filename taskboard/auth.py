"""
Sessions and workspace membership checks.

Every workspace-scoped endpoint resolves the caller from the session, then
checks membership with ``require_member``. Non-members get ``Unauthorized``
and no data.
"""
import secrets
import string
from datetime import timedelta
from functools import wraps
from typing import Optional

from flask import current_app, g, request
from werkzeug.security import check_password_hash, generate_password_hash

from .errors import Forbidden, Unauthorized
from .schema import Member, User, utc_now
from .store import TaskBoardStore

INVITE_ALPHABET = string.ascii_uppercase + string.digits
INVITE_CODE_LENGTH = 6


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(user: User, password: str) -> bool:
    return bool(user.password_hash) and check_password_hash(user.password_hash, password)


def generate_invite_code(length: int = INVITE_CODE_LENGTH) -> str:
    return "".join(secrets.choice(INVITE_ALPHABET) for _ in range(length))


def start_session(store: TaskBoardStore, user: User, days: int = 30) -> str:
    token = secrets.token_urlsafe(32)
    store.create_session(token, user.id, utc_now() + timedelta(days=days))
    return token


def session_token() -> Optional[str]:
    """Bearer token from the Authorization header, else the session cookie."""
    header = request.headers.get("Authorization", "").strip()
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    cookie_name = current_app.config["TASKBOARD"].session_cookie
    return request.cookies.get(cookie_name) or None


def login_required(f):
    """Decorator: resolve the session user onto ``g.user`` or reject with 401."""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = session_token()
        user = current_app.config["STORE"].get_session_user(token) if token else None
        if user is None:
            raise Unauthorized()
        g.user = user
        g.session_token = token
        return f(*args, **kwargs)
    return decorated


def get_member(store: TaskBoardStore, workspace_id: str, user_id: str) -> Optional[Member]:
    if not workspace_id or not user_id:
        return None
    return store.get_member(str(workspace_id), user_id)


def require_member(store: TaskBoardStore, workspace_id: str, user: User) -> Member:
    member = get_member(store, workspace_id, user.id)
    if member is None:
        raise Unauthorized()
    return member


def require_admin(store: TaskBoardStore, workspace_id: str, user: User) -> Member:
    member = require_member(store, workspace_id, user)
    if not member.is_admin:
        raise Forbidden("Admin role required")
    return member
