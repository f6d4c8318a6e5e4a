"""Shared test fixtures for the taskboard tests."""

import sys
from pathlib import Path

import pytest
from werkzeug.datastructures import MultiDict

# Ensure the package is importable without installing
sys.path.insert(0, str(Path(__file__).parent.parent))

from taskboard.config import Config
from taskboard.server import create_app
from taskboard.store import TaskBoardStore

PASSWORD = "correct-horse"


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "taskboard.db")


@pytest.fixture
def store(db_path):
    return TaskBoardStore(db_path)


@pytest.fixture
def legacy_store(tmp_path):
    """A store whose tasks table never got the position column."""
    return TaskBoardStore(str(tmp_path / "legacy.db"), migrate=False)


def _make_app(store):
    app = create_app(Config(db_path=store.db_path), store=store)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def app(store):
    return _make_app(store)


@pytest.fixture
def client(app):
    return app.test_client(use_cookies=False)


def signup(client, email, name=""):
    """Register a user and return (auth headers, user dict)."""
    r = client.post("/api/auth/register", json={"email": email, "password": PASSWORD, "name": name})
    assert r.status_code == 200, r.get_json()
    body = r.get_json()
    return {"Authorization": f"Bearer {body['token']}"}, body["data"]


def setup_workspace(client, email="alice@example.com"):
    """Register a user with one workspace and one project."""
    headers, user = signup(client, email)
    r = client.post("/api/workspaces", json={"name": "Acme"}, headers=headers)
    workspace = r.get_json()["data"]
    r = client.post("/api/projects", json={"name": "Website", "workspaceId": workspace["id"]},
                    headers=headers)
    project = r.get_json()["data"]
    return {
        "headers": headers,
        "user_id": user["id"],
        "workspace_id": workspace["id"],
        "invite_code": workspace["inviteCode"],
        "project_id": project["id"],
    }


@pytest.fixture
def ws(client):
    return setup_workspace(client)


@pytest.fixture
def legacy_client(legacy_store):
    return _make_app(legacy_store).test_client(use_cookies=False)


class FlaskResponse:
    """The slice of requests.Response that TaskBoardClient uses."""

    def __init__(self, response):
        self._response = response
        self.status_code = response.status_code
        self.ok = response.status_code < 400
        self.reason = response.status

    def json(self):
        body = self._response.get_json(silent=True)
        if body is None:
            raise ValueError("No JSON body")
        return body


class FlaskSession:
    """Routes TaskBoardClient requests into a Flask test client."""

    def __init__(self, test_client):
        self.test_client = test_client

    def request(self, method, url, headers=None, timeout=None, params=None, json=None):
        path = url.split("://", 1)[-1]
        path = path[path.index("/"):]
        query = MultiDict(params.items() if isinstance(params, dict) else (params or []))
        response = self.test_client.open(path, method=method, headers=headers or {},
                                         query_string=query, json=json)
        return FlaskResponse(response)
