"""
HTTP client for the taskboard API.

``submit_reorder`` is the adapter the reorder synchronizer calls: it sends a
batch and turns every failure into a ``ReorderFailed`` with a kind the UI can
word differently (not a member, schema missing ``position``, anything else).
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

import requests

from .schema import ReorderUpdate, Task
from .sync import FailureKind, ReorderFailed

logger = logging.getLogger(__name__)

INVALID_FIELD_ERROR = "Invalid update field"


class ApiError(Exception):
    """Non-2xx response from the API."""

    def __init__(self, status_code: int, error: str, details: Optional[str] = None):
        self.status_code = status_code
        self.error = error
        self.details = details
        super().__init__(f"{status_code}: {details or error}")


class TaskBoardClient:
    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 10,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.http = session or requests.Session()

    # ── Transport ────────────────────────────────────────────────────────────

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        r = self.http.request(method, f"{self.base_url}{path}", headers=headers,
                              timeout=self.timeout, **kwargs)
        try:
            body = r.json()
        except ValueError:
            body = None
        if not r.ok:
            body = body if isinstance(body, dict) else {}
            raise ApiError(r.status_code, body.get("error") or r.reason or "Request failed",
                           body.get("details"))
        return body if isinstance(body, dict) else {}

    # ── Auth ─────────────────────────────────────────────────────────────────

    def register(self, email: str, password: str, name: str = "") -> Dict[str, Any]:
        body = self._request("POST", "/api/auth/register",
                             json={"email": email, "password": password, "name": name})
        self.token = body.get("token")
        return body["data"]

    def login(self, email: str, password: str) -> Dict[str, Any]:
        body = self._request("POST", "/api/auth/login", json={"email": email, "password": password})
        self.token = body.get("token")
        return body["data"]

    def logout(self) -> None:
        self._request("POST", "/api/auth/logout")
        self.token = None

    # ── Tasks ────────────────────────────────────────────────────────────────

    def list_tasks(self, workspace_id: str, project_ids: Iterable[str] = (),
                   assignee_ids: Iterable[str] = (), statuses: Iterable[str] = (),
                   due_date: Optional[str] = None) -> Dict[str, Any]:
        """Returns ``{"tasks": [Task], "total": n, "counts": {...}}``."""
        params: List[tuple] = [("workspaceId", workspace_id)]
        params += [("projectId", p) for p in project_ids]
        params += [("assigneeId", a) for a in assignee_ids]
        params += [("status", s) for s in statuses]
        if due_date:
            params.append(("dueDate", due_date))
        body = self._request("GET", "/api/tasks", params=params)
        data = body.get("data", {})
        return {
            "tasks": [Task.from_dict(doc) for doc in data.get("documents", [])],
            "total": data.get("total", 0),
            "counts": body.get("counts", {}),
        }

    def create_task(self, workspace_id: str, **fields) -> Task:
        payload = dict(fields, workspaceId=workspace_id)
        return Task.from_dict(self._request("POST", "/api/tasks", json=payload)["data"])

    def get_task(self, workspace_id: str, task_id: str) -> Task:
        body = self._request("GET", f"/api/tasks/{task_id}", params={"workspaceId": workspace_id})
        return Task.from_dict(body["data"])

    def update_task(self, workspace_id: str, task_id: str, **fields) -> Task:
        payload = dict(fields, workspaceId=workspace_id)
        return Task.from_dict(self._request("PUT", f"/api/tasks/{task_id}", json=payload)["data"])

    def delete_task(self, workspace_id: str, task_id: str) -> None:
        self._request("DELETE", f"/api/tasks/{task_id}", params={"workspaceId": workspace_id})

    def reorder(self, workspace_id: str,
                updates: Iterable[Union[ReorderUpdate, Dict[str, Any]]]) -> List[Dict[str, Any]]:
        payload = {
            "workspaceId": workspace_id,
            "updates": [u.to_dict() if isinstance(u, ReorderUpdate) else u for u in updates],
        }
        return self._request("POST", "/api/tasks/reorder", json=payload).get("results", [])

    def submit_reorder(self, workspace_id: str, updates: List[ReorderUpdate]) -> List[Dict[str, Any]]:
        """
        Synchronizer adapter: any failure becomes a ReorderFailed.

        A 200 answer still fails the batch if any item came back ``ok: false``.
        """
        try:
            results = self.reorder(workspace_id, updates)
        except ApiError as e:
            if e.status_code == 401:
                raise ReorderFailed(FailureKind.UNAUTHORIZED, e.error)
            if e.status_code == 400 and e.error == INVALID_FIELD_ERROR:
                raise ReorderFailed(FailureKind.INVALID_FIELD, e.details or e.error)
            raise ReorderFailed(FailureKind.GENERIC, e.details or e.error)
        except requests.RequestException as e:
            logger.warning(f"Reorder request failed: {e}")
            raise ReorderFailed(FailureKind.GENERIC, "Failed to save order")

        rejected = [item for item in results if not item.get("ok")]
        if rejected:
            first = rejected[0]
            logger.warning(f"Reorder in {workspace_id}: {len(rejected)} of {len(results)} items rejected")
            raise ReorderFailed(FailureKind.GENERIC,
                                f"{first.get('id')}: {first.get('error') or 'update rejected'}")
        return results
