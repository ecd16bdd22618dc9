"""Shared test doubles for HTTP traffic and storage failures."""

import json
from typing import Any, Dict, List, Tuple

import requests

from idsync.exceptions import PersistenceError
from idsync.models.task import TaskStatus

ENV_ID = "11111111-2222-3333-4444-555555555555"
CLIENT_ID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"

EU_TOKEN_URL = f"https://auth.pingone.eu/{ENV_ID}/as/token"
EU_USERS_URL = f"https://api.pingone.eu/v1/environments/{ENV_ID}/users"
EU_GROUPS_URL = f"https://api.pingone.eu/v1/environments/{ENV_ID}/groups"

HR_USERS_URL = "https://hr.example.com/api/users"
HR_GROUPS_URL = "https://hr.example.com/api/groups"


def json_response(data: Any, status_code: int = 200) -> requests.Response:
    """Build a real requests.Response carrying a JSON body."""
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(data).encode("utf-8")
    response.encoding = "utf-8"
    response.headers["Content-Type"] = "application/json"
    return response


def text_response(text: str, status_code: int = 200) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response._content = text.encode("utf-8")
    response.encoding = "utf-8"
    return response


class FakeSession:
    """
    Stand-in for requests.Session answering from canned routes.

    Each route holds a list of responses used in order; the last one is
    repeated. An exception instance in the list is raised instead.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[Any]] = {}
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []

    def add(self, method: str, url: str, *responses: Any) -> None:
        self.routes.setdefault((method, url), []).extend(responses)

    def calls_to(self, method: str, url: str) -> List[Dict[str, Any]]:
        return [kwargs for m, u, kwargs in self.calls if m == method and u == url]

    def _respond(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        self.calls.append((method, url, kwargs))
        responses = self.routes.get((method, url))
        if not responses:
            raise requests.exceptions.ConnectionError(f"No route for {method} {url}")
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def get(self, url: str, **kwargs: Any) -> requests.Response:
        return self._respond("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> requests.Response:
        return self._respond("POST", url, **kwargs)


def token_body(token: str = "test-token") -> Dict[str, Any]:
    return {"access_token": token, "token_type": "Bearer", "expires_in": 3600, "scope": "p1:read:user"}


def cloud_user(user_id: str, username: str, email: str, given: str = "Jane", family: str = "Doe") -> Dict[str, Any]:
    return {
        "id": user_id,
        "username": username,
        "email": email,
        "name": {"given": given, "family": family, "formatted": f"{given} {family}"},
        "enabled": True,
        "population": {"id": "pop-1"},
        "createdAt": "2024-01-10T08:00:00Z",
    }


def cloud_page(resource: str, items: List[Dict[str, Any]], next_url: str = None, **extra: Any) -> Dict[str, Any]:
    links: Dict[str, Any] = {"self": {"href": "https://api.pingone.eu/v1/self"}}
    if next_url:
        links["next"] = {"href": next_url}
    return {"_embedded": {resource: items}, "_links": links, **extra}


class UnstartableTaskRepo:
    """Task repository whose tasks cannot be moved to running."""

    def __init__(self, repo):
        self.repo = repo

    def transition(self, task_id, status, **fields):
        if status == TaskStatus.RUNNING:
            raise PersistenceError("database is locked")
        return self.repo.transition(task_id, status, **fields)

    def __getattr__(self, name):
        return getattr(self.repo, name)
