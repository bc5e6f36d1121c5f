from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Callable, Iterator

import bcrypt
import pytest
from fastapi.testclient import TestClient

from dracopanel import deps
from dracopanel.core.config import Settings, get_settings
from dracopanel.main import app

ADMIN_PASSWORD = "admin-password"
USER_PASSWORD = "user-password"

_CSRF_META = re.compile(r'<meta name="csrf-token" content="([^"]+)">')


@pytest.fixture
def anyio_backend() -> str:
    """Force anyio-based tests to run with asyncio backend only."""

    return "asyncio"


def _hash(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=4)).decode()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        kv_store_path=str(tmp_path / "kv.json"),
        audit_log_dir=str(tmp_path / "logs"),
        database_url=None,
        bcrypt_rounds=4,
        session_secret="test-secret",
    )


@pytest.fixture
def seed(settings: Settings) -> Callable[[dict[str, Any]], None]:
    """Write raw values straight into the JSON store file."""

    def _seed(values: dict[str, Any]) -> None:
        path = Path(settings.kv_store_path)
        data = json.loads(path.read_text(encoding="utf-8")) if path.exists() else {}
        data.update(values)
        path.write_text(json.dumps(data), encoding="utf-8")

    return _seed


@pytest.fixture
def panel_data(seed: Callable[[dict[str, Any]], None]) -> dict[str, Any]:
    """An administrator, a regular user with one instance, and a node."""

    instance = {
        "id": "inst-1",
        "name": "web",
        "userId": "user-1",
        "node": "node-1",
        "image": "python",
        "ramUsage": 256,
        "storageUsage": 1,
    }
    users = [
        {
            "userId": "admin-1",
            "username": "admin",
            "email": "admin@example.com",
            "password": _hash(ADMIN_PASSWORD),
            "admin": True,
            "plan": "Super",
            "accessTo": [],
        },
        {
            "userId": "user-1",
            "username": "alice",
            "email": "alice@example.com",
            "password": _hash(USER_PASSWORD),
            "admin": False,
            "accessTo": [],
        },
    ]
    values = {
        "users": users,
        "instances": [instance],
        "user-1_instances": [instance],
        "inst-1_instance": instance,
        "nodes": ["node-1", "node-gone"],
        "node-1_node": {"id": "node-1", "name": "Frankfurt"},
        "images": [{"id": "python", "name": "Python 3"}],
        "name": "Test Panel",
    }
    seed(values)
    return values


@pytest.fixture
def client(settings: Settings) -> Iterator[TestClient]:
    deps.reset_caches()
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.pop(get_settings, None)
    deps.reset_caches()


def csrf_from(html: str) -> str:
    match = _CSRF_META.search(html)
    assert match, "page carries no csrf meta tag"
    return match.group(1)


@pytest.fixture
def login(client: TestClient) -> Callable[[str, str], str]:
    """Log ``client`` in and return the session's CSRF token."""

    def _login(username: str, password: str) -> str:
        token = csrf_from(client.get("/auth/login").text)
        response = client.post(
            "/auth/login",
            data={"username": username, "password": password, "_csrf": token},
            follow_redirects=False,
        )
        assert response.status_code == 303, response.text
        return token

    return _login


@pytest.fixture
def login_admin(login: Callable[[str, str], str], panel_data: dict[str, Any]) -> str:
    return login("admin", ADMIN_PASSWORD)


@pytest.fixture
def login_user(login: Callable[[str, str], str], panel_data: dict[str, Any]) -> str:
    return login("alice", USER_PASSWORD)


@pytest.fixture
def audits(settings: Settings) -> Callable[[], list[dict[str, Any]]]:
    """Read the audit list currently held by the store."""

    def _read() -> list[dict[str, Any]]:
        path = Path(settings.kv_store_path)
        if not path.exists():
            return []
        return json.loads(path.read_text(encoding="utf-8")).get("audits", [])

    return _read
