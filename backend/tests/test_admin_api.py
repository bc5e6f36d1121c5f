"""Tests for administrator user, instance, settings and notice management."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

from fastapi.testclient import TestClient

from dracopanel.core.config import Settings


def _store(settings: Settings) -> dict[str, Any]:
    return json.loads(Path(settings.kv_store_path).read_text(encoding="utf-8"))


def test_create_user(client: TestClient, login_admin: str, settings: Settings) -> None:
    headers = {"X-CSRF-Token": login_admin}
    payload = {"username": "bob", "email": "bob@example.com", "password": "bob-password", "plan": "Starter"}

    resp = client.post("/admin/users", json=payload, headers=headers)
    assert resp.status_code == 201
    body = resp.json()
    assert body["username"] == "bob"
    assert body["plan"] == "Starter"
    assert "password" not in body

    stored = next(u for u in _store(settings)["users"] if u["username"] == "bob")
    assert stored["password"].startswith("$2")

    duplicate = client.post("/admin/users", json=payload, headers=headers)
    assert duplicate.status_code == 409


def test_create_user_validation_failure(
    client: TestClient, login_admin: str, audits: Callable[[], list[dict[str, Any]]]
) -> None:
    resp = client.post(
        "/admin/users",
        json={"username": "x", "password": "short"},
        headers={"X-CSRF-Token": login_admin},
    )

    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["message"] == "Invalid data"
    assert any(error.startswith("username") for error in body["errors"])
    assert any(e["action"] == "validation:failed" for e in audits())


def test_create_user_rejects_password_over_bcrypt_limit(client: TestClient, login_admin: str) -> None:
    # 40 characters but 80 bytes in UTF-8
    resp = client.post(
        "/admin/users",
        json={"username": "bob", "password": "é" * 40},
        headers={"X-CSRF-Token": login_admin},
    )

    assert resp.status_code == 400
    body = resp.json()
    assert body["message"] == "Invalid data"
    assert any(error.startswith("password") and "72 bytes" in error for error in body["errors"])

    accepted = client.post(
        "/admin/users",
        json={"username": "bob", "password": "é" * 36},
        headers={"X-CSRF-Token": login_admin},
    )
    assert accepted.status_code == 201


def test_delete_user(
    client: TestClient,
    login_admin: str,
    settings: Settings,
    audits: Callable[[], list[dict[str, Any]]],
) -> None:
    headers = {"X-CSRF-Token": login_admin}

    assert client.delete("/admin/users/admin-1", headers=headers).status_code == 400
    resp = client.delete("/admin/users/user-1", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "User deleted"}

    data = _store(settings)
    assert [u["userId"] for u in data["users"]] == ["admin-1"]
    assert "user-1_instances" not in data
    # owned instances go with the user
    assert data["instances"] == []
    assert "inst-1_instance" not in data
    entry = audits()[-1]
    assert entry["action"] == "user:delete"
    assert entry["metadata"]["removedInstances"] == ["inst-1"]
    assert client.delete("/admin/users/user-1", headers=headers).status_code == 404


def test_delete_user_keeps_other_owners_instances(
    client: TestClient,
    login_admin: str,
    settings: Settings,
    seed: Callable[[dict[str, Any]], None],
) -> None:
    admin_instance = {"id": "inst-2", "name": "api", "userId": "admin-1"}
    unowned = {"id": "inst-3", "name": "legacy"}
    data = _store(settings)
    seed(
        {
            "instances": data["instances"] + [admin_instance, unowned],
            "admin-1_instances": [admin_instance],
            "inst-2_instance": admin_instance,
        }
    )

    resp = client.delete("/admin/users/user-1", headers={"X-CSRF-Token": login_admin})

    assert resp.status_code == 200
    data = _store(settings)
    assert [i["id"] for i in data["instances"]] == ["inst-2", "inst-3"]
    assert data["admin-1_instances"] == [admin_instance]
    assert data["inst-2_instance"] == admin_instance


def test_delete_instance_removes_every_reference(
    client: TestClient,
    login_admin: str,
    settings: Settings,
    seed: Callable[[dict[str, Any]], None],
    audits: Callable[[], list[dict[str, Any]]],
) -> None:
    data = _store(settings)
    data["users"][0]["accessTo"] = ["inst-1"]
    seed({"users": data["users"]})
    headers = {"X-CSRF-Token": login_admin}

    resp = client.delete("/admin/instances/inst-1", headers=headers)

    assert resp.status_code == 200
    data = _store(settings)
    assert data["instances"] == []
    assert data["user-1_instances"] == []
    assert "inst-1_instance" not in data
    assert data["users"][0]["accessTo"] == []
    entry = audits()[-1]
    assert entry["action"] == "instance:delete"
    assert entry["metadata"] == {"instanceId": "inst-1", "ownerId": "user-1"}
    assert client.delete("/admin/instances/inst-1", headers=headers).status_code == 404


def test_update_branding(
    client: TestClient, login_admin: str, audits: Callable[[], list[dict[str, Any]]]
) -> None:
    resp = client.post(
        "/admin/settings",
        data={"name": "  Draco Hosting ", "logo": "/static/logo.png", "_csrf": login_admin},
    )

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "name": "Draco Hosting", "logo": "/static/logo.png"}
    assert audits()[-1]["action"] == "config:change"
    assert "Draco Hosting" in client.get("/instances").text

    # a blank logo field leaves the logo in place; clear_logo removes it
    unchanged = client.post("/admin/settings", data={"logo": "", "_csrf": login_admin})
    assert unchanged.json()["logo"] == "/static/logo.png"

    cleared = client.post("/admin/settings", data={"clear_logo": "true", "_csrf": login_admin})
    assert cleared.json()["logo"] is False
    assert audits()[-1]["metadata"]["changed"] == {"logo": False}


def test_notices_show_on_instances_page(client: TestClient, login_admin: str) -> None:
    headers = {"X-CSRF-Token": login_admin}
    client.post("/admin/notices", json={"title": "Maintenance window", "message": "Sunday 02:00"}, headers=headers)
    client.post(
        "/admin/notices",
        json={"title": "Hidden notice", "message": "draft", "active": False},
        headers=headers,
    )

    page = client.get("/instances")

    assert "Maintenance window" in page.text
    assert "Hidden notice" not in page.text
