"""Tests for API key issuance, verification and plaintext migration."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import bcrypt
import pytest

from dracopanel.db.store import JSONFileStore
from dracopanel.services.api_keys import (
    API_KEYS_KEY,
    ApiKeyNotFoundError,
    ApiKeyService,
    STATUS_DISABLED,
    fits_bcrypt,
    hash_secret,
    verify_secret,
)
from dracopanel.services.audit import AUDITS_KEY, AuditLog


@pytest.fixture(name="store")
def store_fixture(tmp_path: Path) -> JSONFileStore:
    return JSONFileStore(tmp_path / "kv.json")


@pytest.fixture(name="service")
def service_fixture(store: JSONFileStore, tmp_path: Path) -> ApiKeyService:
    return ApiKeyService(store, AuditLog(store, tmp_path / "logs"), rounds=4)


async def _actions(store: JSONFileStore) -> list[str]:
    return [entry["action"] for entry in await store.get(AUDITS_KEY) or []]


@pytest.mark.anyio
async def test_create_key_stores_only_hash(service: ApiKeyService, store: JSONFileStore) -> None:
    api_key, plaintext = await service.create_key("ci", user_id="user-1")

    assert len(plaintext) == 64
    stored = await store.get(API_KEYS_KEY)
    assert len(stored) == 1
    assert stored[0]["key"] != plaintext
    assert stored[0]["hashed"] is True
    assert bcrypt.checkpw(plaintext.encode(), stored[0]["key"].encode())
    assert stored[0]["userId"] == "user-1"
    assert "api_key:created" in await _actions(store)
    assert api_key.status == "active"


@pytest.mark.anyio
async def test_verify_key_tracks_usage(service: ApiKeyService, store: JSONFileStore) -> None:
    _, plaintext = await service.create_key("ci")

    assert await service.verify_key(plaintext) is not None
    assert await service.verify_key(plaintext) is not None
    assert await service.verify_key("wrong") is None
    assert await service.verify_key("") is None

    stored = (await store.get(API_KEYS_KEY))[0]
    assert stored["usageCount"] == 2
    assert stored["lastUsed"]


@pytest.mark.anyio
async def test_disabled_key_cannot_authenticate(service: ApiKeyService, store: JSONFileStore) -> None:
    api_key, plaintext = await service.create_key("ci")

    disabled = await service.disable_key(api_key.id, actor="admin-1")

    assert disabled.status == STATUS_DISABLED
    assert (await store.get(API_KEYS_KEY))[0]["disabledAt"]
    assert await service.verify_key(plaintext) is None
    assert "api_key:disabled" in await _actions(store)


@pytest.mark.anyio
async def test_disable_unknown_key_raises(service: ApiKeyService) -> None:
    with pytest.raises(ApiKeyNotFoundError):
        await service.disable_key("missing")


@pytest.mark.anyio
async def test_expired_key_cannot_authenticate(service: ApiKeyService) -> None:
    past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
    future = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
    _, expired = await service.create_key("old", expires_at=past)
    _, valid = await service.create_key("new", expires_at=future)

    assert await service.verify_key(expired) is None
    assert await service.verify_key(valid) is not None


@pytest.mark.anyio
async def test_list_keys_hides_key_material(service: ApiKeyService) -> None:
    await service.create_key("ci")

    listed = await service.list_keys()

    assert len(listed) == 1
    assert "key" not in listed[0]
    assert listed[0]["name"] == "ci"


@pytest.mark.anyio
async def test_migration_hashes_plaintext_keys_once(service: ApiKeyService, store: JSONFileStore) -> None:
    await store.set(
        API_KEYS_KEY,
        [
            {"id": "k1", "name": "legacy", "key": "plain-secret", "hashed": False, "status": "active",
             "createdAt": "2024-01-01T00:00:00.000Z"},
            {"id": "k2", "name": "legacy-2", "key": "other-secret", "status": "active",
             "createdAt": "2024-01-01T00:00:00.000Z"},
        ],
    )
    # unmigrated keys never authenticate
    assert await service.verify_key("plain-secret") is None

    first = await service.migrate_plaintext_keys()
    second = await service.migrate_plaintext_keys()

    assert (first.migrated, first.total) == (2, 2)
    assert (second.migrated, second.total) == (0, 2)
    stored = await store.get(API_KEYS_KEY)
    assert all(item["hashed"] and item["migratedAt"] for item in stored)
    assert all(item["key"] not in {"plain-secret", "other-secret"} for item in stored)
    assert await service.verify_key("plain-secret") is not None
    assert (await _actions(store)).count("api_keys:migration_completed") == 1


class _FailingStore(JSONFileStore):
    async def set(self, key, value):  # type: ignore[override]
        if key == API_KEYS_KEY:
            raise RuntimeError("disk full")
        await super().set(key, value)


@pytest.mark.anyio
async def test_migration_failure_is_audited_and_raised(tmp_path: Path) -> None:
    store = _FailingStore(tmp_path / "kv.json")
    await JSONFileStore.set(store, API_KEYS_KEY, [{"id": "k1", "name": "legacy", "key": "s", "hashed": False}])
    service = ApiKeyService(store, AuditLog(store, tmp_path / "logs"), rounds=4)

    with pytest.raises(RuntimeError):
        await service.migrate_plaintext_keys()

    assert "api_keys:migration_failed" in await _actions(store)


def test_secret_length_is_measured_in_bytes() -> None:
    assert fits_bcrypt("a" * 72)
    assert fits_bcrypt("é" * 36)
    assert not fits_bcrypt("é" * 40)

    hashed = hash_secret("user-password", 4)
    assert verify_secret("user-password", hashed)
    assert verify_secret("é" * 40, hashed) is False
