"""Tests for the JSON-file and SQL key-value stores."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from dracopanel.db.base import Base
from dracopanel.db.store import JSONFileStore, KeyValueStoreError, SQLKeyValueStore, load_list


@pytest.mark.anyio
async def test_json_store_roundtrip_and_delete(tmp_path: Path) -> None:
    store = JSONFileStore(tmp_path / "nested" / "kv.json")

    assert await store.get("missing") is None

    await store.set("users", [{"userId": "u1"}])
    await store.set("name", "Panel")
    assert await store.get("users") == [{"userId": "u1"}]
    assert json.loads(store.path.read_text(encoding="utf-8"))["name"] == "Panel"

    await store.delete("name")
    assert await store.get("name") is None
    # deleting an unknown key is a no-op
    await store.delete("name")


@pytest.mark.anyio
async def test_json_store_rejects_corrupted_file(tmp_path: Path) -> None:
    path = tmp_path / "kv.json"
    path.write_text("{not json", encoding="utf-8")
    store = JSONFileStore(path)

    with pytest.raises(KeyValueStoreError):
        await store.get("users")


@pytest.mark.anyio
async def test_json_store_rejects_unserializable_value(tmp_path: Path) -> None:
    store = JSONFileStore(tmp_path / "kv.json")

    with pytest.raises(KeyValueStoreError):
        await store.set("bad", {"value": object()})


@pytest.mark.anyio
async def test_sql_store_roundtrip(tmp_path: Path) -> None:
    engine = create_async_engine("sqlite+aiosqlite:///" + str(tmp_path / "kv.db"))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    store = SQLKeyValueStore(async_sessionmaker(engine, expire_on_commit=False))

    await store.set("apiKeys", [{"id": "k1"}])
    await store.set("apiKeys", [{"id": "k1"}, {"id": "k2"}])
    assert await store.get("apiKeys") == [{"id": "k1"}, {"id": "k2"}]

    await store.delete("apiKeys")
    assert await store.get("apiKeys") is None
    await engine.dispose()


def test_load_list_accepts_legacy_json_strings() -> None:
    assert load_list(None) == []
    assert load_list('["a", "b"]') == ["a", "b"]
    assert load_list("not json") == []
    assert load_list({"a": 1}) == []
    assert load_list([1, 2]) == [1, 2]
