"""Flat key-value store used for every panel record.

Values are JSON-serialized on write and decoded on read. Two backends:
a single JSON file (default) and a SQL table selected by DATABASE_URL.
"""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from . import models

logger = logging.getLogger(__name__)


class KeyValueStoreError(RuntimeError):
    """Raised when the backing storage cannot be read or written."""


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> None: ...


class JSONFileStore:
    """Key-value store persisted as one JSON object on disk."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def get(self, key: str) -> Any | None:
        data = await asyncio.to_thread(self._read_all)
        return data.get(key)

    async def set(self, key: str, value: Any) -> None:
        payload = _encode(key, value)
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            data[key] = json.loads(payload)
            await asyncio.to_thread(self._write_all, data)

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            if key in data:
                del data[key]
                await asyncio.to_thread(self._write_all, data)

    def _read_all(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                content = fh.read()
        except OSError as exc:
            raise KeyValueStoreError(f"Cannot read {self._path}: {exc}") from exc
        if not content.strip():
            return {}
        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise KeyValueStoreError(f"Corrupted store file {self._path}") from exc
        if not isinstance(data, dict):
            raise KeyValueStoreError(f"Store file {self._path} does not hold an object")
        return data

    def _write_all(self, data: dict[str, Any]) -> None:
        tmp = self._path.with_suffix(".tmp")
        try:
            with tmp.open("w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False)
            tmp.replace(self._path)
        except OSError as exc:
            raise KeyValueStoreError(f"Cannot write {self._path}: {exc}") from exc


class SQLKeyValueStore:
    """Key-value store backed by the ``kv_entries`` table."""

    def __init__(self, session_maker: async_sessionmaker) -> None:
        self._session_maker = session_maker

    async def get(self, key: str) -> Any | None:
        try:
            async with self._session_maker() as session:
                row = (
                    await session.execute(
                        select(models.KeyValueEntry).where(models.KeyValueEntry.key == key)
                    )
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise KeyValueStoreError(f"Cannot read key {key!r}") from exc
        if row is None:
            return None
        try:
            return json.loads(row.value)
        except json.JSONDecodeError:
            logger.warning("Non-JSON value stored under %s; returning raw text", key)
            return row.value

    async def set(self, key: str, value: Any) -> None:
        payload = _encode(key, value)
        try:
            async with self._session_maker() as session:
                row = await session.get(models.KeyValueEntry, key)
                if row is None:
                    session.add(models.KeyValueEntry(key=key, value=payload))
                else:
                    row.value = payload
                await session.commit()
        except SQLAlchemyError as exc:
            raise KeyValueStoreError(f"Cannot write key {key!r}") from exc

    async def delete(self, key: str) -> None:
        try:
            async with self._session_maker() as session:
                await session.execute(
                    delete(models.KeyValueEntry).where(models.KeyValueEntry.key == key)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise KeyValueStoreError(f"Cannot delete key {key!r}") from exc


def load_list(value: Any) -> list:
    """Normalize a stored list.

    Older data kept some lists as a JSON string inside the store value.
    """

    if value is None:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return []
    return list(value) if isinstance(value, list) else []


def _encode(key: str, value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise KeyValueStoreError(f"Value for {key!r} is not JSON serializable") from exc


__all__ = [
    "JSONFileStore",
    "KeyValueStore",
    "KeyValueStoreError",
    "SQLKeyValueStore",
    "load_list",
]
