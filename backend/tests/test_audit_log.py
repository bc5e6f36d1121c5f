"""Tests for the audit trail service."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from dracopanel.db.store import JSONFileStore
from dracopanel.services.audit import AUDITS_KEY, AuditLog, classify_severity


@pytest.mark.parametrize(
    ("action", "expected"),
    [
        ("login:failed", "critical"),
        ("api_key:unauthorized_access", "critical"),
        ("admin:access_denied", "critical"),
        ("admin:access_granted", "warning"),
        ("user:delete", "warning"),
        ("login:success", "info"),
        ("api_key:created", "info"),
    ],
)
def test_classify_severity(action: str, expected: str) -> None:
    assert classify_severity(action) == expected


def _audit_log(tmp_path: Path, **kwargs) -> tuple[JSONFileStore, AuditLog]:
    store = JSONFileStore(tmp_path / "kv.json")
    return store, AuditLog(store, tmp_path / "logs", **kwargs)


@pytest.mark.anyio
async def test_log_persists_entry_and_daily_file(tmp_path: Path) -> None:
    store, audit = _audit_log(tmp_path)

    entry = await audit.log("u1", "alice", "login:failed", "10.0.0.1", {"reason": "bad password"})

    assert entry.severity == "critical"
    assert entry.timestamp.endswith("Z")
    stored = await store.get(AUDITS_KEY)
    assert stored == [entry.to_dict()]

    log_files = list(audit.log_dir.glob("audit-*.log"))
    assert log_files == [audit.file_for()]
    line = json.loads(log_files[0].read_text(encoding="utf-8").strip())
    assert line["action"] == "login:failed"
    assert line["metadata"] == {"reason": "bad password"}


@pytest.mark.anyio
async def test_log_keeps_only_newest_entries(tmp_path: Path) -> None:
    store, audit = _audit_log(tmp_path, max_entries=5)

    for i in range(8):
        await audit.log("u1", "alice", f"event:{i}", None)

    stored = await store.get(AUDITS_KEY)
    assert len(stored) == 5
    assert [e["action"] for e in stored] == [f"event:{i}" for i in range(3, 8)]


@pytest.mark.anyio
async def test_list_logs_filters(tmp_path: Path) -> None:
    store, audit = _audit_log(tmp_path)
    await store.set(
        AUDITS_KEY,
        [
            {"userId": "u1", "username": "a", "action": "login:success", "ip": None, "metadata": {},
             "timestamp": "2024-01-01T10:00:00.000Z", "severity": "info"},
            {"userId": "u2", "username": "b", "action": "login:failed", "ip": None, "metadata": {},
             "timestamp": "2024-01-02T10:00:00.000Z", "severity": "critical"},
            {"userId": "u1", "username": "a", "action": "user:delete", "ip": None, "metadata": {},
             "timestamp": "2024-01-03T10:00:00.000Z", "severity": "warning"},
        ],
    )

    assert [e.action for e in await audit.list_logs(user_id="u1")] == ["login:success", "user:delete"]
    assert [e.action for e in await audit.list_logs(action="login")] == ["login:success", "login:failed"]
    assert [e.action for e in await audit.list_logs(severity="critical")] == ["login:failed"]
    in_range = await audit.list_logs(start_date="2024-01-02T00:00:00.000Z", end_date="2024-01-03T10:00:00.000Z")
    assert [e.action for e in in_range] == ["login:failed", "user:delete"]
    # the first entries in chronological order
    assert [e.action for e in await audit.list_logs(limit=2)] == ["login:success", "login:failed"]


@pytest.mark.anyio
async def test_list_logs_reads_legacy_string_value(tmp_path: Path) -> None:
    store, audit = _audit_log(tmp_path)
    legacy = [{"userId": "u1", "username": "a", "action": "logout", "ip": None,
               "timestamp": "2024-01-01T10:00:00.000Z"}]
    await store.set(AUDITS_KEY, json.dumps(legacy))

    entries = await audit.list_logs()

    assert len(entries) == 1
    assert entries[0].severity == "info"
    assert entries[0].metadata == {}
