"""Security audit trail.

Entries are kept twice: the newest ``max_entries`` as a list under the
``audits`` key of the key-value store, and every entry as one JSON line in
a daily ``audit-<YYYY-MM-DD>.log`` file.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from dracopanel.db.store import KeyValueStore, KeyValueStoreError, load_list

logger = logging.getLogger(__name__)

AUDITS_KEY = "audits"

CRITICAL_ACTIONS = (
    "admin:access_denied",
    "login:failed",
    "plan:change_blocked",
    "error:occurred",
    "validation:failed",
    "unauthorized_access",
)

WARNING_ACTIONS = (
    "admin:access_granted",
    "plan:change_attempt",
    "instance:delete",
    "user:delete",
    "config:change",
)


def classify_severity(action: str) -> str:
    """Map an action name to ``critical``, ``warning`` or ``info``."""

    if any(keyword in action for keyword in CRITICAL_ACTIONS):
        return "critical"
    if any(keyword in action for keyword in WARNING_ACTIONS):
        return "warning"
    return "info"


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(slots=True)
class AuditEntry:
    user_id: str
    username: str
    action: str
    ip: str | None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_utc_timestamp)
    severity: str = ""

    def __post_init__(self) -> None:
        if not self.severity:
            self.severity = classify_severity(self.action)

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "username": self.username,
            "action": self.action,
            "ip": self.ip,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
            "severity": self.severity,
        }


def _entry_from_dict(payload: dict[str, Any]) -> AuditEntry:
    return AuditEntry(
        user_id=str(payload.get("userId", "anonymous")),
        username=str(payload.get("username", "anonymous")),
        action=str(payload.get("action", "")),
        ip=payload.get("ip"),
        metadata=payload.get("metadata") or {},
        timestamp=payload.get("timestamp") or _utc_timestamp(),
        severity=payload.get("severity") or "",
    )


class AuditLog:
    """Append-only audit log over the key-value store plus daily files."""

    def __init__(
        self,
        store: KeyValueStore,
        log_dir: str | Path,
        *,
        max_entries: int = 1000,
        default_limit: int = 100,
    ) -> None:
        self._store = store
        self._log_dir = Path(log_dir)
        self._max_entries = max_entries
        self._default_limit = default_limit
        self._lock = asyncio.Lock()

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    async def log(
        self,
        user_id: str,
        username: str,
        action: str,
        ip: str | None,
        metadata: Dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Record an action and return the stored entry."""

        entry = AuditEntry(
            user_id=str(user_id),
            username=str(username),
            action=action,
            ip=ip,
            metadata=dict(metadata or {}),
        )
        async with self._lock:
            try:
                audits = load_list(await self._store.get(AUDITS_KEY))
            except KeyValueStoreError:
                logger.exception("Error fetching audits")
                audits = []

            audits.append(entry.to_dict())
            if len(audits) > self._max_entries:
                audits = audits[-self._max_entries:]

            try:
                await self._store.set(AUDITS_KEY, audits)
            except KeyValueStoreError:
                logger.exception("Error saving audits", extra={"action": action})
                return entry

        await asyncio.to_thread(self._append_to_file, entry)
        _send_alert(entry)
        return entry

    async def list_logs(
        self,
        *,
        user_id: str | None = None,
        action: str | None = None,
        severity: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        limit: int | None = None,
    ) -> list[AuditEntry]:
        """Return stored entries matching every given filter, oldest first."""

        try:
            audits = load_list(await self._store.get(AUDITS_KEY))
        except KeyValueStoreError:
            logger.exception("Error fetching audit logs")
            return []

        entries = [_entry_from_dict(item) for item in audits if isinstance(item, dict)]
        if user_id:
            entries = [e for e in entries if e.user_id == user_id]
        if action:
            entries = [e for e in entries if action in e.action]
        if severity:
            entries = [e for e in entries if e.severity == severity]
        if start_date:
            entries = [e for e in entries if e.timestamp >= start_date]
        if end_date:
            entries = [e for e in entries if e.timestamp <= end_date]
        return entries[: limit or self._default_limit]

    def file_for(self, when: datetime | None = None) -> Path:
        day = (when or datetime.now(timezone.utc)).date().isoformat()
        return self._log_dir / f"audit-{day}.log"

    def _append_to_file(self, entry: AuditEntry) -> None:
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            with self.file_for().open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(entry.to_dict(), ensure_ascii=False))
                fh.write("\n")
        except OSError:
            logger.exception("Error writing audit entry to file", extra={"action": entry.action})


def _send_alert(entry: AuditEntry) -> None:
    if entry.severity != "critical":
        return
    logger.warning(
        "Security alert: %s",
        entry.action,
        extra={
            "audit_action": entry.action,
            "audit_user": entry.username,
            "audit_ip": entry.ip,
            "audit_timestamp": entry.timestamp,
            "audit_metadata": entry.metadata,
        },
    )


__all__ = [
    "AUDITS_KEY",
    "AuditEntry",
    "AuditLog",
    "classify_severity",
]
