"""API key lifecycle: issue, verify, disable, list and migrate to bcrypt hashes.

Keys live as a list under the ``apiKeys`` store key. The plaintext value is
returned once by :meth:`ApiKeyService.create_key` and never persisted.
"""
from __future__ import annotations

import asyncio
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import bcrypt

from dracopanel.db.store import KeyValueStore, load_list
from dracopanel.services.audit import AuditLog

logger = logging.getLogger(__name__)

API_KEYS_KEY = "apiKeys"
STATUS_ACTIVE = "active"
STATUS_DISABLED = "disabled"
KEY_BYTES = 32
# bcrypt only reads the first 72 bytes of a secret; newer releases reject longer input
MAX_SECRET_BYTES = 72


class ApiKeyNotFoundError(LookupError):
    """Raised when an API key id does not exist."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_iso(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def hash_secret(secret: str, rounds: int = 10) -> str:
    """Hash a secret with bcrypt."""
    return bcrypt.hashpw(secret.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def fits_bcrypt(secret: str) -> bool:
    return len(secret.encode()) <= MAX_SECRET_BYTES


def verify_secret(secret: str, hashed: str) -> bool:
    """Check a secret against a bcrypt hash; malformed hashes never match."""
    if not fits_bcrypt(secret):
        return False
    try:
        return bcrypt.checkpw(secret.encode(), hashed.encode())
    except ValueError:
        return False


@dataclass(slots=True)
class ApiKey:
    id: str
    name: str
    key: str
    hashed: bool
    user_id: str | None
    expires_at: str | None
    status: str
    created_at: str
    last_used: str | None = None
    usage_count: int = 0
    disabled_at: str | None = None
    migrated_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    def is_expired(self, now: datetime | None = None) -> bool:
        if not self.expires_at:
            return False
        expires = _parse_iso(self.expires_at)
        if expires is None:
            # an unreadable expiry must not grant access
            return True
        return expires <= (now or datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "id": self.id,
            "name": self.name,
            "key": self.key,
            "hashed": self.hashed,
            "userId": self.user_id,
            "expiresAt": self.expires_at,
            "status": self.status,
            "createdAt": self.created_at,
            "lastUsed": self.last_used,
            "usageCount": self.usage_count,
        }
        if self.disabled_at:
            payload["disabledAt"] = self.disabled_at
        if self.migrated_at:
            payload["migratedAt"] = self.migrated_at
        return payload

    def public_dict(self) -> dict[str, Any]:
        """Listing view; never exposes the stored key material."""

        return {
            "id": self.id,
            "name": self.name,
            "userId": self.user_id,
            "status": self.status,
            "hashed": self.hashed,
            "createdAt": self.created_at,
            "lastUsed": self.last_used,
            "usageCount": self.usage_count,
            "expiresAt": self.expires_at,
        }


def _key_from_dict(payload: dict[str, Any]) -> ApiKey:
    return ApiKey(
        id=str(payload.get("id") or uuid.uuid4()),
        name=payload.get("name") or "",
        key=payload.get("key") or "",
        hashed=bool(payload.get("hashed", False)),
        user_id=payload.get("userId"),
        expires_at=payload.get("expiresAt"),
        status=payload.get("status") or STATUS_ACTIVE,
        created_at=payload.get("createdAt") or _now_iso(),
        last_used=payload.get("lastUsed"),
        usage_count=int(payload.get("usageCount") or 0),
        disabled_at=payload.get("disabledAt"),
        migrated_at=payload.get("migratedAt"),
    )


@dataclass(slots=True)
class MigrationResult:
    migrated: int
    total: int


class ApiKeyService:
    """Manage API keys stored in the key-value store."""

    def __init__(self, store: KeyValueStore, audit: AuditLog, *, rounds: int = 10) -> None:
        self._store = store
        self._audit = audit
        self._rounds = rounds
        self._lock = asyncio.Lock()

    async def _load(self) -> list[ApiKey]:
        raw = load_list(await self._store.get(API_KEYS_KEY))
        return [_key_from_dict(item) for item in raw if isinstance(item, dict)]

    async def _save(self, keys: list[ApiKey]) -> None:
        await self._store.set(API_KEYS_KEY, [k.to_dict() for k in keys])

    async def create_key(
        self,
        name: str,
        user_id: str | None = None,
        expires_at: str | None = None,
    ) -> tuple[ApiKey, str]:
        """Issue a key; returns the record and the one-time plaintext."""

        plaintext = secrets.token_hex(KEY_BYTES)
        hashed = await asyncio.to_thread(hash_secret, plaintext, self._rounds)
        api_key = ApiKey(
            id=str(uuid.uuid4()),
            name=name,
            key=hashed,
            hashed=True,
            user_id=user_id,
            expires_at=expires_at,
            status=STATUS_ACTIVE,
            created_at=_now_iso(),
        )
        async with self._lock:
            keys = await self._load()
            keys.append(api_key)
            await self._save(keys)

        await self._audit.log(
            user_id or "system",
            name,
            "api_key:created",
            "localhost",
            {"keyId": api_key.id, "expiresAt": expires_at},
        )
        return api_key, plaintext

    async def disable_key(self, key_id: str, actor: str = "system") -> ApiKey:
        async with self._lock:
            keys = await self._load()
            target = next((k for k in keys if k.id == key_id), None)
            if target is None:
                raise ApiKeyNotFoundError(key_id)
            target.status = STATUS_DISABLED
            target.disabled_at = _now_iso()
            await self._save(keys)

        await self._audit.log(
            actor,
            "admin",
            "api_key:disabled",
            "localhost",
            {"keyId": key_id, "keyName": target.name},
        )
        return target

    async def list_keys(self) -> list[dict[str, Any]]:
        return [k.public_dict() for k in await self._load()]

    async def verify_key(self, plaintext: str) -> ApiKey | None:
        """Return the active key matching ``plaintext`` and record its use."""

        if not plaintext:
            return None
        keys = await self._load()
        now = datetime.now(timezone.utc)
        for candidate in keys:
            # disabled, expired and not-yet-migrated keys never authenticate
            if not candidate.is_active or not candidate.hashed or candidate.is_expired(now):
                continue
            if await asyncio.to_thread(verify_secret, plaintext, candidate.key):
                await self._touch(candidate.id)
                return candidate
        return None

    async def _touch(self, key_id: str) -> None:
        async with self._lock:
            keys = await self._load()
            for item in keys:
                if item.id == key_id:
                    item.last_used = _now_iso()
                    item.usage_count += 1
                    break
            await self._save(keys)

    async def migrate_plaintext_keys(self) -> MigrationResult:
        """Hash every key still stored in plaintext. Safe to run repeatedly."""

        logger.info("Starting API key migration")
        try:
            async with self._lock:
                keys = await self._load()
                migrated = 0
                for item in keys:
                    if item.hashed:
                        continue
                    item.key = await asyncio.to_thread(hash_secret, item.key, self._rounds)
                    item.hashed = True
                    item.migrated_at = _now_iso()
                    migrated += 1
                    logger.info("Migrated API key %s", item.name or item.id)
                if migrated:
                    await self._save(keys)
        except Exception as exc:
            logger.exception("API key migration failed")
            await self._audit.log(
                "system",
                "migration",
                "api_keys:migration_failed",
                "localhost",
                {"error": str(exc)},
            )
            raise

        result = MigrationResult(migrated=migrated, total=len(keys))
        if migrated:
            await self._audit.log(
                "system",
                "migration",
                "api_keys:migration_completed",
                "localhost",
                {"migratedCount": migrated, "totalKeys": len(keys)},
            )
            logger.info("API key migration finished: %d of %d keys hashed", migrated, len(keys))
        else:
            logger.info("No API key needed migration")
        return result


__all__ = [
    "API_KEYS_KEY",
    "ApiKey",
    "ApiKeyNotFoundError",
    "ApiKeyService",
    "MAX_SECRET_BYTES",
    "MigrationResult",
    "fits_bcrypt",
    "hash_secret",
    "verify_secret",
]
