"""Administrator endpoints: API keys, audit trail, users, instances and panel settings."""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, status
from fastapi.responses import HTMLResponse, Response

from dracopanel.core.config import Settings, get_settings
from dracopanel.db.store import KeyValueStore, load_list
from dracopanel.deps import get_api_key_service, get_audit_log, get_store
from dracopanel.schemas.api_keys import (
    ApiKeyCreateRequest,
    ApiKeyCreateResponse,
    ApiKeyItem,
    MigrationResponse,
)
from dracopanel.schemas.audit import AuditEntryItem, AuditLogListResponse
from dracopanel.schemas.panel import (
    NoticeCreateRequest,
    OperationResponse,
    PanelSettingsResponse,
    UserCreateRequest,
    UserItem,
)
from dracopanel.security import client_ip, log_sensitive_action, require_admin, verify_csrf
from dracopanel.services.api_keys import ApiKeyNotFoundError, ApiKeyService, hash_secret
from dracopanel.services.audit import AuditLog
from dracopanel.services.panel import (
    NOTICES_KEY,
    USERS_KEY,
    delete_instance,
    delete_user,
    load_branding,
    load_users,
    public_user,
)
from dracopanel.templating import render


router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(verify_csrf), Depends(require_admin)],
)


def _iso_utc(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---- Audit trail ----


async def _query_audit(
    audit: AuditLog,
    *,
    user_id: str | None,
    action: str | None,
    severity: str | None,
    start_date: str | None,
    end_date: str | None,
    limit: int | None,
) -> list[AuditEntryItem]:
    entries = await audit.list_logs(
        user_id=user_id,
        action=action,
        severity=severity,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    return [AuditEntryItem(**entry.to_dict()) for entry in entries]


@router.get("/audit-logs", response_model=AuditLogListResponse, summary="List audit entries")
async def list_audit_logs(
    user_id: Optional[str] = Query(None, alias="userId"),
    action: Optional[str] = Query(None, description="Substring of the action name"),
    severity: Optional[str] = Query(None, pattern="^(critical|warning|info)$"),
    start_date: Optional[str] = Query(None, alias="startDate", description="ISO timestamp, inclusive"),
    end_date: Optional[str] = Query(None, alias="endDate", description="ISO timestamp, inclusive"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    audit: AuditLog = Depends(get_audit_log),
) -> AuditLogListResponse:
    logs = await _query_audit(
        audit,
        user_id=user_id,
        action=action,
        severity=severity,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    return AuditLogListResponse(logs=logs, count=len(logs))


@router.get("/audit", response_class=HTMLResponse, include_in_schema=False)
async def audit_page(
    request: Request,
    severity: Optional[str] = Query(None, pattern="^(critical|warning|info)$"),
    action: Optional[str] = Query(None),
    admin: dict = Depends(require_admin),
    audit: AuditLog = Depends(get_audit_log),
    store: KeyValueStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> Response:
    logs = await _query_audit(
        audit,
        user_id=None,
        action=action,
        severity=severity,
        start_date=None,
        end_date=None,
        limit=None,
    )
    context = await load_branding(store, settings)
    context.update(user=admin, logs=logs, severity=severity, action=action)
    return render(request, "admin/audit.html", context)


# ---- API keys ----


@router.get("/api-keys", response_model=List[ApiKeyItem], summary="List API keys")
async def list_api_keys(service: ApiKeyService = Depends(get_api_key_service)) -> list[ApiKeyItem]:
    return [ApiKeyItem(**item) for item in await service.list_keys()]


@router.post(
    "/api-keys",
    response_model=ApiKeyCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an API key",
    dependencies=[Depends(log_sensitive_action("api_key:create"))],
)
async def create_api_key(
    payload: ApiKeyCreateRequest,
    service: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyCreateResponse:
    expires_at = _iso_utc(payload.expires_at) if payload.expires_at else None
    api_key, plaintext = await service.create_key(payload.name, payload.user_id, expires_at)
    return ApiKeyCreateResponse(**api_key.public_dict(), plainKey=plaintext)


@router.post(
    "/api-keys/{key_id}/disable",
    response_model=ApiKeyItem,
    summary="Disable an API key",
    dependencies=[Depends(log_sensitive_action("api_key:disable"))],
)
async def disable_api_key(
    key_id: str,
    admin: dict = Depends(require_admin),
    service: ApiKeyService = Depends(get_api_key_service),
) -> ApiKeyItem:
    try:
        api_key = await service.disable_key(key_id, actor=admin["userId"])
    except ApiKeyNotFoundError as exc:
        raise HTTPException(status_code=404, detail="API key not found") from exc
    return ApiKeyItem(**api_key.public_dict())


@router.post(
    "/api-keys/migrate",
    response_model=MigrationResponse,
    summary="Hash API keys still stored in plaintext",
    dependencies=[Depends(log_sensitive_action("api_keys:migrate"))],
)
async def migrate_api_keys(service: ApiKeyService = Depends(get_api_key_service)) -> MigrationResponse:
    result = await service.migrate_plaintext_keys()
    return MigrationResponse(**asdict(result))


# ---- Users ----


@router.get("/users", response_model=List[UserItem], summary="List users")
async def list_users(store: KeyValueStore = Depends(get_store)) -> list[UserItem]:
    return [UserItem(**public_user(u)) for u in await load_users(store)]


@router.post(
    "/users",
    response_model=UserItem,
    status_code=status.HTTP_201_CREATED,
    summary="Create a user",
    dependencies=[Depends(log_sensitive_action("user:create"))],
)
async def create_user(
    payload: UserCreateRequest,
    store: KeyValueStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> UserItem:
    users = await load_users(store)
    if any(u.get("username") == payload.username for u in users):
        raise HTTPException(status_code=409, detail="Username already taken")

    password_hash = await asyncio.to_thread(hash_secret, payload.password, settings.bcrypt_rounds)
    user: dict[str, Any] = {
        "userId": str(uuid.uuid4()),
        "username": payload.username,
        "email": payload.email,
        "password": password_hash,
        "admin": payload.admin,
        "plan": payload.plan,
        "accessTo": [],
    }
    users.append(user)
    await store.set(USERS_KEY, users)
    return UserItem(**public_user(user))


@router.delete(
    "/users/{user_id}",
    response_model=OperationResponse,
    summary="Delete a user",
)
async def remove_user(
    user_id: str,
    request: Request,
    admin: dict = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
    audit: AuditLog = Depends(get_audit_log),
) -> OperationResponse:
    if user_id == admin["userId"]:
        raise HTTPException(status_code=400, detail="Administrators cannot delete themselves")
    removed = await delete_user(store, user_id)
    if removed is None:
        raise HTTPException(status_code=404, detail="User not found")
    await audit.log(
        admin["userId"],
        admin.get("username", ""),
        "user:delete",
        client_ip(request),
        {
            "targetUserId": user_id,
            "targetUsername": removed.get("username"),
            "removedInstances": removed["removedInstances"],
        },
    )
    return OperationResponse(message="User deleted")


# ---- Instances ----


@router.delete(
    "/instances/{instance_id}",
    response_model=OperationResponse,
    summary="Delete an instance",
)
async def remove_instance(
    instance_id: str,
    request: Request,
    admin: dict = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
    audit: AuditLog = Depends(get_audit_log),
) -> OperationResponse:
    removed = await delete_instance(store, instance_id)
    if removed is None:
        raise HTTPException(status_code=404, detail="Instance not found")
    await audit.log(
        admin["userId"],
        admin.get("username", ""),
        "instance:delete",
        client_ip(request),
        {"instanceId": instance_id, "ownerId": removed.get("userId")},
    )
    return OperationResponse(message="Instance deleted")


# ---- Panel settings and notices ----


@router.post("/settings", response_model=PanelSettingsResponse, summary="Update panel branding")
async def update_settings(
    request: Request,
    name: Optional[str] = Form(None, max_length=60),
    logo: Optional[str] = Form(None, max_length=500),
    clear_logo: bool = Form(False),
    admin: dict = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
    audit: AuditLog = Depends(get_audit_log),
    settings: Settings = Depends(get_settings),
) -> PanelSettingsResponse:
    changed: dict[str, Any] = {}
    if name is not None and name.strip():
        changed["name"] = name.strip()
    if clear_logo:
        changed["logo"] = False
    elif logo is not None and logo.strip():
        changed["logo"] = logo.strip()
    for key, value in changed.items():
        await store.set(key, value)
    if changed:
        await audit.log(
            admin["userId"], admin.get("username", ""), "config:change", client_ip(request), {"changed": changed}
        )
    branding = await load_branding(store, settings)
    return PanelSettingsResponse(name=branding["name"], logo=branding["logo"])


@router.post(
    "/notices",
    status_code=status.HTTP_201_CREATED,
    summary="Publish a notice on the instances page",
)
async def create_notice(
    payload: NoticeCreateRequest,
    request: Request,
    admin: dict = Depends(require_admin),
    store: KeyValueStore = Depends(get_store),
    audit: AuditLog = Depends(get_audit_log),
) -> dict:
    notice = {
        "id": uuid.uuid4().hex,
        "title": payload.title,
        "message": payload.message,
        "active": payload.active,
        "createdAt": _iso_utc(datetime.now(timezone.utc)),
    }
    notices = load_list(await store.get(NOTICES_KEY))
    notices.append(notice)
    await store.set(NOTICES_KEY, notices)
    await audit.log(
        admin["userId"], admin.get("username", ""), "notice:create", client_ip(request), {"noticeId": notice["id"]}
    )
    return {"success": True, "notice": notice}
