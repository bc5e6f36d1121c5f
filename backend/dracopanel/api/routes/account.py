"""Per-user endpoints reachable by the user themselves or an administrator."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from dracopanel.db.store import KeyValueStore
from dracopanel.deps import get_audit_log, get_store
from dracopanel.schemas.panel import InstanceListResponse, PlanChangeRequest, UserItem
from dracopanel.security import client_ip, require_admin_or_self, verify_csrf
from dracopanel.services.audit import AuditLog
from dracopanel.services.panel import USERS_KEY, find_user, load_user_instances, load_users, public_user
from dracopanel.services.plans import PLANS

router = APIRouter(prefix="/users", tags=["users"], dependencies=[Depends(verify_csrf)])


@router.get("/{user_id}/instances", response_model=InstanceListResponse, summary="List a user's instances")
async def list_user_instances(
    user_id: str,
    _: dict = Depends(require_admin_or_self),
    store: KeyValueStore = Depends(get_store),
) -> InstanceListResponse:
    target = await find_user(store, user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")
    return InstanceListResponse(instances=await load_user_instances(store, target))


@router.post("/{user_id}/plan", response_model=UserItem, summary="Change a user's plan")
async def change_plan(
    user_id: str,
    payload: PlanChangeRequest,
    request: Request,
    user: dict[str, Any] = Depends(require_admin_or_self),
    store: KeyValueStore = Depends(get_store),
    audit: AuditLog = Depends(get_audit_log),
):
    """Plans are assigned by administrators; self-service changes are blocked."""

    actor_id, actor_name, ip = user["userId"], user.get("username", ""), client_ip(request)
    metadata = {"targetUserId": user_id, "plan": payload.plan}
    await audit.log(actor_id, actor_name, "plan:change_attempt", ip, metadata)

    if not user.get("admin"):
        await audit.log(actor_id, actor_name, "plan:change_blocked", ip, {**metadata, "reason": "not_admin"})
        return JSONResponse(
            {"success": False, "message": "Plan changes must be made by an administrator"},
            status_code=status.HTTP_403_FORBIDDEN,
        )

    if payload.plan not in PLANS:
        raise HTTPException(status_code=400, detail=f"Unknown plan: {payload.plan}")

    users = await load_users(store)
    target = next((u for u in users if u.get("userId") == user_id), None)
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")

    previous = target.get("plan")
    target["plan"] = payload.plan
    await store.set(USERS_KEY, users)
    await audit.log(actor_id, actor_name, "plan:changed", ip, {**metadata, "previous": previous})
    return UserItem(**public_user(target))
