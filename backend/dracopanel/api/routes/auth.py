"""Session login and logout."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, Form, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from dracopanel.core.config import Settings, get_settings
from dracopanel.db.store import KeyValueStore
from dracopanel.deps import get_audit_log, get_store
from dracopanel.security import (
    client_ip,
    get_current_user,
    login_session,
    logout_session,
    verify_csrf,
)
from dracopanel.services.api_keys import verify_secret
from dracopanel.services.audit import AuditLog
from dracopanel.services.panel import load_branding, load_users
from dracopanel.templating import render

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"], dependencies=[Depends(verify_csrf)])


@router.get("/login", response_class=HTMLResponse, include_in_schema=False)
async def login_page(
    request: Request,
    user: dict[str, Any] | None = Depends(get_current_user),
    store: KeyValueStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> Response:
    if user is not None:
        return RedirectResponse("/instances", status_code=status.HTTP_302_FOUND)
    return render(request, "login.html", {**await load_branding(store, settings), "error": None})


@router.post("/login", include_in_schema=False)
async def login(
    request: Request,
    username: str = Form(..., max_length=50),
    password: str = Form(..., max_length=1024),
    store: KeyValueStore = Depends(get_store),
    audit: AuditLog = Depends(get_audit_log),
    settings: Settings = Depends(get_settings),
) -> Response:
    username = username.strip()
    user = next((u for u in await load_users(store) if u.get("username") == username), None)
    hashed = user.get("password") if user else None
    valid = bool(hashed) and await asyncio.to_thread(verify_secret, password, hashed)

    if not valid or user is None:
        await audit.log(
            user["userId"] if user else "anonymous",
            username or "anonymous",
            "login:failed",
            client_ip(request),
            {"reason": "invalid_credentials" if user else "unknown_user"},
        )
        context = {**await load_branding(store, settings), "error": "Invalid username or password"}
        return render(request, "login.html", context, status_code=status.HTTP_401_UNAUTHORIZED)

    login_session(request, user)
    await audit.log(user["userId"], user.get("username", ""), "login:success", client_ip(request))
    logger.info("User logged in", extra={"user_id": user["userId"]})
    return RedirectResponse("/instances", status_code=status.HTTP_303_SEE_OTHER)


@router.post("/logout", include_in_schema=False)
async def logout(
    request: Request,
    user: dict[str, Any] | None = Depends(get_current_user),
    audit: AuditLog = Depends(get_audit_log),
) -> Response:
    if user is not None:
        await audit.log(user["userId"], user.get("username", ""), "logout", client_ip(request))
    logout_session(request)
    return RedirectResponse("/auth/login", status_code=status.HTTP_303_SEE_OTHER)
