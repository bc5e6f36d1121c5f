"""Request security: session authentication, admin gating, CSRF and API keys.

Every gate is a FastAPI dependency. Rejections raise :class:`PanelAccessError`
subclasses which the handlers in :mod:`dracopanel.errors` turn into a JSON
error or a browser redirect. Each decision is written to the audit log.
"""
from __future__ import annotations

import hmac
import logging
import secrets
from typing import Any, Callable

from fastapi import Depends, Request, status

from dracopanel.deps import get_api_key_service, get_audit_log, get_rate_limiter, get_store
from dracopanel.db.store import KeyValueStore
from dracopanel.services.api_keys import ApiKey, ApiKeyService
from dracopanel.services.audit import AuditLog
from dracopanel.services.panel import find_user
from dracopanel.services.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

SESSION_USER_KEY = "user_id"
SESSION_CSRF_KEY = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"
CSRF_FORM_FIELD = "_csrf"
UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
REDACTED_FIELDS = frozenset({"password", "_csrf", "key", "plainKey", "token"})

ANONYMOUS = "anonymous"


class PanelAccessError(Exception):
    """Base class for rejected requests."""

    status_code = status.HTTP_403_FORBIDDEN
    message = "Access denied"

    def __init__(
        self,
        message: str | None = None,
        *,
        wants_json: bool = True,
        redirect_to: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        self.wants_json = wants_json
        self.redirect_to = redirect_to
        self.headers = headers


class AuthenticationRequired(PanelAccessError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Authentication required"


class AdminRequired(PanelAccessError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Administrator privileges required"


class CSRFError(PanelAccessError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Invalid CSRF token"


class RateLimited(PanelAccessError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    message = "Too many requests"


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def wants_json(request: Request) -> bool:
    """True for AJAX/API callers, False for browser navigation."""

    if request.headers.get("x-requested-with", "").lower() == "xmlhttprequest":
        return True
    return "application/json" in request.headers.get("accept", "")


def actor_of(request: Request) -> tuple[str, str]:
    """(user id, username) of the request's user, or anonymous."""

    user = getattr(request.state, "user", None)
    if not user:
        return ANONYMOUS, ANONYMOUS
    return str(user.get("userId", ANONYMOUS)), str(user.get("username", ANONYMOUS))


# ---------------------
# Sessions
# ---------------------


async def get_current_user(
    request: Request, store: KeyValueStore = Depends(get_store)
) -> dict[str, Any] | None:
    """Load the logged-in user from the session, if any."""

    cached = getattr(request.state, "user", None)
    if cached is not None:
        return cached
    user_id = request.session.get(SESSION_USER_KEY)
    if not user_id:
        return None
    user = await find_user(store, user_id)
    if user is None:
        logger.info("Session refers to a deleted user", extra={"user_id": user_id})
        request.session.pop(SESSION_USER_KEY, None)
        return None
    request.state.user = user
    return user


def login_session(request: Request, user: dict[str, Any]) -> None:
    request.session[SESSION_USER_KEY] = user["userId"]
    request.state.user = user


def logout_session(request: Request) -> None:
    request.session.pop(SESSION_USER_KEY, None)
    request.state.user = None


async def require_user(
    request: Request,
    user: dict[str, Any] | None = Depends(get_current_user),
    audit: AuditLog = Depends(get_audit_log),
) -> dict[str, Any]:
    """Reject anonymous callers with 401 (JSON) or a redirect to the login page."""

    if user is None:
        await audit.log(
            ANONYMOUS,
            ANONYMOUS,
            "access:unauthorized",
            client_ip(request),
            {
                "path": request.url.path,
                "method": request.method,
                "userAgent": request.headers.get("user-agent"),
            },
        )
        raise AuthenticationRequired(wants_json=wants_json(request), redirect_to="/auth/login")
    return user


async def require_admin(
    request: Request,
    user: dict[str, Any] | None = Depends(get_current_user),
    audit: AuditLog = Depends(get_audit_log),
) -> dict[str, Any]:
    """Allow administrators only; every decision is audited."""

    json_caller = wants_json(request)
    path = request.url.path
    if user is None:
        await audit.log(
            ANONYMOUS,
            ANONYMOUS,
            "admin:access_denied",
            client_ip(request),
            {"path": path, "reason": "not_authenticated"},
        )
        raise AuthenticationRequired(wants_json=json_caller, redirect_to="/auth/login")

    if not user.get("admin"):
        await audit.log(
            user["userId"],
            user.get("username", ""),
            "admin:access_denied",
            client_ip(request),
            {"path": path, "reason": "insufficient_privileges"},
        )
        raise AdminRequired(wants_json=json_caller, redirect_to="/")

    await audit.log(
        user["userId"], user.get("username", ""), "admin:access_granted", client_ip(request), {"path": path}
    )
    return user


async def _target_user_id(request: Request) -> str | None:
    target = request.path_params.get("user_id")
    if target:
        return str(target)
    if "application/json" not in request.headers.get("content-type", ""):
        return None
    try:
        body = await request.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        value = body.get("userId") or body.get("user")
        return str(value) if value else None
    return None


async def require_admin_or_self(
    request: Request,
    user: dict[str, Any] | None = Depends(get_current_user),
    audit: AuditLog = Depends(get_audit_log),
) -> dict[str, Any]:
    """Admins reach any user's resources; other users only their own."""

    if user is None:
        raise AuthenticationRequired()

    target = await _target_user_id(request)
    if user.get("admin"):
        await audit.log(
            user["userId"],
            user.get("username", ""),
            "admin:resource_access",
            client_ip(request),
            {"targetUserId": target, "path": request.url.path},
        )
        return user

    if target is not None and user["userId"] == target:
        return user

    await audit.log(
        user["userId"],
        user.get("username", ""),
        "access:denied",
        client_ip(request),
        {"targetUserId": target, "path": request.url.path, "reason": "not_owner"},
    )
    raise PanelAccessError()


# ---------------------
# CSRF
# ---------------------


def ensure_csrf_token(request: Request) -> str:
    """Return the session's CSRF token, creating it on first use."""

    token = request.session.get(SESSION_CSRF_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        request.session[SESSION_CSRF_KEY] = token
    return token


async def _submitted_csrf_token(request: Request) -> str | None:
    header = request.headers.get(CSRF_HEADER)
    if header:
        return header
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        value = form.get(CSRF_FORM_FIELD)
        return value if isinstance(value, str) else None
    return None


async def verify_csrf(request: Request) -> None:
    """Reject state-changing requests without the session's CSRF token."""

    if request.method not in UNSAFE_METHODS:
        return
    expected = request.session.get(SESSION_CSRF_KEY)
    submitted = await _submitted_csrf_token(request)
    if not expected or not submitted or not hmac.compare_digest(expected.encode(), submitted.encode()):
        logger.warning(
            "Rejected request with missing or invalid CSRF token",
            extra={"path": request.url.path, "method": request.method, "client_ip": client_ip(request)},
        )
        raise CSRFError(wants_json=True)


# ---------------------
# Sensitive actions
# ---------------------


def redact(payload: Any) -> Any:
    if isinstance(payload, dict):
        return {
            k: ("[redacted]" if k in REDACTED_FIELDS else redact(v)) for k, v in payload.items()
        }
    if isinstance(payload, list):
        return [redact(v) for v in payload]
    return payload


async def _body_for_audit(request: Request) -> Any:
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            return redact(await request.json())
        except ValueError:
            return None
    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        return redact({k: v for k, v in form.items() if isinstance(v, str)})
    return None


def log_sensitive_action(action: str) -> Callable:
    """Audit ``<action>:attempt`` now and the outcome once the response is ready.

    The outcome entry is written by the HTTP middleware in ``main`` which
    reads ``request.state.sensitive_action``.
    """

    async def _dep(
        request: Request,
        user: dict[str, Any] | None = Depends(get_current_user),
        audit: AuditLog = Depends(get_audit_log),
    ) -> None:
        user_id, username = (user["userId"], user.get("username", "")) if user else (ANONYMOUS, ANONYMOUS)
        await audit.log(
            user_id,
            username,
            f"{action}:attempt",
            client_ip(request),
            {"path": request.url.path, "method": request.method, "body": await _body_for_audit(request)},
        )
        request.state.sensitive_action = action

    return _dep


# ---------------------
# API keys
# ---------------------


async def require_api_key(
    request: Request,
    service: ApiKeyService = Depends(get_api_key_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
    audit: AuditLog = Depends(get_audit_log),
) -> ApiKey:
    """Authenticate with the ``X-API-Key`` header."""

    header = request.headers.get("X-API-Key")
    if not header:
        raise AuthenticationRequired("API key required")
    api_key = await service.verify_key(header)
    if api_key is None:
        await audit.log(
            ANONYMOUS,
            ANONYMOUS,
            "api_key:unauthorized_access",
            client_ip(request),
            {"path": request.url.path},
        )
        raise AuthenticationRequired("Invalid API key")
    if not limiter.allow(api_key.id):
        raise RateLimited(headers={"Retry-After": str(limiter.retry_after(api_key.id))})
    request.state.api_key = api_key
    return api_key


__all__ = [
    "AdminRequired",
    "AuthenticationRequired",
    "CSRFError",
    "PanelAccessError",
    "RateLimited",
    "actor_of",
    "client_ip",
    "ensure_csrf_token",
    "get_current_user",
    "log_sensitive_action",
    "login_session",
    "logout_session",
    "redact",
    "require_admin",
    "require_admin_or_self",
    "require_api_key",
    "require_user",
    "verify_csrf",
    "wants_json",
]
