"""Exception handlers that keep internals out of client responses."""
from __future__ import annotations

import logging
import traceback

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse, Response

from dracopanel.deps import build_audit_log, resolve_settings
from dracopanel.security import PanelAccessError, actor_of, client_ip

logger = logging.getLogger(__name__)


async def handle_access_error(request: Request, exc: PanelAccessError) -> Response:
    if not exc.wants_json and exc.redirect_to:
        return RedirectResponse(exc.redirect_to, status_code=status.HTTP_302_FOUND)
    return JSONResponse(
        {"success": False, "message": exc.message},
        status_code=exc.status_code,
        headers=exc.headers,
    )


def _validation_messages(exc: RequestValidationError) -> list[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = error.get("msg", "Invalid value")
        messages.append(f"{location}: {message}" if location else message)
    return messages


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = _validation_messages(exc)
    user_id, username = actor_of(request)
    audit = build_audit_log(resolve_settings(request))
    await audit.log(
        user_id,
        username,
        "validation:failed",
        client_ip(request),
        {"path": request.url.path, "errors": messages},
    )
    return JSONResponse(
        {"success": False, "message": "Invalid data", "errors": messages},
        status_code=status.HTTP_400_BAD_REQUEST,
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Log full details to the audit trail, return a generic body."""

    settings = resolve_settings(request)
    logger.error(
        "Unhandled error on %s %s",
        request.method,
        request.url.path,
        exc_info=(type(exc), exc, exc.__traceback__),
    )
    user_id, username = actor_of(request)
    try:
        await build_audit_log(settings).log(
            user_id,
            username,
            "error:occurred",
            client_ip(request),
            {
                "error": str(exc),
                "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                "path": request.url.path,
                "method": request.method,
            },
        )
    except Exception:
        logger.exception("Could not audit unhandled error")

    body: dict = {"success": False, "message": "Internal server error"}
    if settings.is_development:
        body["details"] = str(exc)
    status_code = getattr(exc, "status_code", None)
    if not isinstance(status_code, int) or not 400 <= status_code <= 599:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return JSONResponse(body, status_code=status_code)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PanelAccessError, handle_access_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, handle_unexpected_error)


__all__ = [
    "handle_access_error",
    "handle_unexpected_error",
    "handle_validation_error",
    "register_exception_handlers",
]
