"""Jinja2 rendering with the CSRF token injected into every page."""
from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.templating import Jinja2Templates
from starlette.responses import Response

from dracopanel.core.config import PACKAGE_DIR
from dracopanel.security import ensure_csrf_token

TEMPLATES_DIR = PACKAGE_DIR / "templates"
STATIC_DIR = PACKAGE_DIR / "static"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def render(
    request: Request,
    name: str,
    context: dict[str, Any] | None = None,
    *,
    status_code: int = 200,
) -> Response:
    """Render ``name``; templates read the token as ``csrf_token``."""

    payload = dict(context or {})
    payload.setdefault("user", getattr(request.state, "user", None))
    payload["csrf_token"] = ensure_csrf_token(request)
    return templates.TemplateResponse(request, name, payload, status_code=status_code)
