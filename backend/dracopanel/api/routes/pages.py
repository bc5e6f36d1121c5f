"""Page routes generated from a JSON description.

The file holds a list of ``{"path", "template", "requiresAuth"}`` objects.
Authenticated pages get the user's instances, plan usage, nodes and images;
public pages only the panel branding.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response
from jinja2 import TemplateError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dracopanel.core.config import Settings, get_settings
from dracopanel.db.store import KeyValueStore, KeyValueStoreError
from dracopanel.deps import get_store
from dracopanel.security import require_user
from dracopanel.services.panel import UserNotFoundError, build_dashboard_context, load_branding
from dracopanel.templating import render

logger = logging.getLogger(__name__)


class PageConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    path: str = Field(..., pattern=r"^/")
    template: str = Field(..., min_length=1)
    requires_auth: bool = Field(default=False, alias="requiresAuth")


def load_pages(path: str | Path) -> list[PageConfig]:
    """Read page definitions; a missing or invalid file yields no pages."""

    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        return [PageConfig.model_validate(item) for item in raw]
    except (OSError, TypeError, ValueError, ValidationError):
        logger.exception("Error setting up page routes from %s", path)
        return []


def _internal_error(template: str) -> Response:
    logger.exception("Error rendering page %s", template)
    return PlainTextResponse("Internal Server Error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


def _authenticated_page(template: str) -> Callable:
    async def page(
        request: Request,
        user: dict[str, Any] = Depends(require_user),
        store: KeyValueStore = Depends(get_store),
        settings: Settings = Depends(get_settings),
    ) -> Response:
        try:
            context = await build_dashboard_context(
                store, settings, user["userId"], is_admin=bool(user.get("admin"))
            )
            return render(request, template, {"user": user, **context})
        except (UserNotFoundError, KeyValueStoreError, TemplateError):
            return _internal_error(template)

    return page


def _public_page(template: str) -> Callable:
    async def page(
        request: Request,
        store: KeyValueStore = Depends(get_store),
        settings: Settings = Depends(get_settings),
    ) -> Response:
        try:
            return render(request, template, await load_branding(store, settings))
        except (KeyValueStoreError, TemplateError):
            return _internal_error(template)

    return page


def build_pages_router(pages: list[PageConfig]) -> APIRouter:
    router = APIRouter(include_in_schema=False)

    @router.get("/")
    async def index() -> RedirectResponse:
        return RedirectResponse("/instances", status_code=status.HTTP_302_FOUND)

    for page in pages:
        endpoint = _authenticated_page(page.template) if page.requires_auth else _public_page(page.template)
        router.add_api_route(
            page.path,
            endpoint,
            methods=["GET"],
            response_class=HTMLResponse,
            name=f"page:{page.path}",
        )
        logger.debug("Registered page route", extra={"path": page.path, "template": page.template})
    return router
