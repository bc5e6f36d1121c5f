"""Instances overview page."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import HTMLResponse, PlainTextResponse, Response
from jinja2 import TemplateError

from dracopanel.core.config import Settings, get_settings
from dracopanel.db.store import KeyValueStore, KeyValueStoreError
from dracopanel.deps import get_store
from dracopanel.security import require_user
from dracopanel.services.panel import load_active_notices, load_branding
from dracopanel.templating import render

logger = logging.getLogger(__name__)

router = APIRouter(tags=["instances"], include_in_schema=False)


@router.get("/instances", response_class=HTMLResponse)
async def instances_page(
    request: Request,
    user: dict[str, Any] = Depends(require_user),
    store: KeyValueStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> Response:
    """Render the instances page with the currently active notices."""

    try:
        branding = await load_branding(store, settings)
        notices = await load_active_notices(store)
        return render(
            request,
            "instances.html",
            {"user": user, "name": branding["name"], "logo": branding["logo"], "notices": notices},
        )
    except (KeyValueStoreError, TemplateError):
        logger.exception("Error loading instances page")
        return PlainTextResponse("Internal Server Error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
