"""FastAPI application entrypoint for the DracoPanel backend."""
from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from starlette.middleware.sessions import SessionMiddleware

from dracopanel import __version__
from dracopanel.api.routes import panel_router
from dracopanel.api.routes.pages import build_pages_router, load_pages
from dracopanel.core.config import get_settings
from dracopanel.db.session import dispose_engines
from dracopanel.deps import build_audit_log, resolve_settings
from dracopanel.errors import register_exception_handlers
from dracopanel.security import actor_of, client_ip
from dracopanel.templating import STATIC_DIR

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    await dispose_engines()


_settings = get_settings()

app = FastAPI(title="DracoPanel", version=__version__, lifespan=lifespan)

app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.session_secret,
    session_cookie="dracopanel_session",
    max_age=_settings.session_max_age,
    same_site="lax",
    https_only=_settings.session_https_only,
)

app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

register_exception_handlers(app)

app.include_router(panel_router)
app.include_router(build_pages_router(load_pages(_settings.pages_config_path)))


class HealthResponse(BaseModel):
    status: str = "ok"


@app.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check() -> HealthResponse:
    """Return service health information for monitoring and load-balancers."""
    return HealthResponse()


async def _log_sensitive_outcome(request: Request, status_code: int) -> None:
    action = getattr(request.state, "sensitive_action", None)
    if not action:
        return
    outcome = "success" if 200 <= status_code < 300 else "failed"
    user_id, username = actor_of(request)
    await build_audit_log(resolve_settings(request)).log(
        user_id,
        username,
        f"{action}:{outcome}",
        client_ip(request),
        {"statusCode": status_code, "path": request.url.path},
    )


@app.middleware("http")
async def audit_middleware(request: Request, call_next):
    # Correlation id
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    try:
        response = await call_next(request)
    except Exception:
        await _log_sensitive_outcome(request, 500)
        raise
    await _log_sensitive_outcome(request, response.status_code)
    response.headers["X-Request-Id"] = request_id
    return response
