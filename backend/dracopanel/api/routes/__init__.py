"""Route registrations."""
from fastapi import APIRouter

from dracopanel.api.routes import account, admin, auth, external, instances


panel_router = APIRouter()
panel_router.include_router(auth.router)
panel_router.include_router(instances.router)
panel_router.include_router(admin.router)
panel_router.include_router(account.router)
panel_router.include_router(external.router)

__all__ = ["panel_router"]
