"""External API authenticated with API keys."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from dracopanel.db.store import KeyValueStore
from dracopanel.deps import get_store
from dracopanel.schemas.panel import InstanceListResponse
from dracopanel.security import require_api_key
from dracopanel.services.api_keys import ApiKey
from dracopanel.services.panel import find_user, load_user_instances

router = APIRouter(prefix="/api/v1", tags=["external"])


@router.get("/instances", response_model=InstanceListResponse, summary="Instances of the key owner")
async def list_key_owner_instances(
    api_key: ApiKey = Depends(require_api_key),
    store: KeyValueStore = Depends(get_store),
) -> InstanceListResponse:
    owner = await find_user(store, api_key.user_id) if api_key.user_id else None
    if owner is None:
        return InstanceListResponse(instances=[])
    return InstanceListResponse(instances=await load_user_instances(store, owner))
