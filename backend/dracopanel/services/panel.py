"""Read helpers over the key-value store used by page handlers and admin routes."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from dracopanel.core.config import Settings
from dracopanel.db.store import KeyValueStore, load_list
from dracopanel.services.plans import build_plan_data

logger = logging.getLogger(__name__)

USERS_KEY = "users"
INSTANCES_KEY = "instances"
NODES_KEY = "nodes"
IMAGES_KEY = "images"
NOTICES_KEY = "notices"


class UserNotFoundError(LookupError):
    """Raised when a session or route refers to a user missing from the store."""


def user_instances_key(user_id: str) -> str:
    return f"{user_id}_instances"


def instance_key(instance_id: str) -> str:
    return f"{instance_id}_instance"


def node_key(node_id: str) -> str:
    return f"{node_id}_node"


async def load_branding(store: KeyValueStore, settings: Settings) -> dict[str, Any]:
    """Panel name, logo and free-form settings shown on every page."""

    name, logo, panel_settings = await asyncio.gather(
        store.get("name"), store.get("logo"), store.get("settings")
    )
    return {
        "name": name or settings.app_name,
        "logo": logo or False,
        "settings": panel_settings,
    }


async def load_users(store: KeyValueStore) -> list[dict[str, Any]]:
    return [u for u in load_list(await store.get(USERS_KEY)) if isinstance(u, dict)]


async def find_user(store: KeyValueStore, user_id: str) -> dict[str, Any] | None:
    for user in await load_users(store):
        if user.get("userId") == user_id:
            return user
    return None


async def load_active_notices(store: KeyValueStore) -> list[dict[str, Any]]:
    notices = load_list(await store.get(NOTICES_KEY))
    return [n for n in notices if isinstance(n, dict) and n.get("active")]


async def load_user_instances(store: KeyValueStore, user: dict[str, Any]) -> list[dict[str, Any]]:
    """Instances owned by the user followed by the ones shared with them."""

    instances = [i for i in load_list(await store.get(user_instances_key(user["userId"]))) if isinstance(i, dict)]
    for instance_id in user.get("accessTo") or []:
        shared = await store.get(instance_key(instance_id))
        if shared:
            instances.append(shared)
    return instances


async def load_nodes(store: KeyValueStore) -> list[dict[str, Any]]:
    node_ids = load_list(await store.get(NODES_KEY))
    nodes = await asyncio.gather(*(store.get(node_key(node_id)) for node_id in node_ids))
    found = [node for node in nodes if node is not None]
    logger.debug("Loaded nodes", extra={"requested": len(node_ids), "found": len(found)})
    return found


async def build_dashboard_context(
    store: KeyValueStore, settings: Settings, user_id: str, *, is_admin: bool
) -> dict[str, Any]:
    """Everything an authenticated page template needs."""

    user = await find_user(store, user_id)
    if user is None:
        raise UserNotFoundError("Authenticated user not found in database.")

    instances = await load_user_instances(store, user)
    admin_instances: list[dict[str, Any]] = []
    if is_admin:
        all_instances = load_list(await store.get(INSTANCES_KEY))
        admin_instances = [
            i for i in all_instances if isinstance(i, dict) and i.get("userId") == user_id
        ]

    context = await load_branding(store, settings)
    context.update(
        instances=instances,
        adminInstances=admin_instances,
        planData=build_plan_data(user.get("plan"), instances),
        nodes=await load_nodes(store),
        images=load_list(await store.get(IMAGES_KEY)),
    )
    return context


async def delete_instance(store: KeyValueStore, instance_id: str) -> dict[str, Any] | None:
    """Remove an instance from every list that references it.

    Returns the removed record, or ``None`` when the id is unknown.
    """

    record = await store.get(instance_key(instance_id))
    all_instances = load_list(await store.get(INSTANCES_KEY))
    if record is None:
        record = next((i for i in all_instances if isinstance(i, dict) and i.get("id") == instance_id), None)
    if record is None:
        return None

    remaining = [i for i in all_instances if not (isinstance(i, dict) and i.get("id") == instance_id)]
    await store.set(INSTANCES_KEY, remaining)

    owner_id = record.get("userId")
    if owner_id:
        owned = load_list(await store.get(user_instances_key(owner_id)))
        await store.set(
            user_instances_key(owner_id),
            [i for i in owned if not (isinstance(i, dict) and i.get("id") == instance_id)],
        )

    users = await load_users(store)
    changed = False
    for user in users:
        access = user.get("accessTo") or []
        if instance_id in access:
            user["accessTo"] = [i for i in access if i != instance_id]
            changed = True
    if changed:
        await store.set(USERS_KEY, users)

    await store.delete(instance_key(instance_id))
    return record


async def delete_user(store: KeyValueStore, user_id: str) -> dict[str, Any] | None:
    """Remove a user together with every instance they own.

    Returns the removed record with the ids of the deleted instances under
    ``removedInstances``, or ``None`` when the user is unknown.
    """

    if await find_user(store, user_id) is None:
        return None

    owned = load_list(await store.get(user_instances_key(user_id))) + [
        i for i in load_list(await store.get(INSTANCES_KEY)) if isinstance(i, dict) and i.get("userId") == user_id
    ]
    owned_ids: list[str] = []
    for item in owned:
        if isinstance(item, dict) and item.get("id") and item["id"] not in owned_ids:
            owned_ids.append(item["id"])
    for instance_id in owned_ids:
        await delete_instance(store, instance_id)

    # delete_instance rewrites the users list when it prunes accessTo
    users = await load_users(store)
    target = next((u for u in users if u.get("userId") == user_id), None)
    await store.set(USERS_KEY, [u for u in users if u.get("userId") != user_id])
    await store.delete(user_instances_key(user_id))
    return {**(target or {}), "removedInstances": owned_ids}


def public_user(user: dict[str, Any]) -> dict[str, Any]:
    """User record without the password hash."""

    return {k: v for k, v in user.items() if k != "password"}


__all__ = [
    "IMAGES_KEY",
    "INSTANCES_KEY",
    "NODES_KEY",
    "NOTICES_KEY",
    "USERS_KEY",
    "UserNotFoundError",
    "build_dashboard_context",
    "delete_instance",
    "delete_user",
    "find_user",
    "instance_key",
    "load_active_notices",
    "load_branding",
    "load_nodes",
    "load_user_instances",
    "load_users",
    "node_key",
    "public_user",
    "user_instances_key",
]
