#!/usr/bin/env python3
"""Create an administrator account, or promote an existing user.

Usage:
  python backend/bin/create_admin.py --username admin --email admin@example.com
  python backend/bin/create_admin.py --username admin --password 's3cret-pass'

Prompts for the password when --password is omitted. Idempotent for the
username: an existing user is promoted and gets the new password.
"""
from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import uuid

from dracopanel.core.config import get_settings
from dracopanel.db.session import dispose_engines
from dracopanel.deps import build_audit_log, build_store
from dracopanel.services.api_keys import MAX_SECRET_BYTES, fits_bcrypt, hash_secret
from dracopanel.services.panel import USERS_KEY, load_users
from dracopanel.services.plans import DEFAULT_PLAN

logger = logging.getLogger("dracopanel.bin.create_admin")


async def main(args: argparse.Namespace) -> int:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")

    password = args.password or getpass.getpass("Password: ")
    if len(password) < 8 or not fits_bcrypt(password):
        logger.error("Password must be at least 8 characters and at most %d bytes", MAX_SECRET_BYTES)
        return 2

    store = build_store(settings)
    try:
        users = await load_users(store)
        password_hash = await asyncio.to_thread(hash_secret, password, settings.bcrypt_rounds)
        user = next((u for u in users if u.get("username") == args.username), None)
        if user is None:
            user = {
                "userId": str(uuid.uuid4()),
                "username": args.username,
                "email": args.email or "",
                "plan": DEFAULT_PLAN,
                "accessTo": [],
            }
            users.append(user)
            action = "user:create"
        else:
            action = "user:promote"
        user["password"] = password_hash
        user["admin"] = True
        await store.set(USERS_KEY, users)
        await build_audit_log(settings).log(
            "system", "system", action, "localhost", {"targetUserId": user["userId"], "admin": True}
        )
    finally:
        await dispose_engines()

    logger.info("Administrator %s ready (%s)", args.username, user["userId"])
    return 0


def parse_args() -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Create or promote a DracoPanel administrator")
    ap.add_argument("--username", required=True, help="Login name")
    ap.add_argument("--email", default=None, help="Contact email for a new account")
    ap.add_argument("--password", default=None, help="Password (prompted when omitted)")
    return ap.parse_args()


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main(parse_args())))
