#!/usr/bin/env python3
"""Hash every API key that is still stored in plaintext.

Usage:
  python backend/bin/migrate_api_keys.py

Reads the store location (KV_STORE_PATH or DATABASE_URL) from backend/.env or
the environment. Running it again after a successful migration is a no-op.
Exits 0 on success and 1 when the migration fails.
"""
from __future__ import annotations

import asyncio
import logging

from dracopanel.core.config import get_settings
from dracopanel.db.session import dispose_engines
from dracopanel.deps import build_api_key_service

logger = logging.getLogger("dracopanel.bin.migrate_api_keys")


async def main() -> int:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")

    service = build_api_key_service(settings)
    try:
        result = await service.migrate_plaintext_keys()
    except Exception:
        logger.exception("API key migration failed")
        return 1
    finally:
        await dispose_engines()

    if result.migrated:
        logger.info("Migrated %d of %d API keys", result.migrated, result.total)
    else:
        logger.info("No plaintext API keys found (%d total)", result.total)
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
