"""FastAPI dependency helpers."""
from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, Request

from dracopanel.core.config import Settings, get_settings
from dracopanel.db.session import get_session_maker
from dracopanel.db.store import JSONFileStore, KeyValueStore, SQLKeyValueStore
from dracopanel.services.api_keys import ApiKeyService
from dracopanel.services.audit import AuditLog
from dracopanel.services.rate_limit import RateConfig, RateLimiter


def resolve_settings(request: Request) -> Settings:
    """Settings for code running outside dependency injection.

    Middleware and exception handlers honour ``dependency_overrides`` so tests
    can swap configuration the same way they do for routes.
    """

    override = request.app.dependency_overrides.get(get_settings)
    return override() if callable(override) else get_settings()


@lru_cache
def _create_file_store(path: str) -> JSONFileStore:
    return JSONFileStore(path)


@lru_cache
def _create_sql_store(database_url: str, database_echo: bool) -> SQLKeyValueStore:
    settings = Settings(database_url=database_url, database_echo=database_echo)
    return SQLKeyValueStore(get_session_maker(settings))


def build_store(settings: Settings) -> KeyValueStore:
    if settings.database_url:
        return _create_sql_store(settings.database_url, settings.database_echo)
    return _create_file_store(settings.kv_store_path)


@lru_cache
def _create_audit_log(
    store: KeyValueStore, log_dir: str, max_entries: int, default_limit: int
) -> AuditLog:
    return AuditLog(store, log_dir, max_entries=max_entries, default_limit=default_limit)


def build_audit_log(settings: Settings) -> AuditLog:
    return _create_audit_log(
        build_store(settings),
        settings.audit_log_dir,
        settings.audit_max_entries,
        settings.audit_default_limit,
    )


@lru_cache
def _create_api_key_service(store: KeyValueStore, audit: AuditLog, rounds: int) -> ApiKeyService:
    return ApiKeyService(store, audit, rounds=rounds)


def build_api_key_service(settings: Settings) -> ApiKeyService:
    return _create_api_key_service(build_store(settings), build_audit_log(settings), settings.bcrypt_rounds)


@lru_cache
def _create_rate_limiter(window_seconds: int, max_requests: int) -> RateLimiter:
    return RateLimiter(RateConfig(window_seconds=window_seconds, max_requests=max_requests))


def get_store(settings: Settings = Depends(get_settings)) -> KeyValueStore:
    """Return the shared key-value store for the configured backend."""

    return build_store(settings)


def get_audit_log(settings: Settings = Depends(get_settings)) -> AuditLog:
    return build_audit_log(settings)


def get_api_key_service(settings: Settings = Depends(get_settings)) -> ApiKeyService:
    return build_api_key_service(settings)


def get_rate_limiter(settings: Settings = Depends(get_settings)) -> RateLimiter:
    return _create_rate_limiter(
        int(settings.api_key_rate_window_seconds), int(settings.api_key_rate_max_requests)
    )


def reset_caches() -> None:
    """Drop shared stores and services; used by tests between configurations."""

    for factory in (
        _create_file_store,
        _create_sql_store,
        _create_audit_log,
        _create_api_key_service,
        _create_rate_limiter,
    ):
        factory.cache_clear()
