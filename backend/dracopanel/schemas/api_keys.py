"""Schemas for API key administration."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ApiKeyCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=100, description="Human readable key name")
    user_id: Optional[str] = Field(default=None, alias="userId", description="Owner of the key")
    expires_at: Optional[datetime] = Field(
        default=None, alias="expiresAt", description="ISO-8601 expiry; omitted keys never expire"
    )

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value


class ApiKeyItem(BaseModel):
    id: str
    name: str
    userId: Optional[str] = None
    status: str
    hashed: bool
    createdAt: str
    lastUsed: Optional[str] = None
    usageCount: int = 0
    expiresAt: Optional[str] = None


class ApiKeyCreateResponse(ApiKeyItem):
    plainKey: str = Field(..., description="Plaintext key, returned only once")


class MigrationResponse(BaseModel):
    migrated: int
    total: int
