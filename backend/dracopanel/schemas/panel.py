"""Schemas for user, instance, notice and panel settings management."""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dracopanel.services.api_keys import MAX_SECRET_BYTES, fits_bcrypt

PlanName = Literal["Free", "Starter", "Intermediate", "Super"]


class UserCreateRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    email: Optional[str] = Field(default=None, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(..., min_length=8, max_length=72)
    admin: bool = False
    plan: PlanName = "Free"

    @field_validator("password")
    @classmethod
    def _password_fits_bcrypt(cls, value: str) -> str:
        if not fits_bcrypt(value):
            raise ValueError(f"password must be at most {MAX_SECRET_BYTES} bytes")
        return value


class UserItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    userId: str
    username: str
    email: Optional[str] = None
    admin: bool = False
    plan: str = "Free"
    accessTo: List[str] = Field(default_factory=list)


class PlanChangeRequest(BaseModel):
    plan: str = Field(..., min_length=1, max_length=50)


class NoticeCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=120)
    message: str = Field(..., min_length=1, max_length=2000)
    active: bool = True


class PanelSettingsResponse(BaseModel):
    success: bool = True
    name: str
    logo: Any = False


class InstanceListResponse(BaseModel):
    success: bool = True
    instances: List[Dict[str, Any]]


class OperationResponse(BaseModel):
    success: bool = True
    message: str
