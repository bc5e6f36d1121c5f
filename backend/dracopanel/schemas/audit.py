"""Schemas for audit log queries."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AuditEntryItem(BaseModel):
    userId: str
    username: str
    action: str
    ip: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str
    severity: str


class AuditLogListResponse(BaseModel):
    success: bool = True
    logs: List[AuditEntryItem]
    count: int
