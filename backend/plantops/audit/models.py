from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class AuditLog(SQLModel, table=True):
    """Activity trail: who did what to which record."""

    __tablename__ = "audit_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    when: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    actor_id: Optional[int] = Field(default=None, index=True)
    actor_username: Optional[str] = Field(default=None, max_length=64, index=True)
    action: str = Field(max_length=64, index=True)
    target_type: Optional[str] = Field(default=None, max_length=32)
    target_id: Optional[str] = Field(default=None, max_length=64)
    meta: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON(none_as_null=True), nullable=True))
    ip: Optional[str] = Field(default=None, max_length=64)
    user_agent: Optional[str] = Field(default=None, max_length=256)
    correlation_id: Optional[str] = Field(default=None, max_length=64)
