from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel

from plantops.auth.roles import UserRole


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True, max_length=64)
    full_name: Optional[str] = Field(default=None, max_length=128)
    hashed_password: str = Field(max_length=256)
    role: str = Field(default=UserRole.GUEST.value, max_length=64)
    is_active: bool = Field(default=True, nullable=False)
    last_active: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=_utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=_utcnow, nullable=False)

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def mark_active(self) -> None:
        self.last_active = _utcnow()
