from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from sqlalchemy import JSON, Column, Text
from sqlmodel import Field, SQLModel


class PermissionLevel(str, Enum):
    """Ordered access tier. Higher levels include the lower ones."""

    NONE = "NONE"
    READ = "READ"
    WRITE = "WRITE"
    ADMIN = "ADMIN"

    @classmethod
    def _missing_(cls, value: object) -> Optional["PermissionLevel"]:
        if isinstance(value, str):
            normalized = value.strip().upper()
            for member in cls:
                if member.value == normalized:
                    return member
        return None

    @classmethod
    def parse(cls, value: Any) -> Optional["PermissionLevel"]:
        """Return the matching level or None; never raises."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except (ValueError, TypeError):
            return None

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    def includes(self, required: "PermissionLevel") -> bool:
        return self.rank >= required.rank


_LEVEL_RANK = {
    PermissionLevel.NONE: 0,
    PermissionLevel.READ: 1,
    PermissionLevel.WRITE: 2,
    PermissionLevel.ADMIN: 3,
}


class PermissionModule(str, Enum):
    DASHBOARD = "dashboard"
    PLANT_OPERATIONS = "plant_operations"
    INSPECTION = "inspection"
    PROJECT_MANAGEMENT = "project_management"

    @classmethod
    def parse(cls, value: Any) -> Optional["PermissionModule"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except (ValueError, TypeError):
            return None

    @property
    def is_scoped(self) -> bool:
        return self is PermissionModule.PLANT_OPERATIONS


SCALAR_MODULES = (
    PermissionModule.DASHBOARD,
    PermissionModule.INSPECTION,
    PermissionModule.PROJECT_MANAGEMENT,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Permission(SQLModel, table=True):
    """Catalog row granting one level on one module (legacy shape)."""

    __tablename__ = "permissions"

    id: Optional[int] = Field(default=None, primary_key=True)
    module_name: str = Field(index=True, max_length=64)
    permission_level: str = Field(max_length=16)
    plant_units: Optional[List[dict]] = Field(default=None, sa_column=Column(JSON(none_as_null=True), nullable=True))
    description: Optional[str] = Field(default=None, max_length=256)


class UserPermission(SQLModel, table=True):
    """
    Per-user permission row.

    Legacy rows point at a ``permissions`` catalog entry through ``permission_id``;
    newer rows carry the whole matrix as JSON text in ``permissions_data``.
    """

    __tablename__ = "user_permissions"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    permission_id: Optional[int] = Field(default=None, foreign_key="permissions.id")
    permissions_data: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    is_custom_permissions: bool = Field(default=False, nullable=False)
    role: Optional[str] = Field(default=None, max_length=64)
    updated_at: datetime = Field(default_factory=_utcnow, nullable=False)


class DefaultPermissions(SQLModel, table=True):
    """Stored default matrix per role, overriding the built-in defaults."""

    __tablename__ = "default_permissions"

    role: str = Field(primary_key=True, max_length=64)
    permissions_data: str = Field(sa_column=Column(Text, nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, nullable=False)
