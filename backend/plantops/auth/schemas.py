from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from plantops.auth.user_model import User
from plantops.permissions.matrix import PermissionMatrix


class UserProfile(BaseModel):
    """A user together with its resolved permission matrix."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    full_name: Optional[str] = None
    role: str
    is_active: bool
    last_active: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    permissions: PermissionMatrix = Field(default_factory=PermissionMatrix)


def build_user_profile(user: User, matrix: PermissionMatrix) -> UserProfile:
    return UserProfile(
        id=user.id,
        username=user.username,
        full_name=user.full_name,
        role=user.role,
        is_active=user.is_active,
        last_active=user.last_active,
        created_at=user.created_at,
        updated_at=user.updated_at,
        permissions=matrix,
    )
