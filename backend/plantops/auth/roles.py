from __future__ import annotations

from enum import Enum
from typing import Optional


class UserRole(str, Enum):
    SUPER_ADMIN = "Super Admin"
    ADMIN = "Admin"
    MANAGER = "Manager"
    OPERATOR = "Operator"
    OUTSOURCING = "Outsourcing"
    AUTONOMOUS = "Autonomous"
    GUEST = "Guest"

    @classmethod
    def parse(cls, value: object) -> Optional["UserRole"]:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        normalized = value.strip().lower()
        for member in cls:
            if member.value.lower() == normalized:
                return member
        return None


USER_ADMIN_ROLES = frozenset({UserRole.SUPER_ADMIN, UserRole.ADMIN})


def is_super_admin(role: object) -> bool:
    return UserRole.parse(role) is UserRole.SUPER_ADMIN
