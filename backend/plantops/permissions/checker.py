from __future__ import annotations

from typing import Any, Optional, Protocol, Union

from plantops.auth.roles import is_super_admin
from plantops.permissions.matrix import PermissionMatrix, PlantScope
from plantops.permissions.models import PermissionLevel, PermissionModule

ScopeLike = Union[PlantScope, tuple, dict, None]


class PermissionHolder(Protocol):
    role: Any
    permissions: Optional[PermissionMatrix]


class PermissionChecker:
    """
    Evaluates permission checks against a user's matrix.

    Every lookup miss resolves to NONE, and an unknown module or level is a
    denial. Super Admin passes every check.
    """

    def __init__(self, user: Optional[PermissionHolder]) -> None:
        self.user = user

    @property
    def _matrix(self) -> Optional[PermissionMatrix]:
        if self.user is None:
            return None
        matrix = getattr(self.user, "permissions", None)
        return matrix if isinstance(matrix, PermissionMatrix) else None

    def _is_super_admin(self) -> bool:
        return self.user is not None and is_super_admin(getattr(self.user, "role", None))

    def has_permission(
        self,
        module: Union[str, PermissionModule],
        required_level: Union[str, PermissionLevel] = PermissionLevel.READ,
        scope: ScopeLike = None,
    ) -> bool:
        if self.user is None:
            return False

        parsed_module = PermissionModule.parse(module)
        required = PermissionLevel.parse(required_level)
        if parsed_module is None or required is None:
            return False

        if self._is_super_admin():
            return True
        if required is PermissionLevel.NONE:
            return True

        matrix = self._matrix
        if matrix is None:
            return False

        if parsed_module is PermissionModule.PLANT_OPERATIONS:
            plant_scope = PlantScope.coerce(scope)
            if scope is not None and plant_scope is None:
                return False
            if plant_scope is None:
                # No scope: any category/unit reaching the level is enough.
                return any(level.includes(required) for _, _, level in matrix.iter_plant_levels())
            return matrix.level_for(parsed_module, plant_scope).includes(required)

        return matrix.level_for(parsed_module).includes(required)

    def has_plant_operation_permission(
        self,
        category: str,
        unit: str,
        required_level: Union[str, PermissionLevel] = PermissionLevel.READ,
    ) -> bool:
        return self.has_permission(
            PermissionModule.PLANT_OPERATIONS,
            required_level,
            PlantScope(category=category, unit=unit),
        )

    def get_permission_level(self, module: Union[str, PermissionModule]) -> PermissionLevel:
        """Highest level the user holds on ``module`` (across all plant scopes)."""
        parsed_module = PermissionModule.parse(module)
        if self.user is None or parsed_module is None:
            return PermissionLevel.NONE
        if self._is_super_admin():
            return PermissionLevel.ADMIN
        matrix = self._matrix
        if matrix is None:
            return PermissionLevel.NONE
        return matrix.level_for(parsed_module)

    def can_access_dashboard(self) -> bool:
        return self.has_permission(PermissionModule.DASHBOARD, PermissionLevel.READ)

    def can_access_plant_operations(self) -> bool:
        return self.has_permission(PermissionModule.PLANT_OPERATIONS, PermissionLevel.READ)

    def can_access_inspection(self) -> bool:
        return self.has_permission(PermissionModule.INSPECTION, PermissionLevel.READ)

    def can_access_project_management(self) -> bool:
        return self.has_permission(PermissionModule.PROJECT_MANAGEMENT, PermissionLevel.READ)

    def can_perform_write_actions(self, module: Union[str, PermissionModule]) -> bool:
        return self.has_permission(module, PermissionLevel.WRITE)

    def can_perform_admin_actions(self, module: Union[str, PermissionModule]) -> bool:
        return self.has_permission(module, PermissionLevel.ADMIN)
