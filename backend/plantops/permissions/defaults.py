from __future__ import annotations

from typing import Dict, Iterable, Tuple

from plantops.auth.roles import UserRole
from plantops.permissions.matrix import PermissionMatrix, PlantOperationsPermissions
from plantops.permissions.models import PermissionLevel

PlantUnitPair = Tuple[str, str]

# level granted on every known plant unit, per role
_PLANT_WIDE_LEVEL: Dict[UserRole, PermissionLevel] = {
    UserRole.SUPER_ADMIN: PermissionLevel.ADMIN,
    UserRole.ADMIN: PermissionLevel.ADMIN,
    UserRole.OPERATOR: PermissionLevel.WRITE,
}

_SCALAR_DEFAULTS: Dict[UserRole, Dict[str, PermissionLevel]] = {
    UserRole.SUPER_ADMIN: {
        "dashboard": PermissionLevel.ADMIN,
        "inspection": PermissionLevel.ADMIN,
        "project_management": PermissionLevel.ADMIN,
    },
    UserRole.ADMIN: {
        "dashboard": PermissionLevel.ADMIN,
        "inspection": PermissionLevel.ADMIN,
        "project_management": PermissionLevel.ADMIN,
    },
    UserRole.OPERATOR: {
        "dashboard": PermissionLevel.READ,
    },
}


def _fill_plant_units(units: Iterable[PlantUnitPair], level: PermissionLevel) -> PlantOperationsPermissions:
    plant_ops: PlantOperationsPermissions = {}
    for category, unit in units:
        plant_ops.setdefault(category, {})[unit] = level
    return plant_ops


def default_matrix_for_role(role: object, plant_units: Iterable[PlantUnitPair] = ()) -> PermissionMatrix:
    """
    Built-in default matrix for ``role``.

    ``plant_units`` is the known (category, unit) catalog; roles with
    plant-wide access get their level on every entry. Unknown roles fall back
    to the Guest matrix (everything NONE).
    """
    parsed = UserRole.parse(role)
    if parsed is None:
        return PermissionMatrix()

    matrix = PermissionMatrix(**_SCALAR_DEFAULTS.get(parsed, {}))
    plant_level = _PLANT_WIDE_LEVEL.get(parsed)
    if plant_level is not None:
        matrix.plant_operations = _fill_plant_units(plant_units, plant_level)
    return matrix
