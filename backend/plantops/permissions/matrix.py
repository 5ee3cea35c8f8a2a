from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from plantops.permissions.models import PermissionLevel, PermissionModule

PlantOperationsPermissions = Dict[str, Dict[str, PermissionLevel]]

_plant_operations_adapter: TypeAdapter[PlantOperationsPermissions] = TypeAdapter(PlantOperationsPermissions)


def parse_plant_operations(value: Any) -> Optional[PlantOperationsPermissions]:
    """Validate a ``category -> unit -> level`` mapping; None when it is not one."""
    if not isinstance(value, Mapping):
        return None
    try:
        return _plant_operations_adapter.validate_python(value)
    except ValidationError:
        return None


@dataclass(frozen=True)
class PlantScope:
    """A (category, unit) pair narrowing a plant_operations permission."""

    category: str
    unit: str

    @classmethod
    def coerce(cls, value: Union["PlantScope", Tuple[str, str], Mapping[str, str], None]) -> Optional["PlantScope"]:
        if value is None or isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            category, unit = value.get("category"), value.get("unit")
        elif isinstance(value, tuple) and len(value) == 2:
            category, unit = value
        else:
            return None
        if not isinstance(category, str) or not isinstance(unit, str):
            return None
        return cls(category=category, unit=unit)


class PermissionMatrix(BaseModel):
    """A user's access rights across the four fixed modules."""

    dashboard: PermissionLevel = PermissionLevel.NONE
    plant_operations: PlantOperationsPermissions = Field(default_factory=dict)
    inspection: PermissionLevel = PermissionLevel.NONE
    project_management: PermissionLevel = PermissionLevel.NONE

    def level_for(self, module: PermissionModule, scope: Optional[PlantScope] = None) -> PermissionLevel:
        if module is PermissionModule.PLANT_OPERATIONS:
            if scope is None:
                return self.highest_plant_level()
            return self.plant_operations.get(scope.category, {}).get(scope.unit, PermissionLevel.NONE)
        return getattr(self, module.value)

    def iter_plant_levels(self) -> Iterator[Tuple[str, str, PermissionLevel]]:
        for category, units in self.plant_operations.items():
            for unit, level in units.items():
                yield category, unit, level

    def highest_plant_level(self) -> PermissionLevel:
        highest = PermissionLevel.NONE
        for _category, _unit, level in self.iter_plant_levels():
            if level.rank > highest.rank:
                highest = level
        return highest

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


def default_matrix() -> PermissionMatrix:
    """All modules NONE, no plant scopes: the default-deny matrix."""
    return PermissionMatrix()
