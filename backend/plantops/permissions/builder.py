from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from plantops.permissions.matrix import PermissionMatrix, PlantOperationsPermissions, parse_plant_operations
from plantops.permissions.models import PermissionLevel, PermissionModule
from plantops.permissions.records import (
    LegacyPermissionRecord,
    PermissionsDataRecord,
    RawPermissionRecord,
    decode_raw_record,
)

logger = logging.getLogger(__name__)

RawPermissionInput = Union[None, str, RawPermissionRecord, Mapping[str, Any], Iterable[Any]]

_COARSE_ROLE_MARKERS = ("admin", "operator")


class _MatrixState:
    """Mutable working copy used while folding records into a matrix."""

    def __init__(self) -> None:
        self.levels: Dict[PermissionModule, PermissionLevel] = {
            PermissionModule.DASHBOARD: PermissionLevel.NONE,
            PermissionModule.INSPECTION: PermissionLevel.NONE,
            PermissionModule.PROJECT_MANAGEMENT: PermissionLevel.NONE,
        }
        self.plant_operations: PlantOperationsPermissions = {}

    def to_matrix(self) -> PermissionMatrix:
        return PermissionMatrix(
            dashboard=self.levels[PermissionModule.DASHBOARD],
            inspection=self.levels[PermissionModule.INSPECTION],
            project_management=self.levels[PermissionModule.PROJECT_MANAGEMENT],
            plant_operations={category: dict(units) for category, units in self.plant_operations.items()},
        )


def _apply_permissions_data(state: _MatrixState, record: PermissionsDataRecord) -> None:
    try:
        payload = json.loads(record.permissions_data)
    except (TypeError, ValueError):
        logger.warning("Skipping permissions_data record: invalid JSON")
        return
    if not isinstance(payload, dict):
        logger.warning("Skipping permissions_data record: expected an object, got %s", type(payload).__name__)
        return

    for key, value in payload.items():
        module = PermissionModule.parse(key)
        if module is None:
            continue
        if module is PermissionModule.PLANT_OPERATIONS:
            plant_ops = parse_plant_operations(value)
            if plant_ops is None:
                logger.warning("Ignoring invalid plant_operations value in permissions_data")
                continue
            state.plant_operations = plant_ops
            continue
        level = PermissionLevel.parse(value)
        if level is None:
            logger.warning("Ignoring invalid level %r for module %s", value, module.value)
            continue
        state.levels[module] = level


def _apply_legacy(state: _MatrixState, record: LegacyPermissionRecord) -> None:
    perm = record.permissions
    module = PermissionModule.parse(perm.module_name)
    if module is None:
        return
    if module is PermissionModule.PLANT_OPERATIONS:
        for ref in perm.plant_units or []:
            state.plant_operations.setdefault(ref.category, {})[ref.unit] = perm.permission_level
        return
    state.levels[module] = perm.permission_level


def _matrix_for_role(role: str) -> PermissionMatrix:
    matrix = PermissionMatrix()
    lowered = role.lower()
    if any(marker in lowered for marker in _COARSE_ROLE_MARKERS):
        matrix.dashboard = PermissionLevel.READ
    return matrix


def build_permission_matrix(raw: RawPermissionInput) -> PermissionMatrix:
    """
    Project raw permission records into a PermissionMatrix.

    ``raw`` may be None, a role name, a single record or a sequence of records
    (typed or plain mappings). Records are folded in input order so later
    records win for the same scalar module. A ``plant_operations`` value from
    ``permissions_data`` replaces the whole scoped map; legacy rows add to it.

    Never raises: anything that cannot be decoded is skipped.
    """
    if raw is None:
        return PermissionMatrix()
    if isinstance(raw, str):
        return _matrix_for_role(raw)
    if isinstance(raw, (Mapping, LegacyPermissionRecord, PermissionsDataRecord)):
        items: Iterable[Any] = [raw]
    elif isinstance(raw, Iterable):
        items = raw
    else:
        logger.warning("Unsupported permission input of type %s", type(raw).__name__)
        return PermissionMatrix()

    state = _MatrixState()
    try:
        for item in items:
            record: Optional[RawPermissionRecord] = decode_raw_record(item)
            if record is None:
                continue
            if isinstance(record, PermissionsDataRecord):
                _apply_permissions_data(state, record)
            else:
                _apply_legacy(state, record)
    except Exception:
        logger.exception("Reading permission records failed midway; using default matrix")
        return PermissionMatrix()
    return state.to_matrix()
