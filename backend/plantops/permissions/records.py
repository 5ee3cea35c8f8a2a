"""
Raw permission records as they come out of storage.

Two shapes exist side by side in the ``user_permissions`` table:

* legacy rows joined to a ``permissions`` catalog entry
  (``{"permissions": {"module_name", "permission_level", "plant_units"}}``)
* newer rows carrying the whole matrix as JSON text
  (``{"permissions_data": "{...}"}``)

Both are decoded once, here, into a closed union so the builder never has to
sniff shapes.
"""

from __future__ import annotations

import logging
from typing import Any, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from plantops.permissions.models import PermissionLevel

logger = logging.getLogger(__name__)


class PlantUnitRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    category: str
    unit: str


class LegacyPermission(BaseModel):
    model_config = ConfigDict(extra="ignore")

    module_name: str
    permission_level: PermissionLevel
    plant_units: Optional[List[PlantUnitRef]] = None


class LegacyPermissionRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: Literal["legacy"] = "legacy"
    permissions: LegacyPermission


class PermissionsDataRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: Literal["permissions_data"] = "permissions_data"
    permissions_data: str


RawPermissionRecord = Union[LegacyPermissionRecord, PermissionsDataRecord]


def decode_raw_record(raw: Any) -> Optional[RawPermissionRecord]:
    """
    Decode one storage record into a typed record.

    Mappings carrying a non-null ``permissions_data`` are the newer shape;
    everything else is tried as a legacy join row. Returns None when the
    record matches neither shape.
    """
    if isinstance(raw, (LegacyPermissionRecord, PermissionsDataRecord)):
        return raw
    if not isinstance(raw, Mapping):
        logger.warning("Skipping permission record of type %s", type(raw).__name__)
        return None

    try:
        if raw.get("permissions_data") is not None:
            return PermissionsDataRecord.model_validate(
                {"permissions_data": raw["permissions_data"]}
            )
        return LegacyPermissionRecord.model_validate({"permissions": raw.get("permissions")})
    except ValidationError as exc:
        logger.warning("Skipping malformed permission record: %s", exc.errors()[0].get("msg"))
        return None
