from __future__ import annotations

from plantops.permissions.models import PermissionLevel
from plantops.permissions.records import (
    LegacyPermissionRecord,
    PermissionsDataRecord,
    decode_raw_record,
)


def test_permissions_data_takes_precedence_over_legacy_shape():
    record = decode_raw_record(
        {
            "permissions_data": '{"dashboard": "READ"}',
            "permissions": {"module_name": "dashboard", "permission_level": "ADMIN"},
        }
    )
    assert isinstance(record, PermissionsDataRecord)
    assert record.kind == "permissions_data"


def test_null_permissions_data_falls_back_to_legacy():
    record = decode_raw_record(
        {
            "permissions_data": None,
            "permissions": {
                "module_name": "plant_operations",
                "permission_level": "read",
                "plant_units": [{"category": "Packing", "unit": "Unit1", "id": 7}],
            },
        }
    )
    assert isinstance(record, LegacyPermissionRecord)
    assert record.permissions.permission_level is PermissionLevel.READ
    assert record.permissions.plant_units[0].unit == "Unit1"


def test_malformed_records_decode_to_none():
    assert decode_raw_record("dashboard") is None
    assert decode_raw_record({"permissions": {"module_name": "dashboard"}}) is None
    assert decode_raw_record({"permissions": {"module_name": "dashboard", "permission_level": "ROOT"}}) is None
    assert decode_raw_record({"permissions_data": 12}) is None


def test_typed_record_passes_through():
    record = PermissionsDataRecord(permissions_data="{}")
    assert decode_raw_record(record) is record
