from __future__ import annotations

import json

import pytest

from plantops.permissions.builder import build_permission_matrix
from plantops.permissions.matrix import PermissionMatrix, default_matrix
from plantops.permissions.models import PermissionLevel
from plantops.permissions.records import LegacyPermissionRecord, PermissionsDataRecord


def _legacy(module: str, level: str, plant_units=None) -> dict:
    return {
        "permissions": {
            "module_name": module,
            "permission_level": level,
            "plant_units": plant_units,
        }
    }


def _data(payload) -> dict:
    return {"permissions_data": payload if isinstance(payload, str) else json.dumps(payload)}


def _assert_default(matrix: PermissionMatrix) -> None:
    assert matrix.dashboard is PermissionLevel.NONE
    assert matrix.inspection is PermissionLevel.NONE
    assert matrix.project_management is PermissionLevel.NONE
    assert matrix.plant_operations == {}


@pytest.mark.parametrize("raw", [None, [], {}, 42, [None, "junk", 3.5], [{"permissions": None}]])
def test_malformed_or_empty_input_yields_default_matrix(raw):
    _assert_default(build_permission_matrix(raw))


def test_empty_list_equals_default_matrix():
    assert build_permission_matrix([]) == default_matrix()


def test_legacy_dashboard_read():
    matrix = build_permission_matrix([_legacy("dashboard", "READ")])
    assert matrix.dashboard is PermissionLevel.READ
    assert matrix.to_json_dict()["dashboard"] == "READ"


def test_legacy_plant_units_fill_each_scope():
    matrix = build_permission_matrix(
        [
            _legacy(
                "plant_operations",
                "WRITE",
                [{"category": "Packing", "unit": "Unit1"}, {"category": "Packing", "unit": "Unit2"}],
            )
        ]
    )
    assert matrix.plant_operations == {
        "Packing": {"Unit1": PermissionLevel.WRITE, "Unit2": PermissionLevel.WRITE}
    }


def test_legacy_plant_rows_accumulate_across_records():
    matrix = build_permission_matrix(
        [
            _legacy("plant_operations", "READ", [{"category": "Packing", "unit": "Unit1"}]),
            _legacy("plant_operations", "ADMIN", [{"category": "Kiln", "unit": "K1"}]),
        ]
    )
    assert matrix.plant_operations == {
        "Packing": {"Unit1": PermissionLevel.READ},
        "Kiln": {"K1": PermissionLevel.ADMIN},
    }


def test_last_scalar_record_wins():
    matrix = build_permission_matrix([_legacy("dashboard", "READ"), _legacy("dashboard", "WRITE")])
    assert matrix.dashboard is PermissionLevel.WRITE


def test_levels_are_case_insensitive():
    matrix = build_permission_matrix([_legacy("inspection", "write")])
    assert matrix.inspection is PermissionLevel.WRITE


def test_unknown_module_is_ignored():
    matrix = build_permission_matrix([_legacy("billing", "ADMIN"), _legacy("inspection", "READ")])
    assert matrix.inspection is PermissionLevel.READ
    assert "billing" not in matrix.to_json_dict()


def test_permissions_data_sets_scalars_and_plant_operations():
    matrix = build_permission_matrix(
        [
            _data(
                {
                    "dashboard": "ADMIN",
                    "project_management": "READ",
                    "plant_operations": {"Mill": {"RM1": "WRITE"}},
                }
            )
        ]
    )
    assert matrix.dashboard is PermissionLevel.ADMIN
    assert matrix.project_management is PermissionLevel.READ
    assert matrix.inspection is PermissionLevel.NONE
    assert matrix.plant_operations == {"Mill": {"RM1": PermissionLevel.WRITE}}


def test_permissions_data_replaces_plant_operations():
    matrix = build_permission_matrix(
        [
            _legacy("plant_operations", "READ", [{"category": "Packing", "unit": "Unit1"}]),
            _data({"plant_operations": {"Mill": {"RM1": "WRITE"}}}),
        ]
    )
    assert matrix.plant_operations == {"Mill": {"RM1": PermissionLevel.WRITE}}


def test_invalid_json_skips_the_whole_record():
    matrix = build_permission_matrix([_legacy("dashboard", "READ"), _data("{not json")])
    assert matrix.dashboard is PermissionLevel.READ
    assert matrix.plant_operations == {}


def test_non_object_json_is_skipped():
    matrix = build_permission_matrix([_data("[1, 2, 3]")])
    _assert_default(matrix)


def test_invalid_entries_inside_valid_data_are_ignored():
    matrix = build_permission_matrix(
        [
            _legacy("plant_operations", "READ", [{"category": "Packing", "unit": "Unit1"}]),
            _data(
                {
                    "dashboard": "SUPERUSER",
                    "inspection": "WRITE",
                    "plant_operations": {"Mill": {"RM1": "EVERYTHING"}},
                }
            ),
        ]
    )
    assert matrix.dashboard is PermissionLevel.NONE
    assert matrix.inspection is PermissionLevel.WRITE
    assert matrix.plant_operations == {"Packing": {"Unit1": PermissionLevel.READ}}


def test_typed_records_are_accepted():
    records = [
        LegacyPermissionRecord.model_validate(_legacy("dashboard", "READ")),
        PermissionsDataRecord(permissions_data=json.dumps({"inspection": "ADMIN"})),
    ]
    matrix = build_permission_matrix(records)
    assert matrix.dashboard is PermissionLevel.READ
    assert matrix.inspection is PermissionLevel.ADMIN


def test_single_record_mapping_is_accepted():
    matrix = build_permission_matrix(_legacy("project_management", "WRITE"))
    assert matrix.project_management is PermissionLevel.WRITE


@pytest.mark.parametrize(
    "role, expected",
    [
        ("Admin", PermissionLevel.READ),
        ("Super Admin", PermissionLevel.READ),
        ("operator", PermissionLevel.READ),
        ("Guest", PermissionLevel.NONE),
        ("", PermissionLevel.NONE),
    ],
)
def test_role_string_gives_coarse_dashboard_access(role, expected):
    matrix = build_permission_matrix(role)
    assert matrix.dashboard is expected
    assert matrix.plant_operations == {}


def test_builder_is_idempotent():
    raw = [
        _legacy("dashboard", "READ"),
        _legacy("plant_operations", "WRITE", [{"category": "Packing", "unit": "Unit1"}]),
        _data({"inspection": "READ"}),
    ]
    assert build_permission_matrix(raw) == build_permission_matrix(raw)


def test_failing_iterable_degrades_to_default(caplog):
    def records():
        yield _legacy("dashboard", "ADMIN")
        raise RuntimeError("connection dropped")

    with caplog.at_level("ERROR", logger="plantops.permissions.builder"):
        _assert_default(build_permission_matrix(records()))
    assert "failed midway" in caplog.text
