from __future__ import annotations

from sqlmodel import Session, select

from plantops.auth.roles import UserRole
from plantops.auth.user_model import User
from plantops.permissions.models import PermissionLevel, UserPermission
from plantops.permissions.service import initialize_user_permissions
from plantops.settings import _split_pairs
from plantops.startup import bootstrap_super_admin, run_startup


def test_run_startup_seeds_catalog_once(engine):
    first = run_startup(bind=engine)
    assert first.db_initialized is True
    assert first.errors == []
    assert first.env_issues == []
    assert first.permissions_seeded == 9

    assert run_startup(bind=engine).permissions_seeded == 0


def test_bootstrap_super_admin_only_when_missing(session: Session):
    created = bootstrap_super_admin(session, "boss", "Str0ngPass")
    assert created is not None
    assert created.role == UserRole.SUPER_ADMIN.value
    row = session.exec(select(UserPermission).where(UserPermission.user_id == created.id)).one()
    assert row.is_custom_permissions is False

    assert bootstrap_super_admin(session, "boss2", "Str0ngPass") is None
    assert len(session.exec(select(User)).all()) == 1


def test_run_startup_seeds_plant_units_for_role_defaults(engine, session: Session, make_user):
    units = [("Kiln", "K1"), ("Kiln", "K1"), ("Packing", "Unit1")]
    assert run_startup(bind=engine, plant_units=units).plant_units_seeded == 2
    assert run_startup(bind=engine, plant_units=units).plant_units_seeded == 0

    operator = make_user("shift", UserRole.OPERATOR)
    matrix = initialize_user_permissions(session, operator)

    assert matrix.plant_operations == {
        "Kiln": {"K1": PermissionLevel.WRITE},
        "Packing": {"Unit1": PermissionLevel.WRITE},
    }


def test_plant_units_setting_parses_category_unit_pairs():
    assert _split_pairs("Kiln/K1; Packing / Unit1, no-slash, /x") == [("Kiln", "K1"), ("Packing", "Unit1")]
    assert _split_pairs(None) == []
