from __future__ import annotations

from sqlmodel import Session, select

from plantops.audit.models import AuditLog
from plantops.auth.roles import UserRole
from plantops.permissions.matrix import PermissionMatrix
from plantops.permissions.models import Permission, PermissionLevel
from plantops.permissions.service import ensure_default_permissions, save_user_permissions

MATRIX = {
    "dashboard": "READ",
    "plant_operations": {"Packing": {"Unit1": "WRITE", "Unit2": "READ"}},
    "inspection": "NONE",
    "project_management": "WRITE",
}


def test_catalog_listing(client, session: Session, admin_headers):
    ensure_default_permissions(session)
    response = client.get("/api/permissions/", headers=admin_headers)
    assert response.status_code == 200
    assert len(response.json()) == 9


def test_create_catalog_entry(client, admin_headers):
    response = client.post(
        "/api/permissions/",
        json={
            "module_name": "plant_operations",
            "permission_level": "WRITE",
            "plant_units": [{"category": "Kiln", "unit": "K1"}],
        },
        headers=admin_headers,
    )
    assert response.status_code == 201
    assert response.json()["plant_units"] == [{"category": "Kiln", "unit": "K1"}]

    missing_units = client.post(
        "/api/permissions/",
        json={"module_name": "plant_operations", "permission_level": "WRITE"},
        headers=admin_headers,
    )
    assert missing_units.status_code == 422


def test_put_and_get_user_matrix(client, session: Session, make_user, admin_headers):
    user = make_user("worker", UserRole.OPERATOR)

    put = client.put(f"/api/permissions/users/{user.id}", json=MATRIX, headers=admin_headers)
    assert put.status_code == 200
    assert put.json()["permissions"] == MATRIX

    get = client.get(f"/api/permissions/users/{user.id}", headers=admin_headers)
    assert get.json() == {"user_id": user.id, "role": "Operator", "permissions": MATRIX}

    audit = session.exec(select(AuditLog).where(AuditLog.action == "permission_change")).one()
    assert audit.actor_username == "root"


def test_put_rejects_invalid_level(client, make_user, admin_headers):
    user = make_user("strict")
    bad = dict(MATRIX, dashboard="SUPERUSER")
    assert client.put(f"/api/permissions/users/{user.id}", json=bad, headers=admin_headers).status_code == 422


def test_reset_user_matrix(client, session: Session, make_user, admin_headers):
    user = make_user("reset.me", UserRole.OPERATOR)
    save_user_permissions(session, user, PermissionMatrix(project_management=PermissionLevel.ADMIN))

    response = client.post(f"/api/permissions/users/{user.id}/reset", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["permissions"]["project_management"] == "NONE"
    assert response.json()["permissions"]["dashboard"] == "READ"


def test_assignments(client, session: Session, make_user, admin_headers):
    user = make_user("assigned")
    perm = Permission(module_name="inspection", permission_level="WRITE")
    session.add(perm)
    session.commit()

    ok = client.put(
        f"/api/permissions/users/{user.id}/assignments",
        json={"permission_ids": [perm.id]},
        headers=admin_headers,
    )
    assert ok.status_code == 200
    assert ok.json()["permissions"]["inspection"] == "WRITE"

    unknown = client.put(
        f"/api/permissions/users/{user.id}/assignments",
        json={"permission_ids": [perm.id, 999]},
        headers=admin_headers,
    )
    assert unknown.status_code == 422

    duplicate = client.put(
        f"/api/permissions/users/{user.id}/assignments",
        json={"permission_ids": [perm.id, perm.id]},
        headers=admin_headers,
    )
    assert duplicate.status_code == 422


def test_role_defaults_roundtrip(client, make_user, admin_headers, headers_for):
    defaults = client.get("/api/permissions/defaults", headers=admin_headers).json()
    assert set(defaults) == {role.value for role in UserRole}
    assert defaults["Guest"]["dashboard"] == "NONE"

    put = client.put("/api/permissions/defaults/guest", json=MATRIX, headers=admin_headers)
    assert put.status_code == 200
    assert client.get("/api/permissions/defaults/Guest", headers=admin_headers).json() == MATRIX

    assert client.get("/api/permissions/defaults/Janitor", headers=admin_headers).status_code == 404

    plain_admin = make_user("plain.admin", UserRole.ADMIN)
    denied = client.put("/api/permissions/defaults/Guest", json=MATRIX, headers=headers_for(plain_admin))
    assert denied.status_code == 403


def test_new_user_picks_up_stored_default(client, admin_headers):
    client.put("/api/permissions/defaults/Manager", json=MATRIX, headers=admin_headers)
    created = client.post(
        "/api/users/",
        json={"username": "mgr", "password": "Str0ngPass", "role": "Manager"},
        headers=admin_headers,
    )
    assert created.json()["permissions"] == MATRIX


def test_check_endpoint(client, session: Session, make_user, headers_for):
    user = make_user("checker")
    save_user_permissions(session, user, PermissionMatrix.model_validate(MATRIX))
    headers = headers_for(user)

    scoped = client.post(
        "/api/permissions/check",
        json={"module": "plant_operations", "required_level": "WRITE", "category": "Packing", "unit": "Unit2"},
        headers=headers,
    ).json()
    assert scoped == {"allowed": False, "level": "READ"}

    unscoped = client.post(
        "/api/permissions/check",
        json={"module": "plant_operations", "required_level": "WRITE"},
        headers=headers,
    ).json()
    assert unscoped == {"allowed": True, "level": "WRITE"}

    scalar = client.post("/api/permissions/check", json={"module": "dashboard"}, headers=headers).json()
    assert scalar == {"allowed": True, "level": "READ"}

    unknown = client.post("/api/permissions/check", json={"module": "billing"}, headers=headers).json()
    assert unknown == {"allowed": False, "level": "NONE"}


def test_non_admin_cannot_edit_permissions(client, make_user, headers_for):
    user = make_user("plain", UserRole.MANAGER)
    response = client.put(f"/api/permissions/users/{user.id}", json=MATRIX, headers=headers_for(user))
    assert response.status_code == 403
