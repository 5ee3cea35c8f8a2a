from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from plantops.audit.service import AuditRequestContext, log_audit, log_permission_change
from plantops.auth.user_model import User
from plantops.permissions.builder import build_permission_matrix
from plantops.permissions.cache import ThreadSafeTTLCache
from plantops.permissions.defaults import default_matrix_for_role
from plantops.permissions.matrix import PermissionMatrix, default_matrix
from plantops.permissions.models import (
    SCALAR_MODULES,
    DefaultPermissions,
    Permission,
    PermissionLevel,
    PermissionModule,
    UserPermission,
)
from plantops.permissions.records import RawPermissionRecord, decode_raw_record
from plantops.plant.models import list_plant_unit_pairs
from plantops.realtime import (
    PERMISSIONS_TABLE,
    USER_PERMISSIONS_TABLE,
    ChangeEvent,
    PermissionEventBus,
    permission_events,
)
from plantops.settings import settings

logger = logging.getLogger(__name__)

_permission_cache = ThreadSafeTTLCache(maxsize=1024, ttl=settings.permission_cache_ttl_seconds)

# catalog rows seeded for the flat modules
_SEEDED_LEVELS = (PermissionLevel.READ, PermissionLevel.WRITE, PermissionLevel.ADMIN)


class UnknownPermissionError(ValueError):
    """Raised when an assignment references permission ids missing from the catalog."""

    def __init__(self, missing: Sequence[int]) -> None:
        self.missing = sorted(set(missing))
        super().__init__(f"unknown permission ids: {self.missing}")


# ─────────────────────────────
# Reading
# ─────────────────────────────


def fetch_raw_permission_records(session: Session, user_id: int) -> List[RawPermissionRecord]:
    """
    Load a user's permission rows, oldest first, decoded into typed records.

    Legacy join rows are expanded with their catalog entry; rows carrying
    ``permissions_data`` are passed through as the newer shape.
    """
    statement = (
        select(UserPermission, Permission)
        .join(Permission, UserPermission.permission_id == Permission.id, isouter=True)
        .where(UserPermission.user_id == user_id)
        .order_by(UserPermission.id)
    )
    records: List[RawPermissionRecord] = []
    for user_perm, perm in session.exec(statement).all():
        if user_perm.permissions_data is not None:
            raw: Dict[str, Any] = {"permissions_data": user_perm.permissions_data}
        elif perm is not None:
            raw = {
                "permissions": {
                    "module_name": perm.module_name,
                    "permission_level": perm.permission_level,
                    "plant_units": perm.plant_units,
                }
            }
        else:
            logger.warning("user_permissions row %s has neither data nor catalog entry", user_perm.id)
            continue
        record = decode_raw_record(raw)
        if record is not None:
            records.append(record)
    return records


def fetch_user_permissions(session: Session, user_id: int, *, use_cache: bool = True) -> PermissionMatrix:
    """Build the user's matrix from storage; storage failures yield the default matrix."""
    if use_cache:
        cached = _permission_cache.get(user_id)
        if cached is not None:
            return cached.model_copy(deep=True)

    try:
        records = fetch_raw_permission_records(session, user_id)
    except SQLAlchemyError as exc:
        logger.warning("Failed to load permissions for user %s: %s", user_id, exc)
        return default_matrix()

    matrix = build_permission_matrix(records)
    _permission_cache[user_id] = matrix.model_copy(deep=True)
    return matrix


def clear_permission_cache(user_id: Optional[int] = None) -> None:
    if user_id is None:
        _permission_cache.clear()
    else:
        _permission_cache.pop(user_id)


def _parse_stored_matrix(text: Optional[str]) -> Optional[PermissionMatrix]:
    if text is None:
        return None
    try:
        return PermissionMatrix.model_validate_json(text)
    except ValidationError:
        return None


# ─────────────────────────────
# Writing
# ─────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _publish(bus: PermissionEventBus, table: str, action: str, record: Dict[str, Any]) -> None:
    bus.publish(ChangeEvent(table=table, action=action, record=record))  # type: ignore[arg-type]


def _store_matrix(
    session: Session,
    user: User,
    matrix: PermissionMatrix,
    *,
    is_custom: bool,
    change: str,
    changed_by: Any,
    audit_ctx: Optional[AuditRequestContext],
    bus: PermissionEventBus,
) -> PermissionMatrix:
    """Replace every permission row of ``user`` with one ``permissions_data`` row."""
    user_id = user.id
    old_matrix = fetch_user_permissions(session, user_id, use_cache=False)
    rows = session.exec(
        select(UserPermission).where(UserPermission.user_id == user_id).order_by(UserPermission.id)
    ).all()
    data_row = next((row for row in rows if row.permissions_data is not None), None)
    had_rows = bool(rows)

    try:
        for row in rows:
            if row is not data_row:
                session.delete(row)

        payload = json.dumps(matrix.to_json_dict())
        if data_row is None:
            data_row = UserPermission(user_id=user_id)
        data_row.permissions_data = payload
        data_row.is_custom_permissions = is_custom
        data_row.role = user.role if not is_custom else (data_row.role or user.role)
        data_row.updated_at = _utcnow()
        session.add(data_row)
        session.flush()

        log_permission_change(
            session,
            user_id=user_id,
            change=change,
            old_permissions=old_matrix.to_json_dict() if had_rows else None,
            new_permissions=matrix.to_json_dict(),
            changed_by=changed_by,
            audit_ctx=audit_ctx,
        )
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to store permissions for user %s", user_id)
        raise

    clear_permission_cache(user_id)
    _publish(
        bus,
        USER_PERMISSIONS_TABLE,
        "update" if had_rows else "create",
        {"id": data_row.id, "user_id": user_id},
    )
    return fetch_user_permissions(session, user_id, use_cache=False)


def save_user_permissions(
    session: Session,
    user: User,
    matrix: PermissionMatrix,
    *,
    changed_by: Any = None,
    audit_ctx: Optional[AuditRequestContext] = None,
    bus: PermissionEventBus = permission_events,
) -> PermissionMatrix:
    """Store a custom matrix for ``user``, replacing whatever rows it had."""
    return _store_matrix(
        session,
        user,
        matrix,
        is_custom=True,
        change="updated",
        changed_by=changed_by,
        audit_ctx=audit_ctx,
        bus=bus,
    )


def resolve_default_matrix(session: Session, role: str) -> PermissionMatrix:
    """Stored default for ``role`` when one exists, else the built-in role default."""
    stored = get_default_permissions_from_db(session, role)
    if stored is not None:
        return stored
    return default_matrix_for_role(role, list_plant_unit_pairs(session))


def initialize_user_permissions(
    session: Session,
    user: User,
    *,
    changed_by: Any = None,
    audit_ctx: Optional[AuditRequestContext] = None,
    bus: PermissionEventBus = permission_events,
) -> PermissionMatrix:
    return _store_matrix(
        session,
        user,
        resolve_default_matrix(session, user.role),
        is_custom=False,
        change="created",
        changed_by=changed_by,
        audit_ctx=audit_ctx,
        bus=bus,
    )


def reset_user_permissions_to_default(
    session: Session,
    user: User,
    *,
    changed_by: Any = None,
    audit_ctx: Optional[AuditRequestContext] = None,
    bus: PermissionEventBus = permission_events,
) -> PermissionMatrix:
    return _store_matrix(
        session,
        user,
        resolve_default_matrix(session, user.role),
        is_custom=False,
        change="reset_to_default",
        changed_by=changed_by,
        audit_ctx=audit_ctx,
        bus=bus,
    )


def assign_permissions(
    session: Session,
    user: User,
    permission_ids: Sequence[int],
    *,
    changed_by: Any = None,
    audit_ctx: Optional[AuditRequestContext] = None,
    bus: PermissionEventBus = permission_events,
) -> PermissionMatrix:
    """Replace the user's rows with legacy join rows onto the given catalog entries, in order."""
    wanted = list(dict.fromkeys(permission_ids))
    if wanted:
        found = set(session.exec(select(Permission.id).where(Permission.id.in_(wanted))).all())
        missing = [pid for pid in wanted if pid not in found]
        if missing:
            raise UnknownPermissionError(missing)

    user_id = user.id
    old_matrix = fetch_user_permissions(session, user_id, use_cache=False)
    try:
        for row in session.exec(select(UserPermission).where(UserPermission.user_id == user_id)).all():
            session.delete(row)
        session.flush()
        for permission_id in wanted:
            session.add(UserPermission(user_id=user_id, permission_id=permission_id, role=user.role))
        session.flush()

        new_matrix = build_permission_matrix(fetch_raw_permission_records(session, user_id))
        log_permission_change(
            session,
            user_id=user_id,
            change="assigned",
            old_permissions=old_matrix.to_json_dict(),
            new_permissions=new_matrix.to_json_dict(),
            changed_by=changed_by,
            audit_ctx=audit_ctx,
        )
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to assign permissions for user %s", user_id)
        raise

    clear_permission_cache(user_id)
    _publish(bus, USER_PERMISSIONS_TABLE, "update", {"user_id": user_id, "permission_ids": wanted})
    return new_matrix


def delete_user_permissions(session: Session, user_id: int) -> int:
    """Drop every permission row of a user. Flushes; the caller commits and then publishes."""
    rows = session.exec(select(UserPermission).where(UserPermission.user_id == user_id)).all()
    for row in rows:
        session.delete(row)
    session.flush()
    clear_permission_cache(user_id)
    return len(rows)


def notify_user_permissions_deleted(user_id: int, *, bus: PermissionEventBus = permission_events) -> None:
    _publish(bus, USER_PERMISSIONS_TABLE, "delete", {"user_id": user_id})


def notify_user_permissions_changed(user_id: int, *, bus: PermissionEventBus = permission_events) -> None:
    _publish(bus, USER_PERMISSIONS_TABLE, "update", {"user_id": user_id})


# ─────────────────────────────
# Catalog
# ─────────────────────────────


def list_permission_catalog(session: Session) -> List[Permission]:
    return session.exec(select(Permission).order_by(Permission.module_name, Permission.id)).all()


def ensure_default_permissions(session: Session) -> int:
    """Seed READ/WRITE/ADMIN catalog rows for the flat modules; idempotent."""
    existing = {
        (row.module_name, row.permission_level)
        for row in session.exec(select(Permission)).all()
        if not row.plant_units
    }
    created = 0
    for module in SCALAR_MODULES:
        for level in _SEEDED_LEVELS:
            if (module.value, level.value) in existing:
                continue
            session.add(
                Permission(
                    module_name=module.value,
                    permission_level=level.value,
                    description=f"{level.value.title()} access to {module.value.replace('_', ' ')}",
                )
            )
            created += 1
    session.commit()
    return created


def create_permission(
    session: Session,
    *,
    module: PermissionModule,
    level: PermissionLevel,
    plant_units: Optional[List[Dict[str, str]]] = None,
    description: Optional[str] = None,
    changed_by: Any = None,
    audit_ctx: Optional[AuditRequestContext] = None,
    bus: PermissionEventBus = permission_events,
) -> Permission:
    ctx = audit_ctx or AuditRequestContext()
    permission = Permission(
        module_name=module.value,
        permission_level=level.value,
        plant_units=plant_units if module is PermissionModule.PLANT_OPERATIONS else None,
        description=description,
    )
    try:
        session.add(permission)
        session.flush()
        log_audit(
            session,
            actor=changed_by,
            action="permissions.create",
            target_type="permission",
            target_id=permission.id,
            meta={"module_name": permission.module_name, "permission_level": permission.permission_level},
            ip=ctx.ip,
            ua=ctx.user_agent,
            corr=ctx.correlation_id,
        )
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to create permission %s/%s", module.value, level.value)
        raise
    session.refresh(permission)
    _publish(bus, PERMISSIONS_TABLE, "create", {"id": permission.id})
    return permission


# ─────────────────────────────
# Role defaults
# ─────────────────────────────


def get_default_permissions_from_db(session: Session, role: str) -> Optional[PermissionMatrix]:
    row = session.get(DefaultPermissions, role)
    if row is None:
        return None
    matrix = _parse_stored_matrix(row.permissions_data)
    if matrix is None:
        logger.warning("Stored default permissions for role %r are malformed; ignoring", role)
    return matrix


def get_all_default_permissions_from_db(session: Session) -> Dict[str, PermissionMatrix]:
    result: Dict[str, PermissionMatrix] = {}
    for row in session.exec(select(DefaultPermissions).order_by(DefaultPermissions.role)).all():
        matrix = _parse_stored_matrix(row.permissions_data)
        if matrix is None:
            logger.warning("Stored default permissions for role %r are malformed; skipping", row.role)
            continue
        result[row.role] = matrix
    return result


def save_default_permissions_to_db(
    session: Session,
    role: str,
    matrix: PermissionMatrix,
    *,
    changed_by: Any = None,
    audit_ctx: Optional[AuditRequestContext] = None,
) -> PermissionMatrix:
    ctx = audit_ctx or AuditRequestContext()
    row = session.get(DefaultPermissions, role)
    previous = _parse_stored_matrix(row.permissions_data) if row is not None else None
    if row is None:
        row = DefaultPermissions(role=role, permissions_data="")
    row.permissions_data = json.dumps(matrix.to_json_dict())
    row.updated_at = _utcnow()
    try:
        session.add(row)
        log_audit(
            session,
            actor=changed_by,
            action="default_permissions.update",
            target_type="role",
            target_id=role,
            meta={
                "old_permissions": previous.to_json_dict() if previous is not None else None,
                "new_permissions": matrix.to_json_dict(),
            },
            ip=ctx.ip,
            ua=ctx.user_agent,
            corr=ctx.correlation_id,
        )
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to store default permissions for role %r", role)
        raise
    return matrix
